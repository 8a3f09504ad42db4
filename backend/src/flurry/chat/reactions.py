"""Pure helpers for message reactions.

Two rules live here. ``toggle_reaction`` is the optimistic mutation applied
when the local user taps an emoji: a user holds at most one reaction per
message, tapping the same emoji removes it and tapping another one replaces
it in place. ``aggregate_reactions`` turns the per-user list into the groups
shown under a message bubble.
"""

from __future__ import annotations

from typing import Iterable, Sequence

from ..schemas.messages import Reaction, ReactionGroup


def toggle_reaction(reactions: Sequence[Reaction], user_id: str, emoji: str) -> list[Reaction]:
    """Return a new reaction list with ``user_id``'s reaction toggled to ``emoji``."""

    result = list(reactions)
    for index, reaction in enumerate(result):
        if reaction.user_id != user_id:
            continue
        if reaction.emoji == emoji:
            del result[index]
        else:
            result[index] = Reaction(user_id=user_id, emoji=emoji)
        return result
    result.append(Reaction(user_id=user_id, emoji=emoji))
    return result


def collapse_duplicates(reactions: Iterable[Reaction]) -> list[Reaction]:
    """Keep one entry per user, the last one seen, at that user's first position."""

    latest: dict[str, Reaction] = {}
    for reaction in reactions:
        latest[reaction.user_id] = reaction
    return list(latest.values())


def aggregate_reactions(
    reactions: Iterable[Reaction], local_user_id: str | None = None
) -> list[ReactionGroup]:
    """Group reactions by emoji, most used first.

    Ties keep the order in which each emoji was first seen. Duplicate entries
    for one user should never reach this point; if they do they are collapsed
    rather than double counted.
    """

    users_by_emoji: dict[str, list[str]] = {}
    for reaction in collapse_duplicates(reactions):
        users_by_emoji.setdefault(reaction.emoji, []).append(reaction.user_id)

    groups = [
        ReactionGroup(
            emoji=emoji,
            count=len(user_ids),
            did_local_user_react=local_user_id is not None and local_user_id in user_ids,
            user_ids=tuple(user_ids),
        )
        for emoji, user_ids in users_by_emoji.items()
    ]
    # sorted() is stable, so equal counts stay in first-seen order.
    return sorted(groups, key=lambda group: -group.count)


__all__ = ["toggle_reaction", "collapse_duplicates", "aggregate_reactions"]
