"""Ordered, id-unique collection of the messages of one conversation."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator

from ..schemas.messages import Message

logger = logging.getLogger(__name__)

MessagePatch = Callable[[Message], Message]


@dataclass(slots=True, frozen=True)
class ScrollAnchor:
    """Location of a message inside the loaded window."""

    message_id: str
    index: int


class TimelineStore:
    """Conversation timeline shared by the send pipeline and the reconciler.

    Records are kept in insertion order and are unique by id. All mutation is
    expected to happen on the event loop thread.
    """

    def __init__(self, *, highlight_duration: float = 1.0) -> None:
        self._messages: list[Message] = []
        self._aliases: dict[str, str] = {}
        self._highlight_duration = highlight_duration
        self._highlighted_id: str | None = None
        self._highlight_timer: asyncio.TimerHandle | None = None

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------
    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def highlighted_id(self) -> str | None:
        return self._highlighted_id

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(tuple(self._messages))

    def __contains__(self, message_id: object) -> bool:
        return isinstance(message_id, str) and self._index_of(message_id) is not None

    def resolve_id(self, message_id: str) -> str:
        """Map a superseded optimistic id to the id that replaced it."""

        seen = set()
        while message_id in self._aliases and message_id not in seen:
            seen.add(message_id)
            message_id = self._aliases[message_id]
        return message_id

    def _index_of(self, message_id: str) -> int | None:
        message_id = self.resolve_id(message_id)
        for index, message in enumerate(self._messages):
            if message.id == message_id:
                return index
        return None

    def find_by_id(self, message_id: str) -> Message | None:
        index = self._index_of(message_id)
        return None if index is None else self._messages[index]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def load(self, messages: Iterable[Message]) -> None:
        """Rebuild the timeline from a history page."""

        self.clear()
        unique: dict[str, Message] = {}
        for message in messages:
            unique[message.id] = message
        self._messages = sorted(unique.values(), key=lambda message: message.created_at)

    def clear(self) -> None:
        self._messages.clear()
        self._aliases.clear()
        self._clear_highlight()

    def append(self, message: Message) -> bool:
        if self._index_of(message.id) is not None:
            logger.debug("Ignoring duplicate timeline record", extra={"message_id": message.id})
            return False
        self._messages.append(message)
        return True

    def replace(self, temp_id: str, confirmed: Message) -> bool:
        """Swap an optimistic record for its confirmed counterpart in place.

        When the confirmed record already arrived through the channel its copy
        is dropped so the id stays unique. Returns False when ``temp_id`` is no
        longer in the timeline.
        """

        index = self._index_of(temp_id)
        if index is None:
            return False
        if confirmed.id != temp_id:
            echo_index = self._index_of(confirmed.id)
            if echo_index is not None and echo_index != index:
                del self._messages[echo_index]
                if echo_index < index:
                    index -= 1
            self._aliases[temp_id] = confirmed.id
            if self._highlighted_id == temp_id:
                self._highlighted_id = confirmed.id
        self._messages[index] = confirmed
        return True

    def update_by_id(self, message_id: str, patch: MessagePatch | dict[str, Any]) -> Message | None:
        index = self._index_of(message_id)
        if index is None:
            return None
        current = self._messages[index]
        updated = patch(current) if callable(patch) else current.with_updates(**patch)
        self._messages[index] = updated
        return updated

    def update_where(self, predicate: Callable[[Message], bool], patch: MessagePatch) -> int:
        changed = 0
        for index, message in enumerate(self._messages):
            if not predicate(message):
                continue
            updated = patch(message)
            if updated != message:
                self._messages[index] = updated
                changed += 1
        return changed

    def remove_by_id(self, message_id: str) -> Message | None:
        index = self._index_of(message_id)
        if index is None:
            return None
        removed = self._messages.pop(index)
        if self._highlighted_id == removed.id:
            self._clear_highlight()
        return removed

    # ------------------------------------------------------------------
    # Scroll anchoring
    # ------------------------------------------------------------------
    def scroll_anchor(self, message_id: str) -> ScrollAnchor | None:
        """Locate ``message_id`` and highlight it for a short window.

        Returns None when the message is outside the loaded window.
        """

        index = self._index_of(message_id)
        if index is None:
            return None
        target = self._messages[index].id
        self._clear_highlight()
        self._highlighted_id = target
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; highlight will not auto-clear")
        else:
            self._highlight_timer = loop.call_later(self._highlight_duration, self._expire_highlight)
        return ScrollAnchor(message_id=target, index=index)

    def _expire_highlight(self) -> None:
        self._highlight_timer = None
        self._highlighted_id = None

    def _clear_highlight(self) -> None:
        if self._highlight_timer is not None:
            self._highlight_timer.cancel()
            self._highlight_timer = None
        self._highlighted_id = None


__all__ = ["ScrollAnchor", "TimelineStore"]
