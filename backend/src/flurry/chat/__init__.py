"""Conversation state: timeline, reactions, content classification and sending.

``flurry.chat.session`` is imported explicitly; it depends on the realtime
package, which itself builds on the modules exported here.
"""

from .content import SHARED_POST_PATTERN, classify_kind, extract_shared_post_id
from .ports import LoggingNotifier, MessageService, Notifier
from .reactions import aggregate_reactions, collapse_duplicates, toggle_reaction
from .timeline import ScrollAnchor, TimelineStore

__all__ = [
    "SHARED_POST_PATTERN",
    "LoggingNotifier",
    "MessageService",
    "Notifier",
    "ScrollAnchor",
    "TimelineStore",
    "aggregate_reactions",
    "classify_kind",
    "collapse_duplicates",
    "extract_shared_post_id",
    "toggle_reaction",
]
