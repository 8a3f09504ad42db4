"""Message kind classification.

Shared-post detection is a heuristic: the share dialog pastes a link of the
form ``https://<host>/post/<id>`` into the message body, and any body
containing such a link is treated as a shared post. Keep the pattern as is;
rendering code strips exactly this link from the body.
"""

from __future__ import annotations

import re

from ..models.enums import MessageKind
from ..schemas.messages import Attachment

SHARED_POST_PATTERN = re.compile(r"https?://[^\s/]+/post/([A-Za-z0-9_-]+)")


def extract_shared_post_id(text: str | None) -> str | None:
    if not text:
        return None
    match = SHARED_POST_PATTERN.search(text)
    return match.group(1) if match else None


def classify_kind(
    text: str | None,
    attachment: Attachment | None = None,
    shared_post_id: str | None = None,
) -> MessageKind:
    if attachment is not None:
        content_type = attachment.content_type.lower()
        if content_type.startswith("image/"):
            return MessageKind.IMAGE
        if content_type.startswith("audio/"):
            return MessageKind.AUDIO
    if shared_post_id or extract_shared_post_id(text):
        return MessageKind.SHARED_POST
    return MessageKind.TEXT


__all__ = ["SHARED_POST_PATTERN", "classify_kind", "extract_shared_post_id"]
