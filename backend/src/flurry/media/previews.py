"""Revocable preview handles for staged media."""

from __future__ import annotations

import itertools
import logging

from ..errors import PreviewRevokedError
from ..monitoring.metrics import live_preview_handles

logger = logging.getLogger(__name__)


class PreviewHandle:
    """Local reference to staged media, valid until revoked."""

    def __init__(self, registry: "PreviewRegistry", handle_id: str, data: bytes, content_type: str) -> None:
        self._registry = registry
        self._id = handle_id
        self._data: bytes | None = data
        self._content_type = content_type

    @property
    def url(self) -> str:
        return self._id

    @property
    def content_type(self) -> str:
        return self._content_type

    @property
    def revoked(self) -> bool:
        return self._data is None

    def read(self) -> bytes:
        if self._data is None:
            raise PreviewRevokedError(f"Preview {self._id} has been revoked")
        return self._data

    def revoke(self) -> bool:
        """Release the preview. Only the first call has an effect."""

        if self._data is None:
            return False
        self._data = None
        self._registry._release(self)
        return True

    def __repr__(self) -> str:
        state = "revoked" if self.revoked else "live"
        return f"<PreviewHandle {self._id} {state}>"


class PreviewRegistry:
    """Issues preview handles and tracks the ones still alive."""

    def __init__(self, prefix: str = "preview") -> None:
        self._prefix = prefix
        self._counter = itertools.count(1)
        self._live: dict[str, PreviewHandle] = {}

    @property
    def live_count(self) -> int:
        return len(self._live)

    @property
    def live_ids(self) -> list[str]:
        return list(self._live)

    def create(self, data: bytes, content_type: str) -> PreviewHandle:
        handle = PreviewHandle(self, f"{self._prefix}:{next(self._counter)}", bytes(data), content_type)
        self._live[handle.url] = handle
        live_preview_handles.inc()
        return handle

    def revoke_all(self) -> int:
        handles = list(self._live.values())
        for handle in handles:
            handle.revoke()
        if handles:
            logger.debug("Revoked outstanding previews", extra={"count": len(handles)})
        return len(handles)

    def _release(self, handle: PreviewHandle) -> None:
        if self._live.pop(handle.url, None) is not None:
            live_preview_handles.dec()


__all__ = ["PreviewHandle", "PreviewRegistry"]
