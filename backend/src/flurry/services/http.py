"""HTTP adapter for the message persistence API."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Sequence

import httpx
from pydantic import ValidationError

from ..config import Settings, get_settings
from ..errors import TransientNetworkError
from ..schemas.messages import Message, OutgoingMessage

logger = logging.getLogger(__name__)

# Multipart field the send route reads the attachment from (images and voice notes alike).
UPLOAD_FIELD = "image"

TokenProvider = Callable[[], Awaitable[str | None]]


async def _no_token() -> str | None:
    return None


class HttpMessageService:
    """Talks to the message API over HTTP.

    Every request carries the bearer token returned by ``token_provider``.
    Transport failures and 5xx responses surface as ``TransientNetworkError``;
    other 4xx responses surface as ``TransientNetworkError`` too, tagged with
    their status code, because the engine has no different recovery for them.
    """

    def __init__(
        self,
        *,
        token_provider: TokenProvider = _no_token,
        settings: Settings | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.http_timeout_seconds
        self._token_provider = token_provider
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HttpMessageService":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _get_headers(self) -> dict[str, str]:
        """Get headers for API requests."""
        token = await self._token_provider()
        if not token:
            return {}
        return {"Authorization": f"Bearer {token}"}

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        headers = await self._get_headers()
        try:
            response = await self._client.request(method, path, headers=headers, **kwargs)
        except httpx.TransportError as exc:
            logger.warning("Message API unreachable", extra={"method": method, "path": path})
            raise TransientNetworkError(f"{method} {path} failed: {exc}") from exc

        if response.status_code >= 400:
            detail = _error_detail(response)
            if response.status_code >= 500:
                logger.warning(
                    "Message API server error",
                    extra={"method": method, "path": path, "status": response.status_code},
                )
            else:
                logger.info(
                    "Message API rejected request",
                    extra={"method": method, "path": path, "status": response.status_code},
                )
            raise TransientNetworkError(detail, status_code=response.status_code)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    # ------------------------------------------------------------------
    # MessageService
    # ------------------------------------------------------------------
    async def fetch_history(self, peer_id: str) -> Sequence[Message]:
        """
        Load the stored conversation with ``peer_id``.

        Args:
            peer_id: Identifier of the other participant

        Returns:
            Messages as returned by the server; unparseable entries are skipped

        Raises:
            TransientNetworkError: If the request fails
        """
        body = await self._request("GET", f"/message/{peer_id}")
        messages: list[Message] = []
        for raw in _unwrap(body) or []:
            try:
                messages.append(Message.model_validate(raw))
            except ValidationError:
                logger.warning("Skipped malformed history entry", extra={"peer_id": peer_id})
        return messages

    async def submit_message(self, payload: OutgoingMessage) -> Message:
        """
        Submit a message as multipart form data.

        Args:
            payload: Outgoing message description

        Returns:
            The confirmed message record

        Raises:
            TransientNetworkError: If the request fails or the response is unusable
        """
        data: dict[str, str] = {
            "receiverId": payload.recipient_id,
            "message_type": payload.kind.value,
            "clientId": payload.client_id,
        }
        if payload.text:
            data["text"] = payload.text
        if payload.reply_to_id:
            data["replyTo"] = payload.reply_to_id
        if payload.shared_post_id:
            data["sharedPostId"] = payload.shared_post_id
        files = None
        if payload.attachment is not None:
            attachment = payload.attachment
            files = {UPLOAD_FIELD: (attachment.file_name, attachment.data, attachment.content_type)}

        body = await self._request("POST", "/message/send", data=data, files=files)
        try:
            return Message.model_validate(_unwrap(body))
        except ValidationError as exc:
            raise TransientNetworkError("Message API returned an unusable confirmation") from exc

    async def acknowledge_read(self, peer_id: str) -> None:
        await self._request("PUT", f"/message/read/{peer_id}", json={})

    async def toggle_reaction(self, message_id: str, emoji: str) -> None:
        await self._request("POST", "/message/react", json={"messageId": message_id, "emoji": emoji})

    # The direct-message router exposes no per-message edit or delete yet; these
    # follow the group chat routes (`/group/message/{id}`) under `/message`.
    async def edit_message(self, message_id: str, text: str) -> None:
        await self._request("PUT", f"/message/{message_id}", json={"text": text})

    async def delete_message(self, message_id: str) -> None:
        await self._request("DELETE", f"/message/{message_id}")

    async def clear_conversation(self, peer_id: str) -> None:
        await self._request("DELETE", f"/message/conversation/{peer_id}")


def _unwrap(body: Any) -> Any:
    if isinstance(body, dict):
        for key in ("data", "message", "messages"):
            if key in body and not isinstance(body[key], str):
                return body[key]
    return body


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("message"), str):
        return body["message"]
    return f"Message API responded with {response.status_code}"


__all__ = ["HttpMessageService", "TokenProvider"]
