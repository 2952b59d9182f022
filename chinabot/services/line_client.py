"""Thin asynchronous client for the LINE Messaging API."""

from __future__ import annotations

from typing import Any, Optional, Sequence

import httpx

from chinabot.models import OutboundMessage, to_payloads
from logger import get_logger

LOGGER = get_logger("line.client")

DEFAULT_API_BASE = "https://api.line.me/v2/bot"
MAX_MESSAGES_PER_CALL = 5


class LineApiError(RuntimeError):
    """Raised when LINE rejects a request or cannot be reached."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class LineClient:
    """Reply, push and profile calls over ``httpx.AsyncClient``.

    Delivery is attempted once. Failures surface as :class:`LineApiError`
    and are not retried.
    """

    def __init__(
        self,
        access_token: str,
        *,
        base_url: str = DEFAULT_API_BASE,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout, connect=timeout),
            headers={"Authorization": f"Bearer {access_token}"},
            transport=transport,
        )

    async def reply(self, reply_token: str, messages: Sequence[OutboundMessage]) -> None:
        await self._post(
            "/message/reply",
            {"replyToken": reply_token, "messages": to_payloads(messages[:MAX_MESSAGES_PER_CALL])},
        )

    async def push(self, user_id: str, messages: Sequence[OutboundMessage]) -> None:
        await self._post(
            "/message/push",
            {"to": user_id, "messages": to_payloads(messages[:MAX_MESSAGES_PER_CALL])},
        )

    async def get_profile(self, user_id: str) -> Optional[str]:
        """Return the display name of ``user_id`` or None when it is hidden."""

        try:
            response = await self._client.get(f"/profile/{user_id}")
        except httpx.HTTPError as exc:
            raise LineApiError(f"profile request failed: {exc}") from exc
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise LineApiError(
                f"profile request returned {response.status_code}",
                status_code=response.status_code,
                body=response.text[:200],
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise LineApiError("profile response is not JSON") from exc
        name = data.get("displayName") if isinstance(data, dict) else None
        return str(name) if name else None

    async def close(self) -> None:
        await self._client.aclose()

    async def _post(self, path: str, payload: dict[str, Any]) -> None:
        try:
            response = await self._client.post(path, json=payload)
        except httpx.HTTPError as exc:
            raise LineApiError(f"{path} failed: {exc}") from exc
        if response.status_code >= 300:
            raise LineApiError(
                f"{path} returned {response.status_code}",
                status_code=response.status_code,
                body=response.text[:200],
            )
        LOGGER.debug("LINE call ok", payload={"path": path, "messages": len(payload["messages"])})
