"""WhatChimp messaging gateway (HTTP API with bearer token)."""

from __future__ import annotations

import logging
import re
from typing import Optional

import httpx

from rentbot.session import redact_pii

from .base import MessagingGateway, SendResult

logger = logging.getLogger("rentbot.messaging.whatchimp")


class WhatChimpGateway(MessagingGateway):
    """MessagingGateway that posts JSON to the WhatChimp send endpoint.

    Media messages are sent one attachment per request with the text as
    the first caption.
    """

    def __init__(
        self,
        api_url: str,
        access_token: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ) -> None:
        if not api_url:
            raise ValueError("WHATCHIMP_API_URL must be set to use the WhatChimp gateway.")
        self._api_url = api_url
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={"Authorization": f"Bearer {access_token}"},
        )

    async def _post(self, payload: dict) -> SendResult:
        try:
            resp = await self._client.post(self._api_url, json=payload)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("WhatChimp send to %s failed: %s", redact_pii(payload["number"]), exc)
            return SendResult(ok=False, error=str(exc))
        try:
            data = resp.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        sid = str(data.get("message_id") or data.get("id") or "sent")
        return SendResult(ok=True, sid=sid)

    async def send_message(
        self, to: str, body: str, media: Optional[list[str]] = None
    ) -> SendResult:
        number = re.sub(r"\D", "", to)
        if not media:
            return await self._post({"number": number, "type": "text", "message": body})

        result = SendResult(ok=False, error="no media sent")
        for i, url in enumerate(media):
            result = await self._post({
                "number": number,
                "type": "media",
                "media_url": url,
                "caption": body if i == 0 else "",
            })
            if not result.ok:
                return result
        return result

    async def close(self) -> None:
        await self._client.aclose()
