"""Twilio WhatsApp messaging gateway.

Uses the synchronous ``twilio.rest.Client``; every API call runs in the
default thread pool so it never blocks the event loop.
"""

from __future__ import annotations

import asyncio
import json
import logging
from functools import partial
from typing import Any, Optional

from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from rentbot.session import redact_pii

from .base import MessagingGateway, SendResult

logger = logging.getLogger("rentbot.messaging.twilio")

WHATSAPP_PREFIX = "whatsapp:"


def to_whatsapp_address(phone: str) -> str:
    """Add the ``whatsapp:`` transport prefix if missing."""
    if phone.startswith(WHATSAPP_PREFIX):
        return phone
    return f"{WHATSAPP_PREFIX}{phone}"


class TwilioWhatsAppGateway(MessagingGateway):
    """MessagingGateway backed by the Twilio Messages API."""

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        client: Optional[Client] = None,
    ) -> None:
        if client is None and not (account_sid and auth_token):
            raise ValueError(
                "Twilio credentials must be provided (TWILIO_ACCOUNT_SID / TWILIO_AUTH_TOKEN)."
            )
        self._client = client or Client(account_sid, auth_token)
        self._from = to_whatsapp_address(from_number)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _run_in_executor(self, func, *args, **kwargs) -> Any:
        """Run a synchronous Twilio call in the default thread pool."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args, **kwargs))

    async def _create(self, to: str, **params: Any) -> SendResult:
        try:
            message = await self._run_in_executor(
                self._client.messages.create,
                from_=self._from,
                to=to_whatsapp_address(to),
                **params,
            )
        except TwilioException as exc:
            logger.warning("Twilio send to %s failed: %s", redact_pii(to), exc)
            return SendResult(ok=False, error=str(exc))
        except Exception as exc:
            # Transport errors from the HTTP client (connection reset, timeout)
            logger.exception("Twilio send to %s raised", redact_pii(to))
            return SendResult(ok=False, error=str(exc) or type(exc).__name__)
        return SendResult(ok=bool(message.sid), sid=message.sid or "")

    # ------------------------------------------------------------------
    # MessagingGateway interface
    # ------------------------------------------------------------------

    async def send_message(
        self, to: str, body: str, media: Optional[list[str]] = None
    ) -> SendResult:
        params: dict[str, Any] = {"body": body}
        if media:
            params["media_url"] = list(media)
        return await self._create(to, **params)

    async def send_template(
        self, to: str, template_id: str, variables: dict[str, str]
    ) -> SendResult:
        """Send a Content API template such as a WhatsApp Flow (``HX...`` SID)."""
        return await self._create(
            to,
            content_sid=template_id,
            content_variables=json.dumps(variables),
        )
