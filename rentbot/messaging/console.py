"""Log-only messaging gateway for local development without credentials."""

from __future__ import annotations

import logging
import secrets
from typing import Optional

from rentbot.session import redact_pii

from .base import MessagingGateway, SendResult

logger = logging.getLogger("rentbot.messaging.console")


class ConsoleGateway(MessagingGateway):
    """Writes outbound messages to the log instead of sending them."""

    async def send_message(
        self, to: str, body: str, media: Optional[list[str]] = None
    ) -> SendResult:
        logger.info("→ %s%s\n%s", redact_pii(to), f" (+{len(media)} media)" if media else "", body)
        return SendResult(ok=True, sid=f"LOCAL-{secrets.token_hex(6)}")
