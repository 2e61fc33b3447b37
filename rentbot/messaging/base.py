"""Abstract base class for outbound messaging gateways.

Defines the interface the marketplace uses to reach a WhatsApp user.
Any transport (Twilio, WhatChimp, ...) implements this ABC.
Implementations never raise on delivery failure; they return
``SendResult(ok=False, error=...)`` and log the problem.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class SendResult:
    """Outcome of one outbound message."""

    ok: bool
    sid: str = ""  # provider delivery id
    error: str = ""


class MessagingGateway(ABC):
    """Abstract outbound messaging transport."""

    @abstractmethod
    async def send_message(
        self, to: str, body: str, media: Optional[list[str]] = None
    ) -> SendResult:
        """Send a text, optionally with media attachments.

        Args:
            to: Recipient phone number without transport prefix.
            body: Message text.
            media: Public media URLs to attach.

        Returns:
            SendResult with the provider's delivery id on success.
        """

    async def send_template(
        self, to: str, template_id: str, variables: dict[str, str]
    ) -> SendResult:
        """Send a pre-approved content template (e.g. a WhatsApp Flow).

        Transports without template support fall back to sending the
        first variable as plain text.
        """
        body = next(iter(variables.values()), "")
        return await self.send_message(to, body)

    async def close(self) -> None:
        """Release transport resources."""
