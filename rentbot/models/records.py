"""Pydantic models for photo requests, payments and moderation tickets."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PhotoRequest(BaseModel):
    """A pending (or settled) request to receive a listing's photos."""

    phone: str
    listing_id: str
    status: Literal["pending_confirmation", "completed", "canceled"] = "pending_confirmation"
    created_at: datetime = Field(default_factory=_utcnow)
    confirmed_at: Optional[datetime] = None


class Transaction(BaseModel):
    """A mobile-money payment.

    ``product`` is ``credits_<n>`` for a credit bundle or
    ``listing_publish`` for publishing ``listing_id``.
    """

    reference: str
    phone: str
    product: str
    type: Literal["credit_purchase", "listing_publish"] = "credit_purchase"
    amount: float
    status: Literal["pending", "success", "failed"] = "pending"
    provider_ref: str = ""
    paynow_reference: str = ""
    listing_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def credit_amount(self) -> int:
        """Credits granted by a ``credits_<n>`` product (0 for anything else)."""
        if not self.product.startswith("credits_"):
            return 0
        try:
            return int(self.product.split("_", 1)[1])
        except ValueError:
            return 0


class ModerationTicket(BaseModel):
    """A user report against a listing."""

    phone: str
    listing_id: str
    reason: str = ""
    status: Literal["open", "closed"] = "open"
    created_at: datetime = Field(default_factory=_utcnow)
    resolved_at: Optional[datetime] = None
