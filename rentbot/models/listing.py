"""Pydantic model for rental listings and listing drafts."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Listing(BaseModel):
    """A rental listing.

    Drafts are ordinary listings with ``published=False``; fields are
    filled in one conversation step at a time, so every descriptive field
    is optional.  Publishing happens after a ``listing_publish`` payment
    is confirmed.
    """

    id: str
    owner_phone: str
    title: str = ""
    type: str = ""
    suburb: str = ""
    address: str = ""
    rent: Optional[float] = None
    deposit: Optional[float] = None
    bedrooms: Union[str, int, None] = None
    amenities: list[str] = []
    description: str = ""
    contact_name: str = ""
    contact_phone: str = ""
    text: str = ""
    external_images: list[str] = []
    published: bool = False
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
