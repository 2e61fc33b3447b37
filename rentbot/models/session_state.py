"""Conversation session state carried on the user document.

A user has at most one open session: either a listing draft being built
step by step, or a search wizard collecting filters.  The two shapes are a
tagged union discriminated by ``kind`` so the store holds typed fields
instead of delimiter-packed strings.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ListingDraftSession(BaseModel):
    """Listing-creation session. Answers are written to the draft listing."""

    kind: Literal["listing"] = "listing"
    step: str
    draft_id: str
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def context_id(self) -> str:
        return self.draft_id


class SearchSession(BaseModel):
    """Search-wizard session. Answers are kept on the session itself."""

    kind: Literal["search"] = "search"
    step: str
    suburb: Optional[str] = None  # "" means all suburbs
    max_rent: Optional[float] = None
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def context_id(self) -> str:
        if self.suburb is None:
            return "search"
        return f"search|{self.suburb}"


SessionState = Annotated[
    Union[ListingDraftSession, SearchSession],
    Field(discriminator="kind"),
]
