"""Pydantic model for a marketplace user, keyed by phone number."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from .session_state import SessionState


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(BaseModel):
    """One WhatsApp user.

    Credits are never negative; debits go through the conditional update in
    ``Repository.update_credits``.  Rate-limit counters are reset by the
    rate limiter once ``rate_reset_at`` is more than a day old.
    """

    phone: str
    credits: int = 0
    verified: bool = False
    role: str = "user"
    opted_out: bool = False

    # Rate limiting
    search_count_day: int = 0
    photo_request_count_day: int = 0
    rate_reset_at: Optional[datetime] = None
    last_search_at: Optional[datetime] = None
    last_photo_req_at: Optional[datetime] = None

    # Positional shortcut targets for "P 2" / "2"
    last_search_results: list[str] = []

    session: Optional[SessionState] = None

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def draft_status(self) -> str | None:
        """Current session step name, or None when no session is open."""
        return self.session.step if self.session else None

    @property
    def current_draft_id(self) -> str | None:
        """Listing id, or ``search`` / ``search|<suburb>`` for the search wizard."""
        return self.session.context_id if self.session else None

    @property
    def has_session(self) -> bool:
        return self.draft_status is not None and self.current_draft_id is not None
