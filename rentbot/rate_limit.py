"""Per-user daily counters and minimum-interval throttles.

Two gates share one daily window on the user document: search and
photo-request.  ``check_*`` and ``record_*`` are separate calls, so two
concurrent requests from the same phone can both pass the check before
either records; that overrun is accepted.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Literal, Optional

from rentbot.models import User
from rentbot.repository import Repository

WINDOW = timedelta(hours=24)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    # Stores without tz support hand back naive UTC datetimes
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


@dataclass
class RateDecision:
    ok: bool
    reason: Optional[Literal["daily_limit", "throttled"]] = None


class RateLimiter:
    """Search and photo-request gates backed by the user record."""

    def __init__(
        self,
        repo: Repository,
        search_day_limit: int = 200,
        photo_day_limit: int = 5,
        throttle_seconds: int = 60,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repo = repo
        self._search_day_limit = search_day_limit
        self._photo_day_limit = photo_day_limit
        self._throttle = timedelta(seconds=throttle_seconds)
        self._clock = clock

    def photo_limit_for(self, user: User) -> int:
        """Verified users get twice the daily photo allowance."""
        return self._photo_day_limit * 2 if user.verified else self._photo_day_limit

    # ── Gates ─────────────────────────────────────────────────────

    async def check_search(self, user: User) -> RateDecision:
        return await self._check(
            user,
            count=user.search_count_day,
            limit=self._search_day_limit,
            last=user.last_search_at,
        )

    async def check_photos(self, user: User) -> RateDecision:
        return await self._check(
            user,
            count=user.photo_request_count_day,
            limit=self.photo_limit_for(user),
            last=user.last_photo_req_at,
        )

    async def record_search(self, phone: str) -> None:
        now = self._clock()
        await self._repo.update_user_fields(
            phone,
            {"$inc": {"search_count_day": 1}, "$set": {"last_search_at": now, "updated_at": now}},
        )

    async def record_photos(self, phone: str) -> None:
        now = self._clock()
        await self._repo.update_user_fields(
            phone,
            {
                "$inc": {"photo_request_count_day": 1},
                "$set": {"last_photo_req_at": now, "updated_at": now},
            },
        )

    # ── Internal ──────────────────────────────────────────────────

    async def _check(
        self,
        user: User,
        count: int,
        limit: int,
        last: Optional[datetime],
    ) -> RateDecision:
        now = self._clock()

        if user.rate_reset_at is None or now - _aware(user.rate_reset_at) > WINDOW:
            # New window: both gates start from zero
            await self._repo.update_user_fields(
                user.phone,
                {"$set": {
                    "rate_reset_at": now,
                    "search_count_day": 0,
                    "photo_request_count_day": 0,
                }},
            )
            count = 0

        if count >= limit:
            return RateDecision(ok=False, reason="daily_limit")

        if last is not None and now - _aware(last) < self._throttle:
            return RateDecision(ok=False, reason="throttled")

        return RateDecision(ok=True)
