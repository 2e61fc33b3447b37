"""Domain operations over the RecordStore.

Every method is a single find / insert / conditional update, so the
atomicity guarantees are exactly those of the store's single-document
update.  Multi-step sequences (deduct credit, then confirm a photo request)
are composed by callers and have no rollback.
"""

from __future__ import annotations

import logging
import re
import time
from datetime import datetime, timezone
from typing import Any, Optional

from rentbot.models import (
    Listing,
    ListingDraftSession,
    ModerationTicket,
    PhotoRequest,
    SessionState,
    Transaction,
    User,
)
from rentbot.store.base import (
    LISTINGS,
    MODERATION,
    PHOTO_REQUESTS,
    TRANSACTIONS,
    USERS,
    DuplicateKeyError,
    RecordStore,
)

log = logging.getLogger("rentbot.repository")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _session_filter(phone: str, expected: Optional[SessionState]) -> dict[str, Any]:
    """Filter that matches the user only while its session is ``expected``."""
    if expected is None:
        return {"phone": phone, "session": None}
    flt: dict[str, Any] = {
        "phone": phone,
        "session.kind": expected.kind,
        "session.step": expected.step,
    }
    if isinstance(expected, ListingDraftSession):
        flt["session.draft_id"] = expected.draft_id
    return flt


class Repository:
    """Typed access to users, listings, photo requests, payments and reports."""

    def __init__(self, store: RecordStore, starting_credits: int = 3) -> None:
        self._store = store
        self._starting_credits = starting_credits

    # ── Users ─────────────────────────────────────────────────────

    async def ensure_user(self, phone: str) -> User:
        """Return the user for ``phone``, creating it with starting credits."""
        existing = await self.get_user(phone)
        if existing:
            return existing
        user = User(phone=phone, credits=self._starting_credits)
        try:
            await self._store.insert_one(USERS, user.model_dump())
            log.info("User created with %d credits", user.credits)
        except DuplicateKeyError:
            # Concurrent first message from the same phone; the other insert won
            return await self.get_user(phone)
        return user

    async def get_user(self, phone: str) -> Optional[User]:
        doc = await self._store.find_one(USERS, {"phone": phone})
        return User(**doc) if doc else None

    async def list_users(self) -> list[User]:
        return [User(**d) for d in await self._store.find(USERS, {}, sort=[("created_at", 1)])]

    async def update_credits(self, phone: str, delta: int) -> bool:
        """Adjust a balance by ``delta``; debits apply only if fully covered.

        The sufficiency check is part of the update filter, so concurrent
        debits cannot overdraw the account.  Returns False when nothing was
        changed (unknown user or insufficient credits).
        """
        flt: dict[str, Any] = {"phone": phone}
        if delta < 0:
            flt["credits"] = {"$gte": -delta}
        return await self._store.update_one(
            USERS, flt, {"$inc": {"credits": delta}, "$set": {"updated_at": _utcnow()}}
        )

    async def set_all_credits(self, credits: int) -> int:
        return await self._store.update_many(
            USERS, {}, {"$set": {"credits": credits, "updated_at": _utcnow()}}
        )

    async def set_opt_out(self, phone: str, opted_out: bool) -> None:
        await self._store.update_one(
            USERS, {"phone": phone}, {"$set": {"opted_out": bool(opted_out), "updated_at": _utcnow()}}
        )

    async def set_last_search_results(self, phone: str, listing_ids: list[str]) -> None:
        await self._store.update_one(
            USERS, {"phone": phone}, {"$set": {"last_search_results": list(listing_ids)}}
        )

    async def update_user_fields(self, phone: str, update: dict[str, Any]) -> bool:
        """Raw update hook used by the rate limiter."""
        return await self._store.update_one(USERS, {"phone": phone}, update)

    # ── Sessions ──────────────────────────────────────────────────

    async def transition_session(
        self,
        phone: str,
        expected: Optional[SessionState],
        new: Optional[SessionState],
        now: Optional[datetime] = None,
    ) -> bool:
        """Compare-and-swap the user's session.

        Applies only while the stored session still matches ``expected``
        (same kind, step and draft).  Returns False when another delivery
        already moved the session.  Passing ``new`` equal to ``expected``
        just refreshes the session's ``updated_at`` to ``now``.
        """
        now = now or _utcnow()
        if new is None:
            update: dict[str, Any] = {"$set": {"session": None, "updated_at": now}}
        else:
            new = new.model_copy(update={"updated_at": now})
            update = {"$set": {"session": new.model_dump(), "updated_at": now}}
        return await self._store.update_one(USERS, _session_filter(phone, expected), update)

    async def replace_session(
        self, phone: str, new: Optional[SessionState], now: Optional[datetime] = None
    ) -> None:
        """Unconditionally set (or clear) the session for LIST, SEARCH and STOP."""
        now = now or _utcnow()
        value = new.model_copy(update={"updated_at": now}).model_dump() if new else None
        await self._store.update_one(
            USERS, {"phone": phone}, {"$set": {"session": value, "updated_at": now}}
        )

    # ── Listings ──────────────────────────────────────────────────

    async def create_listing_draft(self, phone: str, text: str = "", **fields: Any) -> Listing:
        """Insert an unpublished listing owned by ``phone``."""
        base_id = int(time.time() * 1000)
        for attempt in range(5):
            listing = Listing(
                id=f"RNT-{base_id + attempt}",
                owner_phone=phone,
                text=text,
                contact_phone=phone,
                **fields,
            )
            try:
                await self._store.insert_one(LISTINGS, listing.model_dump())
                return listing
            except DuplicateKeyError:
                continue
        raise DuplicateKeyError(f"Could not allocate a listing id near RNT-{base_id}")

    async def insert_listing(self, listing: Listing) -> None:
        await self._store.insert_one(LISTINGS, listing.model_dump())

    async def get_listing(self, listing_id: str) -> Optional[Listing]:
        doc = await self._store.find_one(LISTINGS, {"id": listing_id})
        return Listing(**doc) if doc else None

    async def update_listing(self, listing_id: str, fields: dict[str, Any]) -> bool:
        values = dict(fields)
        values["updated_at"] = _utcnow()
        return await self._store.update_one(LISTINGS, {"id": listing_id}, {"$set": values})

    async def publish_listing(self, listing_id: str) -> bool:
        return await self.update_listing(listing_id, {"published": True})

    async def search_listings(
        self,
        query: str = "",
        suburb: Optional[str] = None,
        max_rent: Optional[float] = None,
        limit: int = 10,
    ) -> list[Listing]:
        """Newest published listings matching a keyword and/or filters.

        ``query`` is matched case-insensitively against suburb, title and
        free text.  An empty ``suburb`` or a None ``max_rent`` means no
        filter on that field.
        """
        flt: dict[str, Any] = {"published": True}
        if query:
            pattern = {"$regex": re.escape(query), "$options": "i"}
            flt["$or"] = [
                {"suburb": pattern},
                {"title": pattern},
                {"text": pattern},
                {"description": pattern},
            ]
        if suburb:
            flt["suburb"] = {"$regex": f"^{re.escape(suburb)}$", "$options": "i"}
        if max_rent is not None:
            flt["rent"] = {"$lte": max_rent}
        docs = await self._store.find(LISTINGS, flt, sort=[("created_at", -1)], limit=limit)
        return [Listing(**d) for d in docs]

    # ── Photo requests ────────────────────────────────────────────

    async def create_photo_request(self, phone: str, listing_id: str) -> PhotoRequest:
        """Open a photo request, or return the one already pending."""
        existing = await self.get_pending_photo_request(phone)
        if existing:
            return existing
        request = PhotoRequest(phone=phone, listing_id=listing_id)
        await self._store.insert_one(PHOTO_REQUESTS, request.model_dump())
        return request

    async def get_pending_photo_request(self, phone: str) -> Optional[PhotoRequest]:
        doc = await self._store.find_one(
            PHOTO_REQUESTS, {"phone": phone, "status": "pending_confirmation"}
        )
        return PhotoRequest(**doc) if doc else None

    async def confirm_photo_request(self, phone: str) -> bool:
        return await self._store.update_one(
            PHOTO_REQUESTS,
            {"phone": phone, "status": "pending_confirmation"},
            {"$set": {"status": "completed", "confirmed_at": _utcnow()}},
        )

    async def cancel_photo_request(self, phone: str) -> bool:
        return await self._store.update_one(
            PHOTO_REQUESTS,
            {"phone": phone, "status": "pending_confirmation"},
            {"$set": {"status": "canceled"}},
        )

    # ── Moderation ────────────────────────────────────────────────

    async def create_moderation_ticket(
        self, phone: str, listing_id: str, reason: str
    ) -> ModerationTicket:
        ticket = ModerationTicket(phone=phone, listing_id=listing_id, reason=reason)
        await self._store.insert_one(MODERATION, ticket.model_dump())
        return ticket

    # ── Transactions ──────────────────────────────────────────────

    async def add_transaction(self, tx: Transaction) -> None:
        await self._store.insert_one(TRANSACTIONS, tx.model_dump())

    async def get_transaction(self, reference: str) -> Optional[Transaction]:
        doc = await self._store.find_one(TRANSACTIONS, {"reference": reference})
        return Transaction(**doc) if doc else None

    async def update_transaction(
        self,
        reference: str,
        fields: dict[str, Any],
        only_if_status: Optional[str] = None,
    ) -> bool:
        """Update a transaction, optionally only while it has ``only_if_status``."""
        flt: dict[str, Any] = {"reference": reference}
        if only_if_status is not None:
            flt["status"] = only_if_status
        values = dict(fields)
        values["updated_at"] = _utcnow()
        return await self._store.update_one(TRANSACTIONS, flt, {"$set": values})

