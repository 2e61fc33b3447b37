"""Paid marketplace actions shared by the WhatsApp router and the admin API.

Each action checks, charges and replies in the order the ledger needs:
credits are only debited after the thing being paid for is available
(search results delivered, photo request confirmed), and a debit that
fails leaves the action undone.  Payments are two-phase: ``start_payment``
records a pending Transaction after a successful push, and
``handle_payment_callback`` settles it exactly once.
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from rentbot import formatting
from rentbot.config import Settings
from rentbot.messaging.base import MessagingGateway, SendResult
from rentbot.models import Listing, Transaction, User
from rentbot.parsers import parse_number, sanitize_text
from rentbot.payments.base import PaymentGateway, normalize_status
from rentbot.rate_limit import RateLimiter
from rentbot.repository import Repository
from rentbot.session import redact_pii

log = logging.getLogger("rentbot.marketplace")

EDITABLE_FIELDS = {"title", "suburb", "rent", "contact_phone", "text", "external_images"}

# Flow form keys that differ from listing field names
FLOW_FIELD_ALIASES = {
    "contactName": "contact_name",
    "contactPhone": "contact_phone",
    "listing_type": "type",
    "property_type": "type",
}
FLOW_TEXT_FIELDS = {
    "title", "type", "suburb", "address", "bedrooms",
    "description", "contact_name", "contact_phone",
}


@dataclass
class ActionResult:
    """Outcome of a marketplace action.

    ``reason`` is a short machine-readable code when ``ok`` is False
    (``insufficient_credits``, ``throttled``, ``not_owner``, ...).
    """

    ok: bool
    reason: str = ""
    data: dict[str, Any] = field(default_factory=dict)


def _new_reference(prefix: str) -> str:
    return f"{prefix}-{int(time.time() * 1000)}{secrets.randbelow(1000):03d}"


class Marketplace:
    """Search, photos, listings, payments and moderation."""

    def __init__(
        self,
        repo: Repository,
        messenger: MessagingGateway,
        payments: PaymentGateway,
        rate_limiter: RateLimiter,
        settings: Settings,
    ) -> None:
        self._repo = repo
        self._messenger = messenger
        self._payments = payments
        self._rate = rate_limiter
        self._settings = settings

    async def _send(
        self, phone: str, body: str, media: Optional[list[str]] = None
    ) -> SendResult:
        result = await self._messenger.send_message(phone, body, media)
        if not result.ok:
            log.warning("Message to %s not delivered: %s", redact_pii(phone), result.error)
        return result

    async def notify(self, phone: str, body: str) -> SendResult:
        """Send a plain informational message."""
        return await self._send(phone, body)

    # ── Search ────────────────────────────────────────────────────

    async def search(self, phone: str, query: str) -> ActionResult:
        """Keyword search over published listings (SEARCH <criteria>)."""
        user = await self._repo.ensure_user(phone)
        check = await self._precheck_search(user)
        if check is not None:
            return check
        results = await self._repo.search_listings(
            query=sanitize_text(query), limit=self._settings.search_result_limit
        )
        return await self._deliver_search(user, results)

    async def run_filtered_search(
        self, phone: str, suburb: Optional[str], max_rent: Optional[float]
    ) -> ActionResult:
        """Search wizard terminal: suburb ("" = all) and rent ceiling (None = any)."""
        user = await self._repo.ensure_user(phone)
        check = await self._precheck_search(user)
        if check is not None:
            return check
        results = await self._repo.search_listings(
            suburb=suburb or None,
            max_rent=max_rent,
            limit=self._settings.search_result_limit,
        )
        return await self._deliver_search(user, results)

    async def can_afford_search(self, phone: str) -> bool:
        user = await self._repo.ensure_user(phone)
        if user.credits < self._settings.search_cost:
            await self._send(phone, formatting.format_insufficient_credits(self._settings.search_cost))
            return False
        return True

    async def _precheck_search(self, user: User) -> Optional[ActionResult]:
        cost = self._settings.search_cost
        if user.credits < cost:
            await self._send(user.phone, formatting.format_insufficient_credits(cost))
            return ActionResult(ok=False, reason="insufficient_credits")
        decision = await self._rate.check_search(user)
        if not decision.ok:
            log.info("Search by %s rate limited: %s", redact_pii(user.phone), decision.reason)
            await self._send(user.phone, formatting.format_rate_limited(decision.reason or ""))
            return ActionResult(ok=False, reason=decision.reason or "throttled")
        return None

    async def _deliver_search(self, user: User, results: list[Listing]) -> ActionResult:
        """Send results; charge and count the search only if the send succeeded."""
        cost = self._settings.search_cost
        body = formatting.format_search_results(
            results, user.credits - cost, cost, self._settings.photo_cost
        )
        sent = await self._send(user.phone, body)
        deducted = False
        if sent.ok:
            deducted = await self._repo.update_credits(user.phone, -cost)
            if deducted:
                await self._rate.record_search(user.phone)
                await self._repo.set_last_search_results(user.phone, [r.id for r in results])
        log.info(
            "Search for %s: %d results, sent=%s, deducted=%s",
            redact_pii(user.phone), len(results), sent.ok, deducted,
        )
        return ActionResult(
            ok=True,
            data={
                "sent": sent.ok,
                "deducted": deducted,
                "balance": user.credits - (cost if deducted else 0),
                "results": [r.model_dump(mode="json") for r in results],
            },
        )

    # ── Photos ────────────────────────────────────────────────────

    async def request_photos(self, phone: str, listing_id: str) -> ActionResult:
        """Open a photo request; credits are charged on YES."""
        user = await self._repo.ensure_user(phone)
        listing = await self._repo.get_listing(listing_id) if listing_id else None
        if listing is None:
            await self._send(phone, formatting.format_listing_not_found(listing_id or "?"))
            return ActionResult(ok=False, reason="not_found")

        decision = await self._rate.check_photos(user)
        if not decision.ok:
            log.info("Photo request by %s rate limited: %s", redact_pii(phone), decision.reason)
            await self._send(phone, formatting.format_rate_limited(decision.reason or ""))
            return ActionResult(ok=False, reason=decision.reason or "throttled")

        request = await self._repo.create_photo_request(phone, listing.id)
        await self._send(
            phone, formatting.format_photos_request(request.listing_id, self._settings.photo_cost)
        )
        await self._rate.record_photos(phone)
        log.info("Photo request %s by %s", request.listing_id, redact_pii(phone))
        return ActionResult(ok=True, data={"listing_id": request.listing_id})

    async def confirm_photos(self, phone: str) -> ActionResult:
        """Charge for the pending photo request and send the images."""
        pending = await self._repo.get_pending_photo_request(phone)
        if pending is None:
            await self._send(phone, formatting.format_no_pending_photos())
            return ActionResult(ok=False, reason="no_pending")

        listing = await self._repo.get_listing(pending.listing_id)
        media = list(listing.external_images[: self._settings.max_photo_attachments]) if listing else []

        cost = self._settings.photo_cost
        if not await self._repo.update_credits(phone, -cost):
            await self._send(phone, formatting.format_insufficient_credits(cost))
            return ActionResult(ok=False, reason="insufficient_credits")

        await self._repo.confirm_photo_request(phone)
        sent = await self._send(phone, formatting.format_photos_sent(bool(media)), media or None)
        log.info(
            "Photos for %s confirmed by %s: %d attachments, sent=%s",
            pending.listing_id, redact_pii(phone), len(media), sent.ok,
        )
        return ActionResult(ok=True, data={"sent": sent.ok, "media": media})

    async def has_pending_photos(self, phone: str) -> bool:
        return await self._repo.get_pending_photo_request(phone) is not None

    async def cancel_photos(self, phone: str) -> ActionResult:
        if not await self._repo.cancel_photo_request(phone):
            return ActionResult(ok=False, reason="no_pending")
        await self._send(phone, formatting.format_photos_canceled())
        return ActionResult(ok=True)

    # ── Listings ──────────────────────────────────────────────────

    async def create_draft(self, phone: str, text: str = "", notify: bool = True) -> Listing:
        """Create an unpublished listing from free text."""
        await self._repo.ensure_user(phone)
        listing = await self._repo.create_listing_draft(phone, text=sanitize_text(text))
        log.info("Draft %s created by %s", listing.id, redact_pii(phone))
        if notify:
            await self.send_draft_confirmation(phone, listing.id)
        return listing

    async def send_draft_confirmation(self, phone: str, listing_id: str) -> SendResult:
        return await self._send(
            phone,
            formatting.format_listing_draft(listing_id, self._settings.listing_publish_price),
        )

    async def send_listing_flow(self, phone: str) -> SendResult:
        """Invite the user to the WhatsApp Flow form for new listings."""
        result = await self._messenger.send_template(
            phone, self._settings.twilio_flow_sid, {"1": formatting.format_flow_invite()}
        )
        if not result.ok:
            log.warning("Listing flow to %s not delivered: %s", redact_pii(phone), result.error)
        return result

    async def create_draft_from_flow(self, phone: str, payload: Mapping[str, Any]) -> Listing:
        """Create a draft from a submitted WhatsApp Flow form."""
        fields: dict[str, Any] = {}
        for key, value in payload.items():
            name = FLOW_FIELD_ALIASES.get(key, key)
            if name in FLOW_TEXT_FIELDS and value is not None:
                fields[name] = sanitize_text(value)
            elif name in ("rent", "deposit"):
                fields[name] = parse_number(str(value))
            elif name == "amenities":
                if isinstance(value, str):
                    fields[name] = [a.strip() for a in value.split(",") if a.strip()]
                elif isinstance(value, list):
                    fields[name] = [sanitize_text(a) for a in value if a]
        summary = " | ".join(f"{k}: {v}" for k, v in fields.items() if v not in (None, "", []))
        await self._repo.ensure_user(phone)
        contact_phone = fields.pop("contact_phone", "") or phone
        listing = await self._repo.create_listing_draft(phone, text=summary, **fields)
        if contact_phone != listing.contact_phone:
            await self._repo.update_listing(listing.id, {"contact_phone": contact_phone})
        log.info("Draft %s created from flow by %s", listing.id, redact_pii(phone))
        await self.send_draft_confirmation(phone, listing.id)
        return listing

    async def edit_listing(
        self, phone: str, listing_id: str, field_name: str, value: Any
    ) -> ActionResult:
        """Owner-only update of one allowlisted field."""
        if not _valid_edit(field_name, value):
            return ActionResult(ok=False, reason="invalid_input")
        listing = await self._repo.get_listing(listing_id)
        if listing is None or listing.owner_phone != phone:
            return ActionResult(ok=False, reason="not_owner")
        if field_name in ("text", "title", "suburb"):
            value = sanitize_text(value)
        await self._repo.update_listing(listing_id, {field_name: value})
        await self._send(phone, formatting.format_edit_confirmed(listing_id, field_name))
        log.info("Listing %s edited by %s: %s", listing_id, redact_pii(phone), field_name)
        return ActionResult(ok=True)

    # ── Moderation ────────────────────────────────────────────────

    async def report(self, phone: str, listing_id: str, reason: str) -> ActionResult:
        if not listing_id:
            await self._send(phone, formatting.format_report_usage())
            return ActionResult(ok=False, reason="invalid_input")
        ticket = await self._repo.create_moderation_ticket(phone, listing_id, sanitize_text(reason))
        await self._send(phone, formatting.format_report_received(listing_id))
        log.info("Report on %s by %s", listing_id, redact_pii(phone))
        return ActionResult(ok=True, data={"listing_id": ticket.listing_id})

    # ── Payments ──────────────────────────────────────────────────

    async def buy(self, phone: str, args: str) -> ActionResult:
        """WhatsApp BUY: ``BUY <bundle>`` or ``BUY LIST <id>``."""
        parts = args.split()
        if len(parts) >= 2 and parts[0].upper() == "LIST":
            return await self.buy_listing_publish(phone, parts[1])
        bundle = parts[0] if parts else ""
        if bundle not in self._settings.credit_bundles:
            await self._send(phone, formatting.format_bundles(self._settings.credit_bundles))
            return ActionResult(ok=False, reason="invalid_input")
        return await self.start_payment(
            phone,
            product=f"credits_{bundle}",
            amount=self._settings.credit_bundles[bundle],
        )

    async def buy_product(
        self, phone: str, product: str, listing_id: Optional[str] = None
    ) -> ActionResult:
        """Admin API BUY: ``credits_<bundle>`` or ``listing_publish`` (priced server-side)."""
        if product == "listing_publish":
            if not listing_id:
                return ActionResult(ok=False, reason="invalid_input")
            return await self.buy_listing_publish(phone, listing_id)
        bundle = product[len("credits_"):] if product.startswith("credits_") else ""
        if bundle not in self._settings.credit_bundles:
            return ActionResult(ok=False, reason="invalid_input")
        return await self.start_payment(
            phone, product=product, amount=self._settings.credit_bundles[bundle]
        )

    async def buy_listing_publish(self, phone: str, listing_id: str) -> ActionResult:
        listing = await self._repo.get_listing(listing_id)
        if listing is None or listing.owner_phone != phone:
            await self._send(phone, formatting.format_listing_not_found(listing_id))
            return ActionResult(ok=False, reason="not_found")
        if listing.published:
            await self._send(phone, formatting.format_already_published(listing_id))
            return ActionResult(ok=False, reason="already_published")
        return await self.start_payment(
            phone,
            product="listing_publish",
            amount=self._settings.listing_publish_price,
            listing_id=listing_id,
        )

    async def start_payment(
        self,
        phone: str,
        product: str,
        amount: float,
        listing_id: Optional[str] = None,
    ) -> ActionResult:
        """Push a mobile-money charge; record a pending Transaction on success."""
        await self._repo.ensure_user(phone)
        is_publish = product == "listing_publish"
        reference = _new_reference("LST" if is_publish else "CRD")
        result = await self._payments.push(phone, amount, reference)
        if not result.ok:
            log.warning("Payment %s for %s failed to start: %s", reference, redact_pii(phone), result.error)
            await self._send(phone, formatting.format_payment_error(result.error))
            return ActionResult(ok=False, reason="payment_error", data={"error": result.error})

        await self._repo.add_transaction(Transaction(
            reference=reference,
            phone=phone,
            product=product,
            type="listing_publish" if is_publish else "credit_purchase",
            amount=amount,
            provider_ref=result.provider_ref,
            listing_id=listing_id,
        ))
        await self._send(phone, formatting.format_payment_started(reference, amount, result.instructions))
        log.info("Payment %s started for %s: %s $%.2f", reference, redact_pii(phone), product, amount)
        return ActionResult(ok=True, data={"reference": reference, "requested": True})

    async def handle_payment_callback(self, fields: Mapping[str, str]) -> str:
        """Settle a transaction from a provider status callback.

        Returns one of ``unknown``, ``duplicate``, ``pending``, ``failed``,
        ``success``.  Unknown and already-settled references change nothing.
        """
        reference = str(fields.get("reference", ""))
        tx = await self._repo.get_transaction(reference)
        if tx is None:
            log.warning("Payment callback for unknown reference %r", reference)
            return "unknown"
        if tx.status == "success":
            return "duplicate"

        status = normalize_status(str(fields.get("status", "")))
        if status == "pending":
            return "pending"
        if status == tx.status:
            return "duplicate"

        settled = await self._repo.update_transaction(
            reference,
            {"status": status, "paynow_reference": str(fields.get("paynowreference", ""))},
            only_if_status=tx.status,
        )
        if not settled:
            return "duplicate"

        if status == "failed":
            log.info("Payment %s failed for %s", reference, redact_pii(tx.phone))
            await self._send(tx.phone, formatting.format_payment_failed(reference))
            return "failed"

        await self._fulfil(tx)
        return "success"

    async def _fulfil(self, tx: Transaction) -> None:
        if tx.type == "listing_publish" and tx.listing_id:
            await self._repo.publish_listing(tx.listing_id)
            await self._send(tx.phone, formatting.format_listing_published(tx.listing_id, tx.reference))
            log.info("Listing %s published (payment %s)", tx.listing_id, tx.reference)
            return
        credits = tx.credit_amount
        if credits > 0:
            await self._repo.update_credits(tx.phone, credits)
        await self._send(tx.phone, formatting.format_receipt(tx.amount, tx.reference, credits or None))
        log.info("Payment %s: %d credits to %s", tx.reference, credits, redact_pii(tx.phone))


def _valid_edit(field_name: str, value: Any) -> bool:
    if field_name not in EDITABLE_FIELDS:
        return False
    if field_name == "rent":
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if field_name == "external_images":
        return isinstance(value, list) and all(isinstance(v, str) for v in value)
    return isinstance(value, str)
