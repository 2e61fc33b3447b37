"""Inbound WhatsApp message parsing and dispatch.

``parse_inbound`` turns the webhook form into an ``Inbound`` (command +
remainder).  ``MessageRouter.handle`` applies the dispatch order:

  1. Opted-out users are ignored unless they send HELP
  2. An idle-expired session is cleared
  3. Fixed commands (SEARCH, PHOTOS/P/numeral, YES, REPORT, LIST, BUY, STOP)
     pre-empt an open session, except that a bare numeral answers the
     session and NO only pre-empts while a photo request is pending
  4. With a session open, the whole body goes to the conversation engine
  5. FLOW_RESPONSE, then HELP
  6. Anything else is acknowledged silently
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Optional

from rentbot import formatting
from rentbot.config import Settings
from rentbot.marketplace import Marketplace
from rentbot.models import ListingDraftSession, SearchSession, User
from rentbot.parsers import validate_search_query
from rentbot.repository import Repository
from rentbot.session import ConversationEngine, redact_pii

log = logging.getLogger("rentbot.router")

WHATSAPP_PREFIX = "whatsapp:"


class Command(str, Enum):
    SEARCH = "SEARCH"
    PHOTOS = "PHOTOS"
    PHOTO_INDEX = "PHOTO_INDEX"
    YES = "YES"
    NO = "NO"
    REPORT = "REPORT"
    LIST = "LIST"
    BUY = "BUY"
    STOP = "STOP"
    HELP = "HELP"
    FLOW_RESPONSE = "FLOW_RESPONSE"
    TEXT = "TEXT"


TOKENS: dict[str, Command] = {
    "SEARCH": Command.SEARCH,
    "PHOTOS": Command.PHOTOS,
    "P": Command.PHOTOS,
    "YES": Command.YES,
    "NO": Command.NO,
    "REPORT": Command.REPORT,
    "LIST": Command.LIST,
    "BUY": Command.BUY,
    "STOP": Command.STOP,
    "HELP": Command.HELP,
    "HI": Command.HELP,
    "HELLO": Command.HELP,
}

FIXED_COMMANDS = {
    Command.SEARCH,
    Command.PHOTOS,
    Command.PHOTO_INDEX,
    Command.YES,
    Command.REPORT,
    Command.LIST,
    Command.BUY,
    Command.STOP,
}


@dataclass
class Inbound:
    """One parsed inbound message."""

    phone: str
    command: Command
    rest: str = ""
    body: str = ""
    payload: Optional[dict[str, Any]] = None  # FLOW_RESPONSE form data


def strip_transport(address: str) -> str:
    address = (address or "").strip()
    if address.startswith(WHATSAPP_PREFIX):
        return address[len(WHATSAPP_PREFIX):]
    return address


def parse_inbound(form: Mapping[str, Any]) -> Inbound:
    """Classify a webhook form into a command and its remainder."""
    phone = strip_transport(str(form.get("From", "")))
    body = str(form.get("Body", "") or "").strip()

    if form.get("InteractionType") == "nfm_reply":
        try:
            payload = json.loads(form.get("InteractionResponse") or "{}")
        except json.JSONDecodeError as exc:
            log.warning("Flow response from %s is not JSON: %s", redact_pii(phone), exc)
        else:
            if not isinstance(payload, dict):
                payload = {"value": payload}
            return Inbound(phone=phone, command=Command.FLOW_RESPONSE, body=body, payload=payload)

    parts = body.split(None, 1)
    token = parts[0].upper() if parts else ""
    rest = parts[1].strip() if len(parts) > 1 else ""

    if token.isdigit():
        command = Command.PHOTO_INDEX
    else:
        command = TOKENS.get(token, Command.TEXT)
    return Inbound(phone=phone, command=command, rest=rest, body=body)


Handler = Callable[[User, Inbound], Awaitable[None]]


class MessageRouter:
    """Dispatches inbound messages to command handlers or the open session."""

    def __init__(
        self,
        repo: Repository,
        marketplace: Marketplace,
        engine: ConversationEngine,
        settings: Settings,
    ) -> None:
        self._repo = repo
        self._market = marketplace
        self._engine = engine
        self._settings = settings
        self._handlers: dict[Command, Handler] = {
            Command.SEARCH: self._on_search,
            Command.PHOTOS: self._on_photos,
            Command.PHOTO_INDEX: self._on_photo_index,
            Command.YES: self._on_yes,
            Command.NO: self._on_no,
            Command.REPORT: self._on_report,
            Command.LIST: self._on_list,
            Command.BUY: self._on_buy,
            Command.STOP: self._on_stop,
            Command.HELP: self._on_help,
            Command.FLOW_RESPONSE: self._on_flow_response,
            Command.TEXT: self._on_text,
        }

    async def handle(self, inbound: Inbound) -> None:
        if not inbound.phone:
            log.warning("Inbound message without sender; ignoring")
            return

        user = await self._repo.ensure_user(inbound.phone)
        if user.opted_out and inbound.command != Command.HELP:
            log.info("Ignoring %s from opted-out %s", inbound.command.value, redact_pii(user.phone))
            return

        user = await self._engine.expire_if_idle(user)
        command = inbound.command
        log.info(
            "Inbound %s from %s (session=%s)",
            command.value, redact_pii(user.phone), user.draft_status,
        )

        if user.session is not None and await self._goes_to_session(user, command):
            await self._on_session_reply(user, inbound)
            return

        await self._handlers[command](user, inbound)

    async def _goes_to_session(self, user: User, command: Command) -> bool:
        if command == Command.PHOTO_INDEX:
            return True
        if command == Command.NO:
            return not await self._market.has_pending_photos(user.phone)
        if command == Command.FLOW_RESPONSE:
            return False
        return command not in FIXED_COMMANDS

    # ── Session ───────────────────────────────────────────────────

    async def _on_session_reply(self, user: User, inbound: Inbound) -> None:
        result = await self._engine.advance(user, inbound.body)
        if not result.finished:
            return
        session = result.session
        if isinstance(session, ListingDraftSession):
            await self._market.send_draft_confirmation(user.phone, session.draft_id)
        elif isinstance(session, SearchSession):
            await self._market.run_filtered_search(user.phone, session.suburb, session.max_rent)

    # ── Commands ──────────────────────────────────────────────────

    async def _on_search(self, user: User, inbound: Inbound) -> None:
        if inbound.rest:
            if not validate_search_query(inbound.rest):
                await self._messenger_send(user.phone, formatting.format_search_query_too_short())
                return
            await self._market.search(user.phone, inbound.rest)
            return
        if await self._market.can_afford_search(user.phone):
            await self._engine.start_search(user.phone)

    async def _on_photos(self, user: User, inbound: Inbound) -> None:
        target = inbound.rest.split()[0] if inbound.rest else ""
        if target.isdigit():
            await self._request_by_index(user, int(target))
            return
        await self._market.request_photos(user.phone, target)

    async def _on_photo_index(self, user: User, inbound: Inbound) -> None:
        await self._request_by_index(user, int(inbound.body.split()[0]))

    async def _request_by_index(self, user: User, index: int) -> None:
        results = user.last_search_results
        if not 1 <= index <= len(results):
            await self._messenger_send(user.phone, formatting.format_no_such_result(index))
            return
        await self._market.request_photos(user.phone, results[index - 1])

    async def _on_yes(self, user: User, inbound: Inbound) -> None:
        await self._market.confirm_photos(user.phone)

    async def _on_no(self, user: User, inbound: Inbound) -> None:
        await self._market.cancel_photos(user.phone)

    async def _on_report(self, user: User, inbound: Inbound) -> None:
        parts = inbound.rest.split(None, 1)
        listing_id = parts[0] if parts else ""
        reason = parts[1] if len(parts) > 1 else ""
        await self._market.report(user.phone, listing_id, reason)

    async def _on_list(self, user: User, inbound: Inbound) -> None:
        if self._settings.twilio_flow_sid:
            await self._market.send_listing_flow(user.phone)
            return
        listing = await self._market.create_draft(user.phone, inbound.rest, notify=False)
        await self._engine.start_listing(user.phone, listing.id)

    async def _on_buy(self, user: User, inbound: Inbound) -> None:
        await self._market.buy(user.phone, inbound.rest)

    async def _on_stop(self, user: User, inbound: Inbound) -> None:
        await self._repo.set_opt_out(user.phone, True)
        await self._repo.replace_session(user.phone, None)
        log.info("Opt-out: %s", redact_pii(user.phone))
        await self._messenger_send(user.phone, formatting.format_stop())

    async def _on_help(self, user: User, inbound: Inbound) -> None:
        if user.opted_out:
            await self._repo.set_opt_out(user.phone, False)
            log.info("Opt-in via HELP: %s", redact_pii(user.phone))
        await self._messenger_send(
            user.phone,
            formatting.format_help(user.credits, self._settings.search_cost, self._settings.photo_cost),
        )

    async def _on_flow_response(self, user: User, inbound: Inbound) -> None:
        await self._market.create_draft_from_flow(user.phone, inbound.payload or {})

    async def _on_text(self, user: User, inbound: Inbound) -> None:
        log.debug("Unrecognised message from %s acknowledged", redact_pii(user.phone))

    async def _messenger_send(self, phone: str, body: str) -> None:
        await self._market.notify(phone, body)
