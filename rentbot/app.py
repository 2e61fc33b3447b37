"""FastAPI application: WhatsApp and Paynow webhooks plus the admin JSON API.

Endpoints:

  POST /twilio/webhook        Inbound WhatsApp message (Twilio form post)
  POST /paynow/webhook        Paynow status callback (form post)
  GET  /health                Health check

  Admin (Bearer ADMIN_API_KEY):
  POST /api/search            {phone, query}
  POST /api/photos/request    {phone, listing_id}
  POST /api/photos/confirm    {phone}
  POST /api/list              {phone, text}
  POST /api/edit              {phone, id, field, value}
  POST /api/report            {phone, listing_id, reason}
  POST /api/buy               {phone, product, listing_id?}
  GET  /api/users/{phone}

The WhatsApp flow:
  1. Twilio posts the message to /twilio/webhook (signature checked)
  2. parse_inbound classifies it; MessageRouter dispatches it
  3. Replies go out through the MessagingGateway, not the HTTP response
"""

from __future__ import annotations

# Load .env into os.environ before settings-dependent imports
from dotenv import load_dotenv
load_dotenv()

import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Optional

# Configure root logger early so all rentbot.* loggers have a handler
# when run via `uvicorn rentbot.app:app`.
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)-20s %(levelname)-7s %(message)s",
)

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from rentbot.auth import require_admin_token, verify_twilio_signature
from rentbot.config import Settings, settings
from rentbot.marketplace import ActionResult, Marketplace
from rentbot.messaging.base import MessagingGateway
from rentbot.parsers import validate_phone, validate_search_query
from rentbot.payments.base import PaymentGateway
from rentbot.rate_limit import RateLimiter
from rentbot.repository import Repository
from rentbot.router import MessageRouter, parse_inbound
from rentbot.session import ConversationEngine, redact_pii
from rentbot.store import MemoryRecordStore, RecordStore

log = logging.getLogger("rentbot.app")

_START_TIME = time.time()

REASON_STATUS = {
    "invalid_input": 400,
    "insufficient_credits": 402,
    "not_owner": 403,
    "not_found": 404,
    "no_pending": 404,
    "already_published": 409,
    "daily_limit": 429,
    "throttled": 429,
    "payment_error": 502,
}


# ── Service wiring ────────────────────────────────────────────────

@dataclass
class Services:
    """Everything a request handler needs, built once per process."""

    store: RecordStore
    repo: Repository
    messenger: MessagingGateway
    payments: PaymentGateway
    marketplace: Marketplace
    engine: ConversationEngine
    router: MessageRouter

    async def close(self) -> None:
        await self.payments.close()
        await self.messenger.close()
        await self.store.close()


def assemble_services(
    cfg: Settings,
    store: RecordStore,
    messenger: MessagingGateway,
    payments: PaymentGateway,
) -> Services:
    """Wire the domain objects around the given backends."""
    repo = Repository(store, starting_credits=cfg.starting_credits)
    rate_limiter = RateLimiter(
        repo,
        search_day_limit=cfg.search_day_limit,
        photo_day_limit=cfg.photo_day_limit,
        throttle_seconds=cfg.throttle_seconds,
    )
    engine = ConversationEngine(repo, messenger, suburbs=cfg.suburbs, ttl_hours=cfg.session_ttl_hours)
    marketplace = Marketplace(repo, messenger, payments, rate_limiter, cfg)
    router = MessageRouter(repo, marketplace, engine, cfg)
    return Services(
        store=store,
        repo=repo,
        messenger=messenger,
        payments=payments,
        marketplace=marketplace,
        engine=engine,
        router=router,
    )


async def build_services(cfg: Settings) -> Services:
    """Build production backends from settings."""
    if cfg.mongodb_uri:
        from rentbot.store.mongo import MongoRecordStore

        mongo = MongoRecordStore(cfg.mongodb_uri, cfg.mongodb_db_name)
        await mongo.ensure_collections()
        store: RecordStore = mongo
    else:
        store = MemoryRecordStore()

    messenger: MessagingGateway
    if cfg.messaging_provider == "whatchimp":
        from rentbot.messaging.whatchimp import WhatChimpGateway

        messenger = WhatChimpGateway(cfg.whatchimp_api_url, cfg.whatchimp_access_token)
    elif cfg.twilio_account_sid and cfg.twilio_auth_token:
        from rentbot.messaging.twilio import TwilioWhatsAppGateway

        messenger = TwilioWhatsAppGateway(
            cfg.twilio_account_sid, cfg.twilio_auth_token, cfg.twilio_whatsapp_from
        )
    else:
        from rentbot.messaging.console import ConsoleGateway

        log.warning("No Twilio credentials; outbound messages are only logged")
        messenger = ConsoleGateway()

    from rentbot.payments.paynow import PaynowGateway

    base_url = cfg.public_base_url.rstrip("/")
    payments = PaynowGateway(
        cfg.paynow_integration_id,
        cfg.paynow_integration_key,
        result_url=f"{base_url}/paynow/webhook",
        return_url=f"{base_url}/payment-success",
        email=cfg.paynow_email,
        test_mode=cfg.paynow_test_mode,
    )
    return assemble_services(cfg, store, messenger, payments)


# ── Request bodies ────────────────────────────────────────────────

class SearchBody(BaseModel):
    phone: str
    query: str = ""


class PhotoRequestBody(BaseModel):
    phone: str
    listing_id: str


class PhoneBody(BaseModel):
    phone: str


class ListBody(BaseModel):
    phone: str
    text: str = ""


class EditBody(BaseModel):
    phone: str
    id: str
    field: str
    value: Any = None


class ReportBody(BaseModel):
    phone: str
    listing_id: str
    reason: str = ""


class BuyBody(BaseModel):
    phone: str
    product: str
    listing_id: Optional[str] = None


def _respond(result: ActionResult) -> JSONResponse:
    if result.ok:
        return JSONResponse({"ok": True, **result.data})
    return JSONResponse(
        {"ok": False, "reason": result.reason, **result.data},
        status_code=REASON_STATUS.get(result.reason, 400),
    )


def _require_phone(phone: str) -> str:
    phone = phone.strip()
    if not validate_phone(phone):
        raise HTTPException(status_code=400, detail="invalid_input")
    return phone


# ── Application ──────────────────────────────────────────────────

def create_app(services: Optional[Services] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Pass ``services`` to run against pre-built (e.g. in-memory) backends;
    otherwise they are built from settings on startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.services is None
        if owned:
            for warning in settings.validate_startup():
                log.warning(warning)
            app.state.services = await build_services(settings)
        log.info("RentBot ready (%d suburbs)", len(settings.suburbs))
        try:
            yield
        finally:
            if owned:
                await app.state.services.close()

    app = FastAPI(
        title="RentBot",
        description="WhatsApp rental-listing marketplace",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services

    def svc() -> Services:
        if app.state.services is None:
            raise HTTPException(status_code=503, detail="Service not ready")
        return app.state.services

    # ── Health check ───────────────────────────────────────────

    @app.get("/health")
    async def health() -> JSONResponse:
        """Lightweight health check: confirms the event loop is responsive."""
        uptime = round(time.time() - _START_TIME, 1)
        return JSONResponse({"status": "ok", "uptime": uptime})

    # ── WhatsApp webhook ──────────────────────────────────────

    @app.post("/twilio/webhook", dependencies=[Depends(verify_twilio_signature)])
    async def twilio_webhook(request: Request) -> JSONResponse:
        """Inbound WhatsApp message.  Replies are sent out-of-band."""
        form = await request.form()
        inbound = parse_inbound(dict(form))
        await svc().router.handle(inbound)
        return JSONResponse({"ok": True})

    # ── Paynow webhook ────────────────────────────────────────

    @app.post("/paynow/webhook")
    async def paynow_webhook(request: Request) -> JSONResponse:
        """Paynow status callback.  Unknown or settled references still get 200."""
        form = await request.form()
        fields = {k: str(v) for k, v in form.items()}
        services = svc()
        if services.payments.requires_signed_callbacks and not services.payments.verify_callback(fields):
            log.warning("Rejected Paynow callback for %r: bad hash", fields.get("reference"))
            raise HTTPException(status_code=403, detail="Invalid hash")
        outcome = await services.marketplace.handle_payment_callback(fields)
        log.info("Paynow callback %s: %s", fields.get("reference"), outcome)
        return JSONResponse({"ok": True, "result": outcome})

    # ── Admin API ─────────────────────────────────────────────

    admin = [Depends(require_admin_token)]

    @app.post("/api/search", dependencies=admin)
    async def api_search(body: SearchBody) -> JSONResponse:
        phone = _require_phone(body.phone)
        if not validate_search_query(body.query):
            raise HTTPException(status_code=400, detail="invalid_input")
        return _respond(await svc().marketplace.search(phone, body.query))

    @app.post("/api/photos/request", dependencies=admin)
    async def api_photos_request(body: PhotoRequestBody) -> JSONResponse:
        phone = _require_phone(body.phone)
        if not body.listing_id.strip():
            raise HTTPException(status_code=400, detail="invalid_input")
        return _respond(await svc().marketplace.request_photos(phone, body.listing_id.strip()))

    @app.post("/api/photos/confirm", dependencies=admin)
    async def api_photos_confirm(body: PhoneBody) -> JSONResponse:
        phone = _require_phone(body.phone)
        return _respond(await svc().marketplace.confirm_photos(phone))

    @app.post("/api/list", dependencies=admin)
    async def api_list(body: ListBody) -> JSONResponse:
        phone = _require_phone(body.phone)
        listing = await svc().marketplace.create_draft(phone, body.text)
        return JSONResponse({"ok": True, "id": listing.id})

    @app.post("/api/edit", dependencies=admin)
    async def api_edit(body: EditBody) -> JSONResponse:
        phone = _require_phone(body.phone)
        return _respond(await svc().marketplace.edit_listing(phone, body.id, body.field, body.value))

    @app.post("/api/report", dependencies=admin)
    async def api_report(body: ReportBody) -> JSONResponse:
        phone = _require_phone(body.phone)
        return _respond(await svc().marketplace.report(phone, body.listing_id.strip(), body.reason))

    @app.post("/api/buy", dependencies=admin)
    async def api_buy(body: BuyBody) -> JSONResponse:
        phone = _require_phone(body.phone)
        log.info("Admin BUY %s for %s", body.product, redact_pii(phone))
        return _respond(await svc().marketplace.buy_product(phone, body.product, body.listing_id))

    @app.get("/api/users/{phone}", dependencies=admin)
    async def api_get_user(phone: str) -> JSONResponse:
        user = await svc().repo.get_user(phone)
        if user is None:
            raise HTTPException(status_code=404, detail="User not found")
        return JSONResponse(user.model_dump(mode="json"))

    return app


# ── Module-level app instance for uvicorn ──────────────────────

app = create_app()


if __name__ == "__main__":
    import uvicorn

    log_config = uvicorn.config.LOGGING_CONFIG
    log_config["formatters"]["default"]["fmt"] = (
        "%(asctime)s %(name)-12s %(levelname)-8s %(message)s"
    )

    uvicorn.run(
        "rentbot.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_config=log_config,
    )
