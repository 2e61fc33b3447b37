"""Shared fixtures: in-memory store and recording gateways."""

from typing import Mapping, Optional

import pytest

from rentbot.app import assemble_services
from rentbot.config import Settings
from rentbot.messaging.base import MessagingGateway, SendResult
from rentbot.models import Listing
from rentbot.payments.base import PaymentGateway, PushResult
from rentbot.repository import Repository
from rentbot.store import MemoryRecordStore

PHONE = "+263771234567"
OTHER_PHONE = "+263772345678"


# ── Fakes ──────────────────────────────────────────────────────────

class FakeMessenger(MessagingGateway):
    """Records every outbound message; ``fail`` makes sends report failure."""

    def __init__(self):
        self.sent: list[tuple[str, str, Optional[list[str]]]] = []
        self.templates: list[tuple[str, str, dict]] = []
        self.fail = False

    async def send_message(self, to, body, media=None):
        self.sent.append((to, body, media))
        if self.fail:
            return SendResult(ok=False, error="delivery failed")
        return SendResult(ok=True, sid=f"SM{len(self.sent)}")

    async def send_template(self, to, template_id, variables):
        self.templates.append((to, template_id, variables))
        return SendResult(ok=True, sid=f"TPL{len(self.templates)}")

    def bodies(self, to: str = PHONE) -> list[str]:
        return [body for phone, body, _ in self.sent if phone == to]

    @property
    def last(self) -> str:
        return self.sent[-1][1] if self.sent else ""


class FakePayments(PaymentGateway):
    """Push always succeeds unless ``error`` is set."""

    def __init__(self, error: str = "", signed: bool = False):
        self.error = error
        self.signed = signed
        self.pushes: list[tuple[str, float, str]] = []

    async def push(self, phone, amount, reference, description="RentBot Service"):
        self.pushes.append((phone, amount, reference))
        if self.error:
            return PushResult(ok=False, error=self.error)
        return PushResult(ok=True, provider_ref=f"POLL-{reference}", instructions="Dial *151#")

    @property
    def requires_signed_callbacks(self) -> bool:
        return self.signed

    def verify_callback(self, fields: Mapping[str, str]) -> bool:
        return fields.get("hash") == "GOOD"


# ── Fixtures ───────────────────────────────────────────────────────

def make_settings(**overrides) -> Settings:
    values = dict(
        debug=True,
        throttle_seconds=0,
        paynow_test_mode=True,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def cfg():
    return make_settings()


@pytest.fixture
def store():
    return MemoryRecordStore()


@pytest.fixture
def repo(store):
    return Repository(store, starting_credits=3)


@pytest.fixture
def messenger():
    return FakeMessenger()


@pytest.fixture
def payments():
    return FakePayments()


@pytest.fixture
def services(cfg, store, messenger, payments):
    return assemble_services(cfg, store, messenger, payments)


def sample_listing(listing_id: str = "RNT-1", **fields) -> Listing:
    values = dict(
        id=listing_id,
        owner_phone=OTHER_PHONE,
        title="Garden cottage",
        type="Cottage",
        suburb="Avondale",
        rent=250.0,
        deposit=250.0,
        bedrooms=1,
        amenities=["borehole"],
        contact_name="Tendai",
        contact_phone=OTHER_PHONE,
        external_images=[f"https://img.example/{listing_id}/{i}.jpg" for i in range(4)],
        published=True,
    )
    values.update(fields)
    return Listing(**values)
