"""Tests for payment status handling and the Paynow gateway."""

import asyncio

import httpx
import pytest

from rentbot.payments.base import compute_status_hash, normalize_status, verify_status_hash
from rentbot.payments.paynow import PaynowGateway, mobile_method, normalize_mobile

KEY = "integration-key"


class TestStatus:
    @pytest.mark.parametrize("raw,expected", [
        ("Paid", "success"),
        ("Awaiting Delivery", "success"),
        ("delivered", "success"),
        ("Cancelled", "failed"),
        ("Failed", "failed"),
        ("Disputed", "failed"),
        ("Refunded", "failed"),
        ("Sent", "pending"),
        ("Created", "pending"),
        ("", "pending"),
    ])
    def test_normalize_status(self, raw, expected):
        assert normalize_status(raw) == expected


class TestStatusHash:
    def test_round_trip(self):
        fields = {"reference": "CRD-1", "amount": "1.00", "status": "Paid"}
        fields["hash"] = compute_status_hash(fields, KEY)
        assert fields["hash"] == fields["hash"].upper()
        assert verify_status_hash(fields, KEY)

    def test_tampered_field_rejected(self):
        fields = {"reference": "CRD-1", "amount": "1.00", "status": "Cancelled"}
        fields["hash"] = compute_status_hash(fields, KEY)
        fields["status"] = "Paid"
        assert not verify_status_hash(fields, KEY)

    def test_missing_hash_or_key(self):
        fields = {"reference": "CRD-1", "status": "Paid"}
        assert not verify_status_hash(fields, KEY)
        fields["hash"] = compute_status_hash(fields, KEY)
        assert not verify_status_hash(fields, "")


class TestMobileNumbers:
    @pytest.mark.parametrize("phone,expected", [
        ("+263771234567", "0771234567"),
        ("263771234567", "0771234567"),
        ("0771234567", "0771234567"),
        ("+263 77 123 4567", "0771234567"),
        ("+14155238886", None),
        ("077123", None),
    ])
    def test_normalize_mobile(self, phone, expected):
        assert normalize_mobile(phone) == expected

    def test_mobile_method(self):
        assert mobile_method("0712345678") == "onemoney"
        assert mobile_method("0771234567") == "ecocash"
        assert mobile_method("0781234567") == "ecocash"


# ── Gateway (test mode, no network) ────────────────────────────────

def gateway(test_mode=True, handler=None, integration_id="12345"):
    client = None
    if handler is not None:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return PaynowGateway(
        integration_id,
        KEY,
        result_url="http://localhost:8080/paynow/webhook",
        test_mode=test_mode,
        client=client,
        delay_scale=0.0,
    )


class TestPaynowGateway:
    async def test_invalid_number(self):
        result = await gateway().push("+14155238886", 1.0, "CRD-1")
        assert not result.ok
        assert "Invalid mobile number" in result.error

    async def test_rejected_test_number(self):
        result = await gateway().push("0774444444", 1.0, "CRD-1")
        assert not result.ok
        assert result.error == "Insufficient balance"

    async def test_simulated_callback_is_signed(self):
        posted = []

        def handler(request: httpx.Request) -> httpx.Response:
            posted.append(dict(httpx.QueryParams(request.content.decode())))
            return httpx.Response(200, json={"ok": True})

        gw = gateway(handler=handler)
        result = await gw.push("+263771111111", 1.0, "CRD-1")
        assert result.ok
        assert result.provider_ref == "TEST-CRD-1"

        await asyncio.wait(list(gw._tasks))
        assert posted[0]["reference"] == "CRD-1"
        assert posted[0]["status"] == "Paid"
        assert verify_status_hash(posted[0], KEY)
        await gw.close()

    async def test_failed_test_number(self):
        posted = []

        def handler(request: httpx.Request) -> httpx.Response:
            posted.append(dict(httpx.QueryParams(request.content.decode())))
            return httpx.Response(200)

        gw = gateway(handler=handler)
        result = await gw.push("0773333333", 2.5, "CRD-2")
        assert result.ok
        await asyncio.wait(list(gw._tasks))
        assert posted[0]["status"] == "Failed"
        await gw.close()

    async def test_unconfigured(self):
        result = await gateway(test_mode=False, integration_id="").push("0771234567", 1.0, "CRD-1")
        assert not result.ok
        assert "not configured" in result.error

    def test_signed_callbacks_outside_test_mode(self):
        assert gateway(test_mode=False).requires_signed_callbacks
        assert not gateway(test_mode=True).requires_signed_callbacks

    async def test_close_cancels_pending_simulations(self):
        gw = PaynowGateway("12345", KEY, result_url="http://localhost/paynow/webhook", test_mode=True)
        await gw.push("0772222222", 1.0, "CRD-3")
        await gw.close()
        assert all(task.done() for task in gw._tasks)
