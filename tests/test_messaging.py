"""Tests for the outbound messaging gateways."""

import json
from types import SimpleNamespace

import httpx
import pytest
import requests
from twilio.base.exceptions import TwilioException

from rentbot.messaging.console import ConsoleGateway
from rentbot.messaging.twilio import TwilioWhatsAppGateway, to_whatsapp_address
from rentbot.messaging.whatchimp import WhatChimpGateway


# ── Twilio ─────────────────────────────────────────────────────────

class FakeMessages:
    def __init__(self, error=None):
        self.calls = []
        self.error = error

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        return SimpleNamespace(sid=f"SM{len(self.calls)}")


def twilio_gateway(error=None):
    messages = FakeMessages(error)
    client = SimpleNamespace(messages=messages)
    return TwilioWhatsAppGateway("", "", "+14155238886", client=client), messages


class TestTwilioWhatsAppGateway:
    def test_address_prefix(self):
        assert to_whatsapp_address("+263771234567") == "whatsapp:+263771234567"
        assert to_whatsapp_address("whatsapp:+1") == "whatsapp:+1"

    def test_requires_credentials_without_client(self):
        with pytest.raises(ValueError):
            TwilioWhatsAppGateway("", "", "+14155238886")

    async def test_send_text(self):
        gateway, messages = twilio_gateway()
        result = await gateway.send_message("+263771234567", "hello")
        assert result.ok and result.sid == "SM1"
        assert messages.calls[0] == {
            "from_": "whatsapp:+14155238886",
            "to": "whatsapp:+263771234567",
            "body": "hello",
        }

    async def test_send_media(self):
        gateway, messages = twilio_gateway()
        await gateway.send_message("+263771234567", "pics", ["https://img/1.jpg"])
        assert messages.calls[0]["media_url"] == ["https://img/1.jpg"]

    async def test_send_template(self):
        gateway, messages = twilio_gateway()
        await gateway.send_template("+263771234567", "HX123", {"1": "Fill the form"})
        assert messages.calls[0]["content_sid"] == "HX123"
        assert json.loads(messages.calls[0]["content_variables"]) == {"1": "Fill the form"}

    async def test_failure_is_reported_not_raised(self):
        gateway, _ = twilio_gateway(error=TwilioException("unreachable"))
        result = await gateway.send_message("+263771234567", "hello")
        assert not result.ok
        assert "unreachable" in result.error

    async def test_network_error_is_reported_not_raised(self):
        gateway, _ = twilio_gateway(error=requests.ConnectionError("network down"))
        result = await gateway.send_message("+263771234567", "hello")
        assert not result.ok
        assert "network down" in result.error

    async def test_timeout_on_template_is_reported(self):
        gateway, _ = twilio_gateway(error=requests.Timeout("read timed out"))
        result = await gateway.send_template("+263771234567", "HX123", {})
        assert not result.ok


# ── WhatChimp ──────────────────────────────────────────────────────

def whatchimp_gateway(status=200):
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(status, json={"message_id": f"wc-{len(requests)}"})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return WhatChimpGateway("https://api.whatchimp.test/send", "tok", client=client), requests


class TestWhatChimpGateway:
    async def test_send_text(self):
        gateway, requests = whatchimp_gateway()
        result = await gateway.send_message("+263 77 123 4567", "hello")
        assert result.ok and result.sid == "wc-1"
        assert json.loads(requests[0].content) == {
            "number": "263771234567",
            "type": "text",
            "message": "hello",
        }
        await gateway.close()

    async def test_media_sent_one_per_request(self):
        gateway, requests = whatchimp_gateway()
        await gateway.send_message("+263771234567", "pics", ["https://img/1.jpg", "https://img/2.jpg"])
        payloads = [json.loads(r.content) for r in requests]
        assert [p["media_url"] for p in payloads] == ["https://img/1.jpg", "https://img/2.jpg"]
        assert [p["caption"] for p in payloads] == ["pics", ""]
        await gateway.close()

    async def test_http_error(self):
        gateway, _ = whatchimp_gateway(status=500)
        result = await gateway.send_message("+263771234567", "hello")
        assert not result.ok
        await gateway.close()

    def test_requires_url(self):
        with pytest.raises(ValueError):
            WhatChimpGateway("", "tok")

    async def test_template_falls_back_to_text(self):
        gateway, requests = whatchimp_gateway()
        await gateway.send_template("+263771234567", "HX1", {"1": "Fill the form"})
        assert json.loads(requests[0].content)["message"] == "Fill the form"
        await gateway.close()


class TestConsoleGateway:
    async def test_always_succeeds(self):
        result = await ConsoleGateway().send_message("+263771234567", "hello", ["https://img/1.jpg"])
        assert result.ok
        assert result.sid.startswith("LOCAL-")
