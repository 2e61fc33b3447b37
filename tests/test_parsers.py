"""Tests for the named answer parsers and admin input validation."""

import pytest

from rentbot.parsers import (
    PARSERS,
    ParseContext,
    match_suburb,
    parse_number,
    sanitize_text,
    validate_phone,
    validate_search_query,
)

SUBURBS = ["Avondale", "Borrowdale", "Mount Pleasant"]
CTX = ParseContext(phone="+263771234567", suburbs=SUBURBS)


class TestHelpers:
    @pytest.mark.parametrize("text,expected", [
        ("150", 150.0),
        ("$1,200", 1200.0),
        ("USD 99.50", 99.5),
        ("abc", None),
        ("", None),
        ("1.2.3", None),
    ])
    def test_parse_number(self, text, expected):
        assert parse_number(text) == expected

    def test_match_suburb(self):
        assert match_suburb("2", SUBURBS) == "Borrowdale"
        assert match_suburb("mount pleasant", SUBURBS) == "Mount Pleasant"
        assert match_suburb("4", SUBURBS) is None
        assert match_suburb("0", SUBURBS) is None
        assert match_suburb("Mount", SUBURBS) is None

    def test_sanitize_caps_length(self):
        assert sanitize_text("  hi  ") == "hi"
        assert len(sanitize_text("x" * 900)) == 500
        assert sanitize_text(None) == ""


class TestListingParsers:
    def test_suburb_is_lenient(self):
        assert PARSERS["suburb"]("1", CTX).value == "Avondale"
        result = PARSERS["suburb"]("Hatfield", CTX)
        assert result.ok and result.value == "Hatfield"

    def test_money(self):
        assert PARSERS["money"]("250", CTX).value == 250.0
        assert not PARSERS["money"]("two hundred", CTX).ok

    def test_amenities(self):
        result = PARSERS["amenities"]("borehole, solar ,, wifi", CTX)
        assert result.value == ["borehole", "solar", "wifi"]
        assert result.extra == {"description": "borehole, solar ,, wifi"}
        assert PARSERS["amenities"]("none", CTX).value == []

    def test_contact_phone_same(self):
        assert PARSERS["contact_phone"]("same", CTX).value == "+263771234567"
        assert PARSERS["contact_phone"]("0779999999", CTX).value == "0779999999"


class TestSearchParsers:
    def test_search_suburb_is_strict(self):
        assert PARSERS["search_suburb"]("3", CTX).value == "Mount Pleasant"
        assert PARSERS["search_suburb"]("ALL", CTX).value == ""
        assert not PARSERS["search_suburb"]("Hatfield", CTX).ok

    def test_max_rent(self):
        assert PARSERS["max_rent"]("any", CTX).value is None
        assert PARSERS["max_rent"]("ANY", CTX).ok
        assert PARSERS["max_rent"]("400", CTX).value == 400.0
        assert not PARSERS["max_rent"]("cheap", CTX).ok


class TestValidation:
    @pytest.mark.parametrize("phone,ok", [
        ("+263771234567", True),
        ("0771234567", True),
        ("whatsapp:+263771234567", False),
        ("12345", False),
        ("", False),
    ])
    def test_validate_phone(self, phone, ok):
        assert validate_phone(phone) is ok

    def test_validate_search_query(self):
        assert validate_search_query("flat")
        assert not validate_search_query("a")
        assert not validate_search_query("   ")
