"""Named answer parsers for conversation steps.

Workflow files refer to parsers by name; ``PARSERS`` maps each name to a
function ``(text, context) -> ParseResult``.  A parser never raises on bad
input, it returns ``ParseResult(ok=False)`` and the step re-prompts.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Callable

MAX_TEXT_LENGTH = 500


@dataclass
class ParseContext:
    """What a parser may need besides the reply text."""

    phone: str = ""
    suburbs: list[str] = field(default_factory=list)


@dataclass
class ParseResult:
    ok: bool
    value: Any = None
    extra: dict[str, Any] = field(default_factory=dict)  # additional fields to write


def sanitize_text(value: Any) -> str:
    """Trim and cap free text."""
    return str(value or "").strip()[:MAX_TEXT_LENGTH]


def parse_number(text: str) -> float | None:
    """Strip everything but digits and dots, then parse.  None if not a number."""
    cleaned = re.sub(r"[^\d.]", "", text or "")
    if not cleaned:
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


def match_suburb(text: str, suburbs: list[str]) -> str | None:
    """Resolve a 1-based index or an exact (case-insensitive) name."""
    answer = text.strip()
    if answer.isdigit():
        index = int(answer)
        if 1 <= index <= len(suburbs):
            return suburbs[index - 1]
        return None
    for name in suburbs:
        if name.lower() == answer.lower():
            return name
    return None


# ── Parsers ───────────────────────────────────────────────────────

def parse_text(text: str, ctx: ParseContext) -> ParseResult:
    return ParseResult(ok=True, value=sanitize_text(text))


def parse_suburb(text: str, ctx: ParseContext) -> ParseResult:
    """Listing suburb: menu index, exact name, or the raw answer."""
    matched = match_suburb(text, ctx.suburbs)
    return ParseResult(ok=True, value=matched or sanitize_text(text))


def parse_money(text: str, ctx: ParseContext) -> ParseResult:
    amount = parse_number(text)
    if amount is None:
        return ParseResult(ok=False)
    return ParseResult(ok=True, value=amount)


def parse_amenities(text: str, ctx: ParseContext) -> ParseResult:
    """Comma-separated amenities; NONE means an empty list.

    The raw answer doubles as the listing description.
    """
    raw = sanitize_text(text)
    if raw.upper() == "NONE":
        items: list[str] = []
    else:
        items = [part.strip() for part in raw.split(",") if part.strip()]
    return ParseResult(ok=True, value=items, extra={"description": raw})


def parse_contact_phone(text: str, ctx: ParseContext) -> ParseResult:
    raw = sanitize_text(text)
    if raw.upper() == "SAME":
        return ParseResult(ok=True, value=ctx.phone)
    return ParseResult(ok=True, value=raw)


def parse_search_suburb(text: str, ctx: ParseContext) -> ParseResult:
    """Search filter suburb: menu index, exact name, or ALL ("")."""
    if text.strip().upper() == "ALL":
        return ParseResult(ok=True, value="")
    matched = match_suburb(text, ctx.suburbs)
    if matched is None:
        return ParseResult(ok=False)
    return ParseResult(ok=True, value=matched)


def parse_max_rent(text: str, ctx: ParseContext) -> ParseResult:
    """Search rent ceiling: a number, or ANY for no limit (None)."""
    if text.strip().upper() == "ANY":
        return ParseResult(ok=True, value=None)
    return parse_money(text, ctx)


PARSERS: dict[str, Callable[[str, ParseContext], ParseResult]] = {
    "text": parse_text,
    "suburb": parse_suburb,
    "money": parse_money,
    "amenities": parse_amenities,
    "contact_phone": parse_contact_phone,
    "search_suburb": parse_search_suburb,
    "max_rent": parse_max_rent,
}

# Fields a parser writes besides the state's own field
PARSER_EXTRA_FIELDS: dict[str, tuple[str, ...]] = {
    "amenities": ("description",),
}


# ── Input validation for the admin API ───────────────────────────

PHONE_PATTERN = re.compile(r"^\+?\d{7,15}$")


def validate_phone(phone: Any) -> bool:
    return bool(PHONE_PATTERN.match(str(phone or "").strip()))


def validate_search_query(query: Any) -> bool:
    return len(sanitize_text(query)) > 1
