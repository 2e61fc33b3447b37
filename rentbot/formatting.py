"""Outbound WhatsApp message texts."""

from __future__ import annotations

from typing import Optional

from rentbot.models import Listing


def _money(value: Optional[float]) -> str:
    if value is None:
        return "0"
    return f"{value:g}"


def format_listing_card(index: int, listing: Listing) -> str:
    amenities = ", ".join(listing.amenities) if listing.amenities else "None listed"
    contact_phone = listing.contact_phone or listing.owner_phone
    return (
        f"{index}. Listing Details\n"
        f"Title: {listing.title or 'Untitled'}\n"
        f"Type: {listing.type or 'Not specified'}\n"
        f"Suburb: {listing.suburb or 'Not specified'}\n"
        f"Address: {listing.address or listing.suburb or 'No address'}\n"
        f"Rent: ${_money(listing.rent)}\n"
        f"Deposit: ${_money(listing.deposit)}\n"
        f"Bedrooms: {listing.bedrooms or 'N/A'}\n"
        f"Key features / Amenities: {amenities}\n"
        f"Contact name: {listing.contact_name or 'Owner'}\n"
        f"Contact phone (WhatsApp): {contact_phone} (ID: {listing.id})"
    )


def format_search_results(
    results: list[Listing], balance_after: int, search_cost: int = 1, photo_cost: int = 2
) -> str:
    unit = "credit" if search_cost == 1 else "credits"
    lines = [f"{len(results)} matches ({search_cost} {unit} used, balance {balance_after}):"]
    for i, listing in enumerate(results, start=1):
        lines.append("")
        lines.append(format_listing_card(i, listing))
    lines.append("")
    lines.append(
        f"Reply PHOTOS <ID> or P <number> to request images ({photo_cost} credits). "
        "Reply HELP for commands."
    )
    return "\n".join(lines)


def format_help(credits: int, search_cost: int = 1, photo_cost: int = 2) -> str:
    return (
        "RentBot commands:\n"
        f"SEARCH <criteria> ({search_cost} credit), or SEARCH alone for the guided search\n"
        f"PHOTOS <ID> or P <number> ({photo_cost} credits, confirm YES)\n"
        "LIST to create a listing\n"
        "BUY <bundle> to buy credits, BUY LIST <ID> to publish a listing\n"
        "REPORT <ID> <reason>\n"
        "HELP\n"
        "STOP\n"
        f"Credits: {credits}"
    )


def format_stop() -> str:
    return "You have been opted out. Reply HELP to resume."


def format_photos_request(listing_id: str, photo_cost: int = 2) -> str:
    return (
        f"Request received for {listing_id}. {photo_cost} credits will be charged. "
        "Reply YES to confirm or NO to cancel."
    )


def format_photos_sent(has_media: bool) -> str:
    return "Photos attached." if has_media else "No images available for this listing."


def format_photos_canceled() -> str:
    return "Photo request cancelled. No credits were charged."


def format_no_pending_photos() -> str:
    return "No pending photo request."


def format_listing_not_found(listing_id: str) -> str:
    return f"Listing {listing_id} was not found. Check the ID and try again."


def format_insufficient_credits(required: int) -> str:
    return f"Insufficient credits. You need {required} credits. Reply BUY <bundle>."


def format_listing_draft(listing_id: str, publish_price: float = 3.0) -> str:
    return (
        "✅ *Listing Draft Saved*\n\n"
        f"Your listing is ready for review (ID: {listing_id}).\n\n"
        f"Reply *BUY LIST {listing_id}* to publish it.\n"
        f"(Publishing requires ${publish_price:g} via Paynow Express)"
    )


def format_flow_invite() -> str:
    return "Click the button below to fill out the listing details."


def format_edit_confirmed(listing_id: str, field: str) -> str:
    return f"Listing {listing_id} updated: {field}."


def format_report_received(listing_id: str) -> str:
    return f"Thanks, your report on {listing_id} has been sent to our moderators."


def format_bundles(bundles: dict[str, float]) -> str:
    options = ", ".join(f"{size} credits ${price:g}" for size, price in bundles.items())
    return f"Reply BUY <bundle> to buy credits. Bundles: {options}."


def format_payment_started(reference: str, amount: float, instructions: str = "") -> str:
    text = (
        f"Payment request of ${amount:g} sent to your phone (Ref: {reference}). "
        "Enter your PIN to approve."
    )
    if instructions:
        text += f"\n{instructions}"
    return text


def format_payment_error(error: str) -> str:
    return f"Payment could not be started: {error}"


def format_payment_failed(reference: str) -> str:
    return f"Payment {reference} was not completed. Reply BUY to try again."


def format_receipt(amount: float, reference: str, credits: Optional[int] = None) -> str:
    text = f"✅ Payment received: ${amount:g}, Ref: {reference}"
    if credits is not None:
        text += f"\n{credits} credits added."
    return text


def format_listing_published(listing_id: str, reference: str) -> str:
    return f"✅ *Listing Published*\n\nYour listing {listing_id} is now live!\nRef: {reference}"


def format_suburb_menu(suburbs: list[str]) -> str:
    return "\n".join(f"{i}. {name}" for i, name in enumerate(suburbs, start=1))


def format_rate_limited(reason: str) -> str:
    if reason == "daily_limit":
        return "You have reached today's limit for this action. Please try again tomorrow."
    return "You're going a little fast. Please wait a minute and try again."


def format_no_such_result(index: int) -> str:
    return f"There is no result {index} in your last search. Reply SEARCH to search again."


def format_report_usage() -> str:
    return "To report a listing reply REPORT <ID> <reason>."


def format_already_published(listing_id: str) -> str:
    return f"Listing {listing_id} is already published."


def format_search_query_too_short() -> str:
    return "Please add what you are looking for, e.g. SEARCH Avondale cottage."
