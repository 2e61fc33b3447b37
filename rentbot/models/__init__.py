"""Data models for the marketplace."""

from .listing import Listing
from .records import ModerationTicket, PhotoRequest, Transaction
from .session_state import ListingDraftSession, SearchSession, SessionState
from .user import User

__all__ = [
    "Listing",
    "ListingDraftSession",
    "ModerationTicket",
    "PhotoRequest",
    "SearchSession",
    "SessionState",
    "Transaction",
    "User",
]
