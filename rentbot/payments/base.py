"""Abstract base class for mobile-money payment gateways.

A push payment is started with ``push``; the provider later calls our
result URL with the final status.  ``normalize_status`` and
``verify_status_hash`` interpret that callback.
"""

import hashlib
import hmac
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Literal, Mapping

SUCCESS_STATUSES = {"paid", "awaiting delivery", "delivered"}
FAILED_STATUSES = {"cancelled", "failed", "disputed", "refunded"}


@dataclass
class PushResult:
    """Outcome of starting a push payment."""

    ok: bool
    provider_ref: str = ""  # poll URL or test reference
    instructions: str = ""
    error: str = ""


def normalize_status(raw: str) -> Literal["success", "failed", "pending"]:
    """Map a provider status string to a transaction status."""
    status = (raw or "").strip().lower()
    if status in SUCCESS_STATUSES:
        return "success"
    if status in FAILED_STATUSES:
        return "failed"
    return "pending"


def compute_status_hash(fields: Mapping[str, str], integration_key: str) -> str:
    """SHA512 over every value except ``hash`` (in order) plus the key, upper-case hex."""
    payload = "".join(str(v) for k, v in fields.items() if k.lower() != "hash")
    return hashlib.sha512((payload + integration_key).encode("utf-8")).hexdigest().upper()


def verify_status_hash(fields: Mapping[str, str], integration_key: str) -> bool:
    received = str(fields.get("hash", "")).upper()
    if not received or not integration_key:
        return False
    return hmac.compare_digest(received, compute_status_hash(fields, integration_key))


class PaymentGateway(ABC):
    """Abstract push-payment provider."""

    @abstractmethod
    async def push(
        self,
        phone: str,
        amount: float,
        reference: str,
        description: str = "RentBot Service",
    ) -> PushResult:
        """Start a mobile-money charge on ``phone``.

        Returns:
            PushResult; ``ok=False`` with ``error`` when the provider (or
            local validation) rejects the request.  Never raises for
            provider errors.
        """

    @property
    def requires_signed_callbacks(self) -> bool:
        """Whether status callbacks must carry a valid hash."""
        return True

    def verify_callback(self, fields: Mapping[str, str]) -> bool:
        return True

    async def close(self) -> None:
        """Cancel background work and release resources."""
