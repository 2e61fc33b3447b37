"""Mobile-money payment gateways."""

from .base import PaymentGateway, PushResult, normalize_status, verify_status_hash

__all__ = ["PaymentGateway", "PushResult", "normalize_status", "verify_status_hash"]
