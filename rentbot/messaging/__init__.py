"""Outbound messaging gateways."""

from .base import MessagingGateway, SendResult

__all__ = ["MessagingGateway", "SendResult"]
