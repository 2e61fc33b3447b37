"""Paynow Express (EcoCash / OneMoney) payment gateway.

Uses the synchronous ``paynow`` SDK in the default thread pool.  With
``test_mode`` on, the magic test numbers below are simulated locally: a
background task posts the outcome to our own result URL after a delay,
exactly as Paynow would.
"""

from __future__ import annotations

import asyncio
import logging
import re
from functools import partial
from typing import Any, Mapping, Optional

import httpx
from paynow import Paynow

from rentbot.session import redact_pii

from .base import PaymentGateway, PushResult, compute_status_hash, verify_status_hash

logger = logging.getLogger("rentbot.payments.paynow")

MOBILE_PATTERN = re.compile(r"^07\d{8}$")

# number -> (status, delay seconds)
TEST_OUTCOMES: dict[str, tuple[str, float]] = {
    "0771111111": ("Paid", 5.0),
    "0772222222": ("Paid", 30.0),
    "0773333333": ("Failed", 30.0),
}
TEST_REJECTED = {"0774444444": "Insufficient balance"}


def normalize_mobile(phone: str) -> Optional[str]:
    """Convert ``+2637...`` to local ``07...`` form; None if not a Zimbabwe mobile."""
    number = re.sub(r"\s+", "", phone or "")
    number = re.sub(r"^\+?263", "0", number)
    return number if MOBILE_PATTERN.match(number) else None


def mobile_method(number: str) -> str:
    """NetOne numbers (071) pay with OneMoney; everything else with EcoCash."""
    return "onemoney" if number.startswith("071") else "ecocash"


class PaynowGateway(PaymentGateway):
    """PaymentGateway backed by Paynow Express Checkout."""

    def __init__(
        self,
        integration_id: str,
        integration_key: str,
        result_url: str,
        return_url: str = "",
        email: str = "customer@rentbot.co.zw",
        test_mode: bool = False,
        client: Optional[httpx.AsyncClient] = None,
        delay_scale: float = 1.0,
    ) -> None:
        self._integration_key = integration_key
        self._result_url = result_url
        self._email = email
        self._test_mode = test_mode
        self._delay_scale = delay_scale
        self._client = client
        self._tasks: set[asyncio.Task] = set()
        self._paynow: Optional[Paynow] = None
        if integration_id and integration_key:
            self._paynow = Paynow(integration_id, integration_key, return_url or result_url, result_url)
        else:
            logger.warning("Paynow credentials missing; pushes will fail")

    @property
    def requires_signed_callbacks(self) -> bool:
        return not self._test_mode

    def verify_callback(self, fields: Mapping[str, str]) -> bool:
        return verify_status_hash(fields, self._integration_key)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _run_in_executor(self, func, *args, **kwargs) -> Any:
        """Run a synchronous Paynow SDK call in the default thread pool."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args, **kwargs))

    def _schedule(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _simulate(self, reference: str, amount: float, status: str, delay: float) -> None:
        """Post a fake status callback to our own result URL."""
        await asyncio.sleep(delay * self._delay_scale)
        fields = {
            "reference": reference,
            "paynowreference": f"TEST-{reference}",
            "amount": str(amount),
            "status": status,
            "pollurl": f"TEST-{reference}",
        }
        fields["hash"] = compute_status_hash(fields, self._integration_key)
        client = self._client or httpx.AsyncClient(timeout=10.0)
        try:
            resp = await client.post(self._result_url, data=fields)
            logger.info("Simulated Paynow %s for %s: HTTP %d", status, reference, resp.status_code)
        except httpx.HTTPError as exc:
            logger.error("Simulated Paynow callback for %s failed: %s", reference, exc)
        finally:
            if self._client is None:
                await client.aclose()

    # ------------------------------------------------------------------
    # PaymentGateway interface
    # ------------------------------------------------------------------

    async def push(
        self,
        phone: str,
        amount: float,
        reference: str,
        description: str = "RentBot Service",
    ) -> PushResult:
        number = normalize_mobile(phone)
        if number is None:
            return PushResult(
                ok=False,
                error="Invalid mobile number. Must be a Zimbabwe EcoCash or OneMoney number (07...).",
            )
        method = mobile_method(number)
        logger.info(
            "Paynow push %s: $%.2f via %s to %s", reference, amount, method, redact_pii(number)
        )

        if self._test_mode:
            if number in TEST_REJECTED:
                return PushResult(ok=False, error=TEST_REJECTED[number])
            if number in TEST_OUTCOMES:
                status, delay = TEST_OUTCOMES[number]
                self._schedule(self._simulate(reference, amount, status, delay))
                outcome = "SUCCESS" if status == "Paid" else "FAILED"
                return PushResult(
                    ok=True,
                    provider_ref=f"TEST-{reference}",
                    instructions=f"Simulated {outcome} in {int(delay)}s",
                )
            # Other numbers go to the real sandbox

        if self._paynow is None:
            return PushResult(ok=False, error="Payments are not configured. Please try again later.")

        payment = self._paynow.create_payment(reference, self._email)
        payment.add(description, amount)
        try:
            response = await self._run_in_executor(self._paynow.send_mobile, payment, number, method)
        except Exception as exc:
            logger.exception("Paynow push %s raised", reference)
            return PushResult(ok=False, error=str(exc) or "Internal Paynow error")

        if response is not None and response.success:
            return PushResult(
                ok=True,
                provider_ref=getattr(response, "poll_url", "") or "",
                instructions=getattr(response, "instruction", "") or "",
            )
        error = getattr(response, "error", None) or "Unknown error from Paynow"
        logger.warning("Paynow push %s rejected: %s", reference, error)
        return PushResult(ok=False, error=str(error))

    async def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
