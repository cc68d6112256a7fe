from __future__ import annotations

import time

import structlog

from services.api.app.services.payment_base import (
    InitiateResult,
    PaymentAccepted,
    PaymentRejected,
    PaymentRequest,
    PaymentStatus,
    StatusResult,
    build_request,
)
from services.api.app.services.phone import DEFAULT_COUNTRY_CODE, redact

logger = structlog.get_logger(__name__)


class MockPaymentGateway:
    """Simulated STK push for local dev and tests.

    Never contacts a provider. Set `reject_with` to script a synchronous rejection, and use
    `settle()` to make `query()` report a final status for a correlation id.
    """

    provider = "MPESA_MOCK"

    def __init__(
        self,
        *,
        country_code: str = DEFAULT_COUNTRY_CODE,
        reject_with: str | None = None,
    ) -> None:
        self._country_code = country_code
        self._reject_with = reject_with
        self._statuses: dict[str, PaymentStatus] = {}
        self.requests: list[PaymentRequest] = []

    async def initiate(self, phone: str, amount: int, reference: str) -> InitiateResult:
        request = build_request(phone, amount, reference, country_code=self._country_code)
        if isinstance(request, PaymentRejected):
            return request

        logger.info(
            "Simulating STK push",
            phone=redact(request.phone),
            amount=request.amount,
            reference=request.reference,
        )
        self.requests.append(request)

        if self._reject_with:
            return PaymentRejected(reason=self._reject_with)

        return PaymentAccepted(
            correlation_id=f"ws_CO_{int(time.time() * 1000)}_{request.phone}",
            message="STK Push sent! Check your phone to enter PIN.",
            phone=request.phone,
        )

    async def query(self, correlation_id: str) -> StatusResult:
        status = self._statuses.get(correlation_id, PaymentStatus.PENDING)
        return StatusResult(status=status, message=f"Simulated status {status.value}")

    def settle(self, correlation_id: str, status: PaymentStatus) -> None:
        self._statuses[correlation_id] = status
