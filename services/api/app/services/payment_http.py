from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from services.api.app.services.payment_base import (
    InitiateResult,
    PaymentAccepted,
    PaymentRejected,
    PaymentStatus,
    RejectionKind,
    StatusResult,
    build_request,
)
from services.api.app.services.phone import DEFAULT_COUNTRY_CODE, redact

logger = structlog.get_logger(__name__)

_UNREACHABLE_MESSAGE = "Connection to payment provider failed. Please try again."


@dataclass(frozen=True, slots=True)
class _HttpGatewayConfig:
    initiate_url: str
    status_url: str | None
    api_key: str | None
    till_number: str | None
    timeout_seconds: float
    country_code: str


class HttpPaymentGateway:
    """STK push via the payment backend function over HTTPS.

    Credentials for the provider itself (consumer key/secret, passkey) live in the backend
    function. This service only sends the transaction details.

    Env vars:
    - DIGIFLOW_PAYMENT_GATEWAY=http
    - DIGIFLOW_MPESA_INITIATE_URL (required)
    - DIGIFLOW_MPESA_STATUS_URL (optional; without it `query` always reports PENDING)
    - DIGIFLOW_MPESA_API_KEY (optional bearer token)
    - DIGIFLOW_MPESA_TILL_NUMBER (optional; the backend holds the default)
    - DIGIFLOW_MPESA_TIMEOUT_SECONDS (default: 15)
    - DIGIFLOW_COUNTRY_CODE (default: 254)
    """

    provider = "MPESA_HTTP"

    def __init__(
        self,
        cfg: _HttpGatewayConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._cfg = cfg
        self._transport = transport

    @classmethod
    def from_env(cls) -> "HttpPaymentGateway":
        initiate_url = os.getenv("DIGIFLOW_MPESA_INITIATE_URL", "").strip()
        if not initiate_url:
            raise ValueError(
                "DIGIFLOW_MPESA_INITIATE_URL is required when DIGIFLOW_PAYMENT_GATEWAY=http"
            )

        return cls(
            _HttpGatewayConfig(
                initiate_url=initiate_url,
                status_url=os.getenv("DIGIFLOW_MPESA_STATUS_URL", "").strip() or None,
                api_key=os.getenv("DIGIFLOW_MPESA_API_KEY", "").strip() or None,
                till_number=os.getenv("DIGIFLOW_MPESA_TILL_NUMBER", "").strip() or None,
                timeout_seconds=float(os.getenv("DIGIFLOW_MPESA_TIMEOUT_SECONDS", "15")),
                country_code=os.getenv("DIGIFLOW_COUNTRY_CODE", DEFAULT_COUNTRY_CODE).strip(),
            )
        )

    async def initiate(self, phone: str, amount: int, reference: str) -> InitiateResult:
        request = build_request(phone, amount, reference, country_code=self._cfg.country_code)
        if isinstance(request, PaymentRejected):
            return request

        body: dict[str, Any] = {
            "phoneNumber": request.phone,
            "amount": request.amount,
            "accountReference": request.reference,
        }
        if self._cfg.till_number:
            body["tillNumber"] = self._cfg.till_number

        logger.info(
            "Initiating STK push",
            phone=redact(request.phone),
            amount=request.amount,
            reference=request.reference,
        )

        try:
            async with self._client() as client:
                resp = await client.post(self._cfg.initiate_url, json=body)
        except httpx.HTTPError as e:
            # Do not log the full error; it can carry request bodies.
            logger.warning(
                "Payment gateway unreachable",
                reference=request.reference,
                error_type=type(e).__name__,
            )
            return PaymentRejected(reason=_UNREACHABLE_MESSAGE, kind=RejectionKind.UNREACHABLE)

        if resp.status_code >= 500:
            logger.warning(
                "Payment gateway server error",
                reference=request.reference,
                status_code=resp.status_code,
            )
            return PaymentRejected(reason=_UNREACHABLE_MESSAGE, kind=RejectionKind.UNREACHABLE)

        try:
            data = resp.json()
        except ValueError:
            return PaymentRejected(reason="Unexpected response from payment provider.")

        if not isinstance(data, dict):
            return PaymentRejected(reason="Unexpected response from payment provider.")

        return _parse_initiate_response(data, phone=request.phone)

    async def query(self, correlation_id: str) -> StatusResult:
        if not self._cfg.status_url:
            return StatusResult(status=PaymentStatus.PENDING, message="Status query not configured")

        try:
            async with self._client() as client:
                resp = await client.post(
                    self._cfg.status_url, json={"checkoutRequestID": correlation_id}
                )
        except httpx.HTTPError as e:
            logger.warning(
                "Payment status query failed",
                correlation_id=correlation_id,
                error_type=type(e).__name__,
            )
            return StatusResult(status=PaymentStatus.PENDING, message=_UNREACHABLE_MESSAGE)

        if resp.status_code >= 400:
            return StatusResult(
                status=PaymentStatus.PENDING,
                message=f"Status query returned HTTP {resp.status_code}",
            )

        try:
            data = resp.json()
        except ValueError:
            return StatusResult(status=PaymentStatus.PENDING, message="Unreadable status response")

        return _parse_status_response(data if isinstance(data, dict) else {})

    def _client(self) -> httpx.AsyncClient:
        headers = {"Content-Type": "application/json"}
        if self._cfg.api_key:
            headers["Authorization"] = f"Bearer {self._cfg.api_key}"

        return httpx.AsyncClient(
            timeout=httpx.Timeout(self._cfg.timeout_seconds),
            headers=headers,
            transport=self._transport,
        )


def _parse_initiate_response(data: dict[str, Any], *, phone: str) -> InitiateResult:
    # Normalized contract: {success, message, checkoutRequestID}
    if "success" in data:
        correlation_id = str(data.get("checkoutRequestID") or "").strip()
        message = str(data.get("message") or "").strip()
        if data.get("success") is True and correlation_id:
            return PaymentAccepted(
                correlation_id=correlation_id,
                message=message or "STK Push sent! Check your phone to enter PIN.",
                phone=phone,
            )
        if data.get("success") is True:
            return PaymentRejected(reason="Payment provider did not return a checkout request id.")
        return PaymentRejected(reason=message or "Payment initialization failed.")

    # Raw provider shape passed through by the backend function.
    if str(data.get("ResponseCode")) == "0":
        correlation_id = str(data.get("CheckoutRequestID") or "").strip()
        if not correlation_id:
            return PaymentRejected(reason="Payment provider did not return a checkout request id.")
        return PaymentAccepted(
            correlation_id=correlation_id,
            message=str(data.get("CustomerMessage") or "")
            or "STK Push sent! Check your phone to enter PIN.",
            phone=phone,
        )

    reason = data.get("errorMessage") or data.get("ResponseDescription") or data.get("message")
    return PaymentRejected(reason=str(reason or "Payment initialization failed."))


def _parse_status_response(data: dict[str, Any]) -> StatusResult:
    raw_status = str(data.get("status") or "").strip().upper()
    if raw_status in PaymentStatus.__members__:
        return StatusResult(status=PaymentStatus[raw_status], message=str(data.get("message") or ""))

    result_code = data.get("ResultCode")
    message = str(data.get("ResultDesc") or data.get("message") or "")
    if result_code is None or str(result_code).strip() == "":
        return StatusResult(status=PaymentStatus.PENDING, message=message)

    if str(result_code).strip() == "0":
        return StatusResult(status=PaymentStatus.PAID, message=message)

    return StatusResult(status=PaymentStatus.FAILED, message=message)
