from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from services.api.app.services.phone import InvalidPhoneError, normalize_msisdn


class RejectionKind(str, Enum):
    REJECTED = "REJECTED"
    UNREACHABLE = "UNREACHABLE"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"


@dataclass(frozen=True, slots=True)
class PaymentRequest:
    reference: str
    phone: str
    amount: int


@dataclass(frozen=True, slots=True)
class PaymentAccepted:
    correlation_id: str
    message: str
    phone: str


@dataclass(frozen=True, slots=True)
class PaymentRejected:
    reason: str
    kind: RejectionKind = RejectionKind.REJECTED


@dataclass(frozen=True, slots=True)
class StatusResult:
    status: PaymentStatus
    message: str = ""


InitiateResult = PaymentAccepted | PaymentRejected


class PaymentGateway(Protocol):
    """The single seam between checkout and the mobile-money provider.

    Implementations must not raise for provider-side failures; every failure is returned as a
    PaymentRejected so no provider error structure leaks into the state machine.
    """

    provider: str

    async def initiate(self, phone: str, amount: int, reference: str) -> InitiateResult: ...

    async def query(self, correlation_id: str) -> StatusResult: ...


def build_request(
    phone: str, amount: int, reference: str, *, country_code: str
) -> PaymentRequest | PaymentRejected:
    """Validate and normalize before any network call."""

    try:
        msisdn = normalize_msisdn(phone, country_code)
    except InvalidPhoneError:
        return PaymentRejected(reason="Invalid phone number for mobile money payment.")

    if amount <= 0:
        return PaymentRejected(reason="Payment amount must be greater than zero.")

    if not reference:
        return PaymentRejected(reason="Missing order reference.")

    return PaymentRequest(reference=reference, phone=msisdn, amount=amount)
