import asyncio

import pytest
from services.api.app.services.payment_base import (
    PaymentAccepted,
    PaymentRejected,
    PaymentStatus,
)
from services.api.app.services.payment_factory import get_payment_gateway
from services.api.app.services.payment_mock import MockPaymentGateway


def test_get_payment_gateway_defaults_to_mock(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("DIGIFLOW_PAYMENT_GATEWAY", raising=False)
    gateway = get_payment_gateway()
    assert gateway.provider == "MPESA_MOCK"


def test_get_payment_gateway_rejects_unknown(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DIGIFLOW_PAYMENT_GATEWAY", "nope")
    with pytest.raises(ValueError, match="Unknown DIGIFLOW_PAYMENT_GATEWAY"):
        get_payment_gateway()


def test_http_gateway_requires_initiate_url(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DIGIFLOW_PAYMENT_GATEWAY", "http")
    monkeypatch.delenv("DIGIFLOW_MPESA_INITIATE_URL", raising=False)
    with pytest.raises(ValueError, match="DIGIFLOW_MPESA_INITIATE_URL"):
        get_payment_gateway()


def test_mock_gateway_issues_correlation_id_for_normalized_phone() -> None:
    gateway = MockPaymentGateway()
    result = asyncio.run(gateway.initiate("0712345678", 7000, "ORD-1-ABCDEF"))

    assert isinstance(result, PaymentAccepted)
    assert result.phone == "254712345678"
    assert result.correlation_id.startswith("ws_CO_")
    assert result.correlation_id.endswith("_254712345678")
    assert gateway.requests[0].amount == 7000


@pytest.mark.parametrize(
    ("phone", "amount"),
    [("12345", 100), ("0712345678", 0), ("0712345678", -5)],
)
def test_mock_gateway_rejects_before_sending(phone: str, amount: int) -> None:
    gateway = MockPaymentGateway()
    result = asyncio.run(gateway.initiate(phone, amount, "ORD-1-ABCDEF"))

    assert isinstance(result, PaymentRejected)
    assert gateway.requests == []


def test_mock_gateway_scripted_rejection_and_settle() -> None:
    rejecting = MockPaymentGateway(reject_with="Insufficient balance")
    result = asyncio.run(rejecting.initiate("0712345678", 100, "ORD-1-ABCDEF"))
    assert isinstance(result, PaymentRejected)
    assert result.reason == "Insufficient balance"

    gateway = MockPaymentGateway()
    assert asyncio.run(gateway.query("ws_CO_1")).status == PaymentStatus.PENDING
    gateway.settle("ws_CO_1", PaymentStatus.PAID)
    assert asyncio.run(gateway.query("ws_CO_1")).status == PaymentStatus.PAID
