from __future__ import annotations

import pytest
from conftest import ScriptedGateway, add_product, stock_of
from fastapi.testclient import TestClient
from services.api.app.services.payment_base import PaymentRejected, RejectionKind
from sqlalchemy.orm import Session

CUSTOMER = "cust-1"


def _ready_checkout(client: TestClient, db: Session) -> str:
    add_product(db, "p1", 3500, 50)
    client.post("/v1/cart/items", json={"customer_id": CUSTOMER, "product_id": "p1"})
    client.post("/v1/cart/items", json={"customer_id": CUSTOMER, "product_id": "p1"})

    address = client.post(
        "/v1/addresses",
        json={
            "customer_id": CUSTOMER,
            "recipient_name": "Jane Wanjiku",
            "phone": "712345678",
            "street": "Moi Avenue",
            "city": "CBD",
        },
    ).json()
    session_id = client.post("/v1/checkout", json={"customer_id": CUSTOMER}).json()["session_id"]
    client.post(f"/v1/checkout/{session_id}/shipping", json={"address_id": address["id"]})
    return session_id


@pytest.mark.parametrize(
    ("result", "status"),
    [
        (PaymentRejected(reason="Insufficient balance"), 402),
        (PaymentRejected(reason="Connection failed", kind=RejectionKind.UNREACHABLE), 502),
        (RuntimeError("socket closed"), 502),
    ],
)
def test_pay_maps_gateway_failures(
    client: TestClient,
    db: Session,
    monkeypatch: pytest.MonkeyPatch,
    result: object,
    status: int,
) -> None:
    import services.api.app.routers.checkout as checkout_router

    gateway = ScriptedGateway([result])
    monkeypatch.setattr(checkout_router, "get_payment_gateway", lambda: gateway)

    session_id = _ready_checkout(client, db)
    resp = client.post(f"/v1/checkout/{session_id}/pay")
    assert resp.status_code == status
    assert "detail" in resp.json()

    card = client.get(f"/v1/checkout/{session_id}").json()
    assert card["step"] == "SHIPPING_SELECTED"
    assert card["failure_reason"]
    assert card["cart_total"] == 7000
    assert stock_of(db, "p1") == 50


def test_rejected_payment_reason_reaches_customer(
    client: TestClient, db: Session, monkeypatch: pytest.MonkeyPatch
) -> None:
    import services.api.app.routers.checkout as checkout_router

    gateway = ScriptedGateway([PaymentRejected(reason="Insufficient balance")])
    monkeypatch.setattr(checkout_router, "get_payment_gateway", lambda: gateway)

    session_id = _ready_checkout(client, db)
    resp = client.post(f"/v1/checkout/{session_id}/pay")

    assert resp.json()["detail"] == "Insufficient balance"
    assert gateway.calls[0][1] == 7000


def test_unknown_gateway_config_is_500(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DIGIFLOW_PAYMENT_GATEWAY", "nope")

    resp = client.post("/v1/checkout", json={"customer_id": CUSTOMER})
    assert resp.status_code == 500
    assert "Unknown DIGIFLOW_PAYMENT_GATEWAY" in resp.json()["detail"]


def test_manual_confirmation_disabled_is_403(
    client: TestClient, db: Session, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("DIGIFLOW_ALLOW_MANUAL_CONFIRMATION", "false")

    session_id = _ready_checkout(client, db)
    assert client.post(f"/v1/checkout/{session_id}/pay").status_code == 200

    resp = client.post(f"/v1/checkout/{session_id}/confirm")
    assert resp.status_code == 403
    assert client.get(f"/v1/checkout/{session_id}").json()["step"] == "AWAITING_CONFIRMATION"


def test_unexpected_error_is_500(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    import services.api.app.routers.checkout as checkout_router

    class _Exploding:
        def __init__(self, *args, **kwargs) -> None:
            pass

        def start(self, customer_id: str) -> None:
            raise RuntimeError("boom")

    monkeypatch.setattr(checkout_router, "CheckoutStateMachine", _Exploding)

    resp = client.post("/v1/checkout", json={"customer_id": CUSTOMER})
    assert resp.status_code == 500
    assert resp.json()["detail"] == "Internal Server Error"
