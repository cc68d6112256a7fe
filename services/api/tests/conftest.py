from __future__ import annotations

from collections.abc import Callable, Iterator
from datetime import datetime, timedelta
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from services.api.app.db.models import Product
from services.api.app.services.payment_base import (
    InitiateResult,
    PaymentAccepted,
    PaymentStatus,
    StatusResult,
)
from sqlalchemy.orm import Session


@pytest.fixture()
def db(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Session]:
    db_path = tmp_path / "digiflow_test.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite+pysqlite:///{db_path}")
    monkeypatch.setenv("DIGIFLOW_DB_AUTO_CREATE", "true")

    from services.api.app.db.database import db_session
    from services.api.app.db.init_db import init_db

    init_db()
    session = db_session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(db: Session, monkeypatch: pytest.MonkeyPatch) -> Iterator[TestClient]:
    monkeypatch.setenv("DIGIFLOW_PAYMENT_GATEWAY", "mock")
    monkeypatch.setenv("DIGIFLOW_CART_STORAGE", "db")
    monkeypatch.setenv("DIGIFLOW_EXPIRY_SWEEP_SECONDS", "0")
    monkeypatch.setenv("DIGIFLOW_ALLOW_MANUAL_CONFIRMATION", "true")

    from services.api.app.main import app

    with TestClient(app) as c:
        yield c


def add_product(db: Session, product_id: str, price: int, stock: int, name: str = "") -> Product:
    product = Product(id=product_id, name=name or f"Product {product_id}", price=price, stock=stock)
    db.add(product)
    db.commit()
    return product


def stock_of(db: Session, product_id: str) -> int:
    db.expire_all()
    product = db.get(Product, product_id)
    assert product is not None
    return product.stock


class FakeClock:
    def __init__(self, start: datetime = datetime(2026, 3, 2, 9, 0, 0)) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


class ScriptedGateway:
    """Gateway double. Plays back `results` in order, then accepts everything."""

    provider = "MPESA_SCRIPTED"

    def __init__(
        self,
        results: list[InitiateResult | Exception] | None = None,
        *,
        on_initiate: Callable[[str], None] | None = None,
    ) -> None:
        self.results = list(results or [])
        self.calls: list[tuple[str, int, str]] = []
        self.statuses: dict[str, StatusResult] = {}
        self._on_initiate = on_initiate

    async def initiate(self, phone: str, amount: int, reference: str) -> InitiateResult:
        self.calls.append((phone, amount, reference))
        if self._on_initiate is not None:
            self._on_initiate(reference)

        if self.results:
            result = self.results.pop(0)
            if isinstance(result, Exception):
                raise result
            return result

        return PaymentAccepted(
            correlation_id=f"ws_CO_{len(self.calls)}",
            message="STK Push sent! Check your phone to enter PIN.",
            phone=phone,
        )

    async def query(self, correlation_id: str) -> StatusResult:
        return self.statuses.get(correlation_id, StatusResult(status=PaymentStatus.PENDING))
