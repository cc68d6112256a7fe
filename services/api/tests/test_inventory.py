from __future__ import annotations

from conftest import add_product, stock_of
from services.api.app.services.inventory import decrement_stock
from sqlalchemy.orm import Session


def test_decrement_applies_full_quantity(db: Session) -> None:
    add_product(db, "p1", 3500, 50)

    result = decrement_stock(db, "p1", 2)
    db.commit()

    assert result.applied == 2
    assert not result.clamped
    assert stock_of(db, "p1") == 48


def test_shortfall_takes_what_is_left(db: Session) -> None:
    add_product(db, "p3", 6000, 1)

    result = decrement_stock(db, "p3", 3)
    db.commit()

    assert result.applied == 1
    assert result.clamped
    assert stock_of(db, "p3") == 0


def test_stock_never_goes_negative(db: Session) -> None:
    add_product(db, "p5", 12000, 4)

    applied = []
    for _ in range(5):
        applied.append(decrement_stock(db, "p5", 3).applied)
        db.commit()

    assert applied == [3, 1, 0, 0, 0]
    assert stock_of(db, "p5") == 0


def test_unknown_product_is_reported_missing(db: Session) -> None:
    result = decrement_stock(db, "ghost", 1)

    assert result.missing
    assert result.applied == 0
    assert not result.clamped
