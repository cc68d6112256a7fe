from __future__ import annotations

import json

import pytest
from services.api.app.services.cart_storage import (
    InMemoryCartStorage,
    SqlCartStorage,
    cart_key,
    get_cart_storage,
)
from services.api.app.services.cart_store import (
    AddItem,
    CartLine,
    CartStore,
    ClearCart,
    ProductSnapshot,
    RemoveItem,
    SetQuantity,
    deserialize_lines,
    reduce_cart,
)
from sqlalchemy.orm import Session

POWER_BANK = ProductSnapshot(id="p1", name="Ultra-Slim Power Bank", price=3500)
HOODIE = ProductSnapshot(id="p4", name="Developer Hoodie", price=2500)


class _BrokenStorage:
    def load(self, key: str) -> str | None:
        raise OSError("disk unavailable")

    def save(self, key: str, payload: str) -> None:
        raise OSError("disk full")


def test_add_increments_existing_line() -> None:
    lines = reduce_cart((), AddItem(product=POWER_BANK))
    lines = reduce_cart(lines, AddItem(product=HOODIE))
    lines = reduce_cart(lines, AddItem(product=POWER_BANK))

    assert [(line.product.id, line.quantity) for line in lines] == [("p1", 2), ("p4", 1)]


def test_set_quantity_below_one_removes_line() -> None:
    lines = (CartLine(product=POWER_BANK, quantity=3), CartLine(product=HOODIE, quantity=1))

    assert reduce_cart(lines, SetQuantity(product_id="p1", quantity=0)) == reduce_cart(
        lines, RemoveItem(product_id="p1")
    )
    assert reduce_cart(lines, SetQuantity(product_id="p1", quantity=5))[0].quantity == 5


def test_set_quantity_for_absent_product_is_noop() -> None:
    lines = (CartLine(product=HOODIE, quantity=1),)
    assert reduce_cart(lines, SetQuantity(product_id="p9", quantity=4)) == lines


def test_clear_empties_cart() -> None:
    assert reduce_cart((CartLine(product=HOODIE, quantity=2),), ClearCart()) == ()


def test_total_and_count_follow_lines() -> None:
    cart = CartStore("cust-1", InMemoryCartStorage())
    cart.add(POWER_BANK)
    cart.add(POWER_BANK)
    cart.add(HOODIE)

    assert cart.total() == 3500 * 2 + 2500
    assert cart.count() == 3

    cart.remove("p1")
    assert cart.total() == 2500
    assert cart.count() == 1


def test_price_snapshot_is_kept_after_add() -> None:
    cart = CartStore("cust-1", InMemoryCartStorage())
    cart.add(POWER_BANK)
    cart.add(ProductSnapshot(id="p1", name="Ultra-Slim Power Bank", price=9999))

    assert cart.lines[0].product.price == 3500
    assert cart.lines[0].quantity == 2


def test_cart_survives_reload() -> None:
    storage = InMemoryCartStorage()
    cart = CartStore.load("cust-1", storage)
    cart.add(POWER_BANK)
    cart.set_quantity("p1", 3)

    reloaded = CartStore.load("cust-1", storage)
    assert reloaded.lines == (CartLine(product=POWER_BANK, quantity=3),)

    stored = json.loads(storage.load(cart_key("cust-1")) or "[]")
    assert stored == [
        {
            "productSnapshot": {"id": "p1", "name": "Ultra-Slim Power Bank", "price": 3500},
            "quantity": 3,
        }
    ]


@pytest.mark.parametrize(
    "payload",
    [
        "not json",
        '{"productSnapshot": {}}',
        '[{"productSnapshot": {"id": "p1", "price": "free"}, "quantity": 1}]',
        '[{"productSnapshot": {"id": "p1", "price": 100}, "quantity": 0}]',
    ],
)
def test_unreadable_payload_loads_as_empty_cart(payload: str) -> None:
    assert deserialize_lines(payload) == ()


def test_duplicate_stored_lines_are_merged() -> None:
    payload = json.dumps(
        [
            {"productSnapshot": {"id": "p1", "name": "A", "price": 100}, "quantity": 1},
            {"productSnapshot": {"id": "p1", "name": "A", "price": 100}, "quantity": 2},
        ]
    )
    lines = deserialize_lines(payload)
    assert len(lines) == 1
    assert lines[0].quantity == 3


def test_storage_failure_does_not_fail_mutation() -> None:
    cart = CartStore.load("cust-1", _BrokenStorage())
    assert cart.is_empty

    cart.add(POWER_BANK)
    assert cart.count() == 1
    assert cart.total() == 3500


def test_sql_storage_persists_snapshots(db: Session) -> None:
    storage = SqlCartStorage(db)
    cart = CartStore.load("cust-1", storage)
    cart.add(HOODIE)
    cart.add(HOODIE)

    db.expire_all()
    assert CartStore.load("cust-1", SqlCartStorage(db)).count() == 2
    assert CartStore.load("cust-2", SqlCartStorage(db)).is_empty


def test_get_cart_storage_rejects_unknown_mode(db: Session, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DIGIFLOW_CART_STORAGE", "redis")
    with pytest.raises(ValueError, match="Unknown DIGIFLOW_CART_STORAGE"):
        get_cart_storage(db)
