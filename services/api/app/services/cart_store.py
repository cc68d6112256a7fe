"""Cart state as a reducer over discrete actions.

Every mutation goes through `reduce_cart`, a pure function, so each transition can be tested
on its own. `CartStore` owns the current lines for one customer and persists them after every
mutation on a best-effort basis.
"""

from __future__ import annotations

import json
from dataclasses import dataclass

import structlog
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from services.api.app.services.cart_storage import CartStorage, cart_key

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ProductSnapshot:
    """Product as it looked when added. Prices are not re-read from the catalog later."""

    id: str
    name: str
    price: int


@dataclass(frozen=True, slots=True)
class CartLine:
    product: ProductSnapshot
    quantity: int

    @property
    def line_total(self) -> int:
        return self.product.price * self.quantity


@dataclass(frozen=True, slots=True)
class AddItem:
    product: ProductSnapshot


@dataclass(frozen=True, slots=True)
class RemoveItem:
    product_id: str


@dataclass(frozen=True, slots=True)
class SetQuantity:
    product_id: str
    quantity: int


@dataclass(frozen=True, slots=True)
class ClearCart:
    pass


CartAction = AddItem | RemoveItem | SetQuantity | ClearCart


def reduce_cart(lines: tuple[CartLine, ...], action: CartAction) -> tuple[CartLine, ...]:
    if isinstance(action, AddItem):
        for idx, line in enumerate(lines):
            if line.product.id == action.product.id:
                bumped = CartLine(product=line.product, quantity=line.quantity + 1)
                return lines[:idx] + (bumped,) + lines[idx + 1 :]
        return lines + (CartLine(product=action.product, quantity=1),)

    if isinstance(action, RemoveItem):
        return tuple(line for line in lines if line.product.id != action.product_id)

    if isinstance(action, SetQuantity):
        if action.quantity < 1:
            return reduce_cart(lines, RemoveItem(product_id=action.product_id))
        return tuple(
            CartLine(product=line.product, quantity=action.quantity)
            if line.product.id == action.product_id
            else line
            for line in lines
        )

    if isinstance(action, ClearCart):
        return ()

    raise TypeError(f"Unknown cart action: {action!r}")


class _StoredProduct(BaseModel):
    id: str = Field(..., min_length=1)
    name: str = ""
    price: int = Field(..., ge=0)


class _StoredLine(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_snapshot: _StoredProduct = Field(..., alias="productSnapshot")
    quantity: int = Field(..., ge=1)


_STORED_CART = TypeAdapter(list[_StoredLine])


def serialize_lines(lines: tuple[CartLine, ...]) -> str:
    return json.dumps(
        [
            {
                "productSnapshot": {
                    "id": line.product.id,
                    "name": line.product.name,
                    "price": line.product.price,
                },
                "quantity": line.quantity,
            }
            for line in lines
        ]
    )


def deserialize_lines(payload: str | None) -> tuple[CartLine, ...]:
    """Parse a stored cart. Anything unreadable is treated as an empty cart."""

    if not payload:
        return ()

    try:
        stored = _STORED_CART.validate_json(payload)
    except PydanticValidationError as e:
        logger.warning("Discarding unreadable cart snapshot", errors=e.error_count())
        return ()

    # Duplicate ids collapse into one line, keeping the first price snapshot.
    merged: dict[str, CartLine] = {}
    for item in stored:
        snapshot = item.product_snapshot
        existing = merged.get(snapshot.id)
        if existing is not None:
            merged[snapshot.id] = CartLine(
                product=existing.product, quantity=existing.quantity + item.quantity
            )
            continue
        product = ProductSnapshot(id=snapshot.id, name=snapshot.name, price=snapshot.price)
        merged[snapshot.id] = CartLine(product=product, quantity=item.quantity)

    return tuple(merged.values())


class CartStore:
    def __init__(
        self,
        customer_id: str,
        storage: CartStorage,
        lines: tuple[CartLine, ...] = (),
    ) -> None:
        self.customer_id = customer_id
        self._storage = storage
        self._key = cart_key(customer_id)
        self._lines = lines

    @classmethod
    def load(cls, customer_id: str, storage: CartStorage) -> "CartStore":
        try:
            payload = storage.load(cart_key(customer_id))
        except Exception:
            logger.exception("Cart storage read failed", customer_id=customer_id)
            payload = None
        return cls(customer_id, storage, deserialize_lines(payload))

    @property
    def lines(self) -> tuple[CartLine, ...]:
        return self._lines

    @property
    def is_empty(self) -> bool:
        return not self._lines

    def total(self) -> int:
        return sum(line.line_total for line in self._lines)

    def count(self) -> int:
        return sum(line.quantity for line in self._lines)

    def add(self, product: ProductSnapshot) -> tuple[CartLine, ...]:
        return self.dispatch(AddItem(product=product))

    def remove(self, product_id: str) -> tuple[CartLine, ...]:
        return self.dispatch(RemoveItem(product_id=product_id))

    def set_quantity(self, product_id: str, quantity: int) -> tuple[CartLine, ...]:
        return self.dispatch(SetQuantity(product_id=product_id, quantity=quantity))

    def clear(self) -> tuple[CartLine, ...]:
        return self.dispatch(ClearCart())

    def dispatch(self, action: CartAction) -> tuple[CartLine, ...]:
        self._lines = reduce_cart(self._lines, action)
        self._persist()
        return self._lines

    def _persist(self) -> None:
        try:
            self._storage.save(self._key, serialize_lines(self._lines))
        except Exception:
            # The in-memory cart stays authoritative for this request.
            logger.warning(
                "Cart snapshot not persisted",
                customer_id=self.customer_id,
                exc_info=True,
            )
