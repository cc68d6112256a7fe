from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from packages.shared.schemas.events import EntityTypeV1, EventTypeV1
from services.api.app.db.deps import get_cart_storage_dep, get_db
from services.api.app.db.models import Product
from services.api.app.models.cart import (
    CartItemAdd,
    CartLineOut,
    CartOut,
    CartQuantityUpdate,
    ProductOut,
)
from services.api.app.routers.http_errors import raise_checkout_http_error
from services.api.app.services.cart_storage import CartStorage
from services.api.app.services.cart_store import CartStore, ProductSnapshot
from services.api.app.services.errors import UnknownProductError
from services.api.app.services.event_log import log_event
from sqlalchemy.orm import Session

router = APIRouter()


def _cart_out(cart: CartStore) -> CartOut:
    return CartOut(
        customer_id=cart.customer_id,
        items=[
            CartLineOut(
                product_id=line.product.id,
                name=line.product.name,
                price=line.product.price,
                quantity=line.quantity,
                line_total=line.line_total,
            )
            for line in cart.lines
        ],
        total=cart.total(),
        count=cart.count(),
    )


def _record_cart_change(db: Session, cart: CartStore, change: dict) -> None:
    log_event(
        db,
        customer_id=cart.customer_id,
        entity_type=EntityTypeV1.CART,
        entity_id=cart.customer_id,
        event_type=EventTypeV1.CART_UPDATED,
        event_payload={**change, "total": cart.total(), "count": cart.count()},
    )
    db.commit()


@router.get("/v1/cart", response_model=CartOut)
def get_cart(
    customer_id: str,
    storage: CartStorage = Depends(get_cart_storage_dep),
) -> CartOut:
    return _cart_out(CartStore.load(customer_id, storage))


@router.post("/v1/cart/items", response_model=CartOut)
def add_cart_item(
    payload: CartItemAdd,
    db: Session = Depends(get_db),
    storage: CartStorage = Depends(get_cart_storage_dep),
) -> CartOut:
    product = db.get(Product, payload.product_id)
    if product is None:
        raise_checkout_http_error(UnknownProductError(payload.product_id))

    cart = CartStore.load(payload.customer_id, storage)
    cart.add(ProductSnapshot(id=product.id, name=product.name, price=product.price))

    _record_cart_change(db, cart, {"action": "add", "product_id": product.id})
    return _cart_out(cart)


@router.put("/v1/cart/items/{product_id}", response_model=CartOut)
def set_cart_quantity(
    product_id: str,
    payload: CartQuantityUpdate,
    db: Session = Depends(get_db),
    storage: CartStorage = Depends(get_cart_storage_dep),
) -> CartOut:
    cart = CartStore.load(payload.customer_id, storage)
    cart.set_quantity(product_id, payload.quantity)

    _record_cart_change(
        db, cart, {"action": "set_quantity", "product_id": product_id, "quantity": payload.quantity}
    )
    return _cart_out(cart)


@router.delete("/v1/cart/items/{product_id}", response_model=CartOut)
def remove_cart_item(
    product_id: str,
    customer_id: str,
    db: Session = Depends(get_db),
    storage: CartStorage = Depends(get_cart_storage_dep),
) -> CartOut:
    cart = CartStore.load(customer_id, storage)
    cart.remove(product_id)

    _record_cart_change(db, cart, {"action": "remove", "product_id": product_id})
    return _cart_out(cart)


@router.delete("/v1/cart", response_model=CartOut)
def clear_cart(
    customer_id: str,
    db: Session = Depends(get_db),
    storage: CartStorage = Depends(get_cart_storage_dep),
) -> CartOut:
    cart = CartStore.load(customer_id, storage)
    cart.clear()

    _record_cart_change(db, cart, {"action": "clear"})
    return _cart_out(cart)


@router.get("/v1/products/{product_id}", response_model=ProductOut)
def get_product(product_id: str, db: Session = Depends(get_db)) -> ProductOut:
    product = db.get(Product, product_id)
    if product is None:
        raise HTTPException(status_code=404, detail="Product not found")

    return ProductOut(id=product.id, name=product.name, price=product.price, stock=product.stock)
