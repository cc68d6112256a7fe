from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from services.api.app.db.deps import get_db
from services.api.app.db.models import Order
from services.api.app.models.order import (
    OrderLineOut,
    OrderOut,
    OrderStatusUpdate,
    StockAdjustmentOut,
)
from services.api.app.routers.http_errors import raise_checkout_http_error
from services.api.app.services.order_committer import advance_order_status, stock_adjustments_for
from sqlalchemy.orm import Session

router = APIRouter()


def _order_out(db: Session, order: Order) -> OrderOut:
    adjustments = stock_adjustments_for(db, order.id)
    return OrderOut(
        id=order.id,
        customer_id=order.customer_id,
        items=[OrderLineOut(**item) for item in order.items_json],
        total=order.total,
        status=order.status,
        payment_method=order.payment_method,
        correlation_id=order.correlation_id,
        payment_verified=order.payment_verified,
        needs_reconciliation=order.needs_reconciliation,
        shipping_address=order.shipping_address_json or {},
        stock_adjustments=[
            StockAdjustmentOut(
                product_id=a.product_id,
                requested=a.requested,
                applied=a.applied,
                outcome=a.outcome,
            )
            for a in adjustments
        ],
        created_at=order.created_at.isoformat(),
        updated_at=order.updated_at.isoformat(),
    )


@router.get("/v1/orders", response_model=list[OrderOut])
def list_orders(customer_id: str, db: Session = Depends(get_db)) -> list[OrderOut]:
    orders = (
        db.query(Order)
        .filter(Order.customer_id == customer_id)
        .order_by(Order.created_at.desc())
        .limit(200)
        .all()
    )
    return [_order_out(db, o) for o in orders]


@router.get("/v1/orders/{order_id}", response_model=OrderOut)
def get_order(order_id: str, db: Session = Depends(get_db)) -> OrderOut:
    order = db.get(Order, order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return _order_out(db, order)


@router.patch("/v1/orders/{order_id}/status", response_model=OrderOut)
def update_order_status(
    order_id: str, payload: OrderStatusUpdate, db: Session = Depends(get_db)
) -> OrderOut:
    try:
        order = advance_order_status(db, order_id, payload.status)
    except Exception as e:
        raise_checkout_http_error(e)

    return _order_out(db, order)
