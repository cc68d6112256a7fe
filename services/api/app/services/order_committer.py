"""Turns a confirmed payment into exactly one order.

The order primary key is the payment order reference, so every commit path (provider
callback, status poll, manual confirmation, retries of any of them) converges on the same row.
Stock is decremented in the same transaction as the order insert, and only through
`inventory.decrement_stock`.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime
from uuid import uuid4

import structlog

from packages.shared.schemas.checkout_v1 import ORDER_STATUS_SEQUENCE, OrderStatusV1
from packages.shared.schemas.events import EntityTypeV1, EventTypeV1
from services.api.app.db.models import Order, StockAdjustment
from services.api.app.services.cart_store import CartLine
from services.api.app.services.errors import (
    CommitFailedError,
    EmptyCartError,
    OrderNotFoundError,
    OrderStatusError,
    StockConflictError,
    ValidationError,
)
from services.api.app.services.event_log import log_event
from services.api.app.services.inventory import StockDecrement, decrement_stock
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

logger = structlog.get_logger(__name__)

OUTCOME_APPLIED = "APPLIED"
OUTCOME_CLAMPED = "CLAMPED"
OUTCOME_MISSING_PRODUCT = "MISSING_PRODUCT"
OUTCOME_CONFLICT = "CONFLICT"


class OrderCommitter:
    def __init__(self, db: Session, *, now: Callable[[], datetime] = datetime.utcnow) -> None:
        self._db = db
        self._now = now

    def commit(
        self,
        customer_id: str,
        cart_snapshot: Sequence[CartLine],
        total: int,
        address: dict,
        order_reference: str,
        *,
        payment_verified: bool = False,
        correlation_id: str | None = None,
        payment_method: str = "mpesa",
    ) -> Order:
        existing = self._db.get(Order, order_reference)
        if existing is not None:
            if payment_verified:
                return self.verify(existing, correlation_id)
            return existing

        if not cart_snapshot:
            raise EmptyCartError("Cannot commit an order with no items")

        lines_total = sum(line.line_total for line in cart_snapshot)
        if lines_total != total:
            raise ValidationError(
                f"Order total {total} does not match line items ({lines_total})",
                fields=["total"],
            )

        now = self._now()
        order = Order(
            id=order_reference,
            customer_id=customer_id,
            items_json=[
                {
                    "product_id": line.product.id,
                    "name": line.product.name,
                    "price": line.product.price,
                    "quantity": line.quantity,
                    "line_total": line.line_total,
                }
                for line in cart_snapshot
            ],
            total=total,
            status=OrderStatusV1.PAID.value,
            payment_method=payment_method,
            correlation_id=correlation_id,
            payment_verified=payment_verified,
            needs_reconciliation=not payment_verified,
            shipping_address_json=dict(address),
            created_at=now,
            updated_at=now,
        )

        try:
            self._db.add(order)
            self._db.flush()
        except IntegrityError:
            # Another commit for the same reference won the insert.
            self._db.rollback()
            winner = self._db.get(Order, order_reference)
            if winner is None:
                raise CommitFailedError(order_reference, "duplicate insert without a winner")
            logger.info("Order already committed concurrently", order_id=order_reference)
            if payment_verified:
                return self.verify(winner, correlation_id)
            return winner
        except SQLAlchemyError as e:
            self._db.rollback()
            raise CommitFailedError(order_reference, str(e)) from e

        try:
            for line in cart_snapshot:
                self._apply_stock(order, line)

            if order.needs_reconciliation:
                log_event(
                    self._db,
                    customer_id=customer_id,
                    entity_type=EntityTypeV1.ORDER,
                    entity_id=order.id,
                    event_type=EventTypeV1.ORDER_RECONCILIATION_REQUIRED,
                    event_payload={"payment_verified": payment_verified},
                )

            log_event(
                self._db,
                customer_id=customer_id,
                entity_type=EntityTypeV1.ORDER,
                entity_id=order.id,
                event_type=EventTypeV1.ORDER_COMMITTED,
                event_payload={
                    "total": total,
                    "item_count": sum(line.quantity for line in cart_snapshot),
                    "payment_verified": payment_verified,
                    "correlation_id": correlation_id,
                },
            )
            self._db.commit()
        except SQLAlchemyError as e:
            self._db.rollback()
            raise CommitFailedError(order_reference, str(e)) from e

        logger.info(
            "Order committed",
            order_id=order.id,
            total=total,
            payment_verified=payment_verified,
            needs_reconciliation=order.needs_reconciliation,
        )
        return order

    def _apply_stock(self, order: Order, line: CartLine) -> None:
        product_id = line.product.id
        try:
            result = decrement_stock(self._db, product_id, line.quantity)
        except StockConflictError:
            logger.warning("Stock decrement gave up", order_id=order.id, product_id=product_id)
            result = None

        outcome = _outcome(result)
        applied = result.applied if result is not None else 0
        self._db.add(
            StockAdjustment(
                id=uuid4().hex,
                order_id=order.id,
                product_id=product_id,
                requested=line.quantity,
                applied=applied,
                outcome=outcome,
            )
        )

        if outcome == OUTCOME_APPLIED:
            return

        order.needs_reconciliation = True
        log_event(
            self._db,
            customer_id=order.customer_id,
            entity_type=EntityTypeV1.PRODUCT,
            entity_id=product_id,
            event_type=EventTypeV1.STOCK_CLAMPED,
            event_payload={
                "order_id": order.id,
                "requested": line.quantity,
                "applied": applied,
                "outcome": outcome,
            },
        )

    def verify(self, order: Order, correlation_id: str | None) -> Order:
        """Record provider confirmation for an order committed on the customer's word."""

        if order.payment_verified:
            return order

        order.payment_verified = True
        if order.correlation_id is None:
            order.correlation_id = correlation_id
        order.needs_reconciliation = _has_stock_issues(self._db, order.id)
        order.updated_at = self._now()

        log_event(
            self._db,
            customer_id=order.customer_id,
            entity_type=EntityTypeV1.ORDER,
            entity_id=order.id,
            event_type=EventTypeV1.ORDER_VERIFIED,
            event_payload={"correlation_id": order.correlation_id},
        )
        try:
            self._db.commit()
        except SQLAlchemyError as e:
            self._db.rollback()
            raise CommitFailedError(order.id, str(e)) from e

        logger.info("Order payment verified", order_id=order.id)
        return order


def _outcome(result: StockDecrement | None) -> str:
    if result is None:
        return OUTCOME_CONFLICT
    if result.missing:
        return OUTCOME_MISSING_PRODUCT
    if result.clamped:
        return OUTCOME_CLAMPED
    return OUTCOME_APPLIED


def _has_stock_issues(db: Session, order_id: str) -> bool:
    return (
        db.query(StockAdjustment)
        .filter(StockAdjustment.order_id == order_id, StockAdjustment.outcome != OUTCOME_APPLIED)
        .first()
        is not None
    )


def stock_adjustments_for(db: Session, order_id: str) -> list[StockAdjustment]:
    return (
        db.query(StockAdjustment)
        .filter(StockAdjustment.order_id == order_id)
        .order_by(StockAdjustment.created_at.asc())
        .all()
    )


def flag_for_reconciliation(db: Session, order: Order, reason: str) -> Order:
    """Mark a committed order for manual review, e.g. when the provider later reports failure."""

    if not order.needs_reconciliation:
        order.needs_reconciliation = True
        order.updated_at = datetime.utcnow()
    log_event(
        db,
        customer_id=order.customer_id,
        entity_type=EntityTypeV1.ORDER,
        entity_id=order.id,
        event_type=EventTypeV1.ORDER_RECONCILIATION_REQUIRED,
        event_payload={"reason": reason},
    )
    db.commit()
    logger.warning("Order flagged for reconciliation", order_id=order.id, reason=reason)
    return order


def advance_order_status(db: Session, order_id: str, status: str) -> Order:
    order = db.get(Order, order_id)
    if order is None:
        raise OrderNotFoundError(order_id)

    try:
        requested = OrderStatusV1(status)
    except ValueError as e:
        allowed = ", ".join(s.value for s in ORDER_STATUS_SEQUENCE)
        raise ValidationError(
            f"Unknown order status {status!r}. Expected one of: {allowed}", fields=["status"]
        ) from e

    current = OrderStatusV1(order.status)
    if ORDER_STATUS_SEQUENCE.index(requested) <= ORDER_STATUS_SEQUENCE.index(current):
        raise OrderStatusError(current.value, requested.value)

    order.status = requested.value
    order.updated_at = datetime.utcnow()
    log_event(
        db,
        customer_id=order.customer_id,
        entity_type=EntityTypeV1.ORDER,
        entity_id=order.id,
        event_type=EventTypeV1.ORDER_STATUS_CHANGED,
        event_payload={"from": current.value, "to": requested.value},
    )
    db.commit()

    logger.info("Order status changed", order_id=order.id, status=requested.value)
    return order
