from __future__ import annotations

from dataclasses import dataclass

import structlog

from services.api.app.db.models import Product
from services.api.app.services.errors import StockConflictError
from sqlalchemy import select, update
from sqlalchemy.orm import Session

logger = structlog.get_logger(__name__)

MAX_CAS_ATTEMPTS = 5


@dataclass(frozen=True, slots=True)
class StockDecrement:
    product_id: str
    requested: int
    applied: int
    missing: bool = False

    @property
    def clamped(self) -> bool:
        return not self.missing and self.applied < self.requested


def decrement_stock(db: Session, product_id: str, quantity: int) -> StockDecrement:
    """Take `quantity` units of stock, or whatever is left.

    Stock is only ever written through conditional UPDATEs, so concurrent commits can't
    read-modify-write over each other and the count never goes below zero. Runs inside the
    caller's transaction.
    """

    if quantity <= 0:
        return StockDecrement(product_id=product_id, requested=quantity, applied=0)

    result = db.execute(
        update(Product)
        .where(Product.id == product_id, Product.stock >= quantity)
        .values(stock=Product.stock - quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        return StockDecrement(product_id=product_id, requested=quantity, applied=quantity)

    for _ in range(MAX_CAS_ATTEMPTS):
        current = db.execute(
            select(Product.stock).where(Product.id == product_id)
        ).scalar_one_or_none()

        if current is None:
            logger.warning("Stock decrement for unknown product", product_id=product_id)
            return StockDecrement(product_id=product_id, requested=quantity, applied=0, missing=True)

        take = min(quantity, max(current, 0))
        result = db.execute(
            update(Product)
            .where(Product.id == product_id, Product.stock == current)
            .values(stock=current - take)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            if take < quantity:
                logger.warning(
                    "Stock clamped",
                    product_id=product_id,
                    requested=quantity,
                    applied=take,
                )
            return StockDecrement(product_id=product_id, requested=quantity, applied=take)

    raise StockConflictError(product_id)
