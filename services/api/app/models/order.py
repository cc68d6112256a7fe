from __future__ import annotations

from pydantic import BaseModel, Field


class OrderLineOut(BaseModel):
    product_id: str
    name: str
    price: int
    quantity: int
    line_total: int


class StockAdjustmentOut(BaseModel):
    product_id: str
    requested: int
    applied: int
    outcome: str


class OrderOut(BaseModel):
    id: str
    customer_id: str
    items: list[OrderLineOut]
    total: int
    status: str
    payment_method: str
    correlation_id: str | None = None

    payment_verified: bool
    needs_reconciliation: bool

    shipping_address: dict = Field(default_factory=dict)
    stock_adjustments: list[StockAdjustmentOut] = Field(default_factory=list)

    created_at: str
    updated_at: str


class OrderStatusUpdate(BaseModel):
    status: str = Field(..., min_length=1)
