"""Shared checkout view schema (v1).

The storefront web client and the admin dashboard render these payloads. They should remain
stable and backwards compatible once shipped.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class CheckoutStepV1(str, Enum):
    CART = "CART"
    SHIPPING_SELECTED = "SHIPPING_SELECTED"
    PAYMENT_REQUESTED = "PAYMENT_REQUESTED"
    AWAITING_CONFIRMATION = "AWAITING_CONFIRMATION"
    COMMITTED = "COMMITTED"
    FAILED = "FAILED"


class CheckoutActionTypeV1(str, Enum):
    SELECT_ADDRESS = "SELECT_ADDRESS"
    PAY = "PAY"
    CONFIRM_PAYMENT = "CONFIRM_PAYMENT"
    RESEND = "RESEND"
    CANCEL = "CANCEL"
    RESTART = "RESTART"


class OrderStatusV1(str, Enum):
    PAID = "paid"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"


# Forward-only lifecycle. Index in this tuple is the rank of a status.
ORDER_STATUS_SEQUENCE: tuple[OrderStatusV1, ...] = (
    OrderStatusV1.PAID,
    OrderStatusV1.PROCESSING,
    OrderStatusV1.SHIPPED,
    OrderStatusV1.DELIVERED,
)


class CheckoutActionV1(BaseModel):
    type: CheckoutActionTypeV1
    label: str
    enabled: bool = True
    payload: dict[str, Any] = Field(default_factory=dict)


class CheckoutCardV1(BaseModel):
    version: str = "1"
    step: CheckoutStepV1

    title: str
    summary: str

    # Server-side IDs to support follow-up actions.
    session_id: str
    customer_id: str
    selected_address_id: str | None = None
    order_reference: str | None = None
    correlation_id: str | None = None
    order_id: str | None = None

    cart_total: int = 0
    cart_count: int = 0

    resend_in_seconds: int = 0
    confirmation_deadline: str | None = None
    failure_reason: str | None = None

    actions: list[CheckoutActionV1] = Field(default_factory=list, max_length=4)
    warnings: list[str] = Field(default_factory=list, max_length=8)
