"""Shared event schema (v1).

The backend stores an append-only event log. Clients can consume these events to render
a checkout trail, and support staff use them to reconcile payments against orders.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EntityTypeV1(str, Enum):
    CART = "Cart"
    ADDRESS = "Address"
    CHECKOUT_SESSION = "CheckoutSession"
    PAYMENT_ATTEMPT = "PaymentAttempt"
    ORDER = "Order"
    PRODUCT = "Product"


class EventTypeV1(str, Enum):
    CART_UPDATED = "CART_UPDATED"
    ADDRESS_ADDED = "ADDRESS_ADDED"
    ADDRESS_UPDATED = "ADDRESS_UPDATED"
    ADDRESS_DEFAULT_CHANGED = "ADDRESS_DEFAULT_CHANGED"
    CHECKOUT_STARTED = "CHECKOUT_STARTED"
    SHIPPING_SELECTED = "SHIPPING_SELECTED"
    PAYMENT_REQUESTED = "PAYMENT_REQUESTED"
    PAYMENT_ACKNOWLEDGED = "PAYMENT_ACKNOWLEDGED"
    PAYMENT_REJECTED = "PAYMENT_REJECTED"
    PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"
    PAYMENT_ASSERTED = "PAYMENT_ASSERTED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    PAYMENT_UNMATCHED = "PAYMENT_UNMATCHED"
    ATTEMPT_SUPERSEDED = "ATTEMPT_SUPERSEDED"
    ATTEMPT_ABANDONED = "ATTEMPT_ABANDONED"
    ATTEMPT_EXPIRED = "ATTEMPT_EXPIRED"
    ORPHAN_CONFIRMATION_IGNORED = "ORPHAN_CONFIRMATION_IGNORED"
    ORDER_COMMITTED = "ORDER_COMMITTED"
    ORDER_VERIFIED = "ORDER_VERIFIED"
    ORDER_RECONCILIATION_REQUIRED = "ORDER_RECONCILIATION_REQUIRED"
    ORDER_STATUS_CHANGED = "ORDER_STATUS_CHANGED"
    STOCK_CLAMPED = "STOCK_CLAMPED"


class EventV1(BaseModel):
    id: str
    customer_id: str | None = None

    entity_type: EntityTypeV1
    entity_id: str

    event_type: EventTypeV1
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: str
