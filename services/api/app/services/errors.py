"""Checkout domain errors.

Routers translate these to HTTP responses; services never raise HTTPException themselves.
"""

from __future__ import annotations


class CheckoutError(Exception):
    """Base class for checkout errors."""


class ValidationError(CheckoutError):
    """Input is missing or inconsistent; the customer can correct it and retry."""

    def __init__(self, message: str, *, fields: list[str] | None = None) -> None:
        super().__init__(message)
        self.fields = fields or []


class EmptyCartError(ValidationError):
    def __init__(self, message: str = "Cart is empty") -> None:
        super().__init__(message, fields=["cart"])


class AddressNotFoundError(ValidationError):
    def __init__(self, address_id: str | None) -> None:
        if address_id:
            message = f"Address not found: {address_id}"
        else:
            message = "No shipping address selected"
        super().__init__(message, fields=["address_id"])
        self.address_id = address_id


class UnknownProductError(ValidationError):
    def __init__(self, product_id: str) -> None:
        super().__init__(f"Product not found: {product_id}", fields=["product_id"])
        self.product_id = product_id


class CartChangedError(ValidationError):
    def __init__(self, requested_amount: int, cart_total: int) -> None:
        super().__init__(
            "Cart changed after the payment request was sent. "
            f"requested={requested_amount} cart={cart_total}",
            fields=["cart"],
        )
        self.requested_amount = requested_amount
        self.cart_total = cart_total


class InvalidTransitionError(CheckoutError):
    def __init__(self, current_step: str, action: str, message: str | None = None) -> None:
        super().__init__(message or f"Cannot {action} while checkout is in step {current_step}")
        self.current_step = current_step
        self.action = action


class PaymentInFlightError(InvalidTransitionError):
    def __init__(self, current_step: str) -> None:
        super().__init__(
            current_step,
            "request payment",
            "A payment request is already in progress for this checkout",
        )


class ResendCooldownError(CheckoutError):
    def __init__(self, remaining_seconds: int) -> None:
        super().__init__(f"Resend is available in {remaining_seconds}s")
        self.remaining_seconds = remaining_seconds


class GatewayError(CheckoutError):
    """The payment gateway did not accept the request. Retryable."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class GatewayRejectedError(GatewayError):
    pass


class GatewayUnreachableError(GatewayError):
    pass


class CommitFailedError(CheckoutError):
    def __init__(self, reference: str, cause: str) -> None:
        super().__init__(f"Could not save order {reference}: {cause}")
        self.reference = reference


class ManualConfirmationDisabledError(CheckoutError):
    def __init__(self) -> None:
        super().__init__(
            "Manual payment confirmation is disabled. Wait for the payment provider to confirm."
        )


class SessionNotFoundError(CheckoutError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Checkout session not found: {session_id}")
        self.session_id = session_id


class OrderNotFoundError(CheckoutError):
    def __init__(self, order_id: str) -> None:
        super().__init__(f"Order not found: {order_id}")
        self.order_id = order_id


class OrderStatusError(CheckoutError):
    def __init__(self, current: str, requested: str) -> None:
        super().__init__(f"Order status cannot move from {current} to {requested}")
        self.current = current
        self.requested = requested


class StockConflictError(CheckoutError):
    def __init__(self, product_id: str) -> None:
        super().__init__(f"Stock for {product_id} kept changing; gave up after retries")
        self.product_id = product_id
