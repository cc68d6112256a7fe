"""Checkout state machine.

    CART -> SHIPPING_SELECTED -> PAYMENT_REQUESTED -> AWAITING_CONFIRMATION -> COMMITTED
                                         |                     |
                                         +------> FAILED <-----+

The step lives on the `checkout_sessions` row. Every transition is a conditional UPDATE on the
current step, so two requests racing out of the same step cannot both win. Each payment request
gets its own `PaymentAttempt` and order reference; confirmations are matched to the attempt by
reference (via correlation id), and anything that is not the session's current attempt is
ignored.

The async operations run their database work in worker threads; only the gateway call is awaited
on the event loop.
"""

from __future__ import annotations

import asyncio
import math
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from uuid import uuid4

import structlog

from packages.shared.schemas.checkout_v1 import (
    CheckoutActionTypeV1,
    CheckoutActionV1,
    CheckoutCardV1,
    CheckoutStepV1,
)
from packages.shared.schemas.events import EntityTypeV1, EventTypeV1, EventV1
from services.api.app.db.models import Address, CheckoutSession, Order, PaymentAttempt
from services.api.app.services.address_book import AddressBook, address_snapshot
from services.api.app.services.cart_storage import CartStorage
from services.api.app.services.cart_store import CartStore
from services.api.app.services.checkout_config import CheckoutConfig
from services.api.app.services.errors import (
    CartChangedError,
    EmptyCartError,
    GatewayRejectedError,
    GatewayUnreachableError,
    InvalidTransitionError,
    ManualConfirmationDisabledError,
    PaymentInFlightError,
    ResendCooldownError,
    SessionNotFoundError,
)
from services.api.app.services.event_log import events_for, log_event
from services.api.app.services.order_committer import OrderCommitter, flag_for_reconciliation
from services.api.app.services.payment_base import (
    InitiateResult,
    PaymentAccepted,
    PaymentGateway,
    PaymentRejected,
    PaymentStatus,
    RejectionKind,
    StatusResult,
)
from services.api.app.services.phone import redact
from sqlalchemy import update
from sqlalchemy.orm import Session

logger = structlog.get_logger(__name__)

ATTEMPT_REQUESTED = "REQUESTED"
ATTEMPT_ACKNOWLEDGED = "ACKNOWLEDGED"
ATTEMPT_REJECTED = "REJECTED"
ATTEMPT_SUPERSEDED = "SUPERSEDED"
ATTEMPT_ABANDONED = "ABANDONED"
ATTEMPT_EXPIRED = "EXPIRED"
ATTEMPT_CONFIRMED = "CONFIRMED"
ATTEMPT_ASSERTED = "ASSERTED"
ATTEMPT_FAILED = "FAILED"

_OPEN_ATTEMPT_STATUSES = (ATTEMPT_REQUESTED, ATTEMPT_ACKNOWLEDGED)
_IN_FLIGHT = (CheckoutStepV1.PAYMENT_REQUESTED, CheckoutStepV1.AWAITING_CONFIRMATION)

UNREACHABLE_REASON = "Connection to payment provider failed. Please try again."
TIMEOUT_REASON = "Payment confirmation timed out. Please try again."
PROVISIONAL_WARNING = (
    "Confirming payment yourself is provisional. The order is checked against the payment "
    "provider before it ships."
)


class CallbackOutcome(str, Enum):
    COMMITTED = "COMMITTED"
    FAILED = "FAILED"
    PENDING = "PENDING"
    IGNORED = "IGNORED"
    ALREADY_COMMITTED = "ALREADY_COMMITTED"
    UNMATCHED = "UNMATCHED"


@dataclass(frozen=True, slots=True)
class _OutboundRequest:
    session_id: str
    reference: str
    phone: str
    amount: int


def new_order_reference() -> str:
    return f"ORD-{int(time.time() * 1000)}-{secrets.token_hex(3).upper()}"


class CheckoutStateMachine:
    def __init__(
        self,
        db: Session,
        *,
        gateway: PaymentGateway,
        cart_storage: CartStorage,
        config: CheckoutConfig | None = None,
        now: Callable[[], datetime] = datetime.utcnow,
        reference_factory: Callable[[], str] = new_order_reference,
    ) -> None:
        self._db = db
        self._gateway = gateway
        self._cart_storage = cart_storage
        self._config = config or CheckoutConfig.from_env()
        self._now = now
        self._reference_factory = reference_factory

    def start(self, customer_id: str) -> CheckoutSession:
        """Return the customer's open checkout, or open a new one in CART."""

        session = (
            self._db.query(CheckoutSession)
            .filter(
                CheckoutSession.customer_id == customer_id,
                CheckoutSession.step != CheckoutStepV1.COMMITTED.value,
            )
            .order_by(CheckoutSession.created_at.desc())
            .first()
        )
        if session is not None:
            return self.expire_if_due(session)

        now = self._now()
        session = CheckoutSession(
            id=uuid4().hex,
            customer_id=customer_id,
            step=CheckoutStepV1.CART.value,
            created_at=now,
            updated_at=now,
        )
        self._db.add(session)
        log_event(
            self._db,
            customer_id=customer_id,
            entity_type=EntityTypeV1.CHECKOUT_SESSION,
            entity_id=session.id,
            event_type=EventTypeV1.CHECKOUT_STARTED,
            event_payload={},
        )
        self._db.commit()

        logger.info("Checkout started", session_id=session.id, customer_id=customer_id)
        return session

    def get(self, session_id: str) -> CheckoutSession:
        session = self._db.get(CheckoutSession, session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return self.expire_if_due(session)

    def cart_for(self, session: CheckoutSession) -> CartStore:
        return CartStore.load(session.customer_id, self._cart_storage)

    def trail(self, session: CheckoutSession) -> list[EventV1]:
        references = [
            a.reference
            for a in self._db.query(PaymentAttempt)
            .filter(PaymentAttempt.session_id == session.id)
            .all()
        ]
        entity_ids = [session.id, *references]
        if session.order_id and session.order_id not in entity_ids:
            entity_ids.append(session.order_id)
        return events_for(self._db, entity_ids)

    def select_shipping(self, session_id: str, address_id: str | None) -> CheckoutSession:
        session = self.get(session_id)
        allowed = (
            CheckoutStepV1.CART,
            CheckoutStepV1.SHIPPING_SELECTED,
            CheckoutStepV1.FAILED,
        )
        if CheckoutStepV1(session.step) not in allowed:
            raise InvalidTransitionError(session.step, "select a shipping address")

        if self.cart_for(session).is_empty:
            raise EmptyCartError()

        address = AddressBook(self._db, session.customer_id).select_address(address_id)

        self._transition(
            session,
            allowed,
            CheckoutStepV1.SHIPPING_SELECTED,
            "select a shipping address",
            selected_address_id=address.id,
            failure_reason=None,
            current_reference=None,
            correlation_id=None,
            resend_available_at=None,
            confirmation_deadline=None,
        )
        log_event(
            self._db,
            customer_id=session.customer_id,
            entity_type=EntityTypeV1.CHECKOUT_SESSION,
            entity_id=session.id,
            event_type=EventTypeV1.SHIPPING_SELECTED,
            event_payload={"address_id": address.id},
        )
        self._db.commit()
        return session

    async def request_payment(self, session_id: str) -> CheckoutSession:
        outbound = await asyncio.to_thread(self._open_request, session_id)
        return await self._send(outbound)

    async def resend(self, session_id: str) -> CheckoutSession:
        outbound = await asyncio.to_thread(self._open_resend, session_id)
        return await self._send(outbound)

    def abandon(self, session_id: str) -> CheckoutSession:
        """Stop waiting on the current payment request. The provider is not told."""

        session = self.get(session_id)
        if CheckoutStepV1(session.step) not in _IN_FLIGHT:
            raise InvalidTransitionError(session.step, "cancel the payment request")

        reference = session.current_reference
        self._transition(
            session,
            _IN_FLIGHT,
            CheckoutStepV1.SHIPPING_SELECTED,
            "cancel the payment request",
            current_reference=None,
            correlation_id=None,
            resend_available_at=None,
            confirmation_deadline=None,
        )
        self._close_attempt(reference, ATTEMPT_ABANDONED, EventTypeV1.ATTEMPT_ABANDONED)
        self._db.commit()

        logger.info("Payment request abandoned", session_id=session.id, reference=reference)
        return session

    def restart(self, session_id: str) -> CheckoutSession:
        session = self.get(session_id)
        if session.step != CheckoutStepV1.FAILED.value:
            raise InvalidTransitionError(session.step, "restart checkout")

        address = None
        if session.selected_address_id:
            address = self._db.get(Address, session.selected_address_id)
            if address is not None and address.customer_id != session.customer_id:
                address = None

        target = CheckoutStepV1.SHIPPING_SELECTED if address is not None else CheckoutStepV1.CART
        self._transition(
            session,
            (CheckoutStepV1.FAILED,),
            target,
            "restart checkout",
            selected_address_id=address.id if address is not None else None,
            failure_reason=None,
            current_reference=None,
            correlation_id=None,
            resend_available_at=None,
            confirmation_deadline=None,
        )
        self._db.commit()
        return session

    def assert_payment(self, session_id: str) -> Order:
        """The customer says they completed payment on their phone.

        Commits without provider confirmation. The order is marked unverified and flagged for
        reconciliation until a provider result arrives.
        """

        session = self.get(session_id)
        if session.step == CheckoutStepV1.COMMITTED.value and session.order_id:
            order = self._db.get(Order, session.order_id)
            if order is not None:
                return order

        if not self._config.allow_manual_confirmation:
            raise ManualConfirmationDisabledError()

        if session.step != CheckoutStepV1.AWAITING_CONFIRMATION.value:
            raise InvalidTransitionError(session.step, "confirm payment")

        attempt = self._db.get(PaymentAttempt, session.current_reference)
        if attempt is None:
            raise InvalidTransitionError(session.step, "confirm payment")

        return self._commit(session, attempt, verified=False)

    def handle_callback(
        self, correlation_id: str, result_code: int | str, result_desc: str = ""
    ) -> CallbackOutcome:
        attempt = (
            self._db.query(PaymentAttempt)
            .filter(PaymentAttempt.correlation_id == correlation_id)
            .first()
        )
        if attempt is None:
            self._ignore(None, correlation_id, "unknown correlation id")
            return CallbackOutcome.IGNORED

        success = str(result_code).strip() == "0"
        return self._resolve(attempt, success=success, description=result_desc)

    async def poll(self, session_id: str) -> CallbackOutcome:
        outcome, reference, correlation_id = await asyncio.to_thread(
            self._poll_target, session_id
        )
        if correlation_id is None:
            return outcome

        try:
            result = await self._gateway.query(correlation_id)
        except Exception:
            logger.warning(
                "Payment status query failed", session_id=session_id, exc_info=True
            )
            return CallbackOutcome.PENDING

        if result.status == PaymentStatus.PENDING:
            return CallbackOutcome.PENDING

        return await asyncio.to_thread(self._resolve_polled, reference, result)

    def _poll_target(
        self, session_id: str
    ) -> tuple[CallbackOutcome, str | None, str | None]:
        session = self.get(session_id)
        if session.step == CheckoutStepV1.COMMITTED.value:
            return CallbackOutcome.ALREADY_COMMITTED, None, None
        if session.step != CheckoutStepV1.AWAITING_CONFIRMATION.value or not session.correlation_id:
            return CallbackOutcome.PENDING, None, None
        return CallbackOutcome.PENDING, session.current_reference, session.correlation_id

    def _resolve_polled(self, reference: str | None, result: StatusResult) -> CallbackOutcome:
        attempt = self._db.get(PaymentAttempt, reference) if reference else None
        if attempt is None:
            return CallbackOutcome.PENDING

        return self._resolve(
            attempt, success=result.status == PaymentStatus.PAID, description=result.message
        )

    def expire_if_due(self, session: CheckoutSession) -> CheckoutSession:
        if (
            CheckoutStepV1(session.step) in _IN_FLIGHT
            and session.confirmation_deadline is not None
            and self._now() >= session.confirmation_deadline
        ):
            self._expire(session)
        return session

    def expire_overdue(self) -> int:
        overdue = (
            self._db.query(CheckoutSession)
            .filter(
                CheckoutSession.step.in_([s.value for s in _IN_FLIGHT]),
                CheckoutSession.confirmation_deadline.is_not(None),
                CheckoutSession.confirmation_deadline <= self._now(),
            )
            .all()
        )
        expired = 0
        for session in overdue:
            if self._expire(session):
                expired += 1
        return expired

    def resend_remaining(self, session: CheckoutSession) -> int:
        if session.resend_available_at is None:
            return 0
        remaining = (session.resend_available_at - self._now()).total_seconds()
        return max(0, math.ceil(remaining))

    def view(self, session: CheckoutSession) -> CheckoutCardV1:
        step = CheckoutStepV1(session.step)
        cart = self.cart_for(session)
        cart_total = cart.total()
        cart_count = cart.count()
        warnings: list[str] = []
        actions: list[CheckoutActionV1] = []
        resend_in = 0

        select_address = CheckoutActionV1(
            type=CheckoutActionTypeV1.SELECT_ADDRESS, label="Choose delivery address"
        )
        cancel = CheckoutActionV1(type=CheckoutActionTypeV1.CANCEL, label="Cancel payment")

        if step == CheckoutStepV1.CART:
            title = "Your cart"
            summary = f"{cart_count} item(s), KES {cart_total}"
            actions.append(select_address)
        elif step == CheckoutStepV1.SHIPPING_SELECTED:
            title = "Ready to pay"
            summary = f"Pay KES {cart_total} with M-Pesa"
            actions.append(select_address)
            actions.append(
                CheckoutActionV1(
                    type=CheckoutActionTypeV1.PAY,
                    label=f"Pay KES {cart_total}",
                    enabled=not cart.is_empty,
                )
            )
        elif step == CheckoutStepV1.PAYMENT_REQUESTED:
            title = "Sending payment request"
            summary = "Contacting the payment provider..."
            actions.append(cancel)
        elif step == CheckoutStepV1.AWAITING_CONFIRMATION:
            resend_in = self.resend_remaining(session)
            title = "Check your phone"
            summary = "Enter your M-Pesa PIN to complete payment."
            actions.append(
                CheckoutActionV1(
                    type=CheckoutActionTypeV1.CONFIRM_PAYMENT,
                    label="I have completed payment",
                    enabled=self._config.allow_manual_confirmation,
                )
            )
            actions.append(
                CheckoutActionV1(
                    type=CheckoutActionTypeV1.RESEND,
                    label="Resend request",
                    enabled=resend_in == 0,
                    payload={"available_in_seconds": resend_in},
                )
            )
            actions.append(cancel)
            if self._config.allow_manual_confirmation:
                warnings.append(PROVISIONAL_WARNING)
            attempt = self._db.get(PaymentAttempt, session.current_reference)
            if attempt is not None and attempt.amount != cart_total:
                warnings.append(
                    f"Cart changed after the payment request (requested KES {attempt.amount})."
                )
        elif step == CheckoutStepV1.COMMITTED:
            order = self._db.get(Order, session.order_id) if session.order_id else None
            title = "Order placed"
            summary = f"Order {session.order_id} confirmed."
            if order is not None:
                cart_total = order.total
                cart_count = sum(int(i.get("quantity", 0)) for i in order.items_json)
                if not order.payment_verified:
                    warnings.append(
                        "Payment has not been verified by the provider yet; this order will be "
                        "reconciled."
                    )
        else:
            title = "Payment failed"
            summary = session.failure_reason or "Payment did not complete."
            actions.append(
                CheckoutActionV1(type=CheckoutActionTypeV1.RESTART, label="Try again")
            )
            actions.append(select_address)

        return CheckoutCardV1(
            step=step,
            title=title,
            summary=summary,
            session_id=session.id,
            customer_id=session.customer_id,
            selected_address_id=session.selected_address_id,
            order_reference=session.current_reference,
            correlation_id=session.correlation_id,
            order_id=session.order_id,
            cart_total=cart_total,
            cart_count=cart_count,
            resend_in_seconds=resend_in,
            confirmation_deadline=(
                session.confirmation_deadline.isoformat()
                if session.confirmation_deadline is not None
                else None
            ),
            failure_reason=session.failure_reason,
            actions=actions,
            warnings=warnings,
        )

    def _transition(
        self,
        session: CheckoutSession,
        from_steps: tuple[CheckoutStepV1, ...],
        to_step: CheckoutStepV1,
        action: str,
        **values,
    ) -> None:
        result = self._db.execute(
            update(CheckoutSession)
            .where(
                CheckoutSession.id == session.id,
                CheckoutSession.step.in_([s.value for s in from_steps]),
            )
            .values(step=to_step.value, updated_at=self._now(), **values)
        )
        if result.rowcount == 1:
            return

        self._db.rollback()
        current = session.step
        if to_step == CheckoutStepV1.PAYMENT_REQUESTED and CheckoutStepV1(current) in _IN_FLIGHT:
            raise PaymentInFlightError(current)
        raise InvalidTransitionError(current, action)

    def _open_request(self, session_id: str) -> _OutboundRequest:
        session = self.get(session_id)
        step = CheckoutStepV1(session.step)
        if step in _IN_FLIGHT:
            raise PaymentInFlightError(session.step)
        if step != CheckoutStepV1.SHIPPING_SELECTED:
            raise InvalidTransitionError(session.step, "request payment")

        return self._open_attempt(session, from_step=CheckoutStepV1.SHIPPING_SELECTED)

    def _open_resend(self, session_id: str) -> _OutboundRequest:
        session = self.get(session_id)
        if session.step != CheckoutStepV1.AWAITING_CONFIRMATION.value:
            raise InvalidTransitionError(session.step, "resend the payment request")

        remaining = self.resend_remaining(session)
        if remaining > 0:
            raise ResendCooldownError(remaining)

        return self._open_attempt(
            session,
            from_step=CheckoutStepV1.AWAITING_CONFIRMATION,
            superseded_reference=session.current_reference,
        )

    def _open_attempt(
        self,
        session: CheckoutSession,
        *,
        from_step: CheckoutStepV1,
        superseded_reference: str | None = None,
    ) -> _OutboundRequest:
        """Claim the session for a new attempt and persist it before the gateway is called."""

        cart = self.cart_for(session)
        if cart.is_empty:
            raise EmptyCartError()

        address = AddressBook(self._db, session.customer_id).select_address(
            session.selected_address_id
        )

        reference = self._reference_factory()
        amount = cart.total()
        now = self._now()
        outbound = _OutboundRequest(
            session_id=session.id, reference=reference, phone=address.phone, amount=amount
        )

        self._transition(
            session,
            (from_step,),
            CheckoutStepV1.PAYMENT_REQUESTED,
            "request payment",
            current_reference=reference,
            correlation_id=None,
            failure_reason=None,
            resend_available_at=None,
            confirmation_deadline=now
            + timedelta(seconds=self._config.confirmation_timeout_seconds),
        )

        if superseded_reference:
            self._close_attempt(
                superseded_reference, ATTEMPT_SUPERSEDED, EventTypeV1.ATTEMPT_SUPERSEDED
            )

        self._db.add(
            PaymentAttempt(
                reference=reference,
                session_id=session.id,
                customer_id=session.customer_id,
                phone=outbound.phone,
                amount=amount,
                status=ATTEMPT_REQUESTED,
                shipping_address_json=address_snapshot(address),
                created_at=now,
            )
        )
        log_event(
            self._db,
            customer_id=session.customer_id,
            entity_type=EntityTypeV1.PAYMENT_ATTEMPT,
            entity_id=reference,
            event_type=EventTypeV1.PAYMENT_REQUESTED,
            event_payload={
                "session_id": session.id,
                "amount": amount,
                "supersedes": superseded_reference,
            },
        )
        self._db.commit()
        return outbound

    async def _send(self, outbound: _OutboundRequest) -> CheckoutSession:
        log = logger.bind(session_id=outbound.session_id, reference=outbound.reference)
        log.info("Requesting payment", amount=outbound.amount, phone=redact(outbound.phone))
        try:
            result = await self._gateway.initiate(
                outbound.phone, outbound.amount, outbound.reference
            )
        except Exception:
            log.exception("Payment gateway raised")
            result = PaymentRejected(reason=UNREACHABLE_REASON, kind=RejectionKind.UNREACHABLE)

        return await asyncio.to_thread(self._record_response, outbound, result)

    def _record_response(
        self, outbound: _OutboundRequest, result: InitiateResult
    ) -> CheckoutSession:
        reference = outbound.reference
        log = logger.bind(session_id=outbound.session_id, reference=reference)

        session = self._db.get(CheckoutSession, outbound.session_id)
        self._db.refresh(session)
        attempt = self._db.get(PaymentAttempt, reference)
        self._db.refresh(attempt)

        if attempt.status != ATTEMPT_REQUESTED or session.current_reference != reference:
            self._late_response(attempt, result)
            return session

        if isinstance(result, PaymentAccepted):
            try:
                self._transition(
                    session,
                    (CheckoutStepV1.PAYMENT_REQUESTED,),
                    CheckoutStepV1.AWAITING_CONFIRMATION,
                    "acknowledge payment request",
                    correlation_id=result.correlation_id,
                    resend_available_at=self._now()
                    + timedelta(seconds=self._config.resend_cooldown_seconds),
                )
            except InvalidTransitionError:
                self._late_response(self._db.get(PaymentAttempt, reference), result)
                return session

            attempt.status = ATTEMPT_ACKNOWLEDGED
            attempt.correlation_id = result.correlation_id
            attempt.gateway_message = result.message
            log_event(
                self._db,
                customer_id=session.customer_id,
                entity_type=EntityTypeV1.PAYMENT_ATTEMPT,
                entity_id=reference,
                event_type=EventTypeV1.PAYMENT_ACKNOWLEDGED,
                event_payload={"correlation_id": result.correlation_id},
            )
            self._db.commit()
            log.info("Payment request acknowledged", correlation_id=result.correlation_id)
            return session

        try:
            self._transition(
                session,
                (CheckoutStepV1.PAYMENT_REQUESTED,),
                CheckoutStepV1.SHIPPING_SELECTED,
                "record payment rejection",
                failure_reason=result.reason,
                current_reference=None,
                correlation_id=None,
                resend_available_at=None,
                confirmation_deadline=None,
            )
        except InvalidTransitionError:
            self._late_response(self._db.get(PaymentAttempt, reference), result)
            return session

        attempt.status = ATTEMPT_REJECTED
        attempt.gateway_message = result.reason
        attempt.resolved_at = self._now()
        log_event(
            self._db,
            customer_id=session.customer_id,
            entity_type=EntityTypeV1.PAYMENT_ATTEMPT,
            entity_id=reference,
            event_type=EventTypeV1.PAYMENT_REJECTED,
            event_payload={"reason": result.reason, "kind": result.kind.value},
        )
        self._db.commit()
        log.warning("Payment request rejected", reason=result.reason, kind=result.kind.value)

        if result.kind == RejectionKind.UNREACHABLE:
            raise GatewayUnreachableError(result.reason)
        raise GatewayRejectedError(result.reason)

    def _late_response(self, attempt: PaymentAttempt, result: InitiateResult) -> None:
        """The attempt was abandoned or expired while the gateway call was in flight."""

        if isinstance(result, PaymentAccepted):
            attempt.correlation_id = result.correlation_id
            attempt.gateway_message = result.message
        else:
            attempt.gateway_message = result.reason
        self._ignore(attempt, attempt.correlation_id, f"late gateway response ({attempt.status})")

    def _resolve(
        self, attempt: PaymentAttempt, *, success: bool, description: str
    ) -> CallbackOutcome:
        order = self._db.get(Order, attempt.reference)
        if order is not None:
            if success:
                if attempt.status == ATTEMPT_ASSERTED:
                    attempt.status = ATTEMPT_CONFIRMED
                OrderCommitter(self._db, now=self._now).verify(order, attempt.correlation_id)
                self._db.commit()
            else:
                flag_for_reconciliation(
                    self._db, order, description or "provider reported payment failure"
                )
            return CallbackOutcome.ALREADY_COMMITTED

        session = self._db.get(CheckoutSession, attempt.session_id)
        if session is not None:
            self.expire_if_due(session)
            self._db.refresh(attempt)

        if (
            session is None
            or CheckoutStepV1(session.step) not in _IN_FLIGHT
            or session.current_reference != attempt.reference
            or attempt.status not in _OPEN_ATTEMPT_STATUSES
        ):
            self._ignore(attempt, attempt.correlation_id, f"attempt is {attempt.status}")
            if success:
                self._record_unmatched(attempt)
            return CallbackOutcome.IGNORED

        if not success:
            self._fail(session, attempt, description or "Payment was not completed.")
            return CallbackOutcome.FAILED

        try:
            self._commit(session, attempt, verified=True)
        except (EmptyCartError, CartChangedError):
            return CallbackOutcome.UNMATCHED
        return CallbackOutcome.COMMITTED

    def _commit(self, session: CheckoutSession, attempt: PaymentAttempt, *, verified: bool) -> Order:
        cart = self.cart_for(session)
        if cart.is_empty or cart.total() != attempt.amount:
            log_event(
                self._db,
                customer_id=session.customer_id,
                entity_type=EntityTypeV1.PAYMENT_ATTEMPT,
                entity_id=attempt.reference,
                event_type=EventTypeV1.PAYMENT_UNMATCHED,
                event_payload={"amount": attempt.amount, "cart_total": cart.total()},
            )
            self._db.commit()
            logger.warning(
                "Payment could not be matched to the cart",
                session_id=session.id,
                reference=attempt.reference,
                amount=attempt.amount,
                cart_total=cart.total(),
            )
            if cart.is_empty:
                raise EmptyCartError("Cart is empty; nothing to commit for this payment")
            raise CartChangedError(attempt.amount, cart.total())

        reference = attempt.reference
        order = OrderCommitter(self._db, now=self._now).commit(
            session.customer_id,
            cart.lines,
            attempt.amount,
            attempt.shipping_address_json,
            reference,
            payment_verified=verified,
            correlation_id=attempt.correlation_id,
            payment_method=self._config.payment_method,
        )

        try:
            self._transition(
                session,
                _IN_FLIGHT,
                CheckoutStepV1.COMMITTED,
                "commit the order",
                order_id=order.id,
                failure_reason=None,
                resend_available_at=None,
                confirmation_deadline=None,
            )
        except InvalidTransitionError:
            if session.step == CheckoutStepV1.COMMITTED.value and session.order_id == order.id:
                return order
            raise

        attempt.status = ATTEMPT_CONFIRMED if verified else ATTEMPT_ASSERTED
        attempt.resolved_at = self._now()
        log_event(
            self._db,
            customer_id=session.customer_id,
            entity_type=EntityTypeV1.PAYMENT_ATTEMPT,
            entity_id=reference,
            event_type=(
                EventTypeV1.PAYMENT_CONFIRMED if verified else EventTypeV1.PAYMENT_ASSERTED
            ),
            event_payload={"order_id": order.id, "correlation_id": attempt.correlation_id},
        )
        self._db.commit()

        cart.clear()
        logger.info(
            "Checkout committed", session_id=session.id, order_id=order.id, verified=verified
        )
        return order

    def _fail(self, session: CheckoutSession, attempt: PaymentAttempt, reason: str) -> None:
        try:
            self._transition(
                session,
                _IN_FLIGHT,
                CheckoutStepV1.FAILED,
                "record payment failure",
                failure_reason=reason,
                resend_available_at=None,
                confirmation_deadline=None,
            )
        except InvalidTransitionError:
            return

        attempt.status = ATTEMPT_FAILED
        attempt.gateway_message = reason
        attempt.resolved_at = self._now()
        log_event(
            self._db,
            customer_id=session.customer_id,
            entity_type=EntityTypeV1.PAYMENT_ATTEMPT,
            entity_id=attempt.reference,
            event_type=EventTypeV1.PAYMENT_FAILED,
            event_payload={"reason": reason},
        )
        self._db.commit()
        logger.info("Payment failed", session_id=session.id, reference=attempt.reference)

    def _expire(self, session: CheckoutSession) -> bool:
        reference = session.current_reference
        try:
            self._transition(
                session,
                _IN_FLIGHT,
                CheckoutStepV1.FAILED,
                "expire the payment request",
                failure_reason=TIMEOUT_REASON,
                resend_available_at=None,
                confirmation_deadline=None,
            )
        except InvalidTransitionError:
            return False

        self._close_attempt(reference, ATTEMPT_EXPIRED, EventTypeV1.ATTEMPT_EXPIRED)
        self._db.commit()
        logger.info("Payment request expired", session_id=session.id, reference=reference)
        return True

    def _close_attempt(self, reference: str | None, status: str, event_type: EventTypeV1) -> None:
        if not reference:
            return
        attempt = self._db.get(PaymentAttempt, reference)
        if attempt is None or attempt.status not in _OPEN_ATTEMPT_STATUSES:
            return

        attempt.status = status
        attempt.resolved_at = self._now()
        log_event(
            self._db,
            customer_id=attempt.customer_id,
            entity_type=EntityTypeV1.PAYMENT_ATTEMPT,
            entity_id=reference,
            event_type=event_type,
            event_payload={"session_id": attempt.session_id},
        )

    def _record_unmatched(self, attempt: PaymentAttempt) -> None:
        """The provider took the money for an attempt that will never commit an order."""

        log_event(
            self._db,
            customer_id=attempt.customer_id,
            entity_type=EntityTypeV1.PAYMENT_ATTEMPT,
            entity_id=attempt.reference,
            event_type=EventTypeV1.PAYMENT_UNMATCHED,
            event_payload={
                "amount": attempt.amount,
                "attempt_status": attempt.status,
                "correlation_id": attempt.correlation_id,
            },
        )
        self._db.commit()
        logger.warning(
            "Payment received for a closed attempt",
            reference=attempt.reference,
            attempt_status=attempt.status,
            amount=attempt.amount,
        )

    def _ignore(self, attempt: PaymentAttempt | None, correlation_id: str | None, why: str) -> None:
        log_event(
            self._db,
            customer_id=attempt.customer_id if attempt is not None else None,
            entity_type=EntityTypeV1.PAYMENT_ATTEMPT,
            entity_id=attempt.reference if attempt is not None else (correlation_id or "unknown"),
            event_type=EventTypeV1.ORPHAN_CONFIRMATION_IGNORED,
            event_payload={"correlation_id": correlation_id, "reason": why},
        )
        self._db.commit()
        logger.warning("Ignoring orphaned payment result", correlation_id=correlation_id, reason=why)
