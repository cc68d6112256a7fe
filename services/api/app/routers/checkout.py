from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, HTTPException
from packages.shared.schemas.checkout_v1 import CheckoutCardV1
from packages.shared.schemas.events import EventV1
from services.api.app.db.deps import get_db
from services.api.app.log_config import bind_request_context
from services.api.app.models.checkout import CheckoutStartRequest, ShippingSelectRequest
from services.api.app.routers.http_errors import raise_checkout_http_error
from services.api.app.services.cart_storage import get_cart_storage
from services.api.app.services.checkout import CheckoutStateMachine
from services.api.app.services.checkout_config import CheckoutConfig
from services.api.app.services.payment_factory import get_payment_gateway
from sqlalchemy.orm import Session

router = APIRouter()


def _state_machine(db: Session) -> CheckoutStateMachine:
    try:
        gateway = get_payment_gateway()
        cart_storage = get_cart_storage(db)
    except ValueError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e

    return CheckoutStateMachine(
        db, gateway=gateway, cart_storage=cart_storage, config=CheckoutConfig.from_env()
    )


@router.post("/v1/checkout", response_model=CheckoutCardV1)
def start_checkout(payload: CheckoutStartRequest, db: Session = Depends(get_db)) -> CheckoutCardV1:
    machine = _state_machine(db)
    try:
        session = machine.start(payload.customer_id)
    except Exception as e:
        raise_checkout_http_error(e)

    bind_request_context(session_id=session.id)
    return machine.view(session)


@router.get("/v1/checkout/{session_id}", response_model=CheckoutCardV1)
def get_checkout(session_id: str, db: Session = Depends(get_db)) -> CheckoutCardV1:
    bind_request_context(session_id=session_id)
    machine = _state_machine(db)
    try:
        session = machine.get(session_id)
    except Exception as e:
        raise_checkout_http_error(e)

    return machine.view(session)


@router.post("/v1/checkout/{session_id}/shipping", response_model=CheckoutCardV1)
def select_shipping(
    session_id: str, payload: ShippingSelectRequest, db: Session = Depends(get_db)
) -> CheckoutCardV1:
    bind_request_context(session_id=session_id)
    machine = _state_machine(db)
    try:
        session = machine.select_shipping(session_id, payload.address_id)
    except Exception as e:
        raise_checkout_http_error(e)

    return machine.view(session)


@router.post("/v1/checkout/{session_id}/pay", response_model=CheckoutCardV1)
async def request_payment(session_id: str, db: Session = Depends(get_db)) -> CheckoutCardV1:
    bind_request_context(session_id=session_id)
    machine = _state_machine(db)
    try:
        session = await machine.request_payment(session_id)
    except Exception as e:
        raise_checkout_http_error(e)

    return await asyncio.to_thread(machine.view, session)


@router.post("/v1/checkout/{session_id}/resend", response_model=CheckoutCardV1)
async def resend_payment(session_id: str, db: Session = Depends(get_db)) -> CheckoutCardV1:
    bind_request_context(session_id=session_id)
    machine = _state_machine(db)
    try:
        session = await machine.resend(session_id)
    except Exception as e:
        raise_checkout_http_error(e)

    return await asyncio.to_thread(machine.view, session)


@router.post("/v1/checkout/{session_id}/cancel", response_model=CheckoutCardV1)
def cancel_payment(session_id: str, db: Session = Depends(get_db)) -> CheckoutCardV1:
    bind_request_context(session_id=session_id)
    machine = _state_machine(db)
    try:
        session = machine.abandon(session_id)
    except Exception as e:
        raise_checkout_http_error(e)

    return machine.view(session)


@router.post("/v1/checkout/{session_id}/restart", response_model=CheckoutCardV1)
def restart_checkout(session_id: str, db: Session = Depends(get_db)) -> CheckoutCardV1:
    bind_request_context(session_id=session_id)
    machine = _state_machine(db)
    try:
        session = machine.restart(session_id)
    except Exception as e:
        raise_checkout_http_error(e)

    return machine.view(session)


@router.post("/v1/checkout/{session_id}/poll", response_model=CheckoutCardV1)
async def poll_payment(session_id: str, db: Session = Depends(get_db)) -> CheckoutCardV1:
    bind_request_context(session_id=session_id)
    machine = _state_machine(db)
    try:
        await machine.poll(session_id)
        session = await asyncio.to_thread(machine.get, session_id)
    except Exception as e:
        raise_checkout_http_error(e)

    return await asyncio.to_thread(machine.view, session)


@router.post("/v1/checkout/{session_id}/confirm", response_model=CheckoutCardV1)
def confirm_payment(session_id: str, db: Session = Depends(get_db)) -> CheckoutCardV1:
    """Customer-asserted "I have completed payment". Commits a provisional, unverified order."""

    bind_request_context(session_id=session_id)
    machine = _state_machine(db)
    try:
        machine.assert_payment(session_id)
        session = machine.get(session_id)
    except Exception as e:
        raise_checkout_http_error(e)

    return machine.view(session)


@router.get("/v1/checkout/{session_id}/events", response_model=list[EventV1])
def get_checkout_events(session_id: str, db: Session = Depends(get_db)) -> list[EventV1]:
    machine = _state_machine(db)
    try:
        session = machine.get(session_id)
    except Exception as e:
        raise_checkout_http_error(e)

    return machine.trail(session)
