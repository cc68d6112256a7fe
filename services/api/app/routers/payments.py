from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException
from services.api.app.db.deps import get_db
from services.api.app.models.checkout import CallbackAck, PaymentCallbackRequest
from services.api.app.routers.http_errors import raise_checkout_http_error
from services.api.app.services.cart_storage import get_cart_storage
from services.api.app.services.checkout import CheckoutStateMachine
from services.api.app.services.checkout_config import CheckoutConfig
from services.api.app.services.payment_factory import get_payment_gateway
from sqlalchemy.orm import Session

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post("/v1/payments/callback", response_model=CallbackAck)
def payment_callback(payload: PaymentCallbackRequest, db: Session = Depends(get_db)) -> CallbackAck:
    """Provider push for an STK request.

    Always acknowledged so the provider stops retrying, except when the order could not be
    stored; then a 503 asks the provider to deliver it again.
    """

    cb = payload.body.stk_callback
    logger.info(
        "Payment callback received",
        correlation_id=cb.checkout_request_id,
        result_code=cb.result_code,
    )

    try:
        machine = CheckoutStateMachine(
            db,
            gateway=get_payment_gateway(),
            cart_storage=get_cart_storage(db),
            config=CheckoutConfig.from_env(),
        )
    except ValueError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e

    try:
        outcome = machine.handle_callback(
            cb.checkout_request_id, cb.result_code, cb.result_desc or ""
        )
    except Exception as e:
        raise_checkout_http_error(e)

    return CallbackAck(outcome=outcome.value)
