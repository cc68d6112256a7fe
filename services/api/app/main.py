"""Digiflow API service entrypoint."""

import asyncio

import structlog
from fastapi import FastAPI, Request

from services.api.app.db.database import db_session
from services.api.app.db.init_db import init_db
from services.api.app.log_config import clear_request_context, configure_logging
from services.api.app.routers.addresses import router as addresses_router
from services.api.app.routers.cart import router as cart_router
from services.api.app.routers.checkout import router as checkout_router
from services.api.app.routers.orders import router as orders_router
from services.api.app.routers.payments import router as payments_router
from services.api.app.services.cart_storage import get_cart_storage
from services.api.app.services.checkout import CheckoutStateMachine
from services.api.app.services.checkout_config import CheckoutConfig
from services.api.app.services.payment_factory import get_payment_gateway

logger = structlog.get_logger(__name__)

app = FastAPI(title="Digiflow API")

app.include_router(cart_router)
app.include_router(addresses_router)
app.include_router(checkout_router)
app.include_router(payments_router)
app.include_router(orders_router)

_sweeper: asyncio.Task | None = None


@app.middleware("http")
async def _request_context(request: Request, call_next):
    clear_request_context()
    return await call_next(request)


def expire_overdue_once() -> int:
    db = db_session()
    try:
        machine = CheckoutStateMachine(
            db,
            gateway=get_payment_gateway(),
            cart_storage=get_cart_storage(db),
            config=CheckoutConfig.from_env(),
        )
        return machine.expire_overdue()
    finally:
        db.close()


async def _sweep_expired(interval_seconds: float) -> None:
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            expired = await asyncio.to_thread(expire_overdue_once)
        except Exception:
            logger.exception("Expiry sweep failed")
            continue
        if expired:
            logger.info("Expired overdue payment requests", count=expired)


@app.on_event("startup")
async def _startup() -> None:
    global _sweeper

    configure_logging()
    init_db()

    interval = CheckoutConfig.from_env().expiry_sweep_seconds
    if interval > 0:
        _sweeper = asyncio.create_task(_sweep_expired(interval))
        logger.info("Expiry sweeper started", interval_seconds=interval)


@app.on_event("shutdown")
async def _shutdown() -> None:
    global _sweeper

    if _sweeper is None:
        return

    _sweeper.cancel()
    try:
        await _sweeper
    except asyncio.CancelledError:
        pass
    _sweeper = None


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}
