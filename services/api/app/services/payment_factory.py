from __future__ import annotations

import os

from services.api.app.services.payment_base import PaymentGateway
from services.api.app.services.payment_mock import MockPaymentGateway
from services.api.app.services.phone import DEFAULT_COUNTRY_CODE


def get_payment_gateway() -> PaymentGateway:
    """Select a gateway adapter based on env vars.

    Defaults to the mock adapter so tests and local dev never send a real STK push unless
    explicitly configured otherwise.
    """

    mode = os.getenv("DIGIFLOW_PAYMENT_GATEWAY", "mock").strip().lower()

    if mode == "mock":
        country_code = os.getenv("DIGIFLOW_COUNTRY_CODE", DEFAULT_COUNTRY_CODE).strip()
        return MockPaymentGateway(country_code=country_code)

    if mode == "http":
        from services.api.app.services.payment_http import HttpPaymentGateway

        return HttpPaymentGateway.from_env()

    raise ValueError(f"Unknown DIGIFLOW_PAYMENT_GATEWAY={mode!r}. Expected mock or http.")
