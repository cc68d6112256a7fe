from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class CheckoutConfig:
    """Checkout timing and policy knobs.

    Env vars:
    - DIGIFLOW_RESEND_COOLDOWN_SECONDS (default: 60)
    - DIGIFLOW_CONFIRMATION_TIMEOUT_SECONDS (default: 300)
    - DIGIFLOW_ALLOW_MANUAL_CONFIRMATION (default: true)
    - DIGIFLOW_EXPIRY_SWEEP_SECONDS (default: 30, 0 disables the background sweep)
    """

    resend_cooldown_seconds: int = 60
    confirmation_timeout_seconds: int = 300
    allow_manual_confirmation: bool = True
    expiry_sweep_seconds: float = 30.0
    payment_method: str = "mpesa"

    @classmethod
    def from_env(cls) -> "CheckoutConfig":
        return cls(
            resend_cooldown_seconds=int(os.getenv("DIGIFLOW_RESEND_COOLDOWN_SECONDS", "60")),
            confirmation_timeout_seconds=int(
                os.getenv("DIGIFLOW_CONFIRMATION_TIMEOUT_SECONDS", "300")
            ),
            allow_manual_confirmation=_parse_bool(
                os.getenv("DIGIFLOW_ALLOW_MANUAL_CONFIRMATION", "true")
            ),
            expiry_sweep_seconds=float(os.getenv("DIGIFLOW_EXPIRY_SWEEP_SECONDS", "30")),
        )


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "y"}
