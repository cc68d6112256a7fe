import pytest
from services.api.app.services.checkout_config import CheckoutConfig


def test_checkout_config_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "DIGIFLOW_RESEND_COOLDOWN_SECONDS",
        "DIGIFLOW_CONFIRMATION_TIMEOUT_SECONDS",
        "DIGIFLOW_ALLOW_MANUAL_CONFIRMATION",
        "DIGIFLOW_EXPIRY_SWEEP_SECONDS",
    ):
        monkeypatch.delenv(name, raising=False)

    assert CheckoutConfig.from_env() == CheckoutConfig()


def test_checkout_config_reads_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DIGIFLOW_RESEND_COOLDOWN_SECONDS", "45")
    monkeypatch.setenv("DIGIFLOW_CONFIRMATION_TIMEOUT_SECONDS", "120")
    monkeypatch.setenv("DIGIFLOW_ALLOW_MANUAL_CONFIRMATION", "No")
    monkeypatch.setenv("DIGIFLOW_EXPIRY_SWEEP_SECONDS", "0")

    config = CheckoutConfig.from_env()

    assert config.resend_cooldown_seconds == 45
    assert config.confirmation_timeout_seconds == 120
    assert config.allow_manual_confirmation is False
    assert config.expiry_sweep_seconds == 0


def test_country_code_belongs_to_the_gateway_not_checkout() -> None:
    # Phone normalization is owned by the gateway adapters and the address book.
    assert not hasattr(CheckoutConfig(), "country_code")
