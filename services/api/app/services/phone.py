from __future__ import annotations

import re

DEFAULT_COUNTRY_CODE = "254"
SUBSCRIBER_DIGITS = 9

_NON_DIGITS = re.compile(r"\D")


class InvalidPhoneError(ValueError):
    def __init__(self, raw: str) -> None:
        super().__init__(f"Invalid phone number: {redact(raw)!r}")


def normalize_msisdn(raw: str, country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    """Return the country-code-prefixed digits the mobile-money provider expects.

    "0712 345 678", "712345678" and "+254-712-345-678" all become "254712345678".
    """

    digits = _NON_DIGITS.sub("", raw or "")

    if digits.startswith("0"):
        digits = country_code + digits[1:]
    elif len(digits) == SUBSCRIBER_DIGITS:
        digits = country_code + digits

    if not digits.startswith(country_code) or len(digits) != len(country_code) + SUBSCRIBER_DIGITS:
        raise InvalidPhoneError(raw)

    return digits


def local_digits(raw: str, country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    """Canonical form stored on addresses: digits only, no country prefix, no trunk zero.

    Lenient on length; the gateway adapter rejects malformed numbers before dialing out.
    """

    digits = _NON_DIGITS.sub("", raw or "")
    if digits.startswith(country_code) and len(digits) > SUBSCRIBER_DIGITS:
        digits = digits[len(country_code) :]
    return digits.lstrip("0")


def redact(raw: str) -> str:
    digits = _NON_DIGITS.sub("", raw or "")
    if len(digits) <= 4:
        return "*" * len(digits)
    return "*" * (len(digits) - 4) + digits[-4:]
