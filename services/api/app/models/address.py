from __future__ import annotations

from pydantic import BaseModel, Field


class AddressCreate(BaseModel):
    # Required fields are checked by the address book so the error names every missing field.
    customer_id: str = Field(..., min_length=1)
    recipient_name: str = ""
    phone: str = ""
    secondary_phone: str | None = None
    street: str = ""
    extra_instructions: str | None = None
    region: str = "Nairobi"
    city: str = ""
    is_default: bool = False


class AddressOut(BaseModel):
    id: str
    customer_id: str
    recipient_name: str
    phone: str
    secondary_phone: str | None = None
    street: str
    extra_instructions: str | None = None
    region: str
    city: str
    is_default: bool
    created_at: str


class DefaultAddressRequest(BaseModel):
    customer_id: str = Field(..., min_length=1)
