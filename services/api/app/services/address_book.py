from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import uuid4

from packages.shared.schemas.events import EntityTypeV1, EventTypeV1
from services.api.app.db.models import Address
from services.api.app.services.errors import AddressNotFoundError, ValidationError
from services.api.app.services.event_log import log_event
from services.api.app.services.phone import local_digits
from sqlalchemy import func
from sqlalchemy.orm import Session

DEFAULT_REGION = "Nairobi"

REGIONS: dict[str, list[str]] = {
    "Nairobi": [
        "CBD",
        "Westlands",
        "Kilimani",
        "Karen",
        "Langata",
        "Kasarani",
        "Embakasi",
        "Roysambu",
    ],
    "Mombasa": ["Mombasa Island", "Nyali", "Bamburi", "Likoni", "Changamwe"],
    "Kisumu": ["Kisumu CBD", "Milimani", "Kondele", "Nyamasaria"],
    "Nakuru": ["Nakuru Town", "Njoro", "Naivasha", "Gilgil"],
    "Kiambu": ["Thika", "Ruiru", "Kiambu Town", "Kikuyu"],
    "Eldoret": ["Eldoret Town", "Langas", "Kapsoya"],
}


@dataclass(frozen=True, slots=True)
class AddressFields:
    recipient_name: str
    phone: str
    street: str
    city: str
    region: str = DEFAULT_REGION
    secondary_phone: str | None = None
    extra_instructions: str | None = None
    is_default: bool = False


class AddressBook:
    """Shipping addresses for one customer.

    At most one address carries `is_default`. The list is ordered by `position`, and a newly
    chosen default moves to the front.
    """

    def __init__(self, db: Session, customer_id: str) -> None:
        self._db = db
        self.customer_id = customer_id

    def list_addresses(self) -> list[Address]:
        return (
            self._db.query(Address)
            .filter(Address.customer_id == self.customer_id)
            .order_by(Address.position.asc(), Address.created_at.asc())
            .all()
        )

    def add_address(self, fields: AddressFields) -> Address:
        return self.upsert_address(None, fields)

    def upsert_address(self, address_id: str | None, fields: AddressFields) -> Address:
        """Create an address, or overwrite an existing one when `address_id` is given.

        Both paths go through the same required-field check and phone canonicalization.
        An existing default stays default even when `fields.is_default` is false.
        """

        values = _clean_fields(fields)

        if address_id is None:
            address = Address(
                id=uuid4().hex,
                customer_id=self.customer_id,
                is_default=False,
                position=self._back_position(),
                **values,
            )
            self._db.add(address)
            event_type = EventTypeV1.ADDRESS_ADDED
        else:
            address = self.select_address(address_id)
            for name, value in values.items():
                setattr(address, name, value)
            address.updated_at = datetime.utcnow()
            event_type = EventTypeV1.ADDRESS_UPDATED

        if fields.is_default and not address.is_default:
            self._make_default(address)

        log_event(
            self._db,
            customer_id=self.customer_id,
            entity_type=EntityTypeV1.ADDRESS,
            entity_id=address.id,
            event_type=event_type,
            event_payload={"is_default": address.is_default, "city": address.city},
        )
        self._db.commit()
        return address

    def select_address(self, address_id: str | None) -> Address:
        if not address_id:
            raise AddressNotFoundError(None)

        address = self._db.get(Address, address_id)
        if address is None or address.customer_id != self.customer_id:
            raise AddressNotFoundError(address_id)
        return address

    def set_default(self, address_id: str) -> Address:
        address = self.select_address(address_id)
        self._make_default(address)
        log_event(
            self._db,
            customer_id=self.customer_id,
            entity_type=EntityTypeV1.ADDRESS,
            entity_id=address.id,
            event_type=EventTypeV1.ADDRESS_DEFAULT_CHANGED,
            event_payload={},
        )
        self._db.commit()
        return address

    def default_address(self) -> Address | None:
        addresses = self.list_addresses()
        for address in addresses:
            if address.is_default:
                return address
        return addresses[0] if addresses else None

    def _make_default(self, address: Address) -> None:
        for other in self.list_addresses():
            if other.id != address.id and other.is_default:
                other.is_default = False
                other.updated_at = datetime.utcnow()

        address.is_default = True
        address.position = self._front_position()
        address.updated_at = datetime.utcnow()

    def _front_position(self) -> int:
        lowest = (
            self._db.query(func.min(Address.position))
            .filter(Address.customer_id == self.customer_id)
            .scalar()
        )
        return (lowest or 0) - 1

    def _back_position(self) -> int:
        highest = (
            self._db.query(func.max(Address.position))
            .filter(Address.customer_id == self.customer_id)
            .scalar()
        )
        return (highest if highest is not None else -1) + 1


def address_snapshot(address: Address) -> dict:
    """Copy stored with payments and orders so later edits don't rewrite history."""

    return {
        "id": address.id,
        "recipient_name": address.recipient_name,
        "phone": address.phone,
        "secondary_phone": address.secondary_phone,
        "street": address.street,
        "extra_instructions": address.extra_instructions,
        "region": address.region,
        "city": address.city,
    }


def _clean_fields(fields: AddressFields) -> dict:
    missing = [
        name
        for name, value in (
            ("recipient_name", fields.recipient_name),
            ("phone", fields.phone),
            ("street", fields.street),
            ("city", fields.city),
        )
        if not (value or "").strip()
    ]
    if missing:
        raise ValidationError(
            f"Missing required address fields: {', '.join(missing)}", fields=missing
        )

    phone = local_digits(fields.phone)
    if not phone:
        raise ValidationError("Phone number must contain digits", fields=["phone"])

    return {
        "recipient_name": fields.recipient_name.strip(),
        "phone": phone,
        "secondary_phone": local_digits(fields.secondary_phone or "") or None,
        "street": fields.street.strip(),
        "extra_instructions": (fields.extra_instructions or "").strip() or None,
        "region": (fields.region or "").strip() or DEFAULT_REGION,
        "city": fields.city.strip(),
    }
