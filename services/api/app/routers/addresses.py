from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from services.api.app.db.deps import get_db
from services.api.app.db.models import Address
from services.api.app.models.address import AddressCreate, AddressOut, DefaultAddressRequest
from services.api.app.routers.http_errors import raise_checkout_http_error
from services.api.app.services.address_book import REGIONS, AddressBook, AddressFields
from services.api.app.services.errors import AddressNotFoundError
from sqlalchemy.orm import Session

router = APIRouter()


def _address_out(a: Address) -> AddressOut:
    return AddressOut(
        id=a.id,
        customer_id=a.customer_id,
        recipient_name=a.recipient_name,
        phone=a.phone,
        secondary_phone=a.secondary_phone,
        street=a.street,
        extra_instructions=a.extra_instructions,
        region=a.region,
        city=a.city,
        is_default=a.is_default,
        created_at=a.created_at.isoformat(),
    )


@router.get("/v1/addresses", response_model=list[AddressOut])
def list_addresses(customer_id: str, db: Session = Depends(get_db)) -> list[AddressOut]:
    return [_address_out(a) for a in AddressBook(db, customer_id).list_addresses()]


def _fields(payload: AddressCreate) -> AddressFields:
    return AddressFields(
        recipient_name=payload.recipient_name,
        phone=payload.phone,
        street=payload.street,
        city=payload.city,
        region=payload.region,
        secondary_phone=payload.secondary_phone,
        extra_instructions=payload.extra_instructions,
        is_default=payload.is_default,
    )


@router.post("/v1/addresses", response_model=AddressOut)
def add_address(payload: AddressCreate, db: Session = Depends(get_db)) -> AddressOut:
    try:
        address = AddressBook(db, payload.customer_id).add_address(_fields(payload))
    except Exception as e:
        raise_checkout_http_error(e)

    return _address_out(address)


@router.put("/v1/addresses/{address_id}", response_model=AddressOut)
def update_address(
    address_id: str, payload: AddressCreate, db: Session = Depends(get_db)
) -> AddressOut:
    book = AddressBook(db, payload.customer_id)
    try:
        address = book.upsert_address(address_id, _fields(payload))
    except AddressNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except Exception as e:
        raise_checkout_http_error(e)

    return _address_out(address)


@router.get("/v1/addresses/default", response_model=AddressOut)
def get_default_address(customer_id: str, db: Session = Depends(get_db)) -> AddressOut:
    address = AddressBook(db, customer_id).default_address()
    if address is None:
        raise HTTPException(status_code=404, detail="No saved addresses")
    return _address_out(address)


@router.post("/v1/addresses/{address_id}/default", response_model=AddressOut)
def set_default_address(
    address_id: str, payload: DefaultAddressRequest, db: Session = Depends(get_db)
) -> AddressOut:
    try:
        address = AddressBook(db, payload.customer_id).set_default(address_id)
    except AddressNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e

    return _address_out(address)


@router.get("/v1/regions", response_model=dict[str, list[str]])
def list_regions() -> dict[str, list[str]]:
    return REGIONS
