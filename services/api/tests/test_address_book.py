from __future__ import annotations

import pytest
from services.api.app.services.address_book import AddressBook, AddressFields
from services.api.app.services.errors import AddressNotFoundError, ValidationError
from services.api.app.services.event_log import events_for
from sqlalchemy.orm import Session


def _fields(**overrides) -> AddressFields:
    values = {
        "recipient_name": "Jane Wanjiku",
        "phone": "0712 345 678",
        "street": "Moi Avenue",
        "city": "CBD",
    }
    values.update(overrides)
    return AddressFields(**values)


def test_add_address_requires_fields(db: Session) -> None:
    book = AddressBook(db, "cust-1")

    with pytest.raises(ValidationError) as exc:
        book.add_address(_fields(recipient_name="", street="  ", city=""))

    assert exc.value.fields == ["recipient_name", "street", "city"]
    assert book.list_addresses() == []


def test_add_address_stores_canonical_phone_and_default_region(db: Session) -> None:
    address = AddressBook(db, "cust-1").add_address(_fields(phone="+254 712-345-678", region=""))

    assert address.phone == "712345678"
    assert address.region == "Nairobi"


def test_new_default_clears_previous_default_and_moves_first(db: Session) -> None:
    book = AddressBook(db, "cust-1")
    home = book.add_address(_fields(street="Home", is_default=True))
    work = book.add_address(_fields(street="Office"))
    mum = book.add_address(_fields(street="Mum's place", is_default=True))

    listed = book.list_addresses()
    assert [a.id for a in listed] == [mum.id, home.id, work.id]
    assert [a.is_default for a in listed] == [True, False, False]
    assert book.default_address().id == mum.id


def test_default_address_falls_back_to_first(db: Session) -> None:
    book = AddressBook(db, "cust-1")
    assert book.default_address() is None

    first = book.add_address(_fields(street="First"))
    book.add_address(_fields(street="Second"))

    assert book.default_address().id == first.id


def test_set_default_keeps_single_default(db: Session) -> None:
    book = AddressBook(db, "cust-1")
    a = book.add_address(_fields(street="A", is_default=True))
    b = book.add_address(_fields(street="B"))

    book.set_default(b.id)

    db.expire_all()
    defaults = [x.id for x in book.list_addresses() if x.is_default]
    assert defaults == [b.id]
    assert book.list_addresses()[0].id == b.id
    assert a.is_default is False


def test_select_address_is_scoped_to_customer(db: Session) -> None:
    theirs = AddressBook(db, "cust-2").add_address(_fields())

    with pytest.raises(AddressNotFoundError):
        AddressBook(db, "cust-1").select_address(theirs.id)

    with pytest.raises(AddressNotFoundError, match="No shipping address selected"):
        AddressBook(db, "cust-1").select_address(None)


def test_upsert_rejects_blank_fields_and_keeps_stored_values(db: Session) -> None:
    book = AddressBook(db, "cust-1")
    home = book.add_address(_fields(street="Home"))

    with pytest.raises(ValidationError) as exc:
        book.upsert_address(
            home.id, _fields(recipient_name="", phone="+254 712-345-678", street="", city="")
        )

    assert exc.value.fields == ["recipient_name", "street", "city"]
    db.expire_all()
    stored = book.select_address(home.id)
    assert stored.recipient_name == "Jane Wanjiku"
    assert stored.street == "Home"


def test_upsert_overwrites_with_canonical_phone(db: Session) -> None:
    book = AddressBook(db, "cust-1")
    home = book.add_address(_fields(street="Home"))
    office = book.add_address(_fields(street="Office"))

    updated = book.upsert_address(
        office.id, _fields(street=" Kenyatta Avenue ", phone="+254 722-000-111", is_default=True)
    )

    assert updated.id == office.id
    assert updated.street == "Kenyatta Avenue"
    assert updated.phone == "722000111"
    assert [a.id for a in book.list_addresses()] == [office.id, home.id]
    assert sorted(e.event_type.value for e in events_for(db, [office.id])) == [
        "ADDRESS_ADDED",
        "ADDRESS_UPDATED",
    ]


def test_upsert_without_id_adds_address(db: Session) -> None:
    book = AddressBook(db, "cust-1")

    created = book.upsert_address(None, _fields(phone="0712 345 678"))

    assert book.list_addresses() == [created]
    assert created.phone == "712345678"


def test_upsert_unknown_address_raises(db: Session) -> None:
    with pytest.raises(AddressNotFoundError):
        AddressBook(db, "cust-1").upsert_address("missing", _fields())
