from __future__ import annotations

from collections.abc import Generator

from fastapi import Depends, HTTPException
from services.api.app.db.database import db_session
from services.api.app.services.cart_storage import CartStorage, get_cart_storage
from sqlalchemy.orm import Session


def get_db() -> Generator[Session, None, None]:
    db = db_session()
    try:
        yield db
    finally:
        db.close()


def get_cart_storage_dep(db: Session = Depends(get_db)) -> CartStorage:
    try:
        return get_cart_storage(db)
    except ValueError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e
