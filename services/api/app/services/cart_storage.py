from __future__ import annotations

import os
from datetime import datetime
from typing import Protocol

from services.api.app.db.models import CartSnapshot
from sqlalchemy.orm import Session


def cart_key(customer_id: str) -> str:
    return f"digiflow.cart.{customer_id}"


class CartStorage(Protocol):
    def load(self, key: str) -> str | None: ...

    def save(self, key: str, payload: str) -> None: ...


class InMemoryCartStorage:
    def __init__(self) -> None:
        self._payloads: dict[str, str] = {}

    def load(self, key: str) -> str | None:
        return self._payloads.get(key)

    def save(self, key: str, payload: str) -> None:
        self._payloads[key] = payload


class SqlCartStorage:
    """Durable cart snapshots in the `cart_snapshots` table.

    `save` commits on its own so the snapshot survives even if the caller's later work fails.
    """

    def __init__(self, db: Session) -> None:
        self._db = db

    def load(self, key: str) -> str | None:
        row = self._db.get(CartSnapshot, key)
        return row.payload_text if row is not None else None

    def save(self, key: str, payload: str) -> None:
        try:
            row = self._db.get(CartSnapshot, key)
            if row is None:
                self._db.add(CartSnapshot(key=key, payload_text=payload))
            else:
                row.payload_text = payload
                row.updated_at = datetime.utcnow()
            self._db.commit()
        except Exception:
            self._db.rollback()
            raise


memory_storage = InMemoryCartStorage()


def get_cart_storage(db: Session) -> CartStorage:
    mode = os.getenv("DIGIFLOW_CART_STORAGE", "db").strip().lower()

    if mode == "db":
        return SqlCartStorage(db)

    if mode == "memory":
        return memory_storage

    raise ValueError(f"Unknown DIGIFLOW_CART_STORAGE={mode!r}. Expected db or memory.")
