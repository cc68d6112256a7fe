from __future__ import annotations

from uuid import uuid4

from packages.shared.schemas.events import EntityTypeV1, EventTypeV1, EventV1
from services.api.app.db.models import EventLog
from sqlalchemy.orm import Session


def log_event(
    db: Session,
    *,
    customer_id: str | None,
    entity_type: EntityTypeV1,
    entity_id: str,
    event_type: EventTypeV1,
    event_payload: dict,
) -> None:
    """Append an audit event to the unit of work. The caller commits."""

    db.add(
        EventLog(
            id=uuid4().hex,
            customer_id=customer_id,
            entity_type=entity_type.value,
            entity_id=entity_id,
            event_type=event_type.value,
            event_payload_json=event_payload,
        )
    )


def events_for(db: Session, entity_ids: list[str]) -> list[EventV1]:
    if not entity_ids:
        return []

    rows = (
        db.query(EventLog)
        .filter(EventLog.entity_id.in_(entity_ids))
        .order_by(EventLog.created_at.asc())
        .all()
    )

    return [
        EventV1(
            id=row.id,
            customer_id=row.customer_id,
            entity_type=EntityTypeV1(row.entity_type),
            entity_id=row.entity_id,
            event_type=EventTypeV1(row.event_type),
            payload=row.event_payload_json or {},
            created_at=row.created_at.isoformat(),
        )
        for row in rows
    ]
