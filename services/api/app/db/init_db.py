from __future__ import annotations

import os

import structlog

from services.api.app.db.database import get_engine
from services.api.app.db.models import Base

logger = structlog.get_logger(__name__)


def init_db() -> None:
    if os.getenv("DIGIFLOW_DB_AUTO_CREATE", "true").strip().lower() not in {"1", "true", "yes", "y"}:
        logger.info("Skipping table creation", reason="DIGIFLOW_DB_AUTO_CREATE disabled")
        return

    engine = get_engine()
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables ready", tables=sorted(Base.metadata.tables))
