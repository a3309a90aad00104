from __future__ import annotations

import logging
import os
from typing import Any

from sqlalchemy import event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import create_engine

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    "postgresql+psycopg://access:access@db:5432/access_control",
)
DB_ECHO = os.getenv("DB_ECHO", "0") == "1"

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection: Any, _connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(url: str = DATABASE_URL) -> Engine:
    if url.startswith("sqlite"):
        sqlite_engine = create_engine(url, echo=DB_ECHO, connect_args={"check_same_thread": False})
        # Grant rows rely on cascading user and policy deletes.
        event.listen(sqlite_engine, "connect", _enable_sqlite_foreign_keys)
        return sqlite_engine
    return create_engine(url, echo=DB_ECHO, pool_pre_ping=True)


engine = build_engine()


def get_engine() -> Engine:
    return engine


def check_db_ready() -> bool:
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError:
        logger.warning("database readiness check failed", exc_info=True)
        return False
