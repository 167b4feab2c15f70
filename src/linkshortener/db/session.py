from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from linkshortener.core.config import settings
from linkshortener.db.base import Base
from linkshortener.db import models  # noqa: F401  (registers tables on Base)

logger = logging.getLogger(__name__)


def _connect_args(database_url: str, timeout_seconds: float) -> dict[str, Any]:
    if database_url.startswith("sqlite"):
        # busy timeout: writers wait for the lock instead of failing immediately
        return {"check_same_thread": False, "timeout": timeout_seconds}
    if database_url.startswith("postgresql"):
        return {
            "connect_timeout": max(1, int(timeout_seconds)),
            "options": f"-c statement_timeout={int(timeout_seconds * 1000)}",
        }
    return {}


def build_engine(database_url: str, timeout_seconds: float) -> Engine:
    return create_engine(
        database_url,
        connect_args=_connect_args(database_url, timeout_seconds),
        pool_pre_ping=True,
    )


class Database:
    """
    Owns the engine and session factory.

    init() is idempotent and creates missing tables; is_ready() is the
    readiness probe exposed on /ready.
    """

    def __init__(self, database_url: str, timeout_seconds: float = 5.0) -> None:
        self.url = database_url
        self.engine = build_engine(database_url, timeout_seconds)
        self.session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def init(self) -> None:
        if self._initialized:
            return
        Base.metadata.create_all(bind=self.engine)
        self._initialized = True
        logger.info("Database initialized (%s)", self.engine.url.render_as_string(hide_password=True))

    def is_ready(self) -> bool:
        if not self._initialized:
            return False
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.warning("Database readiness check failed", exc_info=True)
            return False
        return True

    def dispose(self) -> None:
        self.engine.dispose()
        self._initialized = False


database = Database(settings.database_url, settings.storage_timeout_seconds)


def get_database() -> Database:
    return database
