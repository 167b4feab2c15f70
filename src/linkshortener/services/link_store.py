from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from linkshortener.core.errors import (
    KeyGenerationError,
    NotFoundError,
    ReservedKeyError,
    StorageError,
)
from linkshortener.core.link_rules import generate_short_key, is_reserved_key
from linkshortener.db.dialect import upsert_insert
from linkshortener.db.models import Link

logger = logging.getLogger(__name__)

MAX_KEY_ATTEMPTS = 5

SORT_INSERTION = "created"
SORT_VISITS = "visits"


class LinkStore:
    """
    Persistent short_key -> target_url mapping.

    Every SQLAlchemyError is re-raised as StorageError so callers only deal
    with the domain taxonomy.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def upsert(self, key: Optional[str], target_url: str) -> Link:
        if key is None:
            return self._create_with_generated_key(target_url)
        if is_reserved_key(key):
            raise ReservedKeyError(key)

        now = datetime.now(timezone.utc)
        try:
            with self._session_factory.begin() as session:
                stmt = upsert_insert(session, Link).values(
                    short_key=key,
                    target_url=target_url,
                    visit_count=0,
                    created_at=now,
                )
                # visit_count is preserved on conflict
                stmt = stmt.on_conflict_do_update(
                    index_elements=["short_key"],
                    set_={
                        "target_url": stmt.excluded.target_url,
                        "created_at": stmt.excluded.created_at,
                    },
                ).returning(Link)
                link = session.scalars(
                    stmt, execution_options={"populate_existing": True}
                ).one()
        except SQLAlchemyError as exc:
            raise StorageError(f"upsert failed for {key!r}") from exc

        logger.info("Link %s -> %s saved", link.short_key, link.target_url)
        return link

    def _create_with_generated_key(self, target_url: str) -> Link:
        for attempt in range(1, MAX_KEY_ATTEMPTS + 1):
            key = generate_short_key()
            now = datetime.now(timezone.utc)
            try:
                with self._session_factory.begin() as session:
                    stmt = (
                        upsert_insert(session, Link)
                        .values(short_key=key, target_url=target_url, visit_count=0, created_at=now)
                        .on_conflict_do_nothing(index_elements=["short_key"])
                        .returning(Link)
                    )
                    link = session.scalars(stmt).first()
            except SQLAlchemyError as exc:
                raise StorageError("create with generated key failed") from exc

            if link is not None:
                logger.info("Link %s -> %s created", link.short_key, link.target_url)
                return link
            logger.warning("Generated key %s collided (attempt %d)", key, attempt)

        raise KeyGenerationError(f"no free key after {MAX_KEY_ATTEMPTS} attempts")

    def update_target(self, key: str, target_url: str) -> Link:
        """Change the target of an existing link; never creates one."""
        try:
            with self._session_factory.begin() as session:
                link = session.scalar(select(Link).where(Link.short_key == key))
                if link is None:
                    raise NotFoundError(key)
                link.target_url = target_url
                link.created_at = datetime.now(timezone.utc)
        except SQLAlchemyError as exc:
            raise StorageError(f"update failed for {key!r}") from exc
        return link

    def find_by_key(self, key: str) -> Link:
        try:
            with self._session_factory() as session:
                link = session.scalar(select(Link).where(Link.short_key == key))
        except SQLAlchemyError as exc:
            raise StorageError(f"lookup failed for {key!r}") from exc
        if link is None:
            raise NotFoundError(key)
        return link

    def list_all(self, sort_by: Optional[str] = None) -> list[Link]:
        stmt = select(Link)
        if sort_by == SORT_VISITS:
            stmt = stmt.order_by(Link.visit_count.desc(), Link.id)
        elif sort_by in (None, SORT_INSERTION):
            stmt = stmt.order_by(Link.id)
        else:
            raise ValueError(f"unknown sort {sort_by!r}")

        try:
            with self._session_factory() as session:
                return list(session.scalars(stmt))
        except SQLAlchemyError as exc:
            raise StorageError("listing links failed") from exc

    def delete(self, key: str) -> Link:
        try:
            with self._session_factory.begin() as session:
                link = session.scalar(select(Link).where(Link.short_key == key))
                if link is None:
                    raise NotFoundError(key)
                session.delete(link)
        except SQLAlchemyError as exc:
            raise StorageError(f"delete failed for {key!r}") from exc
        logger.info("Link %s deleted", key)
        return link

    def increment_visit(self, key: str) -> int:
        """Single UPDATE ... RETURNING, so concurrent callers never lose a count."""
        stmt = (
            update(Link)
            .where(Link.short_key == key)
            .values(visit_count=Link.visit_count + 1)
            .returning(Link.visit_count)
            .execution_options(synchronize_session=False)
        )
        try:
            with self._session_factory.begin() as session:
                new_count = session.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise StorageError(f"increment failed for {key!r}") from exc
        if new_count is None:
            raise NotFoundError(key)
        return new_count
