from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from linkshortener.core.errors import NotFoundError, StorageError, TrackingPersistError
from linkshortener.db.dialect import upsert_insert
from linkshortener.db.models import IP_MAX, REFERRER_MAX, USER_AGENT_MAX, TrackingRecord, Visit
from linkshortener.schemas.tracking import (
    UNKNOWN_IP,
    DeviceInfo,
    GeoInfo,
    NameVersion,
    TrackingRecordResponse,
    UserAgentInfo,
    VisitEntry,
)

logger = logging.getLogger(__name__)


def _clip(value: Optional[str], limit: int) -> Optional[str]:
    if value is None or len(value) <= limit:
        return value
    return value[:limit]


def visit_to_row(entry: VisitEntry, *, clip: bool = False) -> dict[str, Any]:
    """Column values for a visits row. clip=True trims strings to column limits."""
    ua = entry.user_agent_info
    raw = ua.raw
    referrer = entry.referrer
    ip = entry.ip_address
    if clip:
        if len(ip) > IP_MAX:
            ip = UNKNOWN_IP
        raw = _clip(raw, USER_AGENT_MAX)
        referrer = _clip(referrer, REFERRER_MAX)

    parsed = None
    if not entry.is_degraded:
        parsed = ua.model_dump(exclude={"raw"})

    return {
        "visit_number": entry.visit_number,
        "visited_at": entry.timestamp,
        "ip_address": ip,
        "user_agent": raw,
        "user_agent_info": parsed,
        "geographic": entry.geographic.model_dump() if entry.geographic else None,
        "is_bot": entry.is_bot,
        "referrer": referrer,
        "accept_language": entry.accept_language,
        "accept_encoding": entry.accept_encoding,
        "is_degraded": entry.is_degraded,
    }


def row_to_visit(row: Visit) -> VisitEntry:
    parsed = row.user_agent_info or {}
    ua = UserAgentInfo(
        raw=row.user_agent,
        browser=NameVersion(**(parsed.get("browser") or {})),
        os=NameVersion(**(parsed.get("os") or {})),
        device=DeviceInfo(**(parsed.get("device") or {})),
        engine=NameVersion(**(parsed.get("engine") or {})),
        cpu_architecture=parsed.get("cpu_architecture"),
    )
    return VisitEntry(
        visit_number=row.visit_number,
        timestamp=row.visited_at,
        ip_address=row.ip_address,
        geographic=GeoInfo(**row.geographic) if row.geographic else None,
        user_agent_info=ua,
        is_bot=row.is_bot,
        referrer=row.referrer,
        accept_language=row.accept_language,
        accept_encoding=row.accept_encoding,
        is_degraded=row.is_degraded,
    )


class TrackingStore:
    """
    Per-key visit log.

    The parent record is upserted and each visit is its own INSERT, so
    concurrent appends for the same key are additive.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def _write(self, short_key: str, target_url: str, row: dict[str, Any]) -> None:
        now = datetime.now(timezone.utc)
        with self._session_factory.begin() as session:
            stmt = upsert_insert(session, TrackingRecord).values(
                short_key=short_key,
                target_url=target_url,
                created_at=now,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["short_key"],
                set_={
                    "target_url": stmt.excluded.target_url,
                    "updated_at": stmt.excluded.updated_at,
                },
            ).returning(TrackingRecord.id)
            record_id = session.execute(stmt).scalar_one()
            session.add(Visit(tracking_record_id=record_id, **row))

    def append_visit(self, short_key: str, target_url: str, entry: VisitEntry) -> None:
        """
        Append one visit, falling back to a degraded entry once.

        Raises TrackingPersistError when the degraded write fails as well; the
        redirector logs and absorbs it.
        """
        try:
            self._write(short_key, target_url, visit_to_row(entry))
            return
        except (SQLAlchemyError, ValueError, TypeError) as exc:
            logger.warning(
                "Full visit #%d for %s not stored (%s); retrying degraded",
                entry.visit_number, short_key, exc,
            )

        degraded = entry.degraded()
        try:
            self._write(short_key, target_url, visit_to_row(degraded, clip=True))
        except (SQLAlchemyError, ValueError, TypeError) as exc:
            logger.error(
                "Visit #%d for %s lost: degraded write failed (%s)",
                entry.visit_number, short_key, exc,
            )
            raise TrackingPersistError(f"visit #{entry.visit_number} for {short_key!r} lost") from exc

        logger.info("Stored degraded visit #%d for %s", entry.visit_number, short_key)

    def find_by_key(self, short_key: str) -> TrackingRecordResponse:
        stmt = (
            select(TrackingRecord)
            .where(TrackingRecord.short_key == short_key)
            .options(selectinload(TrackingRecord.visits))
        )
        try:
            with self._session_factory() as session:
                record = session.scalar(stmt)
                if record is None:
                    raise NotFoundError(short_key)
                visits = [row_to_visit(v) for v in record.visits]
        except SQLAlchemyError as exc:
            raise StorageError(f"tracking lookup failed for {short_key!r}") from exc

        return TrackingRecordResponse(
            short_key=record.short_key,
            target_url=record.target_url,
            visit_total=len(visits),
            visits=visits,
        )
