from typing import Any, Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from datetime import datetime, timezone

from linkshortener.db.base import Base

SHORT_KEY_MAX = 64
IP_MAX = 45  # IPv6 text form
USER_AGENT_MAX = 1024
REFERRER_MAX = 2048
HEADER_MAX = 255


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Link(Base):
    __tablename__ = "links"

    id: Mapped[int] = mapped_column(primary_key=True)
    short_key: Mapped[str] = mapped_column(String(SHORT_KEY_MAX), unique=True, index=True)
    target_url: Mapped[str] = mapped_column(String, nullable=False)

    visit_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
    )


class TrackingRecord(Base):
    """One row per short key. Not cascaded from links: it may outlive its Link."""

    __tablename__ = "tracking_records"

    id: Mapped[int] = mapped_column(primary_key=True)
    short_key: Mapped[str] = mapped_column(String(SHORT_KEY_MAX), unique=True, index=True)
    target_url: Mapped[str] = mapped_column(String, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    visits: Mapped[list["Visit"]] = relationship(
        back_populates="tracking_record",
        order_by="Visit.id",
        cascade="all, delete-orphan",
    )


class Visit(Base):
    """Append-only visit log; the generated id gives insertion order."""

    __tablename__ = "visits"

    id: Mapped[int] = mapped_column(primary_key=True)
    tracking_record_id: Mapped[int] = mapped_column(
        ForeignKey("tracking_records.id", ondelete="CASCADE"), nullable=False
    )

    visit_number: Mapped[int] = mapped_column(Integer, nullable=False)
    visited_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ip_address: Mapped[str] = mapped_column(String(IP_MAX), nullable=False, default="Unknown")

    user_agent: Mapped[Optional[str]] = mapped_column(String(USER_AGENT_MAX), nullable=True)
    user_agent_info: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    geographic: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)

    is_bot: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    referrer: Mapped[str] = mapped_column(String(REFERRER_MAX), nullable=False, default="Direct")
    accept_language: Mapped[Optional[str]] = mapped_column(String(HEADER_MAX), nullable=True)
    accept_encoding: Mapped[Optional[str]] = mapped_column(String(HEADER_MAX), nullable=True)
    is_degraded: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    tracking_record: Mapped[TrackingRecord] = relationship(back_populates="visits")

    __table_args__ = (
        Index("ix_visits_tracking_record_id_id", "tracking_record_id", "id"),
    )
