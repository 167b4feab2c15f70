from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from linkshortener.core.errors import NotFoundError, StorageError, TrackingPersistError
from linkshortener.schemas.tracking import UserAgentInfo, VisitEntry
from linkshortener.services.enrichment import (
    enrich_visit,
    normalize_ip,
    normalize_referrer,
)
from linkshortener.services.geo import GeoLocator
from linkshortener.services.link_store import LinkStore
from linkshortener.services.tracking_store import TrackingStore

logger = logging.getLogger(__name__)


class RedirectOutcome(str, enum.Enum):
    REDIRECT = "redirect"
    NOT_FOUND = "not_found"
    SERVER_ERROR = "server_error"


@dataclass(frozen=True)
class RequestMeta:
    client_ip: Optional[str]
    user_agent: Optional[str]
    referrer: Optional[str] = None
    accept_language: Optional[str] = None
    accept_encoding: Optional[str] = None


@dataclass(frozen=True)
class RedirectResult:
    outcome: RedirectOutcome
    target_url: Optional[str] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Redirector:
    """
    lookup -> increment -> enrich -> append (best-effort) -> redirect.

    Only lookup/increment storage failures change the outcome. Tracking
    failures are logged and absorbed.
    """

    def __init__(
        self,
        links: LinkStore,
        tracking: TrackingStore,
        geo: Optional[GeoLocator] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.links = links
        self.tracking = tracking
        self.geo = geo
        self.clock = clock

    def redirect(self, short_key: str, meta: RequestMeta) -> RedirectResult:
        try:
            link = self.links.find_by_key(short_key)
            # target captured here is what we redirect to
            target_url = link.target_url
            visit_number = self.links.increment_visit(short_key)
        except NotFoundError:
            return RedirectResult(RedirectOutcome.NOT_FOUND)
        except StorageError:
            logger.exception("Storage failure resolving %s", short_key)
            return RedirectResult(RedirectOutcome.SERVER_ERROR)

        self._track(short_key, target_url, visit_number, meta)
        return RedirectResult(RedirectOutcome.REDIRECT, target_url)

    def _track(self, short_key: str, target_url: str, visit_number: int, meta: RequestMeta) -> None:
        timestamp = self.clock()
        try:
            entry = enrich_visit(
                ip_address=meta.client_ip,
                user_agent=meta.user_agent,
                referrer=meta.referrer,
                accept_language=meta.accept_language,
                accept_encoding=meta.accept_encoding,
                visit_number=visit_number,
                timestamp=timestamp,
                geo=self.geo,
            )
        except Exception:  # noqa: BLE001
            logger.exception("Enrichment failed for %s; storing degraded visit", short_key)
            entry = VisitEntry(
                visit_number=visit_number,
                timestamp=timestamp,
                ip_address=normalize_ip(meta.client_ip),
                user_agent_info=UserAgentInfo(raw=meta.user_agent or None),
                referrer=normalize_referrer(meta.referrer),
                is_degraded=True,
            )

        try:
            self.tracking.append_visit(short_key, target_url, entry)
        except TrackingPersistError:
            # already logged with detail by the store
            logger.warning("Redirect for %s proceeds without tracking", short_key)
