from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import OperationalError

from linkshortener.core.errors import NotFoundError, TrackingPersistError
from linkshortener.db.models import IP_MAX, USER_AGENT_MAX
from linkshortener.schemas.tracking import GeoInfo, NameVersion, UserAgentInfo, VisitEntry
from linkshortener.services.tracking_store import TrackingStore, visit_to_row

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def make_entry(n: int, ip: str = "81.2.69.160", **overrides) -> VisitEntry:
    fields = dict(
        visit_number=n,
        timestamp=NOW,
        ip_address=ip,
        geographic=GeoInfo(country="GB", city="London", coordinates=[51.5, -0.12]),
        user_agent_info=UserAgentInfo(
            raw="Mozilla/5.0 Test",
            browser=NameVersion(name="Chrome", version="120.0.0"),
        ),
        referrer="https://ref.example",
        accept_language="en-GB",
    )
    fields.update(overrides)
    return VisitEntry(**fields)


class FlakyTrackingStore(TrackingStore):
    """Fails the first `failures` writes like a storage outage would."""

    def __init__(self, session_factory, failures: int):
        super().__init__(session_factory)
        self.failures = failures
        self.rows = []

    def _write(self, short_key, target_url, row):
        self.rows.append(row)
        if self.failures > 0:
            self.failures -= 1
            raise OperationalError("INSERT INTO visits", {}, Exception("disk I/O error"))
        super()._write(short_key, target_url, row)


def test_first_append_creates_record(tracking_store):
    tracking_store.append_visit("promo", "https://example.com", make_entry(1))

    record = tracking_store.find_by_key("promo")
    assert record.short_key == "promo"
    assert record.target_url == "https://example.com"
    assert record.visit_total == 1

    visit = record.visits[0]
    assert visit.visit_number == 1
    assert visit.ip_address == "81.2.69.160"
    assert visit.geographic.city == "London"
    assert visit.geographic.coordinates == [51.5, -0.12]
    assert visit.user_agent_info.raw == "Mozilla/5.0 Test"
    assert visit.user_agent_info.browser.name == "Chrome"
    assert visit.accept_language == "en-GB"
    assert visit.is_degraded is False


def test_appends_are_additive_and_refresh_target(tracking_store):
    tracking_store.append_visit("promo", "https://old.example", make_entry(1))
    tracking_store.append_visit("promo", "https://new.example", make_entry(2))
    tracking_store.append_visit("other", "https://other.example", make_entry(1))

    record = tracking_store.find_by_key("promo")
    assert record.target_url == "https://new.example"
    assert [v.visit_number for v in record.visits] == [1, 2]
    assert tracking_store.find_by_key("other").visit_total == 1


def test_find_missing_record(tracking_store):
    with pytest.raises(NotFoundError):
        tracking_store.find_by_key("nope")


def test_degraded_fallback_after_failed_write(db):
    store = FlakyTrackingStore(db.session_factory, failures=1)

    store.append_visit("promo", "https://example.com", make_entry(5))

    assert len(store.rows) == 2
    visit = store.find_by_key("promo").visits[0]
    assert visit.is_degraded is True
    assert visit.visit_number == 5
    assert visit.ip_address == "81.2.69.160"
    assert visit.referrer == "https://ref.example"
    assert visit.user_agent_info.raw == "Mozilla/5.0 Test"
    # enrichment-only fields are dropped
    assert visit.geographic is None
    assert visit.user_agent_info.browser.name is None
    assert visit.accept_language is None


def test_both_writes_failing_raises_persist_error(db, caplog):
    store = FlakyTrackingStore(db.session_factory, failures=2)

    with pytest.raises(TrackingPersistError):
        store.append_visit("promo", "https://example.com", make_entry(9))

    assert "lost" in caplog.text
    with pytest.raises(NotFoundError):
        store.find_by_key("promo")


def test_degraded_row_is_clipped_to_column_limits():
    long_ua = "x" * (USER_AGENT_MAX + 50)
    entry = make_entry(1, user_agent_info=UserAgentInfo(raw=long_ua))

    full = visit_to_row(entry)
    degraded = visit_to_row(entry.degraded(), clip=True)

    assert len(full["user_agent"]) == USER_AGENT_MAX + 50
    assert len(degraded["user_agent"]) == USER_AGENT_MAX
    assert degraded["user_agent_info"] is None
    assert degraded["is_degraded"] is True


def test_degraded_row_replaces_oversize_ip():
    entry = make_entry(1, ip="1" * (IP_MAX + 1))

    assert visit_to_row(entry)["ip_address"] == entry.ip_address
    assert visit_to_row(entry.degraded(), clip=True)["ip_address"] == "Unknown"
    assert visit_to_row(make_entry(1).degraded(), clip=True)["ip_address"] == "81.2.69.160"


def test_degraded_fallback_with_forged_forwarded_for(db):
    store = FlakyTrackingStore(db.session_factory, failures=1)

    store.append_visit("promo", "https://example.com", make_entry(3, ip="9" * 200))

    visit = store.find_by_key("promo").visits[0]
    assert visit.is_degraded is True
    assert visit.ip_address == "Unknown"
