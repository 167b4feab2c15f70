"""
Visit enrichment.

Turns raw request metadata into a VisitEntry. Each field is resolved on its
own: a failure degrades that field to null/default and never propagates to
the redirect.
"""
from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Callable, Optional, TypeVar

from user_agents import parse as parse_ua

from linkshortener.schemas.tracking import (
    DIRECT_REFERRER,
    UNKNOWN_IP,
    DeviceInfo,
    GeoInfo,
    NameVersion,
    UserAgentInfo,
    VisitEntry,
)
from linkshortener.services.geo import GeoLocator

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ua-parser reports unknown families as "Other"
_UNKNOWN_FAMILIES = {"", "Other"}

_ENGINE_PATTERNS = [
    ("EdgeHTML", re.compile(r"Edge/([\d.]+)")),
    ("Presto", re.compile(r"Presto/([\d.]+)")),
    ("Trident", re.compile(r"Trident/([\d.]+)")),
    ("Blink", re.compile(r"(?:Chrome|Chromium|CriOS)/([\d.]+)")),
    ("WebKit", re.compile(r"AppleWebKit/([\d.]+)")),
    ("Gecko", re.compile(r"rv:([\w.]+)\).*Gecko/")),
]

_CPU_PATTERNS = [
    ("arm64", re.compile(r"aarch64|arm64", re.I)),
    ("amd64", re.compile(r"x86_64|x86-64|\bx64\b|amd64|win64|wow64", re.I)),
    ("arm", re.compile(r"\barm(?:v\d+\w*)?\b", re.I)),
    ("ia32", re.compile(r"i[3-6]86|\bx86\b", re.I)),
]

BOT_PATTERN = re.compile(
    r"\bbot\b|[a-z]bot[/-]|crawl|spider|slurp|scrap|headless|"
    r"curl/|wget/|python-requests|python-urllib|httpclient|go-http-client|"
    r"okhttp|java/|facebookexternalhit|embedly|whatsapp|monitor",
    re.I,
)


def _known(value: Optional[str]) -> Optional[str]:
    if value is None or value in _UNKNOWN_FAMILIES:
        return None
    return value


def _guard(field: str, resolve: Callable[[], T], default: T) -> T:
    try:
        return resolve()
    except Exception as exc:  # noqa: BLE001
        logger.warning("Could not resolve %s for visit: %r", field, exc)
        return default


def parse_engine(ua_string: str) -> NameVersion:
    for name, pattern in _ENGINE_PATTERNS:
        m = pattern.search(ua_string)
        if m:
            return NameVersion(name=name, version=m.group(1))
    return NameVersion()


def parse_cpu(ua_string: str) -> Optional[str]:
    for arch, pattern in _CPU_PATTERNS:
        if pattern.search(ua_string):
            return arch
    return None


def _device_type(ua) -> Optional[str]:
    if ua.is_tablet:
        return "tablet"
    if ua.is_mobile:
        return "mobile"
    if ua.is_pc:
        return "desktop"
    return None


def _parse(ua_string: Optional[str]):
    if not ua_string or not ua_string.strip():
        return None
    return _guard("user agent", lambda: parse_ua(ua_string), None)


def parse_user_agent(ua_string: Optional[str], parsed=None) -> UserAgentInfo:
    """`parsed` is an already parsed user_agents object for `ua_string`."""
    raw = ua_string or None
    if not ua_string or not ua_string.strip():
        return UserAgentInfo(raw=raw)

    info = UserAgentInfo(raw=raw)
    ua = parsed if parsed is not None else _parse(ua_string)
    if ua is not None:
        info.browser = NameVersion(
            name=_known(ua.browser.family),
            version=ua.browser.version_string or None,
        )
        info.os = NameVersion(
            name=_known(ua.os.family),
            version=ua.os.version_string or None,
        )
        info.device = DeviceInfo(
            type=_guard("device type", lambda: _device_type(ua), None),
            model=_known(ua.device.model),
        )
    info.engine = _guard("engine", lambda: parse_engine(ua_string), NameVersion())
    info.cpu_architecture = _guard("cpu", lambda: parse_cpu(ua_string), None)
    return info


def detect_bot(ua_string: Optional[str], parsed=None) -> bool:
    if not ua_string or not ua_string.strip():
        return False
    if BOT_PATTERN.search(ua_string):
        return True
    ua = parsed if parsed is not None else _parse(ua_string)
    return ua is not None and bool(ua.is_bot)


def normalize_referrer(referrer: Optional[str]) -> str:
    if referrer is None or not referrer.strip():
        return DIRECT_REFERRER
    return referrer.strip()


def normalize_ip(ip: Optional[str]) -> str:
    if ip is None or not ip.strip():
        return UNKNOWN_IP
    return ip.strip()


def _optional_header(value: Optional[str]) -> Optional[str]:
    if value is None or not value.strip():
        return None
    return value.strip()


def enrich_visit(
    *,
    ip_address: Optional[str],
    user_agent: Optional[str],
    referrer: Optional[str],
    accept_language: Optional[str],
    accept_encoding: Optional[str],
    visit_number: int,
    timestamp: datetime,
    geo: Optional[GeoLocator] = None,
) -> VisitEntry:
    ip = normalize_ip(ip_address)

    geographic: Optional[GeoInfo] = None
    if geo is not None and ip != UNKNOWN_IP:
        geographic = _guard("geographic", lambda: geo.lookup(ip), None)

    parsed = _parse(user_agent)

    return VisitEntry(
        visit_number=visit_number,
        timestamp=timestamp,
        ip_address=ip,
        geographic=geographic,
        user_agent_info=_guard(
            "user agent info",
            lambda: parse_user_agent(user_agent, parsed),
            UserAgentInfo(raw=user_agent or None),
        ),
        is_bot=_guard("bot classification", lambda: detect_bot(user_agent, parsed), False),
        referrer=normalize_referrer(referrer),
        accept_language=_optional_header(accept_language),
        accept_encoding=_optional_header(accept_encoding),
    )
