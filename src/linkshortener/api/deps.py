from __future__ import annotations

import hashlib
import secrets
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request
from redis import Redis

from linkshortener.core.config import settings
from linkshortener.core.redis import get_redis_client
from linkshortener.db.session import Database, get_database
from linkshortener.services.geo import GeoLocator
from linkshortener.services.link_store import LinkStore
from linkshortener.services.rate_limiter import check_fixed_window, check_token_bucket
from linkshortener.services.redirector import Redirector, RequestMeta
from linkshortener.services.tracking_store import TrackingStore


def get_client_ip(request: Request) -> str:
    if settings.trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    return request.client.host if request.client else "Unknown"


def get_request_meta(request: Request) -> RequestMeta:
    headers = request.headers
    return RequestMeta(
        client_ip=get_client_ip(request),
        user_agent=headers.get("user-agent"),
        referrer=headers.get("referer"),
        accept_language=headers.get("accept-language"),
        accept_encoding=headers.get("accept-encoding"),
    )


def redirect_rate_limiter(
    request: Request,
    r: Redis = Depends(get_redis_client),
) -> None:
    ip = get_client_ip(request)
    result = check_fixed_window(
        r,
        key=f"rl:redirect:{ip}",
        limit=settings.redirect_limit,
        window_seconds=settings.redirect_window,
    )

    request.state.rate_limit_remaining = result.remaining
    request.state.rate_limit_reset = result.reset_seconds

    if not result.allowed:
        raise HTTPException(
            status_code=429,
            detail=f"Too many requests from this IP. Try again in {result.reset_seconds}s.",
            headers={"Retry-After": str(result.reset_seconds)},
        )


def hash_api_key(raw_key: str) -> str:
    # SHA-256 hex digest (64 chars)
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def require_api_key(
    authorization: Optional[str] = Header(default=None),
) -> str:
    """Returns the hashed credential; used as the rate limit identity."""
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization header")

    presented = hash_api_key(authorization)
    # an unset api_key refuses everything
    if not settings.api_key or not secrets.compare_digest(presented, hash_api_key(settings.api_key)):
        raise HTTPException(status_code=401, detail="Invalid API key")

    return presented


def api_rate_limiter(
    request: Request,
    authorization: Optional[str] = Header(default=None),
    r: Redis = Depends(get_redis_client),
) -> None:
    """
    Per-credential token bucket for /api. Unauthenticated callers share a
    bucket per IP so key guessing is throttled too.
    """
    if authorization:
        identity = hash_api_key(authorization)
    else:
        identity = f"ip:{get_client_ip(request)}"

    result = check_token_bucket(
        r,
        key=f"rate:api:{identity}",
        capacity=settings.api_limit,
        window_seconds=settings.api_window,
    )

    if not result.allowed:
        raise HTTPException(
            status_code=429,
            detail=f"API rate limit exceeded. Try again in {result.retry_after} seconds.",
            headers={
                "Retry-After": str(result.retry_after),
                "X-RateLimit-Limit": str(settings.api_limit),
                "X-RateLimit-Remaining": str(result.remaining),
            },
        )


@lru_cache(maxsize=1)
def get_geo_locator() -> Optional[GeoLocator]:
    return GeoLocator.from_path(settings.geoip_database_path)


def get_link_store(db: Database = Depends(get_database)) -> LinkStore:
    return LinkStore(db.session_factory)


def get_tracking_store(db: Database = Depends(get_database)) -> TrackingStore:
    return TrackingStore(db.session_factory)


def get_redirector(
    links: LinkStore = Depends(get_link_store),
    tracking: TrackingStore = Depends(get_tracking_store),
    geo: Optional[GeoLocator] = Depends(get_geo_locator),
) -> Redirector:
    return Redirector(links, tracking, geo)
