from __future__ import annotations

import ipaddress
import logging
import os
from typing import Optional

import geoip2.database
import geoip2.errors

from linkshortener.core.errors import EnrichmentFieldError
from linkshortener.schemas.tracking import GeoInfo

logger = logging.getLogger(__name__)


def is_public_ip(ip: str) -> bool:
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return addr.is_global


class GeoLocator:
    """
    Offline IP -> location lookup over a MaxMind City database (.mmdb).

    Readers are safe to share between threads, so one instance serves the
    whole process.
    """

    def __init__(self, reader: geoip2.database.Reader) -> None:
        self._reader = reader

    @classmethod
    def from_path(cls, path: Optional[str]) -> Optional["GeoLocator"]:
        if not path:
            return None
        if not os.path.exists(path):
            logger.warning("GeoIP database %s not found; geo lookup disabled", path)
            return None
        return cls(geoip2.database.Reader(path))

    def lookup(self, ip: str) -> Optional[GeoInfo]:
        """None for private/unknown addresses; EnrichmentFieldError on reader failure."""
        if not is_public_ip(ip):
            return None
        try:
            resp = self._reader.city(ip)
        except geoip2.errors.AddressNotFoundError:
            return None
        except (geoip2.errors.GeoIP2Error, ValueError) as exc:
            raise EnrichmentFieldError(f"geo lookup failed for {ip}") from exc

        coords = None
        if resp.location.latitude is not None and resp.location.longitude is not None:
            coords = [resp.location.latitude, resp.location.longitude]

        return GeoInfo(
            country=resp.country.iso_code,
            region=resp.subdivisions.most_specific.name,
            city=resp.city.name,
            timezone=resp.location.time_zone,
            coordinates=coords,
        )

    def close(self) -> None:
        self._reader.close()
