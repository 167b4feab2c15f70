from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

UNKNOWN_IP = "Unknown"
DIRECT_REFERRER = "Direct"


class GeoInfo(BaseModel):
    country: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None
    timezone: Optional[str] = None
    # [lat, lng]
    coordinates: Optional[list[float]] = None


class NameVersion(BaseModel):
    name: Optional[str] = None
    version: Optional[str] = None


class DeviceInfo(BaseModel):
    type: Optional[str] = None
    model: Optional[str] = None


class UserAgentInfo(BaseModel):
    raw: Optional[str] = None
    browser: NameVersion = Field(default_factory=NameVersion)
    os: NameVersion = Field(default_factory=NameVersion)
    device: DeviceInfo = Field(default_factory=DeviceInfo)
    engine: NameVersion = Field(default_factory=NameVersion)
    cpu_architecture: Optional[str] = None


class VisitEntry(BaseModel):
    visit_number: int
    timestamp: datetime
    ip_address: str = UNKNOWN_IP
    geographic: Optional[GeoInfo] = None
    user_agent_info: UserAgentInfo = Field(default_factory=UserAgentInfo)
    is_bot: bool = False
    referrer: str = DIRECT_REFERRER
    accept_language: Optional[str] = None
    accept_encoding: Optional[str] = None
    is_degraded: bool = False

    def degraded(self) -> "VisitEntry":
        """Minimal copy written when the full entry cannot be stored."""
        return VisitEntry(
            visit_number=self.visit_number,
            timestamp=self.timestamp,
            ip_address=self.ip_address,
            user_agent_info=UserAgentInfo(raw=self.user_agent_info.raw),
            is_bot=self.is_bot,
            referrer=self.referrer,
            is_degraded=True,
        )


class TrackingRecordResponse(BaseModel):
    short_key: str
    target_url: str
    visit_total: int
    visits: list[VisitEntry]
