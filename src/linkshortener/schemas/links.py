from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import datetime

# Keys travel as a single path segment.
SHORT_KEY_PATTERN = r"^[A-Za-z0-9_-]{1,64}$"
TARGET_URL_MAX = 2048


class CreateLinkRequest(BaseModel):
    short_key: Optional[str] = Field(default=None, pattern=SHORT_KEY_PATTERN)
    target_url: str = Field(min_length=1, max_length=TARGET_URL_MAX)

    @field_validator("short_key", mode="before")
    @classmethod
    def blank_key_means_generate(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("target_url")
    @classmethod
    def strip_target(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("target_url is required")
        return v


class UpdateLinkRequest(BaseModel):
    target_url: str = Field(min_length=1, max_length=TARGET_URL_MAX)

    @field_validator("target_url")
    @classmethod
    def strip_target(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("target_url is required")
        return v


class LinkResponse(BaseModel):
    short_key: str
    target_url: str
    visit_count: int
    created_at: datetime
    short_url: Optional[str] = None


class LinkListResponse(BaseModel):
    count: int
    data: list[LinkResponse]
