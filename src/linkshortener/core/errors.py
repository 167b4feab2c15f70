from __future__ import annotations
from dataclasses import dataclass
from typing import Any

from fastapi import HTTPException


class LinkShortenerError(Exception):
    """Base class for domain errors raised by the stores and the redirector."""


class ReservedKeyError(LinkShortenerError):
    def __init__(self, key: str) -> None:
        super().__init__(f'The key "{key}" is reserved. Choose another short key.')
        self.key = key


class NotFoundError(LinkShortenerError):
    def __init__(self, key: str) -> None:
        super().__init__(f'Short key "{key}" not found')
        self.key = key


class StorageError(LinkShortenerError):
    """Lookup/increment/admin storage failure. Fatal for the current request."""


class KeyGenerationError(StorageError):
    pass


class EnrichmentFieldError(LinkShortenerError):
    """A single enrichment field could not be resolved; absorbed as null."""


class TrackingPersistError(LinkShortenerError):
    """A visit could not be stored, neither in full nor in degraded form."""


@dataclass(frozen=True)
class ApiError:
    code: str
    message: str


STATUS_TO_ERROR_CODE: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    429: "RATE_LIMITED",
    500: "INTERNAL_SERVER_ERROR",
    503: "SERVICE_UNAVAILABLE",
}

DOMAIN_ERROR_STATUS: dict[type, int] = {
    ReservedKeyError: 400,
    NotFoundError: 404,
    StorageError: 500,
}


def normalize_http_exception(exc: HTTPException) -> ApiError:
    """
    Converts HTTPException.detail into (code, message).

    Supports:
    - detail as str -> message=str, code inferred from status
    - detail as {"code": "...", "message": "..."} -> use directly
    - detail as {"error": {"code": "...", "message": "..."}} -> use directly
    """
    status = exc.status_code
    default_code = STATUS_TO_ERROR_CODE.get(status, "ERROR")

    detail: Any = exc.detail
    if isinstance(detail, dict):
        if "error" in detail and isinstance(detail["error"], dict):
            inner = detail["error"]
            if "code" in inner and "message" in inner:
                return ApiError(code=str(inner["code"]), message=str(inner["message"]))
        if "code" in detail and "message" in detail:
            return ApiError(code=str(detail["code"]), message=str(detail["message"]))

    # fallback
    msg = detail if isinstance(detail, str) and detail else "Request failed"
    return ApiError(code=default_code, message=str(msg))


def status_for_domain_error(exc: LinkShortenerError) -> int:
    for exc_type, status in DOMAIN_ERROR_STATUS.items():
        if isinstance(exc, exc_type):
            return status
    return 500


def normalize_domain_error(exc: LinkShortenerError) -> tuple[int, ApiError]:
    status = status_for_domain_error(exc)
    if status >= 500:
        # storage internals stay in the logs
        message = "Internal server error"
    else:
        message = str(exc)
    return status, ApiError(code=STATUS_TO_ERROR_CODE[status], message=message)


def error_body(error: ApiError) -> dict[str, Any]:
    return {"error": {"code": error.code, "message": error.message}}
