from __future__ import annotations

import secrets
import string
from typing import Optional

BASE62_ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits
SHORT_KEY_LENGTH = 7

# Path segments owned by the service itself.
RESERVED_KEYS = frozenset({"admin", "api", "track"})


def is_reserved_key(key: Optional[str]) -> bool:
    # compared case-insensitively
    return key is not None and key.lower() in RESERVED_KEYS


def generate_short_key(length: int = SHORT_KEY_LENGTH) -> str:
    return "".join(secrets.choice(BASE62_ALPHABET) for _ in range(length))
