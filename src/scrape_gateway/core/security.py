"""API key generation, digesting and request-id helpers.

API keys have the form ``sk_`` followed by 64 lower-case hex characters.
Only the SHA-256 hex digest of a key is ever stored; the first 11 characters
(``sk_`` plus 8 hex) are kept as a display prefix.
"""

from __future__ import annotations

import hashlib
import hmac
import re
import secrets
import time

API_KEY_PREFIX = "sk_"
KEY_DISPLAY_PREFIX_LENGTH = 11

_API_KEY_RE = re.compile(r"^sk_[0-9a-f]{64}$", re.IGNORECASE)


def generate_api_key() -> str:
    """Return a new raw API key (32 random bytes, hex encoded)."""
    return f"{API_KEY_PREFIX}{secrets.token_hex(32)}"


def hash_api_key(raw_key: str) -> str:
    """Return the SHA-256 hex digest used to look a key up."""
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def get_key_prefix(raw_key: str) -> str:
    return raw_key[:KEY_DISPLAY_PREFIX_LENGTH]


def is_well_formed_api_key(candidate: str) -> bool:
    """Cheap surface check run before any database lookup."""
    return bool(_API_KEY_RE.match(candidate))


def secrets_match(expected: str, provided: str | None) -> bool:
    """Constant-time comparison for shared secrets."""
    if not provided or not expected:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))


def generate_request_id() -> str:
    """Return a gateway request id: ``req_<epoch-ms>_<8 hex>``."""
    return f"req_{int(time.time() * 1000)}_{secrets.token_hex(4)}"
