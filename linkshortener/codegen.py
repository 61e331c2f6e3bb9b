"""Short-code generation from a long URL.

Codes are derived by one-way hashing, never by consulting the store, so this
module has no state and no I/O.

Flow Diagram — generate_short_code()
====================================
::
    ┌─────────────┐
    │  long_url   │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Validate    │──── invalid ───► InvalidInputError
    │ absolute URL│
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ url + time_ │
    │ ns() bytes  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ SHA-256,    │
    │ first 8 B   │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ base64url,  │
    │ no padding  │──► 11-char code
    └─────────────┘

Key Behaviours
===============
- Output length is always SHORT_CODE_LENGTH (11).
- The nanosecond timestamp separates identical URLs submitted back to back.
- Collisions are not handled here; callers retry create with a fresh code.
"""

import base64
import hashlib
import time

from pydantic import AnyUrl, TypeAdapter, ValidationError

from linkshortener.exceptions import InvalidInputError

__all__ = [
    "SHORT_CODE_DIGEST_BYTES",
    "SHORT_CODE_LENGTH",
    "generate_short_code",
    "validate_long_url",
]

SHORT_CODE_DIGEST_BYTES = 8
SHORT_CODE_LENGTH = 11

_ABSOLUTE_URL = TypeAdapter(AnyUrl)


def validate_long_url(long_url: str) -> str:
    """Accept any syntactically valid absolute URL; hosts are not checked."""
    if not isinstance(long_url, str) or not long_url:
        raise InvalidInputError("Invalid URL provided", value=long_url)
    try:
        _ABSOLUTE_URL.validate_python(long_url)
    except ValidationError as exc:
        raise InvalidInputError("Invalid URL provided", value=long_url) from exc
    return long_url


def generate_short_code(long_url: str, timestamp_ns: int | None = None) -> str:
    validate_long_url(long_url)
    if timestamp_ns is None:
        timestamp_ns = time.time_ns()

    digest = hashlib.sha256(f"{long_url}{timestamp_ns}".encode("utf-8")).digest()
    code = base64.urlsafe_b64encode(digest[:SHORT_CODE_DIGEST_BYTES]).rstrip(b"=").decode("ascii")
    assert len(code) == SHORT_CODE_LENGTH, f"unexpected code length {len(code)}"
    return code
