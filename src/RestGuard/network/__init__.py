"""Network subsystem: pooled HTTPX client construction and transport policy.

Modules:
- client: HTTPX client factory driven by :class:`GuardConfiguration`
- policy: fallback connection limits, timeouts, and streaming constants
"""

from .client import build_http_client, limits_for, timeout_for
from .policy import (
    DOWNLOAD_CHUNK_SIZE,
    FOLLOW_REDIRECTS,
    KEEPALIVE_EXPIRY,
    MAX_CONNECTIONS,
    MAX_KEEPALIVE_CONNECTIONS,
)

__all__ = [
    "build_http_client",
    "limits_for",
    "timeout_for",
    "DOWNLOAD_CHUNK_SIZE",
    "FOLLOW_REDIRECTS",
    "KEEPALIVE_EXPIRY",
    "MAX_CONNECTIONS",
    "MAX_KEEPALIVE_CONNECTIONS",
]
