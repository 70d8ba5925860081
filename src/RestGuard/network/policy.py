"""HTTP policy constants and defaults.

Fallback values used when a :class:`~RestGuard.settings.GuardConfiguration`
leaves a connection setting at zero, plus the fixed transport behaviour of the
guard (no transport-level retries, no automatic redirects).
"""

# --- Timeouts ---------------------------------------------------------------

HTTP_POOL_TIMEOUT = 30.0

# --- Connection pooling -----------------------------------------------------

MAX_CONNECTIONS = 100

MAX_KEEPALIVE_CONNECTIONS = 20

KEEPALIVE_EXPIRY = 90.0

# --- Transport behaviour ----------------------------------------------------

TRANSPORT_RETRIES = 0

FOLLOW_REDIRECTS = False

TRUST_ENV = True

IDENTITY_ENCODING = "identity"

# --- Streaming --------------------------------------------------------------

DOWNLOAD_CHUNK_SIZE = 64 * 1024


__all__ = [
    "HTTP_POOL_TIMEOUT",
    "MAX_CONNECTIONS",
    "MAX_KEEPALIVE_CONNECTIONS",
    "KEEPALIVE_EXPIRY",
    "TRANSPORT_RETRIES",
    "FOLLOW_REDIRECTS",
    "TRUST_ENV",
    "IDENTITY_ENCODING",
    "DOWNLOAD_CHUNK_SIZE",
]
