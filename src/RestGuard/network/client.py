# === NAVMAP v1 ===
# {
#   "module": "RestGuard.network.client",
#   "purpose": "HTTPX client factory for guarded requests.",
#   "sections": [
#     {
#       "id": "build-http-client",
#       "name": "build_http_client",
#       "anchor": "function-build-http-client",
#       "kind": "function"
#     },
#     {
#       "id": "create-ssl-context",
#       "name": "_create_ssl_context",
#       "anchor": "function-create-ssl-context",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""HTTPX client factory for guarded requests.

Builds the connection-pooled :class:`httpx.Client` shared by every ticket a
guard executes.  All settings are pass-through values from
:class:`~RestGuard.settings.GuardConfiguration`:

- **Timeouts**: ``reqs_timeout`` applies to every phase; ``0`` disables it.
- **Connection pooling**: ``max_conns4host`` bounds open connections,
  ``max_idleconns4host`` (or ``max_idle_conns``) bounds keep-alive ones, and
  ``idle_conn_timeout`` sets their expiry.
- **TLS**: system defaults plus the certifi bundle; ``insecure_skip_verify``
  disables verification entirely.
- **Compression**: ``disable_compression`` requests identity encoding.
- **Retries/redirects**: the transport never retries and redirects are not
  followed; retrying is the guard's job.

httpx clients are thread-safe, so a single client serves many tickets
executing concurrently.
"""

from __future__ import annotations

import logging
import ssl
from typing import Optional, Union

import certifi
import httpx

from ..settings import GuardConfiguration
from .policy import (
    FOLLOW_REDIRECTS,
    HTTP_POOL_TIMEOUT,
    IDENTITY_ENCODING,
    KEEPALIVE_EXPIRY,
    MAX_CONNECTIONS,
    MAX_KEEPALIVE_CONNECTIONS,
    TRANSPORT_RETRIES,
    TRUST_ENV,
)

logger = logging.getLogger(__name__)

__all__ = ["build_http_client", "timeout_for", "limits_for"]


def _create_ssl_context(config: GuardConfiguration) -> Union[ssl.SSLContext, bool]:
    """Create the TLS verification setting for the transport.

    Returns:
        An ``ssl.SSLContext`` trusting system certificates plus certifi, or
        ``False`` when verification is disabled.
    """
    if config.insecure_skip_verify:
        logger.warning("TLS verification DISABLED (insecure_skip_verify=true)")
        return False

    ctx = ssl.create_default_context(cafile=certifi.where())
    ctx.check_hostname = True
    ctx.verify_mode = ssl.CERT_REQUIRED
    return ctx


def timeout_for(config: GuardConfiguration) -> httpx.Timeout:
    if config.reqs_timeout <= 0:
        return httpx.Timeout(None)
    seconds = float(config.reqs_timeout)
    return httpx.Timeout(seconds, pool=min(seconds, HTTP_POOL_TIMEOUT))


def limits_for(config: GuardConfiguration) -> httpx.Limits:
    max_connections = config.max_conns4host or MAX_CONNECTIONS
    keepalive = config.max_idleconns4host or config.max_idle_conns or MAX_KEEPALIVE_CONNECTIONS
    keepalive_expiry = float(config.idle_conn_timeout or KEEPALIVE_EXPIRY)
    return httpx.Limits(
        max_connections=max_connections,
        max_keepalive_connections=min(keepalive, max_connections),
        keepalive_expiry=keepalive_expiry,
    )


def build_http_client(
    config: Optional[GuardConfiguration] = None,
    *,
    transport: Optional[httpx.BaseTransport] = None,
) -> httpx.Client:
    """Create the pooled HTTPX client described by ``config``.

    Args:
        config: Client settings; defaults to :class:`GuardConfiguration`.
        transport: Optional transport replacing the network one (used by tests
            with :class:`httpx.MockTransport`).

    Returns:
        A configured ``httpx.Client``. The caller owns it and must close it.
    """
    cfg = config or GuardConfiguration()
    verify = _create_ssl_context(cfg)
    limits = limits_for(cfg)

    if transport is None:
        transport = httpx.HTTPTransport(
            verify=verify,
            limits=limits,
            retries=TRANSPORT_RETRIES,
            trust_env=TRUST_ENV,
        )

    headers = {}
    if cfg.user_agent:
        headers["User-Agent"] = cfg.user_agent
    if cfg.disable_compression:
        headers["Accept-Encoding"] = IDENTITY_ENCODING

    client = httpx.Client(
        transport=transport,
        headers=headers,
        timeout=timeout_for(cfg),
        limits=limits,
        verify=verify,
        trust_env=TRUST_ENV,
        follow_redirects=FOLLOW_REDIRECTS,
    )

    logger.debug(
        "HTTPX client created",
        extra={
            "max_connections": limits.max_connections,
            "max_keepalive": limits.max_keepalive_connections,
            "keepalive_expiry": limits.keepalive_expiry,
            "timeout": cfg.reqs_timeout,
            "tls_verify": not cfg.insecure_skip_verify,
        },
    )
    return client
