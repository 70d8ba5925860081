from __future__ import annotations

import logging

import httpx
import pytest

from RestGuard import GuardConfiguration
from RestGuard.network import (
    KEEPALIVE_EXPIRY,
    MAX_CONNECTIONS,
    MAX_KEEPALIVE_CONNECTIONS,
    build_http_client,
    limits_for,
    timeout_for,
)
from RestGuard.testing import ResponseSpec, ScriptedTransport


def test_timeout_applies_request_timeout_to_every_phase() -> None:
    timeout = timeout_for(GuardConfiguration(reqs_timeout=120))

    assert timeout.connect == 120.0
    assert timeout.read == 120.0
    assert timeout.write == 120.0
    assert timeout.pool == 30.0


def test_zero_request_timeout_disables_timeouts() -> None:
    timeout = timeout_for(GuardConfiguration(reqs_timeout=0))

    assert timeout.as_dict() == {"connect": None, "read": None, "write": None, "pool": None}


def test_limits_follow_configuration() -> None:
    limits = limits_for(GuardConfiguration(max_conns4host=8, max_idleconns4host=3, idle_conn_timeout=45))

    assert limits.max_connections == 8
    assert limits.max_keepalive_connections == 3
    assert limits.keepalive_expiry == 45.0


def test_limits_fall_back_when_unset() -> None:
    limits = limits_for(
        GuardConfiguration(max_conns4host=0, max_idleconns4host=0, max_idle_conns=0, idle_conn_timeout=0)
    )

    assert limits.max_connections == MAX_CONNECTIONS
    assert limits.max_keepalive_connections == MAX_KEEPALIVE_CONNECTIONS
    assert limits.keepalive_expiry == KEEPALIVE_EXPIRY


def test_idle_limit_falls_back_to_global_idle_setting() -> None:
    limits = limits_for(GuardConfiguration(max_idleconns4host=0, max_idle_conns=7, max_conns4host=10))

    assert limits.max_keepalive_connections == 7


def test_client_headers_and_redirect_policy() -> None:
    config = GuardConfiguration(user_agent="probe/1", disable_compression=True)

    with build_http_client(config, transport=ScriptedTransport()) as client:
        assert client.headers["User-Agent"] == "probe/1"
        assert client.headers["Accept-Encoding"] == "identity"
        assert client.follow_redirects is False
        assert client.timeout.read == float(config.reqs_timeout)


def test_client_does_not_follow_redirects() -> None:
    transport = ScriptedTransport()
    transport.queue("h1.test", ResponseSpec(status=302, headers={"Location": "http://h2.test/"}))

    with build_http_client(GuardConfiguration(), transport=transport) as client:
        response = client.get("http://h1.test/start")

    assert response.status_code == 302
    assert transport.hosts == ["h1.test"]


def test_insecure_client_logs_warning(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="RestGuard.network.client"):
        client = build_http_client(GuardConfiguration(insecure_skip_verify=True), transport=ScriptedTransport())
    client.close()

    assert any("TLS verification DISABLED" in record.getMessage() for record in caplog.records)


def test_default_transport_is_real_http_transport() -> None:
    client = build_http_client(GuardConfiguration())
    try:
        assert isinstance(client._transport, httpx.HTTPTransport)
    finally:
        client.close()
