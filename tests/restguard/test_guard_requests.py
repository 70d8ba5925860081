from __future__ import annotations

import httpx
import pytest

from RestGuard import (
    DEFAULT_USER_AGENT,
    MissingValidator,
    NodeListEmpty,
    RestGuard,
    RestGuardError,
    RestNode,
    RestService,
    RestTicket,
    ServiceNotFound,
    __version__,
)
from RestGuard.testing import ResponseSpec, ScriptedTransport


def test_default_user_agent_carries_version(guard: RestGuard) -> None:
    assert DEFAULT_USER_AGENT == f"RestGuard v{__version__}"
    assert guard.get_user_agent() == DEFAULT_USER_AGENT


def test_get_service_unknown_name_raises(guard: RestGuard) -> None:
    with pytest.raises(ServiceNotFound):
        guard.get_service("missing")


def test_add_rest_node_appends_to_registered_service(guard: RestGuard) -> None:
    service = RestService("s")
    guard.add_service("s", service)
    node = RestNode(name="n1", base_url="h1.test")

    guard.add_rest_node("s", node)

    assert guard.get_service("s").get_nodes() == (node,)
    with pytest.raises(ServiceNotFound):
        guard.add_rest_node("other", node)


def test_create_request_builds_url_and_user_agent(guard: RestGuard, make_service) -> None:
    service = make_service("s", "h1.test", "h2.test")
    ticket = service.get_ticket()

    request = guard.create_request(ticket, "GET", "items/7")

    assert str(request.url) == "http://h1.test/items/7"
    assert request.headers["User-Agent"] == DEFAULT_USER_AGENT
    assert ticket.request is request
    assert ticket.node is service.get_nodes()[0]
    assert ticket.path == "items/7"


def test_create_request_uses_https_for_ssl_nodes(guard: RestGuard) -> None:
    service = RestService("s", [RestNode(name="n1", base_url="secure.test/", ssl=True)])

    request = guard.create_request(service.get_ticket(), "GET", "/status")

    assert str(request.url) == "https://secure.test/status"


def test_create_request_keeps_caller_headers_and_body(guard: RestGuard, make_service) -> None:
    ticket = make_service("s", "h1.test").get_ticket()

    request = guard.create_request(
        ticket, "POST", "/items", headers={"X-Trace": "abc"}, content=b'{"a": 1}'
    )

    assert request.headers["X-Trace"] == "abc"
    assert request.headers["Content-Length"] == "8"
    assert request.read() == b'{"a": 1}'


def test_create_request_skips_user_agent_when_unset(transport: ScriptedTransport) -> None:
    from RestGuard import GuardConfiguration

    ticket = RestService("s", [RestNode(name="n1", base_url="h1.test")]).get_ticket()

    with RestGuard(GuardConfiguration(user_agent=""), transport=transport) as guard:
        request = guard.create_request(ticket, "GET", "/")

    assert not request.headers.get("User-Agent", "").startswith("RestGuard")


def test_create_request_without_service_fails_fast(guard: RestGuard, transport: ScriptedTransport) -> None:
    with pytest.raises(ServiceNotFound):
        guard.create_request(RestTicket(None), "GET", "/")
    assert transport.requests == []


def test_create_request_without_nodes_fails_fast(guard: RestGuard) -> None:
    with pytest.raises(NodeListEmpty):
        guard.create_request(RestService("empty").get_ticket(), "GET", "/")


def test_create_request_with_only_disabled_nodes_fails(guard: RestGuard) -> None:
    service = RestService("s", [RestNode(name="n1", base_url="h1.test", disable=True)])

    with pytest.raises(NodeListEmpty):
        guard.create_request(service.get_ticket(), "GET", "/")


def test_create_request_without_validator_fails_fast(guard: RestGuard) -> None:
    service = RestService("s", [RestNode(name="n1", base_url="h1.test")], response_validator=None)

    with pytest.raises(MissingValidator):
        guard.create_request(service.get_ticket(), "GET", "/")


def test_round_robin_skips_disabled_nodes(guard: RestGuard, make_service) -> None:
    service = make_service("s", "h1.test", "h2.test", "h3.test")
    service.get_nodes()[0].disable = True
    ticket = service.get_ticket()
    ticket.retries = 1

    guard.create_request(ticket, "GET", "/")

    assert ticket.node is service.get_nodes()[2]


def test_create_request_keeps_assigned_node(guard: RestGuard, make_service) -> None:
    service = make_service("s", "h1.test", "h2.test")
    ticket = service.get_ticket()
    ticket.node = service.get_nodes()[1]

    request = guard.create_request(ticket, "GET", "/")

    assert request.url.host == "h2.test"


def test_create_request_again_closes_previous_response(guard: RestGuard, make_service) -> None:
    ticket = make_service("s", "h1.test").get_ticket()
    guard.create_request(ticket, "GET", "/")
    previous = httpx.Response(200, stream=httpx.ByteStream(b"old"))
    ticket.response = previous

    guard.create_request(ticket, "GET", "/again")

    assert previous.is_closed
    assert ticket.response is None


def test_body_producer_supplies_request_content(guard: RestGuard, make_service) -> None:
    ticket = make_service("s", "h1.test").get_ticket()
    ticket.set_closure("payload", b"from-closure")

    def _producer(current: RestTicket) -> bytes:
        value, _ = current.get_closure("payload")
        return value

    ticket.set_request_body_producer(_producer)

    request = guard.create_request(ticket, "PUT", "/doc", content=b"ignored")

    assert request.read() == b"from-closure"


def test_do_without_request_raises(guard: RestGuard, make_service) -> None:
    ticket = make_service("s", "h1.test").get_ticket()

    with pytest.raises(RestGuardError, match="create_request"):
        guard.do(ticket)


def test_caller_headers_added_after_create_are_sent(
    guard: RestGuard, transport: ScriptedTransport, make_service
) -> None:
    transport.queue("h1.test", ResponseSpec(status=200))
    ticket = make_service("s", "h1.test").get_ticket()
    guard.create_request(ticket, "GET", "/")
    ticket.request.headers["Authorization"] = "Bearer t"

    guard.do(ticket)

    assert transport.requests[0].headers["authorization"] == "Bearer t"
    ticket.release()


def test_from_config_registers_services() -> None:
    from RestGuard import GuardConfiguration

    config = GuardConfiguration.model_validate(
        {
            "user_agent": "custom/1.0",
            "services": [
                {
                    "name": "catalog",
                    "retries": 2,
                    "retry_interval_ms": 50,
                    "nodes": [{"name": "a", "base_url": "a.test"}, {"name": "b", "base_url": "b.test", "ssl": True}],
                }
            ],
        }
    )

    with RestGuard.from_config(config, transport=ScriptedTransport()) as guard:
        service = guard.get_service("catalog")
        assert guard.get_user_agent() == "custom/1.0"
        assert service.retries == 2
        assert service.retry_interval_ms == 50
        assert [node.url_prefix for node in service.get_nodes()] == ["http://a.test", "https://b.test"]
