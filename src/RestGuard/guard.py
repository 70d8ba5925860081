# === NAVMAP v1 ===
# {
#   "module": "RestGuard.guard",
#   "purpose": "Execution engine: node selection, request construction, guarded retries.",
#   "sections": [
#     {
#       "id": "restguard",
#       "name": "RestGuard",
#       "anchor": "class-restguard",
#       "kind": "class"
#     },
#     {
#       "id": "failednodewait",
#       "name": "_FailedNodeWait",
#       "anchor": "class-failednodewait",
#       "kind": "class"
#     },
#     {
#       "id": "is-retryable-failure",
#       "name": "is_retryable_failure",
#       "anchor": "function-is-retryable-failure",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""Execution engine for guarded REST calls.

A :class:`RestGuard` owns the pooled HTTP client and a registry of services.
For every ticket it builds a request against one of the service's nodes and
executes it, retrying on transport failures and on responses rejected by the
service validator.  Each retry rotates to another node (round-robin keyed by
the ticket's retry counter, or a custom :class:`RetryNodeSelector`) and the
nodes that already failed are recorded on the ticket.  When the rotation comes
back to a node that already failed, the service's ``retry_interval_ms`` is
waited before resending so small pools are not hammered.

The loop is a :class:`tenacity.Retrying` controller:

- **stop**: after ``service.retries + 1`` attempts (minus retries already
  consumed by the ticket).
- **retry**: :class:`TransportError` and :class:`ValidationFailed`, except
  :class:`DeadlineExceeded` which is terminal.
- **after**: the retry procedure (record failure, advance to the next node,
  rebuild the request).
- **wait**: ``retry_interval_ms`` when the next node already failed, else 0.
- **reraise**: the last attempt's error surfaces unchanged.

The ticket's retry counter always equals the number of attempts made minus
one, on success and on failure alike.
"""

from __future__ import annotations

import logging
import socket
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional, Union

import httpx
from tenacity import Retrying, retry_if_exception, stop_after_attempt
from tenacity.wait import wait_base

from .download import download_artefact
from .errors import (
    DeadlineExceeded,
    MissingValidator,
    NodeListEmpty,
    RestGuardError,
    RetryCallbackError,
    ServiceNotFound,
    TransportError,
    ValidationFailed,
)
from .network import build_http_client
from .settings import GuardConfiguration
from .specs import (
    RestArtefact,
    RestNode,
    RestService,
    RestTicket,
    RetryNodeSelector,
    reject,
)

if TYPE_CHECKING:  # pragma: no cover
    from os import PathLike

__all__ = ["RestGuard", "is_retryable_failure"]

logger = logging.getLogger(__name__)

# Recomputed for every rebuilt request.
_REQUEST_BOUND_HEADERS = ("host", "content-length", "transfer-encoding")

# httpcore trace events whose return value is the freshly opened network stream.
_STREAM_OPENED_EVENTS = ("connection.connect_tcp.complete", "connection.start_tls.complete")


def is_retryable_failure(exc: BaseException) -> bool:
    """Return ``True`` when a failed attempt may be retried on another node."""

    if isinstance(exc, DeadlineExceeded):
        return False
    return isinstance(exc, (TransportError, ValidationFailed))


class _FailedNodeWait(wait_base):
    """Wait ``interval`` seconds when the next node already failed for the ticket."""

    def __init__(
        self,
        ticket: RestTicket,
        interval: float,
        deadline: Optional[float],
        clock: Callable[[], float],
    ) -> None:
        self._ticket = ticket
        self._interval = interval
        self._deadline = deadline
        self._clock = clock

    def __call__(self, retry_state) -> float:  # type: ignore[override]
        if self._interval <= 0 or not self._ticket.has_failed(self._ticket.node):
            return 0.0
        delay = self._interval
        if self._deadline is not None:
            delay = max(0.0, min(delay, self._deadline - self._clock()))
        return delay


def _stream_collector(
    opened: List[Any], chained: Optional[Callable[[str, Dict[str, Any]], None]] = None
) -> Callable[[str, Dict[str, Any]], None]:
    """Build an httpx ``trace`` hook recording network streams as they are opened."""

    def trace(event_name: str, info: Dict[str, Any]) -> None:
        if event_name in _STREAM_OPENED_EVENTS and info.get("return_value") is not None:
            opened.append(info["return_value"])
        if chained is not None:
            chained(event_name, info)

    return trace


def _shutdown_streams(opened: List[Any]) -> None:
    """Shut the sockets under ``opened`` down so blocked reads return at once."""

    for stream in opened:
        sock = stream.get_extra_info("socket")
        if sock is None:
            continue
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError as exc:
            logger.debug("socket already closed", extra={"error": str(exc)})


def _close_late_response(future: "Future[httpx.Response]") -> None:
    """Close a response that arrived after its caller stopped waiting for it."""

    if future.cancelled() or future.exception() is not None:
        return
    future.result().close()


class RestGuard:
    """Registry of services plus the engine that executes their tickets.

    Args:
        config: Client settings; defaults to :class:`GuardConfiguration`.
        client: Pre-built ``httpx.Client`` to use instead of building one.
            The guard does not close clients it did not create.
        transport: Transport for the client built from ``config`` (tests).
        retry_selector: Optional policy choosing the node for each retry.
        sleep: Callable used for inter-retry waits.
        clock: Monotonic clock used by :meth:`do_with_timeout`.

    Examples:
        >>> guard = RestGuard()  # doctest: +SKIP
        >>> service = RestService("api", retries=1)
        >>> service.add_node(RestNode(name="n1", base_url="api1.example.org", ssl=True))
        >>> guard.add_service(service.name, service)
        >>> with service.get_ticket() as ticket:
        ...     guard.create_request(ticket, "GET", "/status")
        ...     response = guard.do(ticket)
    """

    def __init__(
        self,
        config: Optional[GuardConfiguration] = None,
        *,
        client: Optional[httpx.Client] = None,
        transport: Optional[httpx.BaseTransport] = None,
        retry_selector: Optional[RetryNodeSelector] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or GuardConfiguration()
        self.user_agent = self.config.user_agent
        self._owns_client = client is None
        self.client = client if client is not None else build_http_client(
            self.config, transport=transport
        )
        self.retry_selector = retry_selector
        self.services: Dict[str, RestService] = {}
        self._services_lock = threading.Lock()
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_config(cls, config: GuardConfiguration, **kwargs) -> "RestGuard":
        """Build a guard and register every service declared in ``config``."""

        guard = cls(config, **kwargs)
        for entry in config.services:
            service = RestService(
                entry.name,
                entry.nodes,
                retries=entry.retries,
                retry_interval_ms=entry.retry_interval_ms,
                options=entry.options,
            )
            guard.add_service(entry.name, service)
        return guard

    # --- Lifecycle ---------------------------------------------------------

    def close(self) -> None:
        """Close the HTTP client if this guard created it."""

        if self._owns_client:
            self.client.close()

    def __enter__(self) -> "RestGuard":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # --- Registry ----------------------------------------------------------

    def get_user_agent(self) -> str:
        return self.user_agent

    def add_service(self, name: str, service: RestService) -> None:
        with self._services_lock:
            self.services[name] = service

    def get_service(self, name: str) -> RestService:
        with self._services_lock:
            service = self.services.get(name)
        if service is None:
            raise ServiceNotFound(f"Service {name} not found")
        return service

    def add_rest_node(self, name: str, node: RestNode) -> None:
        """Append ``node`` to the registered service ``name``."""

        self.get_service(name).add_node(node)

    # --- Request construction ---------------------------------------------

    def create_request(
        self,
        ticket: RestTicket,
        method: str,
        path: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        content: Optional[Union[str, bytes]] = None,
    ) -> httpx.Request:
        """Select a node for ``ticket`` and build the request to send to it.

        Raises:
            ServiceNotFound: The ticket is not bound to a service.
            NodeListEmpty: The service has no (enabled) nodes.
            MissingValidator: The service has no response validator.
        """
        return self._build_request(ticket, method, path, headers=headers, content=content)

    def _check_ticket(self, ticket: RestTicket) -> RestService:
        service = ticket.service
        if service is None:
            raise ServiceNotFound("The ticket is without service.")
        if not service.get_nodes():
            raise NodeListEmpty(f"The service {service.name} is without nodes.")
        if service.response_validator is None:
            raise MissingValidator(f"Service {service.name} without response validator")
        return service

    def _select_node(self, ticket: RestTicket, service: RestService) -> RestNode:
        if ticket.node is not None:
            return ticket.node
        candidates = service.enabled_nodes()
        if not candidates:
            raise NodeListEmpty(f"The service {service.name} has no enabled nodes.")
        node = candidates[ticket.retries % len(candidates)]
        ticket.node = node
        return node

    def _build_request(
        self,
        ticket: RestTicket,
        method: str,
        path: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        content: Optional[Union[str, bytes]] = None,
    ) -> httpx.Request:
        service = self._check_ticket(ticket)
        if ticket.request is not None:
            ticket.discard_response()
        ticket.path = path
        node = self._select_node(ticket, service)

        if ticket.request_body_producer is not None:
            produced = ticket.request_body_producer(ticket)
            if produced is not None:
                content = produced

        request = self.client.build_request(method, node.url_for(path), headers=headers, content=content)
        if self.user_agent:
            request.headers["User-Agent"] = self.user_agent

        ticket.request = request
        return request

    def _rebuild_request(self, ticket: RestTicket) -> httpx.Request:
        """Rebuild the ticket's request for its (new) node, replaying the body."""

        previous = ticket.request
        if previous is None:
            raise RestGuardError("The ticket is without request; nothing to rebuild.")
        headers = httpx.Headers(previous.headers)
        for name in _REQUEST_BOUND_HEADERS:
            if name in headers:
                del headers[name]
        try:
            content: Optional[bytes] = previous.read()
        except httpx.StreamConsumed:
            if ticket.request_body_producer is None:
                raise RestGuardError(
                    "The request body was streamed and cannot be replayed; "
                    "set a request body producer on the ticket."
                ) from None
            content = None
        return self._build_request(ticket, previous.method, ticket.path, headers=headers, content=content)

    # --- Execution ---------------------------------------------------------

    def do(self, ticket: RestTicket) -> httpx.Response:
        """Send the ticket's request, retrying across nodes until it is accepted.

        Returns:
            The accepted response, also stored on ``ticket.response``.

        Raises:
            TransportError: The last attempt failed below HTTP.
            ValidationFailed: The last response was rejected by the validator.
            RetryCallbackError: The custom retry selector failed.
        """
        return self._execute(ticket, deadline=None)

    execute = do

    def do_with_timeout(self, ticket: RestTicket, seconds: float) -> httpx.Response:
        """Like :meth:`do`, but bounded by ``seconds`` of total wall-clock time.

        The budget is enforced on wall-clock time: an attempt still in flight
        at the deadline is abandoned, its connection shut down, and
        :class:`DeadlineExceeded` raised, however slowly the node responds.

        Raises:
            DeadlineExceeded: The budget ran out; never retried.
        """
        if seconds <= 0:
            raise ValueError("seconds must be positive")
        return self._execute(ticket, deadline=self._clock() + seconds)

    execute_with_timeout = do_with_timeout

    def do_download(self, ticket: RestTicket, destination: "Union[str, PathLike[str]]") -> RestArtefact:
        """Execute ``ticket`` and stream the accepted body into ``destination``."""

        return download_artefact(self, ticket, destination)

    download = do_download

    def _execute(self, ticket: RestTicket, *, deadline: Optional[float]) -> httpx.Response:
        service = self._check_ticket(ticket)
        if ticket.request is None:
            raise RestGuardError("The ticket is without request; call create_request() first.")

        attempts = max(1, service.retries - ticket.retries + 1)

        def _after(retry_state) -> None:
            self._on_failed_attempt(ticket, retry_state, attempts, deadline)

        controller = Retrying(
            stop=stop_after_attempt(attempts),
            retry=retry_if_exception(is_retryable_failure),
            wait=_FailedNodeWait(ticket, service.retry_interval_ms / 1000.0, deadline, self._clock),
            after=_after,
            sleep=self._sleep,
            reraise=True,
        )
        response = controller(self._attempt, ticket, service, deadline)
        logger.debug(
            "request accepted",
            extra={
                "ticket": ticket.id,
                "service": service.name,
                "node": ticket.node.name if ticket.node else None,
                "status": response.status_code,
                "retries": ticket.retries,
            },
        )
        return response

    def _attempt(
        self, ticket: RestTicket, service: RestService, deadline: Optional[float]
    ) -> httpx.Response:
        request = ticket.request
        if request is None:
            raise RestGuardError("The ticket is without request; call create_request() first.")
        try:
            if deadline is None:
                response = self.client.send(request, stream=True)
            else:
                response = self._send_before(ticket, request, deadline)
        except httpx.TimeoutException as exc:
            if deadline is not None and self._clock() >= deadline:
                raise DeadlineExceeded(f"deadline exceeded while calling {request.url}") from exc
            raise TransportError(f"timeout calling {request.url}: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransportError(f"error calling {request.url}: {exc}") from exc

        ticket.response = response
        if not service.response_validator(ticket):
            raise reject(ticket, "response rejected by validator")
        return response

    def _send_before(self, ticket: RestTicket, request: httpx.Request, deadline: float) -> httpx.Response:
        """Send ``request`` on a worker thread and stop waiting at ``deadline``.

        HTTPX timeouts apply per phase and per socket read, so a server that
        trickles its response could otherwise hold the attempt far beyond the
        budget.  The worker's connection is recorded through the ``trace``
        extension; when the deadline passes, its socket is shut down and a
        response that still arrives is closed.  A connection reused from the
        pool is not traced and is bounded by the capped read timeout instead.
        """

        remaining = deadline - self._clock()
        if remaining <= 0:
            raise DeadlineExceeded(
                f"deadline exceeded before attempt {ticket.retries + 1} to {request.url}"
            )
        request.extensions["timeout"] = httpx.Timeout(remaining).as_dict()
        opened: List[Any] = []
        request.extensions["trace"] = _stream_collector(opened, request.extensions.get("trace"))

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="restguard-send")
        try:
            future = executor.submit(self.client.send, request, stream=True)
        finally:
            executor.shutdown(wait=False)
        try:
            return future.result(timeout=remaining)
        except FuturesTimeoutError as exc:
            future.add_done_callback(_close_late_response)
            _shutdown_streams(opened)
            raise DeadlineExceeded(f"deadline exceeded while calling {request.url}") from exc

    def _on_failed_attempt(
        self,
        ticket: RestTicket,
        retry_state,
        attempts: int,
        deadline: Optional[float],
    ) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        ticket.add_fail(ticket.node)
        logger.warning(
            "attempt failed",
            extra={
                "ticket": ticket.id,
                "service": ticket.service_name,
                "node": ticket.node.name if ticket.node else None,
                "attempt": retry_state.attempt_number,
                "max_attempts": attempts,
                "error": str(exc),
            },
        )
        if retry_state.attempt_number >= attempts:
            return
        if deadline is not None and self._clock() >= deadline:
            return
        self._advance(ticket)

    def _advance(self, ticket: RestTicket) -> None:
        """Move ``ticket`` to its next node and rebuild the request for it.

        A custom selector sees the counter of the attempt that just failed; the
        counter only moves once a node has been chosen.
        """

        node: Optional[RestNode] = None
        if self.retry_selector is not None:
            try:
                node = self.retry_selector(self, ticket)
            except Exception as exc:
                raise RetryCallbackError(f"retry node selection failed: {exc}") from exc
        ticket.node = node
        ticket.retries += 1
        self._rebuild_request(ticket)
