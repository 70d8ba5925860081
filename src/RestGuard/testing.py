"""Testing utilities for exercising guarded requests without a network.

:class:`ScriptedTransport` is an :class:`httpx.MockTransport` that serves a
queue of scripted outcomes per host: either a :class:`ResponseSpec` or an
exception raised in place of the exchange.  Hosts without a script behave like
unreachable nodes.  Every request reaching the transport is recorded.
"""

from __future__ import annotations

import contextlib
import json
import threading
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, Iterable, Iterator, List, Mapping, Optional, Union

import httpx

from .guard import RestGuard
from .settings import GuardConfiguration

__all__ = [
    "ResponseSpec",
    "RequestRecord",
    "ScriptedTransport",
    "use_mock_guard",
]

Outcome = Union["ResponseSpec", BaseException]


@dataclass
class ResponseSpec:
    """HTTP response served by :class:`ScriptedTransport`."""

    status: int = 200
    body: Union[bytes, str, dict, list] = b""
    headers: Mapping[str, str] = field(default_factory=dict)
    stream: Optional[Iterable[Union[bytes, str]]] = None
    side_effect: Optional[Callable[[httpx.Request], None]] = None

    def serialise_body(self) -> bytes:
        if isinstance(self.body, bytes):
            return self.body
        if isinstance(self.body, str):
            return self.body.encode("utf-8")
        return json.dumps(self.body).encode("utf-8")


@dataclass
class RequestRecord:
    """Captured HTTP request sent through the guard during tests."""

    method: str
    host: str
    path: str
    headers: Mapping[str, str]
    body: bytes


class ScriptedTransport(httpx.MockTransport):
    """Mock transport replaying scripted outcomes keyed by host.

    Outcomes queued with :meth:`queue` are consumed in order; once a host's
    queue is empty its ``default`` (set with :meth:`set_default`) is served.
    Hosts with neither fail with :class:`httpx.ConnectError`.
    """

    def __init__(self) -> None:
        super().__init__(self._handle)
        self._lock = threading.Lock()
        self._queues: Dict[str, Deque[Outcome]] = defaultdict(deque)
        self._defaults: Dict[str, Outcome] = {}
        self.requests: List[RequestRecord] = []

    def queue(self, host: str, *outcomes: Outcome) -> "ScriptedTransport":
        with self._lock:
            self._queues[host].extend(outcomes)
        return self

    def set_default(self, host: str, outcome: Outcome) -> "ScriptedTransport":
        with self._lock:
            self._defaults[host] = outcome
        return self

    def requests_to(self, host: str) -> List[RequestRecord]:
        return [record for record in self.requests if record.host == host]

    @property
    def hosts(self) -> List[str]:
        """Hosts in the order they were contacted (one entry per request)."""

        return [record.host for record in self.requests]

    def _next_outcome(self, host: str) -> Optional[Outcome]:
        with self._lock:
            pending = self._queues.get(host)
            if pending:
                return pending.popleft()
            return self._defaults.get(host)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        host = request.url.netloc.decode("ascii")
        record = RequestRecord(
            method=request.method,
            host=host,
            path=request.url.path,
            headers=dict(request.headers),
            body=request.read(),
        )
        with self._lock:
            self.requests.append(record)

        outcome = self._next_outcome(host)
        if outcome is None:
            raise httpx.ConnectError(f"no route to host {host}", request=request)
        if isinstance(outcome, BaseException):
            raise outcome

        if outcome.side_effect is not None:
            outcome.side_effect(request)
        headers = dict(outcome.headers)
        if outcome.stream is not None:
            chunks = outcome.stream

            def iterator() -> Iterator[bytes]:
                for chunk in chunks:
                    yield chunk if isinstance(chunk, bytes) else chunk.encode("utf-8")

            return httpx.Response(outcome.status, headers=headers, content=iterator(), request=request)
        # Left unread so the guard sees an open body, as with a real connection.
        body = outcome.serialise_body()
        headers.setdefault("Content-Length", str(len(body)))
        return httpx.Response(
            outcome.status,
            headers=headers,
            stream=httpx.ByteStream(body),
            request=request,
        )


@contextlib.contextmanager
def use_mock_guard(
    transport: httpx.BaseTransport,
    config: Optional[GuardConfiguration] = None,
    **guard_kwargs,
) -> Iterator[RestGuard]:
    """Yield a :class:`RestGuard` whose client is backed by ``transport``."""

    guard = RestGuard(config, transport=transport, **guard_kwargs)
    try:
        yield guard
    finally:
        guard.close()
