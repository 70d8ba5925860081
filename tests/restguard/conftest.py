"""Shared fixtures for the RestGuard test suite."""

from __future__ import annotations

from typing import Callable, Iterator, List

import pytest

from RestGuard import RestGuard, RestNode, RestService
from RestGuard.testing import ScriptedTransport


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def transport() -> ScriptedTransport:
    return ScriptedTransport()


@pytest.fixture
def sleeps() -> List[float]:
    """Durations passed to the guard's sleep callable."""

    return []


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def guard(transport: ScriptedTransport, sleeps: List[float], clock: FakeClock) -> Iterator[RestGuard]:
    instance = RestGuard(transport=transport, sleep=sleeps.append, clock=clock)
    try:
        yield instance
    finally:
        instance.close()


@pytest.fixture
def make_service(guard: RestGuard) -> Callable[..., RestService]:
    """Register a service with one node per host (``n1`` -> ``hosts[0]``...)."""

    def _make(name: str, *hosts: str, retries: int = 0, retry_interval_ms: int = 0, **kwargs) -> RestService:
        nodes = [RestNode(name=f"n{index}", base_url=host) for index, host in enumerate(hosts, start=1)]
        service = RestService(
            name,
            nodes,
            retries=retries,
            retry_interval_ms=retry_interval_ms,
            **kwargs,
        )
        guard.add_service(name, service)
        return service

    return _make