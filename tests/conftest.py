from __future__ import annotations

import pytest

from sensornet.core.config import NetworkSettings
from sensornet.network.coordinator import NetworkCoordinator
from sensornet.network.loopback import LoopbackTransport


class _FakeClock:
    """Manually advanced nanosecond clock."""

    def __init__(self, start_ns: int = 1_700_000_000_000_000_000) -> None:
        self.now_ns = start_ns

    def __call__(self) -> int:
        return self.now_ns

    def advance(self, delta_ns: int) -> int:
        self.now_ns += delta_ns
        return self.now_ns


@pytest.fixture
def clock() -> _FakeClock:
    return _FakeClock()


@pytest.fixture
def loopback(clock: _FakeClock) -> LoopbackTransport:
    return LoopbackTransport(clock=clock)


@pytest.fixture
def coordinator(loopback: LoopbackTransport):
    coordinator = NetworkCoordinator(loopback, NetworkSettings(node_name="test-host"))
    coordinator.start()
    yield coordinator
    coordinator.stop()


def _settle(coordinator: NetworkCoordinator, rounds: int = 3) -> None:
    for _ in range(rounds):
        coordinator.poll_events()
        for session in coordinator.sessions():
            while session.has_notifications:
                session.handle_notification()


@pytest.fixture
def settle():
    """Apply queued events and notifications until the loopback is quiet."""

    return _settle
