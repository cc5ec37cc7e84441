from __future__ import annotations

import time

from sensornet.core.clock import now_host_ns, ns_to_seconds, seconds_to_ns


def test_host_clock_tracks_the_epoch() -> None:
    assert abs(now_host_ns() - time.time_ns()) < seconds_to_ns(5.0)


def test_host_clock_ignores_wall_clock_steps(monkeypatch) -> None:
    before = now_host_ns()
    monkeypatch.setattr(time, "time_ns", lambda: 0)
    after = now_host_ns()
    assert after >= before
    assert ns_to_seconds(after - before) < 5.0
