"""Single cooperative poll loop driving discovery, data and time sync."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from .core.clock import now_mono
from .network.coordinator import NetworkCoordinator
from .network.events import EVENT_SENSOR_TYPE
from .network.samples import DataSample, Event
from .network.session import SensorSession
from .sync.estimator import SyncEstimator

__all__ = ["PollLoop", "SampleCallback", "EventCallback"]

log = logging.getLogger(__name__)

SampleCallback = Callable[[SensorSession, DataSample], None]
EventCallback = Callable[[str, Event], None]


class PollLoop:
    """Tick the coordinator, the sessions and the estimator at a fixed cadence."""

    def __init__(
        self,
        coordinator: NetworkCoordinator,
        estimator: Optional[SyncEstimator] = None,
        *,
        on_sample: Optional[SampleCallback] = None,
        on_event: Optional[EventCallback] = None,
        interval: Optional[float] = None,
    ) -> None:
        self.coordinator = coordinator
        self.estimator = estimator or SyncEstimator(coordinator)
        self._on_sample = on_sample
        self._on_event = on_event
        self._interval = (
            float(interval) if interval is not None else coordinator.settings.poll_interval_s
        )
        self._stop_event = threading.Event()
        self._worker: Optional[threading.Thread] = None
        self.ticks = 0

    @property
    def interval(self) -> float:
        return self._interval

    # ------------------------------------------------------------------
    def run_once(self) -> None:
        """Run one poll cycle; does nothing once the coordinator is stopping."""

        with self.coordinator.tick() as active:
            if not active:
                return
            self.coordinator.poll_events()
            sessions = self.coordinator.sessions()
            for session in sessions:
                while session.has_notifications:
                    session.handle_notification()
            for session in sessions:
                if session.type == EVENT_SENSOR_TYPE:
                    continue
                for sample in session.fetch_data():
                    self._emit_sample(session, sample)
            for sensor_uuid, event in self.estimator.poll():
                self._emit_event(sensor_uuid, event)
            self.ticks += 1

    def run(self, duration: Optional[float] = None) -> None:
        """Loop until :meth:`stop` is called or ``duration`` seconds passed."""

        self.coordinator.start()
        self._stop_event.clear()
        self._loop(duration)

    def _loop(self, duration: Optional[float]) -> None:
        deadline = None if duration is None else now_mono() + duration
        while not self._stop_event.is_set():
            started = now_mono()
            try:
                self.run_once()
            except Exception:
                log.exception("Poll tick failed")
            if deadline is not None and now_mono() >= deadline:
                break
            remaining = self._interval - (now_mono() - started)
            if remaining > 0:
                self._stop_event.wait(remaining)

    # ------------------------------------------------------------------
    def start(self) -> None:
        if self._worker and self._worker.is_alive():
            return
        self.coordinator.start()
        self._stop_event.clear()
        self._worker = threading.Thread(target=self._loop, args=(None,), name="PollLoop", daemon=True)
        self._worker.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._worker is not None:
            self._worker.join(timeout=max(1.0, self._interval * 5))
            self._worker = None
        self.coordinator.stop()

    # ------------------------------------------------------------------
    def _emit_sample(self, session: SensorSession, sample: DataSample) -> None:
        if self._on_sample is None:
            return
        try:
            self._on_sample(session, sample)
        except Exception:
            log.exception("Sample callback failed for sensor %s", session.uuid)

    def _emit_event(self, sensor_uuid: str, event: Event) -> None:
        if self._on_event is None:
            return
        try:
            self._on_event(sensor_uuid, event)
        except Exception:
            log.exception("Event callback failed for sensor %s", sensor_uuid)
