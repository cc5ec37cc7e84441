"""Round-trip clock offset estimation over ``event`` sensors."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Set, Tuple

from ..core.clock import ClockFn, now_host_ns
from ..core.config import SyncSettings
from ..core.time_sync import ClockModel
from ..errors import SyncTimeout, TransportError, UnknownSensor
from ..network.coordinator import NetworkCoordinator
from ..network.events import EVENT_SENSOR_TYPE, TIME_PROBE_NAME, EventChannel
from ..network.samples import Event

__all__ = ["PendingPing", "SyncEstimator"]

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingPing:
    sensor_uuid: str
    device_uuid: str
    send_ns: int
    deadline_ns: int


def _log_timeout(error: SyncTimeout) -> None:
    log.warning(
        "time_sync sensor=%s status=timeout waited_ms=%.1f",
        error.sensor_uuid,
        error.waited_ns / 1_000_000.0,
    )


class SyncEstimator:
    """Send ``<<time>>`` probes and turn their echoes into clock offsets.

    Each ready event sensor has at most one probe in flight.  The echo carries
    the device's reception time; together with the local send time and the
    transport's arrival stamp it yields one
    :class:`~sensornet.core.time_sync.ClockOffsetEstimate` for the hosting
    device.  ``clock`` must be the clock the transport stamps arrivals with;
    it is only read directly for frames that arrive unstamped.

    Probes carry no identifier, so an echo of a probe that already timed out
    is told apart by counting: every abandoned probe makes the next echo from
    that sensor stale.  Any other event drained on the way is handed back to
    the caller untouched.
    """

    def __init__(
        self,
        coordinator: NetworkCoordinator,
        clock_model: Optional[ClockModel] = None,
        *,
        settings: Optional[SyncSettings] = None,
        clock: ClockFn = now_host_ns,
        on_timeout: Optional[Callable[[SyncTimeout], None]] = None,
    ) -> None:
        self._coordinator = coordinator
        self._settings = settings or SyncSettings()
        self._clock_model = clock_model or ClockModel(self._settings.history_capacity)
        self._clock = clock
        self._on_timeout = on_timeout or _log_timeout
        self._pending: Dict[str, PendingPing] = {}
        self._stale: Dict[str, int] = {}
        self._absorbed: Set[str] = set()
        self._state_lock = threading.Lock()
        self._timeouts = 0

    # ------------------------------------------------------------------
    @property
    def clock_model(self) -> ClockModel:
        return self._clock_model

    @property
    def timeout_count(self) -> int:
        return self._timeouts

    def pending(self, sensor_uuid: str) -> Optional[PendingPing]:
        with self._state_lock:
            return self._pending.get(sensor_uuid)

    def pending_pings(self) -> List[PendingPing]:
        with self._state_lock:
            return list(self._pending.values())

    # ------------------------------------------------------------------
    def ping(self, sensor_uuid: str) -> bool:
        """Probe one event sensor; ``False`` if it is not ready or already probed.

        Raises :class:`UnknownSensor` for untracked sensors and propagates
        :class:`TransportError` from the send.
        """

        channel = self._coordinator.event_channel(sensor_uuid)
        return self._ping_channel(channel)

    def issue_pings(self) -> int:
        if not self._settings.enabled:
            return 0
        issued = 0
        for channel in self._coordinator.event_channels():
            try:
                if self._ping_channel(channel):
                    issued += 1
            except TransportError as exc:
                log.warning(
                    "time_sync sensor=%s device=%s status=send_failed error=%s",
                    channel.sensor_uuid,
                    channel.session.device_uuid,
                    exc,
                )
        return issued

    def _ping_channel(self, channel: EventChannel) -> bool:
        session = channel.session
        if session.type != EVENT_SENSOR_TYPE or not session.is_ready:
            return False
        with self._state_lock:
            if session.uuid in self._pending:
                return False
            send_ns = self._clock()
            ping = PendingPing(
                sensor_uuid=session.uuid,
                device_uuid=session.device_uuid,
                send_ns=send_ns,
                deadline_ns=send_ns + self._settings.ping_timeout_ns,
            )
            # the slot is taken before sending so concurrent callers back off
            self._pending[session.uuid] = ping
        try:
            channel.send_probe()
        except TransportError:
            with self._state_lock:
                if self._pending.get(session.uuid) is ping:
                    del self._pending[session.uuid]
            raise
        log.debug("time_sync sensor=%s device=%s status=probe", ping.sensor_uuid, ping.device_uuid)
        return True

    # ------------------------------------------------------------------
    def collect(self) -> List[Tuple[str, Event]]:
        """Drain all event channels; return the non-probe events in order."""

        passthrough: List[Tuple[str, Event]] = []
        for channel in self._coordinator.event_channels():
            for received_ns, event in channel.drain_arrivals():
                if event.name == TIME_PROBE_NAME:
                    self._on_echo(channel.sensor_uuid, event, received_ns)
                else:
                    passthrough.append((channel.sensor_uuid, event))
        self._discard_vanished()
        self.expire()
        return passthrough

    def poll(self) -> List[Tuple[str, Event]]:
        events = self.collect()
        self.issue_pings()
        return events

    def expire(self) -> List[SyncTimeout]:
        now = self._clock()
        with self._state_lock:
            expired = [ping for ping in self._pending.values() if now > ping.deadline_ns]
            for ping in expired:
                del self._pending[ping.sensor_uuid]
                self._abandon(ping.sensor_uuid)
        errors = [SyncTimeout(ping.sensor_uuid, now - ping.send_ns) for ping in expired]
        for error in errors:
            self._timeouts += 1
            try:
                self._on_timeout(error)
            except Exception:
                log.exception("Timeout callback failed for sensor %s", error.sensor_uuid)
        return errors

    # ------------------------------------------------------------------
    def _abandon(self, sensor_uuid: str) -> None:
        # caller holds self._state_lock
        if sensor_uuid in self._absorbed:
            # the stale echo this ping swallowed was most likely its own
            self._absorbed.discard(sensor_uuid)
            return
        self._stale[sensor_uuid] = self._stale.get(sensor_uuid, 0) + 1

    def _on_echo(self, sensor_uuid: str, echo: Event, received_ns: Optional[int]) -> None:
        recv_ns = self._clock() if received_ns is None else received_ns
        with self._state_lock:
            stale = self._stale.get(sensor_uuid, 0)
            ping = None
            if stale:
                if stale > 1:
                    self._stale[sensor_uuid] = stale - 1
                else:
                    del self._stale[sensor_uuid]
                if sensor_uuid in self._pending:
                    self._absorbed.add(sensor_uuid)
            else:
                ping = self._pending.pop(sensor_uuid, None)
                self._absorbed.discard(sensor_uuid)
        if stale:
            log.debug(
                "time_sync sensor=%s status=stale_echo outstanding=%d", sensor_uuid, stale - 1
            )
            return
        if ping is None:
            log.debug("time_sync sensor=%s status=unmatched_echo", sensor_uuid)
            return
        if echo.timestamp is None:
            log.warning(
                "time_sync sensor=%s device=%s status=unstamped_echo",
                sensor_uuid,
                ping.device_uuid,
            )
            return
        try:
            estimate = self._clock_model.record_round_trip(
                ping.device_uuid, ping.send_ns, recv_ns, echo.timestamp
            )
        except ValueError as exc:
            log.warning(
                "time_sync sensor=%s device=%s status=rejected error=%s",
                sensor_uuid,
                ping.device_uuid,
                exc,
            )
            return
        log.info(
            "time_sync device=%s sensor=%s status=ok rtt_ms=%.3f offset_ms=%.3f",
            ping.device_uuid,
            sensor_uuid,
            estimate.roundtrip_ms,
            estimate.offset_ms,
        )

    def _discard_vanished(self) -> None:
        with self._state_lock:
            tracked = set(self._pending) | set(self._stale)
        for sensor_uuid in tracked:
            try:
                session = self._coordinator.session(sensor_uuid)
            except UnknownSensor:
                session = None
            if session is not None and session.is_ready:
                continue
            with self._state_lock:
                cleared = self._pending.pop(sensor_uuid, None) is not None
                if session is None:
                    self._stale.pop(sensor_uuid, None)
                    self._absorbed.discard(sensor_uuid)
                elif cleared:
                    self._abandon(sensor_uuid)
            if cleared:
                log.debug("time_sync sensor=%s status=cleared", sensor_uuid)
