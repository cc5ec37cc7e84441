"""Registry of discovered devices and their sensor sessions."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager, suppress
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Set

from ..core.config import NetworkSettings
from ..errors import TransportError, UnknownSensor
from .events import EVENT_SENSOR_TYPE, EventChannel
from .session import SensorInfo, SensorSession
from .transport import Subject, Transport, TransportEvent

__all__ = ["Device", "Listener", "NetworkCoordinator", "SensorInfo"]

log = logging.getLogger(__name__)


@dataclass
class Device:
    """Host announcing one or more sensors on the overlay."""

    uuid: str
    name: str = ""
    address: str = ""
    sensors: Set[str] = field(default_factory=set)


Listener = Callable[["NetworkCoordinator", TransportEvent], None]


class NetworkCoordinator:
    """Own the transport and turn attach/detach announcements into sessions.

    The coordinator never blocks: :meth:`poll_events` applies whatever the
    transport has queued and returns.  Registry changes happen under the tick
    lock, which :meth:`stop` also takes so shutdown never interleaves with a
    tick in flight; callers doing more than :meth:`poll_events` per cycle
    wrap the cycle in :meth:`tick`.
    """

    def __init__(
        self,
        transport: Transport,
        settings: Optional[NetworkSettings] = None,
    ) -> None:
        self._transport = transport
        self._settings = settings or NetworkSettings()
        self._sessions: Dict[str, SensorSession] = {}
        self._devices: Dict[str, Device] = {}
        self._channels: Dict[str, EventChannel] = {}
        self._listeners: List[Listener] = []
        self._tick_lock = threading.RLock()
        self._stopping = threading.Event()
        self._running = False

    # ------------------------------------------------------------------
    # Lifecycle management
    @property
    def settings(self) -> NetworkSettings:
        return self._settings

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Join the configured group; raises :class:`TransportError`."""

        with self._tick_lock:
            if self._running:
                return
            self._transport.join(self._settings.group)
            self._stopping.clear()
            self._running = True
        log.info("Coordinator joined group %s", self._settings.group)

    def stop(self) -> None:
        if self._stopping.is_set() and not self._running:
            return
        self._stopping.set()
        with self._tick_lock:
            if not self._running:
                return
            for session in list(self._sessions.values()):
                session.detach()
            self._sessions.clear()
            self._channels.clear()
            self._devices.clear()
            self._running = False
            try:
                self._transport.leave()
            except TransportError as exc:
                log.warning("Leaving group %s failed: %s", self._settings.group, exc)
        log.info("Coordinator stopped")

    def __enter__(self) -> "NetworkCoordinator":
        self.start()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.stop()

    @contextmanager
    def tick(self) -> Iterator[bool]:
        """Hold the tick lock for a whole poll cycle.

        Yields whether the coordinator is running.  :meth:`stop` waits for the
        block to finish before it detaches sessions and leaves the group.
        """

        with self._tick_lock:
            yield self._running and not self._stopping.is_set()

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        with suppress(ValueError):
            self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # Event processing
    def poll_events(self, max_events: Optional[int] = None) -> int:
        """Apply queued transport events; returns the number applied."""

        limit = max_events if max_events is not None else self._settings.max_events_per_poll
        applied = 0
        with self._tick_lock:
            if not self._running or self._stopping.is_set():
                return 0
            for event in self._transport.poll(max(1, int(limit))):
                if self._stopping.is_set():
                    break
                self._dispatch(event)
                applied += 1
        return applied

    def _dispatch(self, event: TransportEvent) -> None:
        if event.subject is Subject.ATTACH:
            if self._on_attach(event):
                self._notify_listeners(event)
        elif event.subject is Subject.DETACH:
            if self._on_detach(event):
                self._notify_listeners(event)
        else:
            try:
                self._route(event)
            except UnknownSensor as exc:
                log.debug("Dropping %s for untracked sensor %s", event.subject.value, exc.sensor_uuid)

    def _on_attach(self, event: TransportEvent) -> bool:
        if not self._settings.accepts(event.sensor_type):
            log.debug(
                "Ignoring sensor %s of unrecognised type %r", event.sensor_uuid, event.sensor_type
            )
            return False

        existing = self._sessions.get(event.sensor_uuid)
        if existing is not None:
            log.info(
                "Replacing session for re-attached sensor %s (device=%s)",
                event.sensor_uuid,
                event.host_uuid,
            )
            self._remove_session(event.sensor_uuid)

        sensor = SensorInfo(
            uuid=event.sensor_uuid,
            type=event.sensor_type,
            name=event.sensor_name,
            host_uuid=event.host_uuid,
        )
        device = self._devices.get(event.host_uuid)
        if device is None:
            device = Device(uuid=event.host_uuid, name=event.host_name, address=event.host_address)
            self._devices[device.uuid] = device
            log.info("Device joined uuid=%s name=%s address=%s", device.uuid, device.name, device.address)
        device.sensors.add(sensor.uuid)

        session = SensorSession(sensor, self._transport)
        self._sessions[sensor.uuid] = session
        if sensor.type == EVENT_SENSOR_TYPE:
            self._channels[sensor.uuid] = EventChannel(session)
        log.info(
            "Sensor attached uuid=%s type=%s name=%s device=%s",
            sensor.uuid,
            sensor.type,
            sensor.name,
            sensor.host_uuid,
        )
        try:
            session.configure()
        except TransportError as exc:
            log.warning(
                "Configuring sensor %s on device %s failed: %s",
                sensor.uuid,
                sensor.host_uuid,
                exc,
            )
        return True

    def _on_detach(self, event: TransportEvent) -> bool:
        if event.sensor_uuid not in self._sessions:
            log.debug("Ignoring detach of untracked sensor %s", event.sensor_uuid)
            return False
        self._remove_session(event.sensor_uuid)
        log.info("Sensor detached uuid=%s device=%s", event.sensor_uuid, event.host_uuid)
        return True

    def _remove_session(self, sensor_uuid: str) -> None:
        session = self._sessions.pop(sensor_uuid)
        self._channels.pop(sensor_uuid, None)
        session.detach()
        device = self._devices.get(session.device_uuid)
        if device is None:
            return
        device.sensors.discard(sensor_uuid)
        if not device.sensors:
            del self._devices[device.uuid]
            log.info("Device left uuid=%s name=%s", device.uuid, device.name)

    def _route(self, event: TransportEvent) -> None:
        session = self.session(event.sensor_uuid)
        if event.subject is Subject.DATA:
            session._enqueue_data(event.payload, event.received_ns)
        else:
            session._enqueue_notification(event.payload)

    def _notify_listeners(self, event: TransportEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(self, event)
            except Exception:
                log.exception("Listener %r failed on %s", listener, event.subject.value)

    # ------------------------------------------------------------------
    # Queries
    def sessions(self) -> List[SensorSession]:
        with self._tick_lock:
            return list(self._sessions.values())

    def session(self, sensor_uuid: str) -> SensorSession:
        with self._tick_lock:
            session = self._sessions.get(sensor_uuid)
        if session is None:
            raise UnknownSensor(sensor_uuid)
        return session

    def devices(self) -> List[Device]:
        with self._tick_lock:
            return [
                Device(device.uuid, device.name, device.address, set(device.sensors))
                for device in self._devices.values()
            ]

    def device(self, device_uuid: str) -> Optional[Device]:
        with self._tick_lock:
            device = self._devices.get(device_uuid)
            if device is None:
                return None
            return Device(device.uuid, device.name, device.address, set(device.sensors))

    def event_channel(self, sensor_uuid: str) -> EventChannel:
        with self._tick_lock:
            channel = self._channels.get(sensor_uuid)
        if channel is None:
            raise UnknownSensor(sensor_uuid, f"no event sensor {sensor_uuid}")
        return channel

    def event_channels(self) -> List[EventChannel]:
        with self._tick_lock:
            return list(self._channels.values())

    def send_control(self, sensor_uuid: str, control_id: str, value: Any) -> None:
        self.session(sensor_uuid).send_control(control_id, value)
