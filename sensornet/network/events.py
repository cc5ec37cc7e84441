"""Named event annotations sent to and echoed by ``event`` sensors."""

from __future__ import annotations

import logging
from typing import Any, Iterator, Optional, Tuple

from ..errors import ProtocolViolation
from .samples import Event, validate_event_name
from .session import SensorSession
from .transport import event_command

__all__ = ["EventChannel", "EVENT_SENSOR_TYPE", "TIME_PROBE_NAME"]

log = logging.getLogger(__name__)

EVENT_SENSOR_TYPE = "event"
TIME_PROBE_NAME = "<<time>>"
"""Reserved event name used for clock offset probes."""


def _check_timestamp(timestamp: Any) -> Optional[int]:
    if timestamp is None:
        return None
    if isinstance(timestamp, bool) or not isinstance(timestamp, int):
        raise ProtocolViolation(f"event timestamp must be int nanoseconds or None, got {timestamp!r}")
    return timestamp


class EventChannel:
    """Publish and receive events through one ``event`` sensor session."""

    def __init__(self, session: SensorSession) -> None:
        if session.type != EVENT_SENSOR_TYPE:
            raise ValueError(f"sensor {session.uuid} has type {session.type!r}, not 'event'")
        self._session = session

    @property
    def session(self) -> SensorSession:
        return self._session

    @property
    def sensor_uuid(self) -> str:
        return self._session.uuid

    def publish(self, name: str, timestamp: Optional[int] = None) -> Event:
        """Send ``name`` to the device.

        Without ``timestamp`` the device stamps the event on reception.
        """

        validate_event_name(name)
        if name == TIME_PROBE_NAME:
            raise ProtocolViolation(f"{TIME_PROBE_NAME!r} is reserved for time probes")
        return self._send(Event(name=name, timestamp=_check_timestamp(timestamp)))

    def send_probe(self) -> Event:
        return self._send(Event(name=TIME_PROBE_NAME, timestamp=None))

    def drain(self) -> Iterator[Event]:
        """Yield the events received since the last drain, in arrival order."""

        for _, event in self.drain_arrivals():
            yield event

    def drain_arrivals(self) -> Iterator[Tuple[Optional[int], Event]]:
        """Yield ``(received_ns, event)`` pairs; ``received_ns`` may be ``None``."""

        for received_ns, sample in self._session.fetch_arrivals():
            if isinstance(sample, Event):
                yield received_ns, sample

    def _send(self, event: Event) -> Event:
        self._session.send_message(event_command(self.sensor_uuid, event.name, event.timestamp))
        log.debug("event sent sensor=%s name=%s timestamp=%s", self.sensor_uuid, event.name, event.timestamp)
        return event
