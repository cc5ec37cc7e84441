"""In-memory transport that simulates device hosts for tests and dry runs."""

from __future__ import annotations

import logging
import threading
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional, Tuple

from ..core.clock import ClockFn, now_host_ns
from ..errors import TransportError
from .transport import Subject, TransportEvent, decode_message

__all__ = ["LoopbackTransport", "SimulatedDevice"]

log = logging.getLogger(__name__)


@dataclass
class SimulatedDevice:
    """A fake host; its clock reads ``clock_offset_ns`` behind the host clock."""

    uuid: str
    name: str
    address: str
    clock_offset_ns: int = 0
    sensors: Dict[str, str] = field(default_factory=dict)
    controls: Dict[str, Dict[str, Any]] = field(default_factory=dict)


class LoopbackTransport:
    """Transport whose peers live in the same process.

    Commands whispered by the client are applied to the simulated device:
    control writes are confirmed with ``update`` notifications and events are
    echoed back on the event sensor's data stream, stamped with the device
    clock when the client left the timestamp empty.  Data and notifications
    carry the host clock reading at the moment they were queued as their
    arrival time.
    """

    def __init__(
        self,
        *,
        clock: ClockFn = now_host_ns,
        auto_confirm: bool = True,
        auto_echo: bool = True,
    ) -> None:
        self._clock = clock
        self.auto_confirm = auto_confirm
        self.auto_echo = auto_echo
        self.fail_join = False
        self.fail_sends = False
        self.group: Optional[str] = None
        self.sent: List[Tuple[str, Dict[str, Any]]] = []
        self._devices: Dict[str, SimulatedDevice] = {}
        self._sensor_hosts: Dict[str, str] = {}
        self._inbox: Deque[TransportEvent] = deque()
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Transport protocol
    def join(self, group: str) -> None:
        if self.fail_join:
            raise TransportError(f"loopback join of {group!r} refused")
        self.group = group

    def leave(self) -> None:
        self.group = None

    def whisper(self, peer_id: str, payload: bytes) -> None:
        if self.fail_sends:
            raise TransportError(f"loopback peer {peer_id} unreachable")
        device = self._devices.get(peer_id)
        if device is None:
            raise TransportError(f"unknown peer {peer_id}")
        message = decode_message(payload)
        with self._lock:
            self.sent.append((peer_id, message))
        self._apply_command(device, message)

    def poll(self, max_events: int) -> List[TransportEvent]:
        events: List[TransportEvent] = []
        with self._lock:
            while self._inbox and len(events) < max_events:
                events.append(self._inbox.popleft())
        return events

    # ------------------------------------------------------------------
    # Simulation helpers
    def add_device(
        self,
        name: str = "companion",
        *,
        device_uuid: Optional[str] = None,
        address: str = "127.0.0.1",
        clock_offset_ns: int = 0,
    ) -> SimulatedDevice:
        device = SimulatedDevice(
            uuid=device_uuid or str(uuid.uuid4()),
            name=name,
            address=address,
            clock_offset_ns=clock_offset_ns,
        )
        self._devices[device.uuid] = device
        return device

    def device(self, device_uuid: str) -> SimulatedDevice:
        return self._devices[device_uuid]

    def device_time_ns(self, device: SimulatedDevice) -> int:
        return self._clock() - device.clock_offset_ns

    def attach_sensor(
        self,
        device: SimulatedDevice,
        sensor_type: str,
        *,
        sensor_uuid: Optional[str] = None,
        name: Optional[str] = None,
    ) -> str:
        sensor_uuid = sensor_uuid or str(uuid.uuid4())
        device.sensors[sensor_uuid] = sensor_type
        device.controls.setdefault(sensor_uuid, {"streaming": {"value": False, "dtype": "bool"}})
        self._sensor_hosts[sensor_uuid] = device.uuid
        self._push(
            TransportEvent(
                subject=Subject.ATTACH,
                sensor_uuid=sensor_uuid,
                sensor_type=sensor_type,
                sensor_name=name or f"{device.name} {sensor_type}",
                host_uuid=device.uuid,
                host_name=device.name,
                host_address=device.address,
            )
        )
        return sensor_uuid

    def detach_sensor(self, sensor_uuid: str, *, host_uuid: Optional[str] = None) -> None:
        host = host_uuid or self._sensor_hosts.pop(sensor_uuid, "")
        device = self._devices.get(host)
        sensor_type = ""
        if device is not None:
            sensor_type = device.sensors.pop(sensor_uuid, "")
            device.controls.pop(sensor_uuid, None)
        self._push(
            TransportEvent(
                subject=Subject.DETACH,
                sensor_uuid=sensor_uuid,
                sensor_type=sensor_type,
                host_uuid=host,
            )
        )

    def remove_device(self, device: SimulatedDevice) -> None:
        """Simulate the host leaving the group: every sensor detaches."""

        for sensor_uuid in list(device.sensors):
            self.detach_sensor(sensor_uuid, host_uuid=device.uuid)
            self._sensor_hosts.pop(sensor_uuid, None)
        self._devices.pop(device.uuid, None)

    def push_data(self, sensor_uuid: str, payload: Any) -> None:
        self._push(
            TransportEvent(
                subject=Subject.DATA,
                sensor_uuid=sensor_uuid,
                host_uuid=self._sensor_hosts.get(sensor_uuid, ""),
                payload=payload,
                received_ns=self._clock(),
            )
        )

    def push_notification(self, sensor_uuid: str, message: Dict[str, Any]) -> None:
        self._push(
            TransportEvent(
                subject=Subject.NOTIFICATION,
                sensor_uuid=sensor_uuid,
                host_uuid=self._sensor_hosts.get(sensor_uuid, ""),
                payload=message,
                received_ns=self._clock(),
            )
        )

    def push_event(self, event: TransportEvent) -> None:
        self._push(event)

    def pending(self) -> int:
        with self._lock:
            return len(self._inbox)

    # ------------------------------------------------------------------
    def _push(self, event: TransportEvent) -> None:
        with self._lock:
            self._inbox.append(event)

    def _apply_command(self, device: SimulatedDevice, message: Dict[str, Any]) -> None:
        subject = message["subject"]
        sensor_uuid = str(message.get("sensor_uuid", ""))
        controls = device.controls.setdefault(sensor_uuid, {})
        if subject == "set_control_value":
            control_id = str(message.get("control_id"))
            entry = dict(controls.get(control_id, {}))
            entry["value"] = message.get("value")
            controls[control_id] = entry
            if self.auto_confirm:
                self._notify_update(sensor_uuid, control_id, entry)
        elif subject == "refresh_controls":
            if self.auto_confirm:
                for control_id, entry in controls.items():
                    self._notify_update(sensor_uuid, control_id, entry)
        elif subject == "event":
            if not self.auto_echo:
                return
            payload = dict(message.get("payload") or {})
            if payload.get("timestamp") is None:
                payload["timestamp"] = self.device_time_ns(device)
            self.push_data(sensor_uuid, [payload])
        else:
            log.debug("Loopback ignoring command %s", subject)

    def _notify_update(self, sensor_uuid: str, control_id: str, entry: Dict[str, Any]) -> None:
        self.push_notification(
            sensor_uuid,
            {
                "subject": "update",
                "sensor_uuid": sensor_uuid,
                "control_id": control_id,
                "changes": dict(entry),
            },
        )
