"""Per-sensor streaming session: control state, buffered data and notifications."""

from __future__ import annotations

import logging
import threading
import warnings
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Deque, Dict, Iterator, Optional, Tuple

from ..core.logging import ThrottledLogger
from ..errors import ClockRegression, ProtocolViolation, TransportError
from .samples import DataSample, decode_samples
from .transport import Transport, encode_message, refresh_command, set_control_command

__all__ = ["Control", "SensorInfo", "SensorSession", "SessionState", "STREAMING_CONTROL"]

log = logging.getLogger(__name__)

STREAMING_CONTROL = "streaming"


class SessionState(Enum):
    ATTACHED = "attached"
    CONFIGURING = "configuring"
    STREAMING = "streaming"
    DETACHED = "detached"


@dataclass(frozen=True)
class SensorInfo:
    """Identity of an announced sensor and the device hosting it."""

    uuid: str
    type: str
    name: str = ""
    host_uuid: str = ""


@dataclass
class Control:
    control_id: str
    value: Any = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class SensorSession:
    """Client-side view of one remote sensor.

    Inbound data and notifications are queued by the coordinator and consumed
    by the caller through :meth:`fetch_data` and :meth:`handle_notification`.
    Outbound commands are whispered to the hosting device straight away.
    """

    def __init__(self, sensor: SensorInfo, transport: Transport) -> None:
        self.sensor = sensor
        self._transport = transport
        self._state = SessionState.ATTACHED
        self._controls: Dict[str, Control] = {}
        self._notifications: Deque[Any] = deque()
        self._data: Deque[Tuple[Optional[int], Any]] = deque()
        self._decoded: Deque[Tuple[Optional[int], DataSample]] = deque()
        self._last_timestamp: Optional[int] = None
        self._regressions = 0
        self._lock = threading.Lock()
        self._regression_log = ThrottledLogger(log)

    # ------------------------------------------------------------------
    @property
    def uuid(self) -> str:
        return self.sensor.uuid

    @property
    def type(self) -> str:
        return self.sensor.type

    @property
    def device_uuid(self) -> str:
        return self.sensor.host_uuid

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    @property
    def is_ready(self) -> bool:
        return self.state is SessionState.STREAMING

    @property
    def controls(self) -> Dict[str, Control]:
        with self._lock:
            return {
                key: Control(control.control_id, control.value, dict(control.metadata))
                for key, control in self._controls.items()
            }

    @property
    def has_notifications(self) -> bool:
        with self._lock:
            return bool(self._notifications)

    @property
    def regression_count(self) -> int:
        return self._regressions

    def __repr__(self) -> str:
        return (
            f"<SensorSession {self.sensor.type} {self.sensor.uuid} "
            f"state={self.state.value}>"
        )

    # ------------------------------------------------------------------
    # Inbound buffers, filled by the coordinator
    def _enqueue_notification(self, message: Any) -> None:
        with self._lock:
            if self._state is SessionState.DETACHED:
                return
            self._notifications.append(message)

    def _enqueue_data(self, payload: Any, received_ns: Optional[int] = None) -> None:
        with self._lock:
            if self._state is SessionState.DETACHED:
                return
            self._data.append((received_ns, payload))

    # ------------------------------------------------------------------
    # Lifecycle
    def configure(self) -> None:
        """Request streaming and a full control listing from the device."""

        with self._lock:
            if self._state is SessionState.ATTACHED:
                self._state = SessionState.CONFIGURING
        self.send_control(STREAMING_CONTROL, True)
        self.refresh_controls()

    def detach(self) -> None:
        with self._lock:
            if self._state is SessionState.DETACHED:
                return
            self._state = SessionState.DETACHED
            self._notifications.clear()
            self._data.clear()
            self._decoded.clear()
        log.debug("Session detached sensor=%s device=%s", self.uuid, self.device_uuid)

    # ------------------------------------------------------------------
    # Outbound commands
    def send_control(self, control_id: str, value: Any) -> None:
        self.send_message(set_control_command(self.uuid, control_id, value))
        log.debug("set_control sensor=%s control=%s value=%r", self.uuid, control_id, value)

    def refresh_controls(self) -> None:
        self.send_message(refresh_command(self.uuid))

    def send_message(self, message: Dict[str, Any]) -> None:
        if self.state is SessionState.DETACHED:
            raise TransportError(f"sensor {self.uuid} is detached")
        try:
            self._transport.whisper(self.device_uuid, encode_message(message))
        except TransportError as exc:
            log.warning(
                "Sending %s failed sensor=%s device=%s: %s",
                message["subject"],
                self.uuid,
                self.device_uuid,
                exc,
            )
            raise

    # ------------------------------------------------------------------
    # Notifications
    def handle_notification(self) -> bool:
        """Apply the oldest queued notification; return whether state changed."""

        with self._lock:
            if not self._notifications:
                return False
            message = self._notifications.popleft()
        try:
            return self._apply_notification(message)
        except ProtocolViolation as exc:
            log.warning(
                "Dropping notification sensor=%s device=%s: %s",
                self.uuid,
                self.device_uuid,
                exc,
            )
            return False

    def _apply_notification(self, message: Any) -> bool:
        if not isinstance(message, dict):
            raise ProtocolViolation("notification must be an object")
        subject = message.get("subject")
        if subject == "error":
            log.warning(
                "Device error sensor=%s device=%s: %s",
                self.uuid,
                self.device_uuid,
                message.get("error_str") or message.get("message") or message,
            )
            return False
        control_id = message.get("control_id")
        if not isinstance(control_id, str) or not control_id:
            raise ProtocolViolation(f"{subject} notification without control_id")
        if subject == "remove":
            with self._lock:
                return self._controls.pop(control_id, None) is not None
        if subject != "update":
            raise ProtocolViolation(f"unsupported notification subject {subject!r}")

        changes = message.get("changes")
        if not isinstance(changes, dict):
            raise ProtocolViolation("update notification without changes")

        with self._lock:
            if self._state is SessionState.DETACHED:
                return False
            current = self._controls.get(control_id)
            metadata = dict(current.metadata) if current else {}
            metadata.update({key: val for key, val in changes.items() if key != "value"})
            value = changes.get("value", current.value if current else None)
            changed = current is None or current.value != value or current.metadata != metadata
            if changed:
                self._controls[control_id] = Control(control_id, value, metadata)
            transitioned = False
            if control_id == STREAMING_CONTROL:
                transitioned = self._apply_streaming(bool(value))
        return changed or transitioned

    def _apply_streaming(self, streaming: bool) -> bool:
        previous = self._state
        if streaming and previous is SessionState.CONFIGURING:
            self._state = SessionState.STREAMING
        elif not streaming and previous is SessionState.STREAMING:
            self._state = SessionState.CONFIGURING
        else:
            return False
        log.info(
            "Session state sensor=%s device=%s %s->%s",
            self.uuid,
            self.device_uuid,
            previous.value,
            self._state.value,
        )
        return True

    # ------------------------------------------------------------------
    # Data
    def fetch_data(self) -> Iterator[DataSample]:
        """Yield the samples buffered so far, oldest first.

        Samples are taken off the buffer one at a time, so whatever a caller
        does not consume stays queued for the next call.
        """

        for _, sample in self.fetch_arrivals():
            yield sample

    def fetch_arrivals(self) -> Iterator[Tuple[Optional[int], DataSample]]:
        """Like :meth:`fetch_data`, paired with each frame's arrival time."""

        while True:
            with self._lock:
                if self._state is SessionState.DETACHED:
                    return
                if not self._decoded and not self._decode_next():
                    return
                item = self._decoded.popleft()
            self._check_timestamp(item[1])
            yield item

    def _decode_next(self) -> bool:
        # caller holds self._lock
        while self._data:
            received_ns, payload = self._data.popleft()
            try:
                samples = decode_samples(self.type, payload)
            except ProtocolViolation as exc:
                log.warning(
                    "Dropping malformed data sensor=%s device=%s: %s",
                    self.uuid,
                    self.device_uuid,
                    exc,
                )
                continue
            if samples:
                self._decoded.extend((received_ns, sample) for sample in samples)
                return True
        return False

    def _check_timestamp(self, sample: DataSample) -> None:
        timestamp = sample.timestamp
        if timestamp is None:
            return
        previous = self._last_timestamp
        self._last_timestamp = timestamp
        if previous is None or timestamp >= previous:
            return
        self._regressions += 1
        self._regression_log.warning(
            "Timestamp regression sensor=%s device=%s previous=%d observed=%d",
            self.uuid,
            self.device_uuid,
            previous,
            timestamp,
        )
        warnings.warn(ClockRegression(self.uuid, previous, timestamp), stacklevel=3)
