"""Typed data samples emitted by streaming sensors."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from ..errors import ProtocolViolation

__all__ = [
    "DataSample",
    "Event",
    "GazePoint",
    "ImuSample",
    "RawSample",
    "MAX_EVENT_NAME_LENGTH",
    "SCENE_CAMERA_RESOLUTION",
    "decode_samples",
    "validate_event_name",
]

MAX_EVENT_NAME_LENGTH = 1024

SCENE_CAMERA_RESOLUTION: Tuple[int, int] = (1088, 1080)
"""Width and height of the scene camera frame gaze points refer to."""


@dataclass(slots=True, frozen=True)
class GazePoint:
    """Gaze position in scene-camera pixels, origin at the top-left corner."""

    x: float
    y: float
    timestamp: int


@dataclass(slots=True, frozen=True)
class ImuSample:
    timestamp: int
    gyro_x: float
    gyro_y: float
    gyro_z: float
    accel_x: float
    accel_y: float
    accel_z: float


@dataclass(slots=True, frozen=True)
class Event:
    """Named annotation; ``timestamp`` is ``None`` until the device stamps it."""

    name: str
    timestamp: Optional[int]

    def to_payload(self) -> Dict[str, Any]:
        return {"name": self.name, "timestamp": self.timestamp}


@dataclass(slots=True, frozen=True)
class RawSample:
    """Sample of a sensor type without a dedicated decoder."""

    sensor_type: str
    timestamp: Optional[int]
    payload: Any


DataSample = Union[GazePoint, ImuSample, Event, RawSample]


def validate_event_name(name: Any) -> str:
    if not isinstance(name, str):
        raise ProtocolViolation(f"event name must be a string, got {type(name).__name__}")
    if len(name) > MAX_EVENT_NAME_LENGTH:
        raise ProtocolViolation(
            f"event name has {len(name)} characters (limit {MAX_EVENT_NAME_LENGTH})"
        )
    return name


def _coerce_timestamp(value: Any, *, allow_none: bool = False) -> Optional[int]:
    if value is None and allow_none:
        return None
    # bool is an int subclass but never a valid timestamp
    if isinstance(value, bool) or not isinstance(value, int):
        raise ProtocolViolation(f"timestamp must be integer nanoseconds, got {value!r}")
    return value


def _coerce_number(entry: Dict[str, Any], key: str) -> float:
    value = entry.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ProtocolViolation(f"field {key!r} must be numeric, got {value!r}")
    return float(value)


def _decode_gaze(entry: Dict[str, Any]) -> GazePoint:
    return GazePoint(
        x=_coerce_number(entry, "x"),
        y=_coerce_number(entry, "y"),
        timestamp=_coerce_timestamp(entry.get("timestamp")),  # type: ignore[arg-type]
    )


def _decode_imu(entry: Dict[str, Any]) -> ImuSample:
    return ImuSample(
        timestamp=_coerce_timestamp(entry.get("timestamp")),  # type: ignore[arg-type]
        gyro_x=_coerce_number(entry, "gyro_x"),
        gyro_y=_coerce_number(entry, "gyro_y"),
        gyro_z=_coerce_number(entry, "gyro_z"),
        accel_x=_coerce_number(entry, "accel_x"),
        accel_y=_coerce_number(entry, "accel_y"),
        accel_z=_coerce_number(entry, "accel_z"),
    )


def _decode_event(entry: Dict[str, Any]) -> Event:
    return Event(
        name=validate_event_name(entry.get("name")),
        timestamp=_coerce_timestamp(entry.get("timestamp"), allow_none=True),
    )


_DECODERS = {
    "gaze": _decode_gaze,
    "imu": _decode_imu,
    "event": _decode_event,
}


def decode_sample(sensor_type: str, entry: Any) -> DataSample:
    if not isinstance(entry, dict):
        raise ProtocolViolation(f"sample must be an object, got {type(entry).__name__}")
    decoder = _DECODERS.get(sensor_type)
    if decoder is None:
        timestamp = entry.get("timestamp")
        if timestamp is not None:
            timestamp = _coerce_timestamp(timestamp)
        return RawSample(sensor_type=sensor_type, timestamp=timestamp, payload=entry)
    return decoder(entry)


def decode_samples(sensor_type: str, payload: Any) -> List[DataSample]:
    """Decode a data payload (one sample object or a list of them).

    Raises :class:`ProtocolViolation` if any entry is malformed; the whole
    payload is rejected so a partially decoded batch never reaches callers.
    """

    entries: Iterable[Any]
    if isinstance(payload, list):
        entries = payload
    else:
        entries = [payload]
    return [decode_sample(sensor_type, entry) for entry in entries]
