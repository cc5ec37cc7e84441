"""Error types raised or signalled by the sensor network runtime."""

from __future__ import annotations

from typing import Optional

__all__ = [
    "SensorNetError",
    "TransportError",
    "ProtocolViolation",
    "UnknownSensor",
    "SyncTimeout",
    "ClockRegression",
]


class SensorNetError(RuntimeError):
    """Base class for runtime errors of the sensor network client."""


class TransportError(SensorNetError):
    """Raised when joining the group or sending a message fails."""


class ProtocolViolation(SensorNetError, ValueError):
    """Raised for malformed payloads or values the protocol does not allow."""


class UnknownSensor(SensorNetError, LookupError):
    """Raised when a sensor UUID is not tracked by the coordinator."""

    def __init__(self, sensor_uuid: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"unknown sensor {sensor_uuid}")
        self.sensor_uuid = sensor_uuid


class SyncTimeout(SensorNetError):
    """A time probe was not echoed within the configured timeout."""

    def __init__(self, sensor_uuid: str, waited_ns: int) -> None:
        super().__init__(
            f"no echo from sensor {sensor_uuid} after {waited_ns / 1_000_000.0:.1f}ms"
        )
        self.sensor_uuid = sensor_uuid
        self.waited_ns = waited_ns


class ClockRegression(UserWarning):
    """Warning category for a device timestamp that went backwards."""

    def __init__(self, sensor_uuid: str, previous_ns: int, observed_ns: int) -> None:
        super().__init__(
            f"timestamp regression on sensor {sensor_uuid}: "
            f"{observed_ns} < {previous_ns} ({previous_ns - observed_ns}ns)"
        )
        self.sensor_uuid = sensor_uuid
        self.previous_ns = previous_ns
        self.observed_ns = observed_ns
