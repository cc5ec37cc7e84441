"""Client runtime for discovering wearable sensors and synchronising their clocks."""

from .core.config import NetworkSettings, RuntimeSettings, SyncSettings
from .core.time_sync import NO_ESTIMATE_YET, ClockModel, ClockOffsetEstimate
from .errors import (
    ClockRegression,
    ProtocolViolation,
    SensorNetError,
    SyncTimeout,
    TransportError,
    UnknownSensor,
)
from .network.coordinator import Device, NetworkCoordinator
from .network.events import TIME_PROBE_NAME, EventChannel
from .network.session import SensorSession, SessionState
from .runner import PollLoop
from .sync.estimator import SyncEstimator

__all__ = [
    "ClockModel",
    "ClockOffsetEstimate",
    "ClockRegression",
    "Device",
    "EventChannel",
    "NO_ESTIMATE_YET",
    "NetworkCoordinator",
    "NetworkSettings",
    "PollLoop",
    "ProtocolViolation",
    "RuntimeSettings",
    "SensorNetError",
    "SensorSession",
    "SessionState",
    "SyncEstimator",
    "SyncSettings",
    "SyncTimeout",
    "TIME_PROBE_NAME",
    "TransportError",
    "UnknownSensor",
]

__version__ = "0.1.0"
