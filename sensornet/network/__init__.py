"""Discovery, sessions and event channels of the sensor network."""

from .coordinator import Device, NetworkCoordinator
from .events import TIME_PROBE_NAME, EventChannel
from .loopback import LoopbackTransport
from .samples import DataSample, Event, GazePoint, ImuSample, RawSample
from .session import Control, SensorInfo, SensorSession, SessionState
from .transport import Subject, Transport, TransportEvent

__all__ = [
    "Control",
    "DataSample",
    "Device",
    "Event",
    "EventChannel",
    "GazePoint",
    "ImuSample",
    "LoopbackTransport",
    "NetworkCoordinator",
    "RawSample",
    "SensorInfo",
    "SensorSession",
    "SessionState",
    "Subject",
    "TIME_PROBE_NAME",
    "Transport",
    "TransportEvent",
]
