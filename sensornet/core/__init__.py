"""Clock, configuration and logging building blocks."""

from .clock import now_host_ns, now_mono
from .config import NetworkSettings, RuntimeSettings, SyncSettings
from .time_sync import NO_ESTIMATE_YET, ClockModel, ClockOffsetEstimate, NoEstimateYet

__all__ = [
    "ClockModel",
    "ClockOffsetEstimate",
    "NO_ESTIMATE_YET",
    "NetworkSettings",
    "NoEstimateYet",
    "RuntimeSettings",
    "SyncSettings",
    "now_host_ns",
    "now_mono",
]
