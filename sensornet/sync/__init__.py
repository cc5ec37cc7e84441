"""Clock synchronisation between the host and connected devices."""

from .estimator import PendingPing, SyncEstimator

__all__ = ["PendingPing", "SyncEstimator"]
