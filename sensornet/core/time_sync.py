"""Device/host clock offset estimation from round-trip samples."""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional, Sequence, Union

from .clock import ns_to_seconds
from .logging import get_logger

__all__ = [
    "ClockModel",
    "ClockOffsetEstimate",
    "NoEstimateYet",
    "NO_ESTIMATE_YET",
    "DEFAULT_HISTORY_CAPACITY",
]

DEFAULT_HISTORY_CAPACITY = 32


@dataclass(slots=True, frozen=True)
class ClockOffsetEstimate:
    """Single round-trip derived offset between host and device.

    ``offset_ns`` follows the convention ``local - remote``: a positive value
    means the device clock reads behind the host clock.  The measurement
    assumes a symmetrical delay model, using ``RTT / 2`` for the one-way
    propagation delay.
    """

    device_uuid: str
    roundtrip_ns: int
    offset_ns: int
    sample_time_ns: int
    remote_ns: int

    @property
    def roundtrip_s(self) -> float:
        return ns_to_seconds(self.roundtrip_ns)

    @property
    def roundtrip_ms(self) -> float:
        return self.roundtrip_ns / 1_000_000.0

    @property
    def offset_s(self) -> float:
        return ns_to_seconds(self.offset_ns)

    @property
    def offset_ms(self) -> float:
        return self.offset_ns / 1_000_000.0


class NoEstimateYet:
    """Sentinel type returned while a device has no round-trip history."""

    __slots__ = ()

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "<NoEstimateYet>"


NO_ESTIMATE_YET = NoEstimateYet()


class ClockModel:
    """Keep a bounded per-device history of clock offset estimates."""

    def __init__(
        self,
        capacity: int = DEFAULT_HISTORY_CAPACITY,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = int(capacity)
        self._histories: Dict[str, Deque[ClockOffsetEstimate]] = {}
        self._lock = threading.Lock()
        self._log = logger or get_logger("core.time_sync")

    @property
    def capacity(self) -> int:
        return self._capacity

    # ------------------------------------------------------------------
    def record_round_trip(
        self, device: str, send_ns: int, recv_ns: int, remote_ns: int
    ) -> ClockOffsetEstimate:
        """Compute and store the estimate for one probe/echo exchange."""

        send_ns = int(send_ns)
        recv_ns = int(recv_ns)
        remote_ns = int(remote_ns)
        if recv_ns < send_ns:
            raise ValueError("recv_ns must be >= send_ns")

        roundtrip_ns = recv_ns - send_ns
        offset_ns = (recv_ns + send_ns - 2 * remote_ns) // 2
        estimate = ClockOffsetEstimate(
            device_uuid=device,
            roundtrip_ns=roundtrip_ns,
            offset_ns=offset_ns,
            sample_time_ns=send_ns + roundtrip_ns // 2,
            remote_ns=remote_ns,
        )
        with self._lock:
            history = self._histories.get(device)
            if history is None:
                history = deque(maxlen=self._capacity)
                self._histories[device] = history
            history.append(estimate)
            size = len(history)
        self._log.debug(
            "time_sync device=%s rtt_ms=%.3f offset_ms=%.3f history=%d",
            device,
            estimate.roundtrip_ms,
            estimate.offset_ms,
            size,
        )
        return estimate

    def current_offset(self, device: str) -> Union[ClockOffsetEstimate, NoEstimateYet]:
        """Return the most recent estimate or :data:`NO_ESTIMATE_YET`."""

        with self._lock:
            history = self._histories.get(device)
            if not history:
                return NO_ESTIMATE_YET
            return history[-1]

    def history(self, device: str) -> List[ClockOffsetEstimate]:
        with self._lock:
            return list(self._histories.get(device, ()))

    def devices(self) -> List[str]:
        with self._lock:
            return [device for device, history in self._histories.items() if history]

    def forget(self, device: str) -> None:
        with self._lock:
            self._histories.pop(device, None)

    # ------------------------------------------------------------------
    def best_estimate(self, device: str) -> Union[ClockOffsetEstimate, NoEstimateYet]:
        """Return the estimate with the shortest round trip.

        Short round trips bound the asymmetry error most tightly, so this is
        usually the most trustworthy single sample in the window.
        """

        history = self.history(device)
        if not history:
            return NO_ESTIMATE_YET
        return min(history, key=lambda estimate: estimate.roundtrip_ns)

    def median_offset_ns(self, device: str) -> Optional[float]:
        history = self.history(device)
        if not history:
            return None
        return statistics_median([estimate.offset_ns for estimate in history])

    def offset_spread_ns(self, device: str) -> Optional[float]:
        """Median absolute deviation of the offsets in the window."""

        history = self.history(device)
        if not history:
            return None
        offsets = [estimate.offset_ns for estimate in history]
        return median_absolute_deviation(offsets, statistics_median(offsets))

    def drift_ppm(self, device: str) -> Optional[float]:
        """Return the device clock rate error relative to the host in ppm.

        Requires at least two samples taken at distinct host times.
        """

        history = self.history(device)
        if len(history) < 2:
            return None
        slope = regression_slope(history)
        if slope is None:
            return None
        return (slope - 1.0) * 1_000_000.0

    def to_local_ns(self, device: str, remote_ns: int) -> Optional[int]:
        """Map a device timestamp into the host clock using the latest offset."""

        estimate = self.current_offset(device)
        if not estimate:
            return None
        return int(remote_ns) + estimate.offset_ns

    def __repr__(self) -> str:
        return f"<ClockModel(devices={len(self.devices())}, capacity={self._capacity})>"


def statistics_median(values: Sequence[float]) -> float:
    sorted_vals = sorted(values)
    n = len(sorted_vals)
    if n == 0:
        raise ValueError("median of empty sequence")
    mid = n // 2
    if n % 2:
        return float(sorted_vals[mid])
    return (sorted_vals[mid - 1] + sorted_vals[mid]) / 2


def median_absolute_deviation(values: Sequence[float], median: float) -> float:
    if not values:
        return 0.0
    deviations = [abs(v - median) for v in values]
    return statistics_median(deviations)


def regression_slope(samples: Sequence[ClockOffsetEstimate]) -> Optional[float]:
    # Centre on the first sample in integer space so epoch-sized nanosecond
    # values keep their precision once converted to float.
    base_host = samples[0].sample_time_ns
    base_remote = samples[0].remote_ns
    hosts = [float(sample.sample_time_ns - base_host) for sample in samples]
    remotes = [float(sample.remote_ns - base_remote) for sample in samples]
    mean_host = sum(hosts) / len(hosts)
    mean_remote = sum(remotes) / len(remotes)
    numerator = 0.0
    denominator = 0.0
    for host, remote in zip(hosts, remotes):
        centered_host = host - mean_host
        numerator += centered_host * (remote - mean_remote)
        denominator += centered_host * centered_host
    if abs(denominator) < 1e-12:
        return None
    return numerator / denominator
