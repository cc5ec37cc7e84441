"""Central configuration helpers for discovery, polling and time sync."""

from __future__ import annotations

import os
import socket
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple

from .clock import seconds_to_ns

__all__ = [
    "DEFAULT_GROUP",
    "DEFAULT_SENSOR_TYPES",
    "ENV_PREFIX",
    "NetworkSettings",
    "SyncSettings",
    "RuntimeSettings",
]


DEFAULT_GROUP = "pupil-mobile-v4"
"""Group joined on the discovery overlay by default."""

DEFAULT_SENSOR_TYPES: Tuple[str, ...] = ("gaze", "event", "imu")
"""Sensor types that are attached when no explicit list is configured."""

ENV_PREFIX = "SENSORNET_"


def _coerce_float(value: str | None, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _coerce_int(value: str | None, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _coerce_bool(value: str | None, default: bool) -> bool:
    if value is None or value == "":
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


def _coerce_list(value: str | None, default: Tuple[str, ...]) -> Tuple[str, ...]:
    if value is None:
        return default
    items = tuple(item.strip() for item in value.split(",") if item.strip())
    return items or default


def _default_node_name() -> str:
    try:
        return socket.gethostname() or "sensornet"
    except OSError:  # pragma: no cover - platform dependent
        return "sensornet"


@dataclass(frozen=True)
class NetworkSettings:
    """Discovery and polling parameters used by the network coordinator."""

    group: str = DEFAULT_GROUP
    node_name: str = field(default_factory=_default_node_name)
    poll_interval_s: float = 0.1
    max_events_per_poll: int = 256
    sensor_types: Tuple[str, ...] = DEFAULT_SENSOR_TYPES

    def accepts(self, sensor_type: str) -> bool:
        return "*" in self.sensor_types or sensor_type in self.sensor_types

    @classmethod
    def from_env(
        cls, prefix: str = ENV_PREFIX + "NETWORK__", environ: Optional[Mapping[str, str]] = None
    ) -> "NetworkSettings":
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            group=(env.get(prefix + "GROUP") or defaults.group).strip(),
            node_name=(env.get(prefix + "NODE_NAME") or defaults.node_name).strip(),
            poll_interval_s=max(
                0.001, _coerce_float(env.get(prefix + "POLL_INTERVAL_S"), defaults.poll_interval_s)
            ),
            max_events_per_poll=max(
                1,
                _coerce_int(env.get(prefix + "MAX_EVENTS_PER_POLL"), defaults.max_events_per_poll),
            ),
            sensor_types=_coerce_list(env.get(prefix + "SENSOR_TYPES"), defaults.sensor_types),
        )


@dataclass(frozen=True)
class SyncSettings:
    """Tunable parameters of the ping/echo clock offset estimation."""

    ping_timeout_s: float = 1.0
    history_capacity: int = 32
    enabled: bool = True

    @property
    def ping_timeout_ns(self) -> int:
        return seconds_to_ns(self.ping_timeout_s)

    @classmethod
    def from_env(
        cls, prefix: str = ENV_PREFIX + "SYNC__", environ: Optional[Mapping[str, str]] = None
    ) -> "SyncSettings":
        env = os.environ if environ is None else environ
        defaults = cls()
        timeout = _coerce_float(env.get(prefix + "PING_TIMEOUT_S"), defaults.ping_timeout_s)
        if timeout <= 0:
            timeout = defaults.ping_timeout_s
        return cls(
            ping_timeout_s=timeout,
            history_capacity=max(
                1, _coerce_int(env.get(prefix + "HISTORY_CAPACITY"), defaults.history_capacity)
            ),
            enabled=_coerce_bool(env.get(prefix + "ENABLED"), defaults.enabled),
        )


@dataclass(frozen=True)
class RuntimeSettings:
    """Top-level settings bundle consumed by the poll loop and the CLI."""

    network: NetworkSettings = field(default_factory=NetworkSettings)
    sync: SyncSettings = field(default_factory=SyncSettings)
    log_level: str = "INFO"

    @classmethod
    def from_env(
        cls, prefix: str = ENV_PREFIX, environ: Optional[Mapping[str, str]] = None
    ) -> "RuntimeSettings":
        env = os.environ if environ is None else environ
        return cls(
            network=NetworkSettings.from_env(prefix + "NETWORK__", env),
            sync=SyncSettings.from_env(prefix + "SYNC__", env),
            log_level=(env.get(prefix + "LOG_LEVEL") or "INFO").strip().upper(),
        )
