from __future__ import annotations

import logging

import pytest

from sensornet.core.config import (
    DEFAULT_GROUP,
    DEFAULT_SENSOR_TYPES,
    NetworkSettings,
    RuntimeSettings,
    SyncSettings,
)
from sensornet.core.logging import ThrottledLogger, get_logger


def test_defaults() -> None:
    settings = RuntimeSettings.from_env(environ={})
    assert settings.network.group == DEFAULT_GROUP == "pupil-mobile-v4"
    assert settings.network.sensor_types == DEFAULT_SENSOR_TYPES
    assert settings.network.poll_interval_s == pytest.approx(0.1)
    assert settings.sync.ping_timeout_s == pytest.approx(1.0)
    assert settings.sync.ping_timeout_ns == 1_000_000_000
    assert settings.sync.history_capacity == 32
    assert settings.log_level == "INFO"


def test_nested_environment_keys() -> None:
    environ = {
        "SENSORNET_NETWORK__GROUP": "lab-group",
        "SENSORNET_NETWORK__SENSOR_TYPES": "gaze, imu ,",
        "SENSORNET_NETWORK__MAX_EVENTS_PER_POLL": "12",
        "SENSORNET_SYNC__PING_TIMEOUT_S": "0.25",
        "SENSORNET_SYNC__HISTORY_CAPACITY": "8",
        "SENSORNET_SYNC__ENABLED": "off",
        "SENSORNET_LOG_LEVEL": "debug",
    }
    settings = RuntimeSettings.from_env(environ=environ)
    assert settings.network.group == "lab-group"
    assert settings.network.sensor_types == ("gaze", "imu")
    assert settings.network.max_events_per_poll == 12
    assert settings.sync.ping_timeout_ns == 250_000_000
    assert settings.sync.history_capacity == 8
    assert settings.sync.enabled is False
    assert settings.log_level == "DEBUG"


def test_invalid_values_fall_back_or_clamp() -> None:
    sync = SyncSettings.from_env(
        environ={
            "SENSORNET_SYNC__PING_TIMEOUT_S": "-3",
            "SENSORNET_SYNC__HISTORY_CAPACITY": "0",
            "SENSORNET_SYNC__ENABLED": "maybe",
        }
    )
    assert sync.ping_timeout_s == pytest.approx(1.0)
    assert sync.history_capacity == 1
    assert sync.enabled is True

    network = NetworkSettings.from_env(
        environ={
            "SENSORNET_NETWORK__POLL_INTERVAL_S": "fast",
            "SENSORNET_NETWORK__MAX_EVENTS_PER_POLL": "-5",
        }
    )
    assert network.poll_interval_s == pytest.approx(0.1)
    assert network.max_events_per_poll == 1


def test_wildcard_accepts_every_sensor_type() -> None:
    assert not NetworkSettings().accepts("world")
    assert NetworkSettings(sensor_types=("*",)).accepts("world")


def test_get_logger_is_namespaced() -> None:
    assert get_logger("core.time_sync").name == "sensornet.core.time_sync"
    assert get_logger("sensornet.runner").name == "sensornet.runner"


def test_throttled_logger_collapses_repeats(caplog: pytest.LogCaptureFixture) -> None:
    logger = logging.getLogger("sensornet.tests.throttle")
    throttled = ThrottledLogger(logger, interval_sec=60.0)
    with caplog.at_level(logging.WARNING, logger="sensornet.tests.throttle"):
        for _ in range(5):
            throttled.warning("regression on %s", "sensor")
    records = [record for record in caplog.records if record.name == "sensornet.tests.throttle"]
    assert len(records) == 1
    assert records[0].getMessage() == "[1] regression on sensor"
