from __future__ import annotations

import json
from typing import List, Tuple

import pytest

from sensornet.errors import ProtocolViolation
from sensornet.network.events import TIME_PROBE_NAME, EventChannel
from sensornet.network.samples import MAX_EVENT_NAME_LENGTH, Event, GazePoint
from sensornet.network.session import SensorInfo, SensorSession


class _RecordingTransport:
    def __init__(self) -> None:
        self.sent: List[Tuple[str, dict]] = []

    def join(self, group: str) -> None:  # pragma: no cover - unused
        pass

    def leave(self) -> None:  # pragma: no cover - unused
        pass

    def whisper(self, peer_id: str, payload: bytes) -> None:
        self.sent.append((peer_id, json.loads(payload.decode("utf-8"))))

    def poll(self, max_events: int) -> list:  # pragma: no cover - unused
        return []


@pytest.fixture
def channel_and_transport() -> Tuple[EventChannel, _RecordingTransport]:
    transport = _RecordingTransport()
    session = SensorSession(SensorInfo("ev-1", "event", "events", "host-1"), transport)
    return EventChannel(session), transport


def test_publish_without_timestamp_sends_null(channel_and_transport) -> None:
    channel, transport = channel_and_transport
    event = channel.publish("trial.start")
    assert event == Event("trial.start", None)
    assert transport.sent == [
        (
            "host-1",
            {
                "subject": "event",
                "sensor_uuid": "ev-1",
                "payload": {"name": "trial.start", "timestamp": None},
            },
        )
    ]


def test_publish_with_timestamp(channel_and_transport) -> None:
    channel, transport = channel_and_transport
    channel.publish("stimulus", 1_700_000_000_000_000_000)
    assert transport.sent[0][1]["payload"]["timestamp"] == 1_700_000_000_000_000_000


def test_name_length_boundary(channel_and_transport) -> None:
    channel, transport = channel_and_transport
    channel.publish("a" * MAX_EVENT_NAME_LENGTH)
    with pytest.raises(ProtocolViolation):
        channel.publish("a" * (MAX_EVENT_NAME_LENGTH + 1))
    assert len(transport.sent) == 1


@pytest.mark.parametrize(
    "name, timestamp",
    [
        (TIME_PROBE_NAME, None),
        (42, None),
        ("ok", 1.5),
        ("ok", True),
        ("ok", "123"),
    ],
)
def test_invalid_publish_sends_nothing(channel_and_transport, name, timestamp) -> None:
    channel, transport = channel_and_transport
    with pytest.raises(ProtocolViolation):
        channel.publish(name, timestamp)
    assert transport.sent == []


def test_probe_uses_reserved_name(channel_and_transport) -> None:
    channel, transport = channel_and_transport
    assert channel.send_probe() == Event(TIME_PROBE_NAME, None)
    assert transport.sent[0][1]["payload"] == {"name": "<<time>>", "timestamp": None}


def test_drain_keeps_order_and_duplicates(channel_and_transport) -> None:
    channel, _ = channel_and_transport
    channel.session._enqueue_data([{"name": "a", "timestamp": 1}, {"name": "a", "timestamp": 1}])
    channel.session._enqueue_data({"name": "b", "timestamp": 2})
    assert list(channel.drain()) == [Event("a", 1), Event("a", 1), Event("b", 2)]
    assert list(channel.drain()) == []


def test_channel_requires_event_sensor() -> None:
    session = SensorSession(SensorInfo("gz-1", "gaze", "gaze", "host-1"), _RecordingTransport())
    with pytest.raises(ValueError):
        EventChannel(session)
    assert list(session.fetch_data()) == []
    session._enqueue_data([{"x": 1, "y": 2, "timestamp": 3}])
    assert list(session.fetch_data()) == [GazePoint(1.0, 2.0, 3)]


@pytest.mark.parametrize("name", ["", "trial.start", "ü" * MAX_EVENT_NAME_LENGTH])
def test_publish_then_drain_over_loopback(coordinator, loopback, settle, clock, name) -> None:
    device = loopback.add_device(clock_offset_ns=2_000)
    sensor = loopback.attach_sensor(device, "event")
    settle(coordinator)
    channel = coordinator.event_channel(sensor)

    channel.publish(name)
    coordinator.poll_events()
    assert list(channel.drain()) == [Event(name, clock() - 2_000)]
