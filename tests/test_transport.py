from __future__ import annotations

import json
import uuid
from types import SimpleNamespace

import pytest

from sensornet.errors import ProtocolViolation, TransportError
from sensornet.network.loopback import LoopbackTransport
from sensornet.network.pyre_transport import PyreTransport
from sensornet.network.transport import (
    MessageTranslator,
    Subject,
    Transport,
    decode_message,
    encode_message,
    event_command,
)


def _frame(**message: object) -> bytes:
    return json.dumps(message).encode("utf-8")


def test_attach_data_and_notifications_are_translated() -> None:
    translator = MessageTranslator()
    translator.on_enter("peer-1", "companion", "10.0.0.5")

    attach = translator.on_message(
        "peer-1",
        "companion",
        _frame(subject="attach", sensor_uuid="s-1", sensor_type="gaze", sensor_name="Gaze"),
    )
    assert attach is not None
    assert attach.subject is Subject.ATTACH
    assert (attach.sensor_type, attach.sensor_name) == ("gaze", "Gaze")
    assert (attach.host_uuid, attach.host_name, attach.host_address) == (
        "peer-1",
        "companion",
        "10.0.0.5",
    )

    data = translator.on_message(
        "peer-1", "companion", _frame(subject="data", sensor_uuid="s-1", payload=[{"x": 1}])
    )
    assert data is not None and data.subject is Subject.DATA
    assert data.payload == [{"x": 1}]
    assert data.sensor_type == "gaze"

    update = translator.on_message(
        "peer-1",
        "companion",
        _frame(subject="update", sensor_uuid="s-1", control_id="gain", changes={"value": 2}),
    )
    assert update is not None and update.subject is Subject.NOTIFICATION
    assert update.payload["control_id"] == "gain"


def test_unknown_subject_is_ignored() -> None:
    translator = MessageTranslator()
    assert translator.on_message("peer", "", _frame(subject="heartbeat", sensor_uuid="s")) is None


@pytest.mark.parametrize(
    "raw",
    [
        b"\xff\xfe",
        b"not json",
        b"[1, 2]",
        b'{"sensor_uuid": "s-1"}',
        b'{"subject": "data"}',
        b'{"subject": "attach", "sensor_uuid": "s-1"}',
    ],
)
def test_malformed_frames_raise(raw: bytes) -> None:
    with pytest.raises(ProtocolViolation):
        MessageTranslator().on_message("peer", "", raw)


def test_peer_exit_detaches_announced_sensors() -> None:
    translator = MessageTranslator()
    translator.on_message("peer", "", _frame(subject="attach", sensor_uuid="a", sensor_type="gaze"))
    translator.on_message("peer", "", _frame(subject="attach", sensor_uuid="b", sensor_type="event"))
    translator.on_message("peer", "", _frame(subject="detach", sensor_uuid="a"))
    events = translator.on_exit("peer")
    assert [(event.subject, event.sensor_uuid, event.sensor_type) for event in events] == [
        (Subject.DETACH, "b", "event")
    ]
    assert translator.on_exit("peer") == []
    assert translator.peers() == []


def test_envelope_round_trip() -> None:
    message = event_command("s-1", "marker", None)
    encoded = encode_message(message)
    assert b" " not in encoded
    assert decode_message(encoded) == message


def test_loopback_satisfies_transport_protocol() -> None:
    assert isinstance(LoopbackTransport(), Transport)


def test_pyre_events_are_translated(caplog: pytest.LogCaptureFixture) -> None:
    transport = PyreTransport("test-node")
    peer = uuid.uuid4()

    def incoming(kind: str, msg=None) -> SimpleNamespace:
        return SimpleNamespace(
            type=kind,
            peer_uuid=peer,
            peer_name="companion",
            peer_addr="tcp://10.0.0.5:49152",
            msg=msg,
        )

    assert transport._translate(incoming("ENTER")) == []
    attach = _frame(subject="attach", sensor_uuid="s-1", sensor_type="imu")
    events = transport._translate(incoming("SHOUT", [attach, b"garbage"]))
    assert [(event.subject, event.host_uuid, event.host_address) for event in events] == [
        (Subject.ATTACH, str(peer), "tcp://10.0.0.5:49152")
    ]
    assert "Dropping message from" in caplog.text

    [detach] = transport._translate(incoming("EXIT"))
    assert (detach.subject, detach.sensor_uuid) == (Subject.DETACH, "s-1")


def test_pyre_transport_before_join() -> None:
    transport = PyreTransport()
    assert not transport.joined
    assert transport.poll(10) == []
    with pytest.raises(TransportError):
        transport.whisper(str(uuid.uuid4()), b"{}")
    transport.leave()


def test_loopback_stamps_data_on_arrival(clock) -> None:
    transport = LoopbackTransport(clock=clock)
    device = transport.add_device()
    sensor_uuid = transport.attach_sensor(device, "gaze")
    clock.advance(5_000)
    transport.push_data(sensor_uuid, [{"x": 1.0, "y": 1.0, "timestamp": 1}])
    attach, data = transport.poll(10)
    assert attach.received_ns is None
    assert data.received_ns == clock()


def test_pyre_frames_carry_their_arrival_time() -> None:
    transport = PyreTransport("test-node")
    peer = uuid.uuid4()
    incoming = SimpleNamespace(
        type="WHISPER",
        peer_uuid=peer,
        peer_name="companion",
        peer_addr=None,
        msg=[_frame(subject="data", sensor_uuid="s-1", payload={"x": 1})],
    )
    [data] = transport._translate(incoming, 1_234)
    assert (data.subject, data.received_ns) == (Subject.DATA, 1_234)


def test_pyre_receiver_failure_surfaces_on_poll() -> None:
    transport = PyreTransport()
    transport._receive_error = TransportError("inbox closed")
    with pytest.raises(TransportError, match="inbox closed"):
        transport.poll(10)
    assert transport.poll(10) == []
