"""Transport surface consumed by the coordinator and the message envelope."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Set, runtime_checkable

from ..errors import ProtocolViolation

__all__ = [
    "Subject",
    "Transport",
    "TransportEvent",
    "MessageTranslator",
    "PeerInfo",
    "decode_message",
    "encode_message",
    "event_command",
    "refresh_command",
    "set_control_command",
]

log = logging.getLogger(__name__)


class Subject(str, Enum):
    """Kinds of inbound events handed to the coordinator."""

    ATTACH = "attach"
    DETACH = "detach"
    DATA = "data"
    NOTIFICATION = "notification"


@dataclass(slots=True, frozen=True)
class TransportEvent:
    """One inbound announcement, notification or data frame.

    ``received_ns`` is the host clock reading taken when the frame came off the
    wire, or ``None`` when the transport does not stamp arrivals.
    """

    subject: Subject
    sensor_uuid: str
    sensor_type: str = ""
    sensor_name: str = ""
    host_uuid: str = ""
    host_name: str = ""
    host_address: str = ""
    payload: Any = None
    received_ns: Optional[int] = None


@runtime_checkable
class Transport(Protocol):
    """Minimal group-messaging capability the coordinator relies on.

    ``poll`` must never block: it returns whatever inbound events are queued,
    at most ``max_events`` of them.
    """

    def join(self, group: str) -> None: ...

    def leave(self) -> None: ...

    def whisper(self, peer_id: str, payload: bytes) -> None: ...

    def poll(self, max_events: int) -> List[TransportEvent]: ...


# ----------------------------------------------------------------------
# Envelope helpers
def encode_message(message: Dict[str, Any]) -> bytes:
    return json.dumps(message, separators=(",", ":")).encode("utf-8")


def decode_message(raw: bytes) -> Dict[str, Any]:
    try:
        message = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ProtocolViolation(f"undecodable message: {exc}") from exc
    if not isinstance(message, dict):
        raise ProtocolViolation("message must be a JSON object")
    if not isinstance(message.get("subject"), str):
        raise ProtocolViolation("message lacks a subject")
    return message


def set_control_command(sensor_uuid: str, control_id: str, value: Any) -> Dict[str, Any]:
    return {
        "subject": "set_control_value",
        "sensor_uuid": sensor_uuid,
        "control_id": control_id,
        "value": value,
    }


def refresh_command(sensor_uuid: str) -> Dict[str, Any]:
    return {"subject": "refresh_controls", "sensor_uuid": sensor_uuid}


def event_command(sensor_uuid: str, name: str, timestamp: Optional[int]) -> Dict[str, Any]:
    return {
        "subject": "event",
        "sensor_uuid": sensor_uuid,
        "payload": {"name": name, "timestamp": timestamp},
    }


# ----------------------------------------------------------------------
@dataclass
class PeerInfo:
    uuid: str
    name: str = ""
    address: str = ""
    sensors: Dict[str, str] = field(default_factory=dict)


class MessageTranslator:
    """Turn overlay peer events into :class:`TransportEvent` objects.

    Keeps track of which sensors every peer announced so that a peer leaving
    the overlay detaches all of them.
    """

    _NOTIFICATION_SUBJECTS: Set[str] = {"update", "remove", "error"}

    def __init__(self) -> None:
        self._peers: Dict[str, PeerInfo] = {}

    def peers(self) -> List[PeerInfo]:
        return list(self._peers.values())

    def peer(self, peer_uuid: str) -> PeerInfo:
        info = self._peers.get(peer_uuid)
        if info is None:
            info = PeerInfo(uuid=peer_uuid)
            self._peers[peer_uuid] = info
        return info

    def on_enter(self, peer_uuid: str, peer_name: str, address: str) -> None:
        info = self.peer(peer_uuid)
        info.name = peer_name or info.name
        info.address = address or info.address
        log.debug("peer enter uuid=%s name=%s address=%s", peer_uuid, peer_name, address)

    def on_exit(self, peer_uuid: str) -> List[TransportEvent]:
        info = self._peers.pop(peer_uuid, None)
        if info is None:
            return []
        log.debug("peer exit uuid=%s sensors=%d", peer_uuid, len(info.sensors))
        return [
            TransportEvent(
                subject=Subject.DETACH,
                sensor_uuid=sensor_uuid,
                sensor_type=sensor_type,
                host_uuid=info.uuid,
                host_name=info.name,
                host_address=info.address,
            )
            for sensor_uuid, sensor_type in info.sensors.items()
        ]

    def on_message(
        self,
        peer_uuid: str,
        peer_name: str,
        raw: bytes,
        received_ns: Optional[int] = None,
    ) -> Optional[TransportEvent]:
        """Translate one message frame; raises :class:`ProtocolViolation`."""

        message = decode_message(raw)
        subject = message["subject"]
        sensor_uuid = message.get("sensor_uuid")
        if not isinstance(sensor_uuid, str) or not sensor_uuid:
            raise ProtocolViolation(f"{subject} message without sensor_uuid")

        info = self.peer(peer_uuid)
        if peer_name and not info.name:
            info.name = peer_name

        if subject == "attach":
            sensor_type = message.get("sensor_type")
            if not isinstance(sensor_type, str):
                raise ProtocolViolation("attach message without sensor_type")
            info.sensors[sensor_uuid] = sensor_type
            return TransportEvent(
                subject=Subject.ATTACH,
                sensor_uuid=sensor_uuid,
                sensor_type=sensor_type,
                sensor_name=str(message.get("sensor_name") or ""),
                host_uuid=info.uuid,
                host_name=info.name,
                host_address=info.address,
            )
        if subject == "detach":
            sensor_type = info.sensors.pop(sensor_uuid, "")
            return TransportEvent(
                subject=Subject.DETACH,
                sensor_uuid=sensor_uuid,
                sensor_type=sensor_type,
                host_uuid=info.uuid,
                host_name=info.name,
                host_address=info.address,
            )
        if subject == "data":
            return TransportEvent(
                subject=Subject.DATA,
                sensor_uuid=sensor_uuid,
                sensor_type=info.sensors.get(sensor_uuid, ""),
                host_uuid=info.uuid,
                payload=message.get("payload"),
                received_ns=received_ns,
            )
        if subject in self._NOTIFICATION_SUBJECTS:
            return TransportEvent(
                subject=Subject.NOTIFICATION,
                sensor_uuid=sensor_uuid,
                sensor_type=info.sensors.get(sensor_uuid, ""),
                host_uuid=info.uuid,
                payload=message,
                received_ns=received_ns,
            )
        log.debug("Ignoring message with subject %s from %s", subject, peer_uuid)
        return None
