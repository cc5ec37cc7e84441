"""Zyre group transport backed by :mod:`pyre` and polled through :mod:`zmq`."""

from __future__ import annotations

import logging
import threading
import uuid
from collections import deque
from typing import Deque, Dict, List, Optional

import zmq
from pyre import Pyre, PyreEvent

from ..core.clock import ClockFn, now_host_ns
from ..core.logging import ThrottledLogger
from ..errors import ProtocolViolation, TransportError
from .transport import MessageTranslator, TransportEvent

__all__ = ["PyreTransport"]

log = logging.getLogger(__name__)


class PyreTransport:
    """Join a Zyre group and surface sensor announcements as transport events.

    A receiver thread waits on the node's inbox through a :class:`zmq.Poller`,
    stamps every frame with the host clock as it arrives and queues the
    translated events.  :meth:`poll` only drains that queue, so it never
    blocks and arrival times do not depend on the caller's poll cadence.
    """

    def __init__(
        self,
        name: Optional[str] = None,
        *,
        headers: Optional[Dict[str, str]] = None,
        clock: ClockFn = now_host_ns,
        receive_timeout_ms: int = 50,
    ) -> None:
        self._name = name
        self._headers = dict(headers or {})
        self._clock = clock
        self._receive_timeout_ms = max(1, int(receive_timeout_ms))
        self._node: Optional[Pyre] = None
        self._group: Optional[str] = None
        self._translator = MessageTranslator()
        self._violations = ThrottledLogger(log)
        self._inbox: Deque[TransportEvent] = deque()
        self._inbox_lock = threading.Lock()
        self._receive_error: Optional[TransportError] = None
        self._stop_event = threading.Event()
        self._receiver: Optional[threading.Thread] = None

    @property
    def joined(self) -> bool:
        return self._node is not None

    @property
    def group(self) -> Optional[str]:
        return self._group

    def join(self, group: str) -> None:
        if self._node is not None:
            return
        try:
            node = Pyre(self._name)
            for key, value in self._headers.items():
                node.set_header(key, value)
            node.join(group)
            node.start()
        except Exception as exc:
            raise TransportError(f"failed to join group {group!r}: {exc}") from exc

        poller = zmq.Poller()
        poller.register(node.socket(), zmq.POLLIN)
        self._node = node
        self._group = group
        self._receive_error = None
        self._stop_event.clear()
        self._receiver = threading.Thread(
            target=self._receive_loop,
            args=(node, poller),
            name="PyreReceiver",
            daemon=True,
        )
        self._receiver.start()
        log.info("Joined group %s as %s (%s)", group, node.name(), node.uuid())

    def leave(self) -> None:
        node = self._node
        if node is None:
            return
        self._node = None
        self._stop_event.set()
        receiver = self._receiver
        self._receiver = None
        if receiver is not None:
            receiver.join(timeout=max(1.0, self._receive_timeout_ms / 1000.0 * 4))
        try:
            if self._group:
                node.leave(self._group)
            node.stop()
        except Exception as exc:  # pragma: no cover - network dependent
            log.warning("Leaving group %s failed: %s", self._group, exc)
        finally:
            with self._inbox_lock:
                self._inbox.clear()
            log.info("Left group %s", self._group)
            self._group = None

    def whisper(self, peer_id: str, payload: bytes) -> None:
        node = self._node
        if node is None:
            raise TransportError("transport is not joined")
        try:
            node.whisper(uuid.UUID(peer_id), payload)
        except Exception as exc:
            raise TransportError(f"whisper to {peer_id} failed: {exc}") from exc

    def poll(self, max_events: int) -> List[TransportEvent]:
        events: List[TransportEvent] = []
        with self._inbox_lock:
            while self._inbox and len(events) < max_events:
                events.append(self._inbox.popleft())
            # a receiver failure surfaces once everything it queued is handed out
            if not events and self._receive_error is not None:
                error, self._receive_error = self._receive_error, None
                raise error
        return events

    # ------------------------------------------------------------------
    def _receive_loop(self, node: Pyre, poller: zmq.Poller) -> None:
        socket = node.socket()
        while not self._stop_event.is_set():
            try:
                ready = dict(poller.poll(self._receive_timeout_ms))
            except zmq.ZMQError as exc:
                self._fail(TransportError(f"polling group inbox failed: {exc}"))
                return
            if ready.get(socket) != zmq.POLLIN:
                continue
            received_ns = self._clock()
            try:
                incoming = PyreEvent(node)
            except Exception as exc:
                self._fail(TransportError(f"receiving from group failed: {exc}"))
                return
            events = self._translate(incoming, received_ns)
            if events:
                with self._inbox_lock:
                    self._inbox.extend(events)

    def _fail(self, error: TransportError) -> None:
        if self._stop_event.is_set():
            return
        log.warning("Receiver for group %s stopped: %s", self._group, error)
        with self._inbox_lock:
            self._receive_error = error

    def _translate(
        self, incoming: PyreEvent, received_ns: Optional[int] = None
    ) -> List[TransportEvent]:
        peer_uuid = str(incoming.peer_uuid)
        kind = incoming.type
        if kind == "ENTER":
            self._translator.on_enter(peer_uuid, incoming.peer_name, incoming.peer_addr or "")
            return []
        if kind == "EXIT":
            return self._translator.on_exit(peer_uuid)
        if kind not in {"SHOUT", "WHISPER"} or not incoming.msg:
            return []
        translated: List[TransportEvent] = []
        for frame in incoming.msg:
            try:
                event = self._translator.on_message(
                    peer_uuid, incoming.peer_name, frame, received_ns
                )
            except ProtocolViolation as exc:
                self._violations.warning("Dropping message from %s: %s", peer_uuid, exc)
                continue
            if event is not None:
                translated.append(event)
        return translated
