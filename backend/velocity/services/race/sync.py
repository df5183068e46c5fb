"""Two-party race synchronization channel.

The host is authoritative for content: it sends INIT with the sentence list,
both sides stream UPDATE while racing and send FINISH at the end. There is
no sequence numbering, acknowledgement or retry; whichever UPDATE arrives
last wins.

Concrete transports subclass :class:`SyncChannel` and implement the four
``_open``/``_dial``/``_transmit``/``_close`` hooks, reporting link events
back through ``_handle_open``/``_handle_frame``/``_handle_close``.
"""

import abc
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from velocity.errors import MalformedMessage, PeerConnectionError
from velocity.models import MultiplayerMode, PeerState

logger = logging.getLogger('velocity.race.sync')


class MessageType(str, Enum):
    INIT = 'INIT'
    UPDATE = 'UPDATE'
    FINISH = 'FINISH'


@dataclass
class Message:
    type: MessageType
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self):
        return {'type': self.type.value, 'payload': dict(self.payload)}

    @classmethod
    def from_dict(cls, data) -> 'Message':
        if not isinstance(data, dict):
            raise MalformedMessage(f"frame is not an object: {type(data).__name__}")
        try:
            msg_type = MessageType(data.get('type'))
        except ValueError:
            raise MalformedMessage(f"unknown message type: {data.get('type')!r}")
        payload = data.get('payload') or {}
        if not isinstance(payload, dict):
            raise MalformedMessage(f"payload of {msg_type.value} is not an object")
        return cls(type=msg_type, payload=payload)


def _subscribe(listeners: List[Callable], fn: Callable) -> Callable[[], None]:
    listeners.append(fn)

    def unsubscribe():
        if fn in listeners:
            listeners.remove(fn)
    return unsubscribe


class SyncChannel(abc.ABC):

    def __init__(self):
        self.state: Optional[PeerState] = None
        self._connect_listeners: List[Callable[[], None]] = []
        self._data_listeners: List[Callable[[Message], None]] = []
        self._close_listeners: List[Callable[[], None]] = []
        self._link_open = False
        self._connect_fired = False

    # ---- public contract ----

    @property
    def connected(self) -> bool:
        return bool(self.state and self.state.connected and self._link_open)

    def initialize(self, is_host: bool) -> str:
        """Establish a local identity; raises PeerConnectionError on failure."""
        role = MultiplayerMode.HOST if is_host else MultiplayerMode.CLIENT
        self._connect_fired = False
        try:
            local_id = self._open(is_host)
        except PeerConnectionError:
            raise
        except Exception as exc:
            raise PeerConnectionError(str(exc)) from exc
        if not local_id:
            raise PeerConnectionError('transport returned no identity')
        self.state = PeerState(local_id=local_id, role=role)
        logger.info(f"[peer-init] id={local_id} role={role.value}")
        return local_id

    def join(self, remote_id: str) -> None:
        if not self.state:
            logger.warning(f"[peer-join-skip] remote={remote_id} no local identity")
            return
        self._connect_fired = False
        try:
            self._dial(remote_id)
        except Exception as exc:
            logger.warning(f"[peer-join-failed] remote={remote_id} error={exc}")

    def send(self, msg_type: MessageType, payload: Optional[Dict[str, Any]] = None) -> bool:
        if not self.connected:
            return False
        message = Message(type=MessageType(msg_type), payload=payload or {})
        try:
            self._transmit(message.to_dict())
        except Exception as exc:
            logger.warning(f"[peer-send-failed] type={message.type.value} error={exc}")
            return False
        return True

    def on_connect(self, fn: Callable[[], None]) -> Callable[[], None]:
        return _subscribe(self._connect_listeners, fn)

    def on_data(self, fn: Callable[[Message], None]) -> Callable[[], None]:
        return _subscribe(self._data_listeners, fn)

    def on_close(self, fn: Callable[[], None]) -> Callable[[], None]:
        return _subscribe(self._close_listeners, fn)

    def cleanup(self) -> None:
        if self.state is None and not self._link_open:
            return
        try:
            self._close()
        except Exception as exc:
            logger.warning(f"[peer-cleanup] error={exc}")
        logger.info(f"[peer-destroyed] id={self.state.local_id if self.state else None}")
        self.state = None
        self._link_open = False

    # ---- transport callbacks ----

    def _handle_open(self) -> None:
        self._link_open = True
        if self.state:
            self.state.connected = True
        if self._connect_fired:
            return
        self._connect_fired = True
        logger.info(f"[peer-open] id={self.state.local_id if self.state else None}")
        for fn in list(self._connect_listeners):
            fn()

    def _handle_frame(self, frame) -> None:
        try:
            message = Message.from_dict(frame)
        except MalformedMessage as exc:
            logger.warning(f"[peer-drop] {exc}")
            return
        for fn in list(self._data_listeners):
            fn(message)

    def _handle_close(self) -> None:
        was_open = self._link_open
        self._link_open = False
        # the next link to open is a new establishment
        self._connect_fired = False
        if self.state:
            self.state.connected = False
        if not was_open:
            return
        logger.info(f"[peer-closed] id={self.state.local_id if self.state else None}")
        for fn in list(self._close_listeners):
            fn()

    # ---- transport hooks ----

    @abc.abstractmethod
    def _open(self, is_host: bool) -> str:
        """Register with the transport and return the local peer id."""

    @abc.abstractmethod
    def _dial(self, remote_id: str) -> None:
        pass

    @abc.abstractmethod
    def _transmit(self, frame: Dict[str, Any]) -> None:
        pass

    @abc.abstractmethod
    def _close(self) -> None:
        pass
