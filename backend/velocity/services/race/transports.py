import json
import logging
from typing import Any, Dict, Optional, Set

from socketio import Client as SocketIOClient

from velocity.errors import PeerConnectionError
from velocity.models import generate_peer_code
from .sync import SyncChannel

logger = logging.getLogger('velocity.race.sync')

PEER_NAMESPACE = '/peer'


class LoopbackHub:
    """In-process stand-in for the relay: pairs channels by peer code."""

    def __init__(self):
        self._channels: Dict[str, 'LoopbackSyncChannel'] = {}
        self._hosts: Set[str] = set()

    def register(self, channel: 'LoopbackSyncChannel', is_host: bool) -> str:
        code = generate_peer_code(self._channels)
        self._channels[code] = channel
        if is_host:
            self._hosts.add(code)
        return code

    def unregister(self, code: Optional[str]) -> None:
        self._channels.pop(code, None)
        self._hosts.discard(code)

    def connect(self, client: 'LoopbackSyncChannel', host_id: str) -> None:
        host_id = (host_id or '').upper()
        host = self._channels.get(host_id) if host_id in self._hosts else None
        if host is None:
            raise PeerConnectionError(f"no host registered as {host_id!r}")
        if host.peer is not None:
            raise PeerConnectionError(f"host {host_id} already has a peer")
        host.peer = client
        client.peer = host
        host._handle_open()
        client._handle_open()


class LoopbackSyncChannel(SyncChannel):

    def __init__(self, hub: LoopbackHub):
        super().__init__()
        self.hub = hub
        self.peer: Optional['LoopbackSyncChannel'] = None
        self._code: Optional[str] = None

    def _open(self, is_host: bool) -> str:
        if self._code:
            self.hub.unregister(self._code)
        self._code = self.hub.register(self, is_host)
        return self._code

    def _dial(self, remote_id: str) -> None:
        self.hub.connect(self, remote_id)

    def _transmit(self, frame: Dict[str, Any]) -> None:
        if self.peer is None:
            return
        # Serialize across, the way a real wire would
        self.peer._handle_frame(json.loads(json.dumps(frame)))

    def _close(self) -> None:
        peer, self.peer = self.peer, None
        self.hub.unregister(self._code)
        self._code = None
        if peer is not None:
            peer.peer = None
            peer._handle_close()


class SocketIOSyncChannel(SyncChannel):
    """Channel relayed through the ``/peer`` namespace of a Velocity server."""

    def __init__(self, url: str, client: Optional[SocketIOClient] = None, timeout: float = 5.0):
        super().__init__()
        self.url = url
        self.timeout = timeout
        self.client = client or SocketIOClient(reconnection=False)
        self.client.on('peer_open', self._on_peer_open, namespace=PEER_NAMESPACE)
        self.client.on('signal', self._handle_frame, namespace=PEER_NAMESPACE)
        self.client.on('peer_closed', self._on_peer_closed, namespace=PEER_NAMESPACE)
        self.client.on('disconnect', self._on_disconnect, namespace=PEER_NAMESPACE)
        self.client.on('error', self._on_error, namespace=PEER_NAMESPACE)

    def _open(self, is_host: bool) -> str:
        if not self.client.connected:
            self.client.connect(self.url, namespaces=[PEER_NAMESPACE], wait_timeout=self.timeout)
        ack = self.client.call('register', {'is_host': is_host}, namespace=PEER_NAMESPACE, timeout=self.timeout)
        return (ack or {}).get('peer_id')

    def _dial(self, remote_id: str) -> None:
        self.client.emit('join_peer', {'peer_id': remote_id}, namespace=PEER_NAMESPACE)

    def _transmit(self, frame: Dict[str, Any]) -> None:
        self.client.emit('signal', frame, namespace=PEER_NAMESPACE)

    def _close(self) -> None:
        if self.client.connected:
            self.client.emit('leave', {}, namespace=PEER_NAMESPACE)
            self.client.disconnect()

    def _on_peer_open(self, data=None):
        self._handle_open()

    def _on_peer_closed(self, data=None):
        self._handle_close()

    def _on_disconnect(self, *args):
        self._handle_close()

    def _on_error(self, data=None):
        logger.warning(f"[peer-relay-error] {(data or {}).get('message')}")


def channel_from_config(config, hub: Optional[LoopbackHub] = None) -> SyncChannel:
    if config.get('SYNC_TRANSPORT') == 'loopback':
        return LoopbackSyncChannel(hub if hub is not None else LoopbackHub())
    return SocketIOSyncChannel(config.get('SIGNALING_URL'), timeout=float(config.get('PEER_TIMEOUT_SEC', 5)))
