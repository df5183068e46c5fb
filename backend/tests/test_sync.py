import pytest

from velocity.errors import MalformedMessage, PeerConnectionError
from velocity.models import MultiplayerMode
from velocity.services.race.sync import Message, MessageType, SyncChannel
from velocity.services.race.transports import LoopbackSyncChannel, SocketIOSyncChannel, PEER_NAMESPACE


class _BrokenChannel(SyncChannel):
    def _open(self, is_host):
        raise OSError('signaling server unreachable')

    def _dial(self, remote_id):
        pass

    def _transmit(self, frame):
        pass

    def _close(self):
        pass


def _pair(hub):
    host, guest = LoopbackSyncChannel(hub), LoopbackSyncChannel(hub)
    host_id = host.initialize(True)
    guest.initialize(False)
    return host, guest, host_id


def test_message_round_trip_and_validation():
    msg = Message.from_dict({'type': 'UPDATE', 'payload': {'wpm': 3}})
    assert msg.type == MessageType.UPDATE
    assert msg.to_dict() == {'type': 'UPDATE', 'payload': {'wpm': 3}}
    assert Message.from_dict({'type': 'FINISH'}).payload == {}
    for bad in ({'type': 'START'}, {'payload': {}}, ['INIT'], {'type': 'INIT', 'payload': [1]}):
        with pytest.raises(MalformedMessage):
            Message.from_dict(bad)


def test_initialize_failure_raises_connection_error():
    with pytest.raises(PeerConnectionError):
        _BrokenChannel().initialize(True)
    # builtin ConnectionError also catches it
    with pytest.raises(ConnectionError):
        _BrokenChannel().initialize(False)


def test_join_connects_both_sides_once(hub):
    host, guest, host_id = _pair(hub)
    opened = []
    host.on_connect(lambda: opened.append('host'))
    guest.on_connect(lambda: opened.append('guest'))
    guest.join(host_id)
    assert opened == ['host', 'guest']
    assert host.connected and guest.connected
    assert host.state.role == MultiplayerMode.HOST
    assert guest.state.role == MultiplayerMode.CLIENT
    # a second open on the same join does not re-fire
    guest._handle_open()
    assert opened == ['host', 'guest']


def test_join_unknown_host_logs_and_stays_closed(hub, caplog):
    guest = LoopbackSyncChannel(hub)
    guest.initialize(False)
    guest.join('NOPE')
    assert not guest.connected
    assert '[peer-join-failed]' in caplog.text


def test_send_is_noop_without_link(hub):
    channel = LoopbackSyncChannel(hub)
    assert channel.send(MessageType.UPDATE, {'wpm': 1}) is False
    channel.initialize(True)
    assert channel.send(MessageType.UPDATE, {'wpm': 1}) is False


def test_data_is_dispatched_to_all_subscribers_until_unsubscribed(hub):
    host, guest, host_id = _pair(hub)
    guest.join(host_id)
    first, second = [], []
    unsubscribe = guest.on_data(first.append)
    guest.on_data(second.append)
    assert host.send(MessageType.UPDATE, {'wpm': 40, 'progress': 0.2})
    unsubscribe()
    host.send(MessageType.FINISH, {'wpm': 41})
    assert [m.type for m in first] == [MessageType.UPDATE]
    assert [m.type for m in second] == [MessageType.UPDATE, MessageType.FINISH]
    assert second[0].payload == {'wpm': 40, 'progress': 0.2}


def test_malformed_frames_are_dropped(hub, caplog):
    host, guest, host_id = _pair(hub)
    guest.join(host_id)
    received = []
    guest.on_data(received.append)
    guest._handle_frame({'type': 'BOGUS', 'payload': {}})
    assert received == []
    assert '[peer-drop]' in caplog.text


def test_cleanup_is_idempotent_and_notifies_peer(hub):
    host, guest, host_id = _pair(hub)
    guest.join(host_id)
    closed = []
    host.on_close(lambda: closed.append('host'))
    guest.cleanup()
    guest.cleanup()
    assert closed == ['host']
    assert guest.state is None
    assert not host.connected
    assert host.send(MessageType.UPDATE, {}) is False


def test_host_connect_fires_again_for_next_peer(hub):
    host, guest, host_id = _pair(hub)
    opened = []
    host.on_connect(lambda: opened.append('open'))
    guest.join(host_id)
    guest.cleanup()
    assert not host.connected

    second = LoopbackSyncChannel(hub)
    second.initialize(False)
    second.join(host_id)
    assert opened == ['open', 'open']
    assert host.connected
    assert host.send(MessageType.UPDATE, {'wpm': 5})


def test_transport_missing_hooks_cannot_be_built():
    class HalfTransport(SyncChannel):
        def _open(self, is_host):
            return 'ABCD'

        def _close(self):
            pass

    with pytest.raises(TypeError):
        HalfTransport()


class _FakeSocketClient:
    """Records what a SocketIOSyncChannel asks of its python-socketio client."""

    def __init__(self):
        self.connected = False
        self.handlers = {}
        self.emitted = []

    def on(self, event, handler=None, namespace=None):
        self.handlers[(event, namespace)] = handler

    def connect(self, url, namespaces=None, wait_timeout=None):
        self.connected = True
        self.url = url

    def call(self, event, data=None, namespace=None, timeout=None):
        return {'peer_id': 'HOST'}

    def emit(self, event, data=None, namespace=None):
        self.emitted.append((event, data, namespace))

    def disconnect(self):
        self.connected = False


def test_socketio_channel_speaks_relay_protocol():
    fake = _FakeSocketClient()
    channel = SocketIOSyncChannel('http://relay.test', client=fake)
    assert channel.initialize(True) == 'HOST'
    assert fake.url == 'http://relay.test'

    opened = []
    channel.on_connect(lambda: opened.append(True))
    fake.handlers[('peer_open', PEER_NAMESPACE)]({'peer_id': 'GUEST'})
    assert opened == [True]

    assert channel.send(MessageType.UPDATE, {'wpm': 9})
    assert fake.emitted[-1] == ('signal', {'type': 'UPDATE', 'payload': {'wpm': 9}}, PEER_NAMESPACE)

    received = []
    channel.on_data(received.append)
    fake.handlers[('signal', PEER_NAMESPACE)]({'type': 'FINISH', 'payload': {'wpm': 30}})
    assert received[0].payload == {'wpm': 30}

    channel.cleanup()
    assert ('leave', {}, PEER_NAMESPACE) in fake.emitted
    assert not fake.connected
