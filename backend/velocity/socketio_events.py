from flask_socketio import join_room, leave_room, emit
from flask import current_app, request
from velocity import socketio
from velocity.models import generate_peer_code
from velocity.services.race.transports import PEER_NAMESPACE
from typing import Dict, Any


# ---- Relay registries (runtime-only) ----
_sid_to_ctx: Dict[str, Dict[str, Any]] = {}
_peer_to_sid: Dict[str, str] = {}
_links: Dict[str, str] = {}


def _get_sid() -> str:
    # type: ignore: request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _log(message: str) -> None:
    try:
        current_app.logger.info(message)
    except Exception:
        pass


def handle_connect():
    emit('connected', {'message': f'Connected to {PEER_NAMESPACE}'})


def handle_register(data):
    """Give the caller a peer code; hosts become discoverable by it."""
    sid = _get_sid()
    _unlink(sid, notify=True)
    _drop_registration(sid)
    is_host = bool((data or {}).get('is_host'))
    peer_id = generate_peer_code(_peer_to_sid)
    _sid_to_ctx[sid] = {'peer_id': peer_id, 'is_host': is_host}
    _peer_to_sid[peer_id] = sid
    _log(f"[relay-register] peer={peer_id} host={is_host}")
    return {'peer_id': peer_id}


def handle_join_peer(data):
    remote_id = ((data or {}).get('peer_id') or '').upper()
    sid = _get_sid()
    if not remote_id:
        emit('error', {'message': 'peer_id is required'})
        return
    if sid not in _sid_to_ctx:
        emit('error', {'message': 'register before joining'})
        return
    host_sid = _peer_to_sid.get(remote_id)
    host_ctx = _sid_to_ctx.get(host_sid) if host_sid else None
    if not host_ctx or not host_ctx.get('is_host'):
        emit('error', {'message': f'No host with id {remote_id}'})
        return
    if host_sid in _links or host_sid == sid:
        emit('error', {'message': f'Host {remote_id} is not available'})
        return
    _unlink(sid, notify=True)
    _links[sid] = host_sid
    _links[host_sid] = sid
    _log(f"[relay-link] host={remote_id} client={_sid_to_ctx[sid]['peer_id']}")
    emit('peer_open', {'peer_id': _sid_to_ctx[sid]['peer_id']}, to=host_sid)
    emit('peer_open', {'peer_id': remote_id}, to=sid)


def handle_signal(data):
    """Forward a protocol frame verbatim; frames without a link are dropped."""
    other = _links.get(_get_sid())
    if other is None:
        return
    emit('signal', data, to=other)


def handle_leave(data=None):
    sid = _get_sid()
    _unlink(sid, notify=True)
    _drop_registration(sid)
    emit('left', {})


def handle_disconnect(*args):
    sid = _get_sid()
    _unlink(sid, notify=True)
    _drop_registration(sid)


def handle_watch_race(data):
    session_id = (data or {}).get('session_id')
    if not session_id:
        emit('error', {'message': 'session_id is required'})
        return
    room = f"race:{session_id}"
    join_room(room)
    emit('watching', {'room': room})


def handle_unwatch_race(data):
    session_id = (data or {}).get('session_id')
    if not session_id:
        emit('error', {'message': 'session_id is required'})
        return
    room = f"race:{session_id}"
    leave_room(room)
    emit('unwatched', {'room': room})


def handle_ping(data):
    emit('pong', data or {})


def _unlink(sid: str, notify: bool) -> None:
    other = _links.pop(sid, None)
    if other is None:
        return
    _links.pop(other, None)
    if notify:
        socketio.emit('peer_closed', {}, to=other, namespace=PEER_NAMESPACE)
    _log(f"[relay-unlink] sid={sid} peer_sid={other}")


def _drop_registration(sid: str) -> None:
    ctx = _sid_to_ctx.pop(sid, None)
    if ctx and _peer_to_sid.get(ctx['peer_id']) == sid:
        _peer_to_sid.pop(ctx['peer_id'], None)


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on the peer namespace. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    handlers = {
        'connect': handle_connect,
        'disconnect': handle_disconnect,
        'register': handle_register,
        'join_peer': handle_join_peer,
        'signal': handle_signal,
        'leave': handle_leave,
        'watch_race': handle_watch_race,
        'unwatch_race': handle_unwatch_race,
        'ping': handle_ping,
    }
    namespaces = [PEER_NAMESPACE, '/'] if testing else [PEER_NAMESPACE]
    for namespace in namespaces:
        for event, handler in handlers.items():
            socketio.on_event(event, handler, namespace=namespace)
