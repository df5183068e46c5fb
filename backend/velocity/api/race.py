from flask import Blueprint, abort, jsonify, request, current_app
from typing import Dict

from velocity import socketio
from velocity.errors import SessionStateError
from velocity.models import Difficulty, MultiplayerMode, generate_peer_code
from velocity.services.race import GameSessionController, RaceConfig
from velocity.services.race.content import provider_from_config
from velocity.services.race.scheduler import BackgroundScheduler, ManualScheduler
from velocity.services.race.transports import LoopbackHub, PEER_NAMESPACE, channel_from_config


race = Blueprint('race', __name__)

# Live race sessions keyed by session id (runtime-only)
_sessions: Dict[str, GameSessionController] = {}
_loopback_hub = LoopbackHub()


def _build_controller(app, name: str) -> GameSessionController:
    cfg = app.config
    if cfg.get('TESTING') and not cfg.get('ENABLE_SCHEDULER_IN_TESTS'):
        scheduler = ManualScheduler()
    else:
        scheduler = BackgroundScheduler(socketio)
    return GameSessionController(
        scheduler,
        content=provider_from_config(cfg),
        channel=channel_from_config(cfg, hub=_loopback_hub),
        config=RaceConfig.from_mapping(cfg),
        player_name=name or cfg.get('PLAYER_NAME', 'Racer'),
    )


def _publish_updates(session_id: str, controller: GameSessionController) -> None:
    room = f"race:{session_id}"

    def _push(*_):
        socketio.emit('race_update', controller.snapshot(), to=room, namespace=PEER_NAMESPACE)

    for event in ('status', 'tick', 'finished', 'opponent'):
        controller.subscribe(event, _push)


def _get_or_404(session_id: str) -> GameSessionController:
    controller = _sessions.get(session_id)
    if controller is None:
        abort(404, description='Race session not found')
    return controller


def _state(controller: GameSessionController) -> dict:
    payload = controller.snapshot()
    payload['notice'] = controller.pop_notice()
    return payload


@race.errorhandler(404)
def _not_found(exc):
    return jsonify({'error': getattr(exc, 'description', 'Not found')}), 404


@race.errorhandler(SessionStateError)
def _conflict(exc):
    return jsonify({'error': str(exc)}), 409


@race.route('/sessions', methods=['POST'])
def create_session():
    data = request.get_json(silent=True) or {}
    try:
        mode = MultiplayerMode(str(data.get('mode') or 'SINGLE').upper())
    except ValueError:
        return jsonify({'error': 'mode must be SINGLE, HOST or CLIENT'}), 400
    remote_id = data.get('remote_id')
    if mode == MultiplayerMode.CLIENT and not remote_id:
        return jsonify({'error': 'remote_id is required to join a host'}), 400

    app = current_app._get_current_object()
    controller = _build_controller(app, data.get('name'))
    session_id = generate_peer_code(_sessions, length=8)
    _sessions[session_id] = controller
    _publish_updates(session_id, controller)

    peer_id = None
    if mode == MultiplayerMode.HOST:
        peer_id = controller.host()
    elif mode == MultiplayerMode.CLIENT:
        peer_id = controller.join(remote_id)
    app.logger.info(f"[session-create] session={session_id} mode={mode.value} peer={peer_id}")

    return jsonify({
        'session_id': session_id,
        'peer_id': peer_id,
        'state': _state(controller),
    }), 201


@race.route('/sessions/<string:session_id>/start', methods=['POST'])
def start_session(session_id):
    controller = _get_or_404(session_id)
    data = request.get_json(silent=True) or {}
    try:
        difficulty = Difficulty.parse(data.get('difficulty'))
    except ValueError as exc:
        return jsonify({'error': str(exc)}), 400
    controller.start_session(difficulty)
    return jsonify(_state(controller))


@race.route('/sessions/<string:session_id>/input', methods=['POST'])
def submit_input(session_id):
    controller = _get_or_404(session_id)
    data = request.get_json(silent=True) or {}
    text = data.get('input')
    if not isinstance(text, str):
        return jsonify({'error': 'input must be a string'}), 400
    miss = controller.handle_keystroke(text)
    return jsonify({'miss': miss, 'state': _state(controller)})


@race.route('/sessions/<string:session_id>/state', methods=['GET'])
def get_state(session_id):
    controller = _get_or_404(session_id)
    return jsonify(_state(controller))


@race.route('/sessions/<string:session_id>/analysis', methods=['GET'])
def get_analysis(session_id):
    controller = _get_or_404(session_id)
    if controller.analysis is None:
        return jsonify({'error': 'No finished race yet'}), 404
    return jsonify(controller.analysis.to_dict())


@race.route('/sessions/<string:session_id>/restart', methods=['POST'])
def restart_session(session_id):
    controller = _get_or_404(session_id)
    controller.restart()
    return jsonify(_state(controller))


@race.route('/sessions/<string:session_id>/menu', methods=['POST'])
def back_to_menu(session_id):
    controller = _get_or_404(session_id)
    controller.reset()
    return jsonify(_state(controller))


@race.route('/sessions/<string:session_id>', methods=['DELETE'])
def delete_session(session_id):
    controller = _sessions.pop(session_id, None)
    if controller is None:
        return jsonify({'error': 'Race session not found'}), 404
    controller.reset()
    current_app.logger.info(f"[session-delete] session={session_id}")
    return jsonify({'message': 'Race session closed'})
