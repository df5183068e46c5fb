import os
import sys
import pytest

# Ensure the backend root (containing the `velocity` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from velocity import create_app, socketio
from velocity.services.race import GameSessionController, RaceConfig
from velocity.services.race.content import ContentProvider
from velocity.services.race.scheduler import ManualClock, ManualScheduler
from velocity.services.race.transports import LoopbackHub, LoopbackSyncChannel, PEER_NAMESPACE


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    RACE_DURATION_SEC = 120
    TICK_INTERVAL_MS = 500
    BROADCAST_INTERVAL_MS = 500
    CONTENT_API_URL = None
    SYNC_TRANSPORT = 'loopback'
    PLAYER_NAME = 'Tester'


class StaticContent(ContentProvider):
    """Serves a fixed sentence list, recording what was asked for."""

    def __init__(self, sentences):
        self.sentences = list(sentences)
        self.requests = []

    def _fetch(self, difficulty):
        self.requests.append(difficulty)
        return list(self.sentences)


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        yield application


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace=PEER_NAMESPACE
    )
    yield test_client
    try:
        test_client.disconnect(namespace=PEER_NAMESPACE)
    except Exception:
        pass


@pytest.fixture()
def clock():
    return ManualClock(start=1000.0)


@pytest.fixture()
def scheduler(clock):
    return ManualScheduler(clock)


@pytest.fixture()
def hub():
    return LoopbackHub()


@pytest.fixture()
def make_controller(scheduler, hub):
    """Build controllers sharing one clock, scheduler and loopback hub."""
    def _make(sentences=("The fox runs.",), name='Racer', duration=120.0, channel=True):
        return GameSessionController(
            scheduler,
            content=StaticContent(sentences),
            channel=LoopbackSyncChannel(hub) if channel else None,
            config=RaceConfig(duration=duration, tick_interval=0.5, broadcast_interval=0.5),
            player_name=name,
        )
    return _make
