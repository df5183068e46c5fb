import os

class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    # Race timing
    RACE_DURATION_SEC = int(os.environ.get('RACE_DURATION_SEC', '120'))
    TICK_INTERVAL_MS = int(os.environ.get('TICK_INTERVAL_MS', '500'))
    BROADCAST_INTERVAL_MS = int(os.environ.get('BROADCAST_INTERVAL_MS', '500'))
    # Sentence source. Unset means the built-in fallback corpus only.
    CONTENT_API_URL = os.environ.get('CONTENT_API_URL')
    CONTENT_TIMEOUT_SEC = float(os.environ.get('CONTENT_TIMEOUT_SEC', '5'))
    # Peer transport: 'socketio' talks to a relay, 'loopback' pairs in-process
    SYNC_TRANSPORT = os.environ.get('SYNC_TRANSPORT', 'socketio')
    SIGNALING_URL = os.environ.get('SIGNALING_URL') or 'http://localhost:5000'
    PEER_TIMEOUT_SEC = float(os.environ.get('PEER_TIMEOUT_SEC', '5'))
    PLAYER_NAME = os.environ.get('PLAYER_NAME', 'Racer')
