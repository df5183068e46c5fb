from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple
import string
import random


class GameStatus(str, Enum):
    IDLE = 'IDLE'
    LOADING = 'LOADING'
    PLAYING = 'PLAYING'
    FINISHED = 'FINISHED'


class Difficulty(str, Enum):
    EASY = 'EASY'
    MEDIUM = 'MEDIUM'
    HARD = 'HARD'
    EXPERT = 'EXPERT'

    @classmethod
    def parse(cls, value) -> 'Difficulty':
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or '').upper())
        except ValueError:
            raise ValueError(f"unknown difficulty: {value!r}")


class MultiplayerMode(str, Enum):
    SINGLE = 'SINGLE'
    HOST = 'HOST'
    CLIENT = 'CLIENT'


class LobbyState(str, Enum):
    NONE = 'NONE'
    AWAITING_PEER = 'AWAITING_PEER'  # host, no link yet
    PEER_READY = 'PEER_READY'        # host, difficulty may be chosen
    AWAITING_INIT = 'AWAITING_INIT'  # client, waiting for the host's sentences


@dataclass
class Session:
    status: GameStatus = GameStatus.IDLE
    mode: MultiplayerMode = MultiplayerMode.SINGLE
    difficulty: Difficulty = Difficulty.MEDIUM
    sentences: Tuple[str, ...] = ()
    sentence_index: int = 0
    input_buffer: str = ''
    start_time: Optional[float] = None
    end_time: Optional[float] = None
    time_remaining: float = 0.0

    @property
    def current_sentence(self) -> Optional[str]:
        if not self.sentences:
            return None
        return self.sentences[self.sentence_index]

    @property
    def next_sentence(self) -> Optional[str]:
        if not self.sentences:
            return None
        return self.sentences[(self.sentence_index + 1) % len(self.sentences)]


@dataclass
class MetricsCounters:
    correct_chars: int = 0
    total_chars_typed: int = 0

    def reset(self):
        self.correct_chars = 0
        self.total_chars_typed = 0


@dataclass(frozen=True)
class MetricsSnapshot:
    wpm: int
    accuracy: int
    progress: float
    time_left: int

    def to_dict(self):
        return {
            'wpm': self.wpm,
            'accuracy': self.accuracy,
            'progress': self.progress,
            'timeLeft': self.time_left,
        }


@dataclass(frozen=True)
class HistorySample:
    time: float
    wpm: int
    opponent_wpm: Optional[int] = None

    def to_dict(self):
        data = {'time': self.time, 'wpm': self.wpm}
        if self.opponent_wpm is not None:
            data['opponentWpm'] = self.opponent_wpm
        return data


@dataclass(frozen=True)
class AnalysisData:
    """Post-race report handed to presentation once a race finishes."""
    history: Tuple[HistorySample, ...]
    errors: Mapping[str, int]
    avg_wpm: int
    peak_wpm: int
    total_time: float
    accuracy: int
    difficulty: Difficulty

    def __post_init__(self):
        object.__setattr__(self, 'history', tuple(self.history))
        object.__setattr__(self, 'errors', MappingProxyType(dict(self.errors)))

    @property
    def total_errors(self) -> int:
        return sum(self.errors.values())

    def to_dict(self):
        return {
            'history': [s.to_dict() for s in self.history],
            'errors': dict(self.errors),
            'avgWpm': self.avg_wpm,
            'peakWpm': self.peak_wpm,
            'totalTime': self.total_time,
            'accuracy': self.accuracy,
            'difficulty': self.difficulty.value,
        }


@dataclass(frozen=True)
class LastScore:
    wpm: int
    accuracy: int
    difficulty: Difficulty

    def to_dict(self):
        return {'wpm': self.wpm, 'accuracy': self.accuracy, 'difficulty': self.difficulty.value}


@dataclass
class PeerState:
    local_id: str
    role: MultiplayerMode
    connected: bool = False

    def to_dict(self):
        return {'localId': self.local_id, 'role': self.role.value, 'connected': self.connected}


@dataclass
class OpponentSnapshot:
    wpm: int = 0
    progress: float = 0.0
    name: str = ''
    finished_wpm: Optional[int] = None

    def merge(self, payload: Dict[str, Any]) -> None:
        """Apply an UPDATE payload; fields present in the payload overwrite."""
        if 'wpm' in payload:
            self.wpm = int(payload['wpm'] or 0)
        if 'progress' in payload:
            self.progress = min(1.0, max(0.0, float(payload['progress'] or 0.0)))
        if payload.get('name'):
            self.name = str(payload['name'])

    def to_dict(self):
        return {
            'wpm': self.wpm,
            'progress': self.progress,
            'name': self.name,
            'finishedWpm': self.finished_wpm,
        }


def generate_peer_code(taken=(), length=4):
    """Generate a short peer code not present in ``taken``."""
    while True:
        code = ''.join(random.choices(string.ascii_uppercase + string.digits, k=length))
        if code not in taken:
            return code
