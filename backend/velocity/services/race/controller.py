import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from velocity.errors import PeerConnectionError, SessionStateError
from velocity.models import (
    AnalysisData,
    Difficulty,
    GameStatus,
    LastScore,
    LobbyState,
    MetricsCounters,
    MetricsSnapshot,
    MultiplayerMode,
    OpponentSnapshot,
    Session,
)
from . import metrics
from .analysis import AnalysisRecorder
from .content import ContentProvider, FallbackContentProvider
from .scheduler import TimerHandle
from .sync import Message, MessageType, SyncChannel

logger = logging.getLogger('velocity.race')

EVENTS = ('status', 'tick', 'miss', 'finished', 'opponent')

CONNECTION_NOTICE = 'Could not reach the peer service; continuing in single-player mode.'


@dataclass(frozen=True)
class RaceConfig:
    duration: float = 120.0
    tick_interval: float = 0.5
    broadcast_interval: float = 0.5

    @classmethod
    def from_mapping(cls, config) -> 'RaceConfig':
        return cls(
            duration=float(config.get('RACE_DURATION_SEC', 120)),
            tick_interval=int(config.get('TICK_INTERVAL_MS', 500)) / 1000.0,
            broadcast_interval=int(config.get('BROADCAST_INTERVAL_MS', 500)) / 1000.0,
        )


class GameSessionController:
    """Owns one player's race: lifecycle, input, timers and peer traffic.

    Every mutation (keystrokes, timer callbacks, inbound peer messages,
    content arrival) goes through ``self._lock`` and reads the one live
    ``counters`` object. Timer callbacks carry the race generation they were
    scheduled for and abort once it has moved on.

    Outbound peer messages are queued under the lock and only sent once it
    is released, since delivery may call straight into the other side.
    """

    def __init__(self, scheduler, content: Optional[ContentProvider] = None,
                 channel: Optional[SyncChannel] = None, config: Optional[RaceConfig] = None,
                 player_name: str = 'Racer'):
        self.scheduler = scheduler
        self.content = content or FallbackContentProvider()
        self.channel = channel
        self.config = config or RaceConfig()
        self.player_name = player_name

        self.session = Session(time_remaining=self.config.duration)
        self.counters = MetricsCounters()
        self.recorder = AnalysisRecorder()
        self.opponent = OpponentSnapshot()
        self.lobby = LobbyState.NONE
        self.peer_id: Optional[str] = None
        self.analysis: Optional[AnalysisData] = None
        self.last_score: Optional[LastScore] = None
        self.notice: Optional[str] = None

        self._lock = threading.RLock()
        self._generation = 0
        self._timers: List[TimerHandle] = []
        self._outbox: List[Tuple[MessageType, Dict[str, Any]]] = []
        self._channel_subscriptions: List[Callable[[], None]] = []
        self._listeners: Dict[str, List[Callable]] = {event: [] for event in EVENTS}

    # ---- observation ----

    @property
    def status(self) -> GameStatus:
        return self.session.status

    @property
    def is_multiplayer(self) -> bool:
        return self.session.mode != MultiplayerMode.SINGLE

    def subscribe(self, event: str, fn: Callable) -> Callable[[], None]:
        if event not in self._listeners:
            raise ValueError(f"unknown event: {event}")
        listeners = self._listeners[event]
        listeners.append(fn)

        def unsubscribe():
            if fn in listeners:
                listeners.remove(fn)
        return unsubscribe

    def stats(self, now: Optional[float] = None) -> MetricsSnapshot:
        with self._lock:
            s = self.session
            if s.end_time is not None:
                now = s.end_time
            elif now is None:
                now = self._now()
            return metrics.snapshot(self.counters, s.start_time, now, s.sentence_index,
                                    s.input_buffer, s.sentences, s.time_remaining)

    def snapshot(self) -> dict:
        with self._lock:
            s = self.session
            peer_state = self.channel.state if self.channel is not None else None
            return {
                'status': s.status.value,
                'mode': s.mode.value,
                'lobby': self.lobby.value,
                'difficulty': s.difficulty.value,
                'sentence': s.current_sentence,
                'nextSentence': s.next_sentence,
                'sentenceIndex': s.sentence_index,
                'sentenceCount': len(s.sentences),
                'input': s.input_buffer,
                'stats': self.stats().to_dict(),
                'opponent': self.opponent.to_dict() if self.is_multiplayer else None,
                'peer': peer_state.to_dict() if peer_state else None,
                'lastScore': self.last_score.to_dict() if self.last_score else None,
                'analysis': self.analysis.to_dict() if self.analysis else None,
                'notice': self.notice,
            }

    def pop_notice(self) -> Optional[str]:
        with self._lock:
            notice, self.notice = self.notice, None
            return notice

    # ---- peer setup ----

    def host(self) -> Optional[str]:
        """Open a host identity and wait in the lobby for a peer.

        Returns the peer id to share, or None after falling back to
        single-player because the transport failed.
        """
        with self._lock:
            self._require_idle('host')
            self._attach_channel()
            try:
                self.peer_id = self.channel.initialize(True)
            except PeerConnectionError as exc:
                self._fall_back_to_single(exc)
                return None
            self.session.mode = MultiplayerMode.HOST
            self.lobby = LobbyState.AWAITING_PEER
            logger.info(f"[lobby-open] peer_id={self.peer_id}")
            self._emit('status', self.session.status)
            return self.peer_id

    def join(self, remote_id: str) -> Optional[str]:
        """Dial a host and wait for its INIT; there is no timeout on the wait."""
        with self._lock:
            self._require_idle('join')
            self._attach_channel()
            try:
                self.peer_id = self.channel.initialize(False)
            except PeerConnectionError as exc:
                self._fall_back_to_single(exc)
                return None
            self.session.mode = MultiplayerMode.CLIENT
            self.lobby = LobbyState.AWAITING_INIT
            self._set_status(GameStatus.LOADING)
            logger.info(f"[lobby-join] peer_id={self.peer_id} remote={remote_id}")
            channel, peer_id = self.channel, self.peer_id
        # dialing reports back through the host's callbacks
        channel.join(remote_id)
        return peer_id

    # ---- race lifecycle ----

    def start_session(self, difficulty) -> None:
        difficulty = Difficulty.parse(difficulty)
        with self._lock:
            s = self.session
            if s.status != GameStatus.IDLE:
                raise SessionStateError(f"cannot start a race while {s.status.value}")
            if s.mode == MultiplayerMode.CLIENT:
                raise SessionStateError('sentences come from the host in client mode')
            if s.mode == MultiplayerMode.HOST and self.lobby != LobbyState.PEER_READY:
                raise SessionStateError('waiting for a peer to connect')
            s.difficulty = difficulty
            self._generation += 1
            generation = self._generation
            self._set_status(GameStatus.LOADING)
            logger.info(f"[race-load] difficulty={difficulty.value} mode={s.mode.value}")
        self.scheduler.spawn(self._load_content, difficulty, generation)

    def _load_content(self, difficulty: Difficulty, generation: int) -> None:
        sentences = self.content.fetch_sentences(difficulty)
        with self._lock:
            if generation != self._generation or self.session.status != GameStatus.LOADING:
                logger.info(f"[race-load-abort] generation={generation} current={self._generation}")
                return
            if self.session.mode == MultiplayerMode.HOST:
                self._queue(MessageType.INIT, {
                    'sentences': list(sentences),
                    'difficulty': difficulty.value,
                    'host': self.peer_id,
                    'name': self.player_name,
                })
            self._begin_race(sentences, difficulty)
        self._flush()

    def _begin_race(self, sentences: Sequence[str], difficulty: Difficulty) -> None:
        self._cancel_timers()
        self._generation += 1
        generation = self._generation

        s = self.session
        s.sentences = tuple(sentences)
        s.difficulty = difficulty
        s.sentence_index = 0
        s.input_buffer = ''
        s.start_time = self._now()
        s.end_time = None
        s.time_remaining = self.config.duration
        self.counters.reset()
        self.recorder.reset()
        self.opponent = OpponentSnapshot()
        self.analysis = None
        self.lobby = LobbyState.NONE
        self._set_status(GameStatus.PLAYING)
        logger.info(f"[race-start] difficulty={difficulty.value} sentences={len(s.sentences)} mode={s.mode.value}")

        self._timers.append(self.scheduler.every(
            self.config.tick_interval, lambda: self._run_timer(generation, self._tick), tag='tick'))
        if self.is_multiplayer:
            self._timers.append(self.scheduler.every(
                self.config.broadcast_interval, lambda: self._run_timer(generation, self._queue_update),
                tag='broadcast'))

    def _run_timer(self, generation: int, fn: Callable) -> None:
        with self._lock:
            if generation != self._generation or self.session.status != GameStatus.PLAYING:
                logger.info(f"[timer-abort] generation={generation} current={self._generation}")
                return
            fn()
        self._flush()

    def handle_keystroke(self, text: str) -> bool:
        """Apply the full current input; returns True when it registered a miss."""
        with self._lock:
            s = self.session
            if s.status != GameStatus.PLAYING or not s.sentences:
                return False
            target = s.current_sentence
            expected = metrics.score_input(self.counters, s.input_buffer, text, target)
            s.input_buffer = text
            if text == target:
                s.sentence_index = (s.sentence_index + 1) % len(s.sentences)
                s.input_buffer = ''
            if expected is None:
                return False
            self.recorder.note_error(expected)
            self._emit('miss', expected)
            return True

    def tick(self, now: Optional[float] = None):
        with self._lock:
            sample = self._tick(now)
        self._flush()
        return sample

    def _tick(self, now: Optional[float] = None):
        s = self.session
        if s.status != GameStatus.PLAYING:
            return None
        if now is None:
            now = self._now()
        elapsed = max(0.0, now - s.start_time)
        s.time_remaining = max(0.0, self.config.duration - elapsed)
        wpm = metrics.words_per_minute(self.counters.correct_chars, elapsed / 60.0)
        opponent_wpm = self.opponent.wpm if self.is_multiplayer else None
        sample = self.recorder.record(elapsed, wpm, opponent_wpm)
        if s.time_remaining <= 0:
            self._finish(now)
        else:
            self._emit('tick', sample)
        return sample

    def broadcast(self) -> bool:
        """Send one UPDATE now; False when nothing went out."""
        with self._lock:
            queued = self._queue_update()
        if not queued:
            return False
        sent = self._flush()
        return bool(sent) and all(sent)

    def _queue_update(self) -> bool:
        if self.session.status != GameStatus.PLAYING or not self.is_multiplayer:
            return False
        current = self.stats()
        self._queue(MessageType.UPDATE, {
            'wpm': current.wpm,
            'progress': current.progress,
            'name': self.player_name,
        })
        return True

    def end_session(self, now: Optional[float] = None) -> Optional[AnalysisData]:
        with self._lock:
            analysis = self._finish(now)
        self._flush()
        return analysis

    def _finish(self, now: Optional[float] = None) -> Optional[AnalysisData]:
        s = self.session
        if s.status != GameStatus.PLAYING:
            return self.analysis
        self._cancel_timers()
        s.end_time = self._now() if now is None else now
        final = self.stats()
        self.analysis = self.recorder.finalize(
            total_time=s.end_time - s.start_time,
            accuracy=final.accuracy,
            difficulty=s.difficulty,
            final_wpm=final.wpm,
        )
        self.last_score = LastScore(wpm=final.wpm, accuracy=final.accuracy, difficulty=s.difficulty)
        if self.is_multiplayer:
            self._queue(MessageType.FINISH, {'wpm': final.wpm, 'name': self.player_name})
        self._set_status(GameStatus.FINISHED)
        logger.info(f"[race-finish] wpm={final.wpm} accuracy={final.accuracy} samples={len(self.analysis.history)}")
        self._emit('finished', self.analysis)
        return self.analysis

    def restart(self) -> None:
        """Run again from the results screen.

        Single-player races immediately. A host goes back through LOADING and
        re-sends INIT; a client waits for the host's next INIT.
        """
        with self._lock:
            s = self.session
            if s.status != GameStatus.FINISHED:
                raise SessionStateError(f"cannot restart while {s.status.value}")
            self._cancel_timers()
            if s.mode == MultiplayerMode.CLIENT:
                self.lobby = LobbyState.AWAITING_INIT
                self._set_status(GameStatus.LOADING)
                return
            s.status = GameStatus.IDLE
            if s.mode == MultiplayerMode.HOST and not self.channel.connected:
                self.lobby = LobbyState.AWAITING_PEER
                self._set_status(GameStatus.IDLE)
                return
            if s.mode == MultiplayerMode.HOST:
                self.lobby = LobbyState.PEER_READY
            difficulty = s.difficulty
        self.start_session(difficulty)

    def reset(self) -> None:
        """Back to the menu: stop timers, drop the peer link, forget the race."""
        with self._lock:
            self._cancel_timers()
            self._generation += 1
            self._outbox = []
            channel = self._detach_channel(cleanup=False)
            self.session = Session(difficulty=self.session.difficulty, time_remaining=self.config.duration)
            self.counters.reset()
            self.recorder.reset()
            self.opponent = OpponentSnapshot()
            self.analysis = None
            self.lobby = LobbyState.NONE
            self.peer_id = None
            self._set_status(GameStatus.IDLE)
        # closing notifies the peer, which takes its own lock
        if channel is not None:
            channel.cleanup()

    # ---- inbound peer events ----

    def _on_peer_connect(self) -> None:
        with self._lock:
            if self.session.mode == MultiplayerMode.HOST and self.lobby == LobbyState.AWAITING_PEER:
                self.lobby = LobbyState.PEER_READY
            logger.info(f"[lobby-connected] mode={self.session.mode.value} lobby={self.lobby.value}")
            self._emit('status', self.session.status)

    def _on_peer_data(self, message: Message) -> None:
        with self._lock:
            try:
                if message.type == MessageType.INIT:
                    self._apply_init(message.payload)
                elif message.type == MessageType.UPDATE:
                    self.opponent.merge(message.payload)
                    self._emit('opponent', self.opponent)
                elif message.type == MessageType.FINISH:
                    self.opponent.finished_wpm = int(message.payload.get('wpm') or 0)
                    logger.info(f"[opponent-finish] wpm={self.opponent.finished_wpm}")
                    self._emit('opponent', self.opponent)
            except (TypeError, ValueError) as exc:
                logger.warning(f"[peer-drop] type={message.type.value} bad payload: {exc}")

    def _apply_init(self, payload: dict) -> None:
        s = self.session
        if s.mode != MultiplayerMode.CLIENT:
            logger.warning('[init-ignored] only clients adopt host content')
            return
        if s.status == GameStatus.PLAYING:
            logger.warning('[init-ignored] race already running')
            return
        sentences = [str(x) for x in (payload.get('sentences') or []) if x]
        if not sentences:
            raise ValueError('INIT without sentences')
        difficulty = Difficulty.parse(payload.get('difficulty'))
        self._begin_race(sentences, difficulty)
        self.opponent.name = str(payload.get('name') or payload.get('host') or '')

    def _on_peer_close(self) -> None:
        with self._lock:
            if self.session.mode == MultiplayerMode.HOST and self.session.status == GameStatus.IDLE:
                self.lobby = LobbyState.AWAITING_PEER
            logger.info(f"[lobby-disconnected] status={self.session.status.value}")
            self._emit('status', self.session.status)

    # ---- helpers ----

    def _now(self) -> float:
        return self.scheduler.now()

    def _require_idle(self, action: str) -> None:
        if self.channel is None:
            raise SessionStateError(f"cannot {action}: no peer channel configured")
        if self.session.status != GameStatus.IDLE or self.is_multiplayer:
            raise SessionStateError(f"cannot {action} while {self.session.status.value}/{self.session.mode.value}")

    def _attach_channel(self) -> None:
        self._detach_channel()
        self._channel_subscriptions = [
            self.channel.on_connect(self._on_peer_connect),
            self.channel.on_data(self._on_peer_data),
            self.channel.on_close(self._on_peer_close),
        ]

    def _detach_channel(self, cleanup: bool = True) -> Optional[SyncChannel]:
        for unsubscribe in self._channel_subscriptions:
            unsubscribe()
        self._channel_subscriptions = []
        if cleanup and self.channel is not None:
            self.channel.cleanup()
        return self.channel

    def _queue(self, msg_type: MessageType, payload: Dict[str, Any]) -> None:
        self._outbox.append((msg_type, payload))

    def _flush(self) -> List[bool]:
        """Send queued peer messages. Call with the lock released."""
        with self._lock:
            pending, self._outbox = self._outbox, []
            channel = self.channel
        if channel is None:
            return []
        return [channel.send(msg_type, payload) for msg_type, payload in pending]

    def _fall_back_to_single(self, exc: Exception) -> None:
        logger.warning(f"[peer-fallback] {exc}")
        self._detach_channel()
        self.session.mode = MultiplayerMode.SINGLE
        self.lobby = LobbyState.NONE
        self.peer_id = None
        self.notice = CONNECTION_NOTICE
        self._emit('status', self.session.status)

    def _cancel_timers(self) -> None:
        for handle in self._timers:
            handle.cancel()
        self._timers = []

    def _set_status(self, status: GameStatus) -> None:
        self.session.status = status
        self._emit('status', status)

    def _emit(self, event: str, *args) -> None:
        for fn in list(self._listeners[event]):
            try:
                fn(*args)
            except Exception:
                logger.exception(f"[listener-error] event={event}")
