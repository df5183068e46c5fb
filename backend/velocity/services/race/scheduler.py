import logging
import time
from typing import Callable, List, Optional

logger = logging.getLogger('velocity.race.timers')


class TimerHandle:
    """Cancellation token for a repeating timer."""

    def __init__(self, tag: str, interval: float, callback: Callable[[], None]):
        self.tag = tag
        self.interval = interval
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class BackgroundScheduler:
    """Runs timers as Socket.IO background tasks.

    Works with whatever async mode the SocketIO server was started with
    (threading, eventlet, gevent), since sleeping goes through
    ``socketio.sleep``.
    """

    def __init__(self, socketio):
        self.socketio = socketio

    def now(self) -> float:
        return time.time()

    def spawn(self, fn: Callable, *args) -> None:
        self.socketio.start_background_task(fn, *args)

    def every(self, interval: float, callback: Callable[[], None], tag: str = 'timer') -> TimerHandle:
        handle = TimerHandle(tag, interval, callback)
        logger.info(f"[timer-set] tag={tag} interval={interval}s")

        def _worker():
            while True:
                self.socketio.sleep(interval)
                if handle.cancelled:
                    logger.info(f"[timer-stop] tag={tag}")
                    return
                try:
                    callback()
                except Exception:
                    logger.exception(f"[timer-error] tag={tag}")

        self.socketio.start_background_task(_worker)
        return handle


class ManualClock:

    def __init__(self, start: float = 1000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> float:
        self.value += seconds
        return self.value


class ManualScheduler:
    """Deterministic scheduler: timers fire only when ``advance`` is called.

    Used under TESTING so that nothing runs on its own; spawned work runs
    inline, matching how the game server ran its stage workers in tests.
    """

    def __init__(self, clock: Optional[ManualClock] = None):
        self.clock = clock or ManualClock()
        self._timers: List[list] = []

    def now(self) -> float:
        return self.clock()

    def spawn(self, fn: Callable, *args) -> None:
        fn(*args)

    def every(self, interval: float, callback: Callable[[], None], tag: str = 'timer') -> TimerHandle:
        handle = TimerHandle(tag, interval, callback)
        self._timers.append([self.clock() + interval, handle])
        return handle

    @property
    def active(self) -> List[TimerHandle]:
        return [h for _, h in self._timers if not h.cancelled]

    def advance(self, seconds: float) -> None:
        target = self.clock() + seconds
        while True:
            self._timers = [t for t in self._timers if not t[1].cancelled]
            due = [t for t in self._timers if t[0] <= target + 1e-9]
            if not due:
                break
            entry = min(due, key=lambda t: t[0])
            self.clock.value = max(self.clock.value, entry[0])
            entry[0] += entry[1].interval
            entry[1].callback()
        self.clock.value = target
