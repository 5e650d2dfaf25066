"""
=============================================================================
SCHEDULER SERVICE - Trigger sources and the tick queue
=============================================================================

Every trigger (periodic timer, midnight timer, app resume, background task)
only *emits* a Tick onto one queue. A single consumer thread runs the
consumption pipeline for each tick in order, so two triggers can never
mutate the same user's documents at the same time.

[periodic timer] --\
[midnight timer] ---+--> [TickDispatcher queue] --> [consumer] --> pipeline
[resume / API]   --/

Timers live only as long as the user's session: sign-in arms them,
sign-out cancels them, and nothing survives a process restart.
=============================================================================
"""

import logging
import queue
import threading
from contextlib import contextmanager
from datetime import datetime, time, timedelta
from typing import Callable, Dict, Iterator, List, Optional

from backend.lib.uptime_core.interfaces import Clock
from backend.lib.uptime_core.pipeline import Tick, TickKind

logger = logging.getLogger(__name__)

_STOP = object()


class TickDispatcher:
    """Single-consumer queue of ticks. Identical pending ticks are coalesced."""

    def __init__(self, handler: Callable[[Tick], object]):
        self.handler = handler
        self._queue: "queue.Queue" = queue.Queue()
        self._pending = set()
        self._lock = threading.Lock()
        # Held while the pipeline runs, by the consumer or a synchronous caller
        self._busy = threading.RLock()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._thread = threading.Thread(target=self._run, name="TickDispatcher", daemon=True)
        self._thread.start()
        logger.info("Tick dispatcher started")

    def submit(self, tick: Tick) -> bool:
        """Queue ``tick``. Returns False when the same tick is already waiting."""
        with self._lock:
            if tick in self._pending:
                return False
            self._pending.add(tick)
        self._queue.put(tick)
        return True

    @contextmanager
    def exclusive(self) -> Iterator[None]:
        """Keep the consumer idle while the caller mutates ledger state."""
        with self._busy:
            yield

    def run_now(self, tick: Tick):
        """Handle ``tick`` on the calling thread and return the handler result."""
        with self._busy:
            return self.handler(tick)

    def join(self) -> None:
        """Block until every queued tick has been handled."""
        self._queue.join()

    def stop(self, timeout: float = 5.0) -> None:
        if not self.running:
            return
        self._queue.put(_STOP)
        self._thread.join(timeout)
        self._thread = None
        logger.info("Tick dispatcher stopped")

    def _run(self) -> None:
        while True:
            tick = self._queue.get()
            try:
                if tick is _STOP:
                    return
                with self._lock:
                    self._pending.discard(tick)
                with self._busy:
                    self.handler(tick)
            except Exception:
                # A failed pass leaves stale data for the next tick to correct
                logger.exception("Unhandled error while processing %s", tick)
            finally:
                self._queue.task_done()


def seconds_until_midnight(now: datetime) -> float:
    next_midnight = datetime.combine(now.date() + timedelta(days=1), time(0), tzinfo=now.tzinfo)
    return max((next_midnight - now).total_seconds(), 1.0)


class TriggerScheduler:
    """Arms per-user periodic and midnight timers that feed the dispatcher."""

    def __init__(
        self,
        dispatcher: TickDispatcher,
        clock: Clock,
        interval_minutes: float = 5,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
    ):
        self.dispatcher = dispatcher
        self.clock = clock
        self.interval_seconds = float(interval_minutes) * 60
        self.timer_factory = timer_factory
        self._timers: Dict[str, Dict[str, threading.Timer]] = {}
        self._lock = threading.Lock()

    @property
    def active_sessions(self) -> List[str]:
        with self._lock:
            return sorted(self._timers)

    def start_session(self, user_id: str) -> None:
        """Sign-in: arm both timers and catch up on anything missed."""
        self.end_session(user_id)
        with self._lock:
            self._timers[user_id] = {}
        self._arm(user_id, TickKind.PERIODIC, self.interval_seconds)
        self._arm(user_id, TickKind.MIDNIGHT, seconds_until_midnight(self.clock.now()))
        self.dispatcher.submit(Tick(user_id, TickKind.RESUME))
        logger.info("Session started for user %s", user_id)

    def end_session(self, user_id: str) -> None:
        """Sign-out: cancel every timer of ``user_id``."""
        with self._lock:
            timers = self._timers.pop(user_id, {})
        for timer in timers.values():
            timer.cancel()
        if timers:
            logger.info("Session ended for user %s", user_id)

    def shutdown(self) -> None:
        for user_id in self.active_sessions:
            self.end_session(user_id)
        self.dispatcher.stop()

    def _arm(self, user_id: str, kind: TickKind, delay: float) -> None:
        timer = self.timer_factory(delay, self._fire, args=(user_id, kind))
        timer.daemon = True
        with self._lock:
            timers = self._timers.get(user_id)
            if timers is None:
                # Session ended while this timer was firing
                return
            timers[kind.value] = timer
        timer.start()

    def _fire(self, user_id: str, kind: TickKind) -> None:
        self.dispatcher.submit(Tick(user_id, kind))
        if kind == TickKind.MIDNIGHT:
            # One-shot, re-armed for the following midnight
            self._arm(user_id, kind, seconds_until_midnight(self.clock.now()))
        else:
            self._arm(user_id, kind, self.interval_seconds)
