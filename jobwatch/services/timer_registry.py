"""
Timer registry.

Owns cancellable delayed callbacks keyed by (job_id, timer kind).
At most one live timer exists per key; a timer fires at most once and
never after cancel() has returned.
"""
import asyncio
import threading
from typing import Callable, Protocol

from jobwatch.logging_config import get_logger
from jobwatch.models.job import TimerKind

logger = get_logger(component="timer_registry")


class ScheduledCall(Protocol):
    def cancel(self) -> None: ...


class Clock(Protocol):
    """Minimal scheduling surface; asyncio.AbstractEventLoop satisfies it."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> ScheduledCall: ...


class LoopClock:
    """Clock backed by the running asyncio event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> ScheduledCall:
        return self.loop.call_later(delay, callback)


class TimerHandle:
    """
    Handle for one armed timer.

    cancel() is idempotent and safe after the timer fired.
    """

    def __init__(self, registry: "TimerRegistry", job_id: str, kind: TimerKind):
        self.registry = registry
        self.job_id = job_id
        self.kind = kind
        self._scheduled: ScheduledCall | None = None
        self._done = False

    @property
    def active(self) -> bool:
        return not self._done

    def cancel(self) -> None:
        self.registry.cancel(self)

    def __repr__(self):
        return f"<TimerHandle(job_id={self.job_id}, kind={self.kind.value}, active={self.active})>"


class TimerRegistry:
    """Per-job timer table shared by all trackers."""

    def __init__(self, clock: Clock | None = None):
        self.clock = clock or LoopClock()
        self._lock = threading.RLock()
        self._timers: dict[tuple[str, TimerKind], TimerHandle] = {}

    def arm(
        self,
        job_id: str,
        kind: TimerKind,
        duration: float,
        on_expire: Callable[[], None],
    ) -> TimerHandle:
        """
        Arm a timer for (job_id, kind), replacing any live one.
        """
        handle = TimerHandle(self, job_id, kind)

        def fire():
            with self._lock:
                if handle._done:
                    return
                handle._done = True
                if self._timers.get((job_id, kind)) is handle:
                    del self._timers[(job_id, kind)]
            logger.info("timer_fired", job_id=job_id, kind=kind.value)
            on_expire()

        with self._lock:
            previous = self._timers.get((job_id, kind))
            if previous is not None:
                self._cancel_locked(previous)
            handle._scheduled = self.clock.call_later(duration, fire)
            self._timers[(job_id, kind)] = handle

        logger.debug("timer_armed", job_id=job_id, kind=kind.value, duration=duration)
        return handle

    def cancel(self, handle: TimerHandle) -> None:
        with self._lock:
            self._cancel_locked(handle)

    def cancel_all(self, job_id: str) -> None:
        """Cancel every live timer of a job."""
        with self._lock:
            for key in [key for key in self._timers if key[0] == job_id]:
                self._cancel_locked(self._timers[key])

    def get(self, job_id: str, kind: TimerKind) -> TimerHandle | None:
        with self._lock:
            return self._timers.get((job_id, kind))

    def _cancel_locked(self, handle: TimerHandle) -> None:
        if handle._done:
            return
        handle._done = True
        if handle._scheduled is not None:
            handle._scheduled.cancel()
        if self._timers.get((handle.job_id, handle.kind)) is handle:
            del self._timers[(handle.job_id, handle.kind)]
        logger.debug("timer_cancelled", job_id=handle.job_id, kind=handle.kind.value)

    def __len__(self):
        with self._lock:
            return len(self._timers)

    def __bool__(self):
        # An empty registry is still a registry
        return True
