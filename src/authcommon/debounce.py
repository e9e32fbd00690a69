from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, wait
from typing import Callable, Optional, Set, Tuple


logger = logging.getLogger(__name__)


class DebouncedCommitScheduler:
    """
    Coalesce bursts of "dirty" notifications into a single deferred commit.

    - One pending-timer slot. `notify()` cancels and rearms it, so the commit
      fires `delay` seconds after the *last* notification (trailing edge).
    - `flush_now()` rearms at zero delay.
    - Every notification coalesced into the same commit shares one Future,
      which resolves with None or the commit's exception.
    - Commit errors are always logged and handed to `on_error`, since a
      debounced commit usually has nobody waiting on it.
    - `drain()` runs a pending commit synchronously, waits for in-flight ones
      and raises their errors; call it before process exit.

    Serializing concurrent commits is the job of the `commit` callable
    (see `authstate.writer.WriteSerializer`); the scheduler only guarantees
    that a superseded timer never runs.
    """

    def __init__(
        self,
        commit: Callable[[], None],
        *,
        delay: float,
        on_error: Optional[Callable[[BaseException], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
    ) -> None:
        if delay < 0:
            raise ValueError("delay must be >= 0")
        self._commit = commit
        self._delay = float(delay)
        self._on_error = on_error
        self._clock = clock
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._deadline: Optional[float] = None
        self._future: Optional[Future] = None
        self._generation = 0
        self._in_flight: Set[Future] = set()

    @property
    def delay(self) -> float:
        return self._delay

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    def notify(self) -> Future:
        """Rearm the timer at the full debounce delay."""
        return self._arm(self._delay, keep_sooner=False)

    def flush_now(self) -> Future:
        """Arm the timer at zero delay (a sooner pending fire is kept)."""
        return self._arm(0.0, keep_sooner=True)

    def drain(self, *, force: bool = False) -> None:
        """Run any armed commit now in this thread and wait for in-flight ones.

        With `force`, a commit runs even when nothing is armed. Raises the
        exception of this commit or of any commit that was in flight when
        `drain` was called.
        """
        with self._lock:
            if force and self._future is None:
                self._future = Future()
            claimed = self._disarm_locked()
            in_flight = list(self._in_flight)
        if claimed is not None:
            self._run(*claimed)
            in_flight.remove(claimed[1])
            in_flight.insert(0, claimed[1])
        wait(in_flight)
        for outcome in in_flight:
            error = outcome.exception()
            if error is not None:
                raise error

    # --------------- Internal ---------------
    def _arm(self, delay: float, *, keep_sooner: bool) -> Future:
        with self._lock:
            now = self._clock()
            if keep_sooner and self._deadline is not None and self._deadline <= now + delay:
                return self._future
            if self._timer is not None:
                self._timer.cancel()
            if self._future is None:
                self._future = Future()
            self._generation += 1
            generation = self._generation
            self._deadline = now + delay
            timer = self._timer_factory(delay, self._fire, args=(generation,))
            timer.daemon = True
            self._timer = timer
            future = self._future
            timer.start()
        logger.debug("Scheduled auth state commit in %.3fs", delay)
        return future

    def _disarm_locked(self) -> Optional[Tuple[Future, Future]]:
        """Empty the slot; returns (caller future, private outcome) to run."""
        if self._timer is not None:
            self._timer.cancel()
        self._generation += 1
        self._timer = None
        self._deadline = None
        future, self._future = self._future, None
        if future is None:
            return None
        # Callers may cancel their Future; the outcome is never handed out
        outcome: Future = Future()
        outcome.set_running_or_notify_cancel()
        self._in_flight.add(outcome)
        return future, outcome

    def _fire(self, generation: int) -> None:
        with self._lock:
            # Superseded between cancel() and the timer thread waking up
            if generation != self._generation:
                return
            claimed = self._disarm_locked()
        if claimed is not None:
            self._run(*claimed)

    def _run(self, future: Future, outcome: Future) -> None:
        # False when a waiter cancelled its Future; commit anyway.
        notify_future = future.set_running_or_notify_cancel()
        try:
            self._commit()
        except Exception as exc:
            logger.exception("Auth state commit failed")
            if self._on_error is not None:
                try:
                    self._on_error(exc)
                except Exception:
                    logger.exception("on_error hook raised")
            self._settle(future if notify_future else None, outcome, exc)
        except BaseException as exc:
            self._settle(future if notify_future else None, outcome, exc)
            raise
        else:
            self._settle(future if notify_future else None, outcome, None)

    def _settle(
        self, future: Optional[Future], outcome: Future, error: Optional[BaseException]
    ) -> None:
        with self._lock:
            self._in_flight.discard(outcome)
        for f in (outcome, future):
            if f is None:
                continue
            if error is None:
                f.set_result(None)
            else:
                f.set_exception(error)


__all__ = ["DebouncedCommitScheduler"]
