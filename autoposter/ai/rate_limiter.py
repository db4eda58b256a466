"""Bounded-concurrency, minimum-interval, FIFO gate for AI calls."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RateLimiterCleared(Exception):
    """A queued task was rejected by ``RateLimiter.clear()``."""


class _Ticket:
    __slots__ = ("cancelled",)

    def __init__(self):
        self.cancelled = False


class RateLimiter:
    """Run tasks with at most ``max_concurrent`` in flight and starts spaced
    at least ``min_interval`` seconds apart, in submission order.

    Tasks run on the submitting thread; ``submit`` blocks until the task's
    turn comes and returns its result (or raises its exception).

    ``clock`` and ``sleep`` go together: with the defaults the interval wait
    happens on the condition variable in real time; a custom clock needs a
    ``sleep`` that advances it.
    """

    def __init__(
        self,
        max_concurrent: int = 2,
        min_interval: float = 3.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        if min_interval < 0:
            raise ValueError("min_interval cannot be negative")
        self.max_concurrent = max_concurrent
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._cond = threading.Condition()
        self._queue: Deque[_Ticket] = deque()
        self._active = 0
        self._last_start: Optional[float] = None

    def submit(self, task: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        ticket = _Ticket()
        with self._cond:
            self._queue.append(ticket)
            try:
                self._wait_for_turn(ticket)
            except BaseException:
                if ticket in self._queue:
                    self._queue.remove(ticket)
                    self._cond.notify_all()
                raise
            self._queue.popleft()
            self._active += 1
            self._last_start = self._clock()
            self._cond.notify_all()

        try:
            return task(*args, **kwargs)
        finally:
            with self._cond:
                self._active -= 1
                self._cond.notify_all()

    def _wait_for_turn(self, ticket: _Ticket) -> None:
        # Caller holds self._cond
        while True:
            if ticket.cancelled:
                raise RateLimiterCleared("Queue cleared")
            if self._queue[0] is not ticket or self._active >= self.max_concurrent:
                self._cond.wait()
                continue
            if self._last_start is None:
                return
            remaining = self._last_start + self.min_interval - self._clock()
            if remaining <= 0:
                return
            if self._sleep is None:
                self._cond.wait(remaining)
                continue
            self._cond.release()
            try:
                self._sleep(remaining)
            finally:
                self._cond.acquire()

    def clear(self) -> int:
        """Reject every task that has not started yet. Returns how many were dropped."""
        with self._cond:
            dropped = len(self._queue)
            for ticket in self._queue:
                ticket.cancelled = True
            self._queue.clear()
            self._cond.notify_all()
        if dropped:
            logger.info(f"Rate limiter cleared {dropped} queued task(s)")
        return dropped

    def get_status(self) -> Dict[str, int]:
        with self._cond:
            return {"queue_length": len(self._queue), "active_count": self._active}
