"""
WorkQueue - a keyed, deduplicating, rate-limited work queue.

Guarantees:
- A key is queued at most once no matter how many times it is added
- A key is handed to at most one worker at a time; adds that arrive while it
  is processing are deferred until done() and then queued once
- add_rate_limited() delays a key by a capped exponential backoff based on its
  failure count; forget() resets the count after a success
- add_after() schedules a key for later (poll fallback); the earliest pending
  time for a key wins

Because reconciliation is level-triggered, coalescing several notifications
into one queued key loses nothing.
"""

import heapq
import itertools
import threading
import time
from typing import Callable, Hashable, Optional

from shiprun.utils import backoff_delay


class WorkQueue:
    """Thread-safe work queue keyed by object identity."""

    def __init__(
        self,
        base_delay: float = 0.005,
        max_delay: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._clock = clock
        self._cond = threading.Condition()
        self._queue: list[Hashable] = []
        self._dirty: set[Hashable] = set()
        self._processing: set[Hashable] = set()
        self._waiting: list[tuple[float, int, Hashable]] = []
        self._ready_at: dict[Hashable, float] = {}
        self._failures: dict[Hashable, int] = {}
        self._seq = itertools.count()
        self._shutting_down = False

    def __len__(self) -> int:
        """Number of keys ready to be handed out."""
        with self._cond:
            self._promote_due()
            return len(self._queue)

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    def pending_delayed(self) -> int:
        """Number of keys scheduled for later."""
        with self._cond:
            return len(self._ready_at)

    def add(self, key: Hashable) -> None:
        """Queue a key for processing now."""
        with self._cond:
            self._add_locked(key)

    def add_after(self, key: Hashable, delay: float) -> None:
        """Queue a key after `delay` seconds."""
        if delay <= 0:
            self.add(key)
            return
        with self._cond:
            if self._shutting_down:
                return
            ready_at = self._clock() + delay
            current = self._ready_at.get(key)
            if current is not None and current <= ready_at:
                return
            self._ready_at[key] = ready_at
            heapq.heappush(self._waiting, (ready_at, next(self._seq), key))
            self._cond.notify()

    def add_rate_limited(self, key: Hashable) -> float:
        """
        Requeue a key after its backoff delay and count the failure.

        Returns:
            The delay applied, in seconds
        """
        with self._cond:
            failures = self._failures.get(key, 0)
            self._failures[key] = failures + 1
        delay = backoff_delay(failures, self._base_delay, self._max_delay)
        self.add_after(key, delay)
        return delay

    def num_requeues(self, key: Hashable) -> int:
        with self._cond:
            return self._failures.get(key, 0)

    def forget(self, key: Hashable) -> None:
        """Reset the failure count for a key."""
        with self._cond:
            self._failures.pop(key, None)

    def get(self, timeout: Optional[float] = None) -> Optional[Hashable]:
        """
        Take the next ready key, blocking until one is available.

        Args:
            timeout: Seconds to wait; None waits until a key or shutdown

        Returns:
            The key, or None on timeout or shutdown
        """
        deadline = None if timeout is None else self._clock() + timeout
        with self._cond:
            while True:
                self._promote_due()
                if self._queue:
                    key = self._queue.pop(0)
                    self._processing.add(key)
                    self._dirty.discard(key)
                    return key
                if self._shutting_down:
                    return None

                wait = None
                if self._waiting:
                    wait = max(self._waiting[0][0] - self._clock(), 0)
                if deadline is not None:
                    remaining = deadline - self._clock()
                    if remaining <= 0:
                        return None
                    wait = remaining if wait is None else min(wait, remaining)
                self._cond.wait(wait)

    def done(self, key: Hashable) -> None:
        """Mark a key as finished; re-queue it if it was added meanwhile."""
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    def shutdown(self) -> None:
        """Stop handing out keys; blocked get() calls return None."""
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()

    def _add_locked(self, key: Hashable) -> None:
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.append(key)
        self._cond.notify()

    def _promote_due(self) -> None:
        now = self._clock()
        while self._waiting and self._waiting[0][0] <= now:
            ready_at, _, key = heapq.heappop(self._waiting)
            if self._ready_at.get(key) != ready_at:
                continue  # superseded by an earlier schedule
            del self._ready_at[key]
            self._add_locked(key)
