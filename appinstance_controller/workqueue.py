"""
Keyed work queue

A key is never handed to two workers at the same time. Adding a key that is
already pending is a no-op; adding one that is being processed marks it dirty
so it is queued again once the worker calls done(). Different keys are handed
out independently, so unrelated Instances reconcile in parallel.
"""

import logging
import threading
from collections import deque
from typing import Dict, Hashable, Optional, Set

from .config import Config

logger = logging.getLogger("appinstance-controller.workqueue")


class WorkQueue:
    """De-duplicating FIFO of keys with per-key exclusivity and failure backoff"""

    def __init__(self, backoff_base: float = None, max_backoff: float = None):
        self.backoff_base = Config.RETRY_BACKOFF_BASE if backoff_base is None else backoff_base
        self.max_backoff = Config.MAX_BACKOFF_SECONDS if max_backoff is None else max_backoff
        self._cond = threading.Condition()
        self._queue = deque()
        self._dirty: Set[Hashable] = set()
        self._processing: Set[Hashable] = set()
        self._failures: Dict[Hashable, int] = {}
        self._timers: Set[threading.Timer] = set()
        self._shutting_down = False

    def __len__(self):
        with self._cond:
            return len(self._queue)

    def add(self, key: Hashable):
        with self._cond:
            if self._shutting_down or key in self._dirty:
                return
            self._dirty.add(key)
            if key in self._processing:
                return
            self._queue.append(key)
            self._cond.notify()

    def get(self, timeout: float = None) -> Optional[Hashable]:
        """
        Block until a key is available

        Returns:
            The next key, or None on shutdown or timeout
        """
        with self._cond:
            if not self._cond.wait_for(lambda: self._queue or self._shutting_down, timeout):
                return None
            if not self._queue:
                return None
            key = self._queue.popleft()
            self._processing.add(key)
            self._dirty.discard(key)
            return key

    def done(self, key: Hashable):
        """Mark a key as processed; requeue it if it was added in the meantime"""
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    def add_after(self, key: Hashable, delay: float):
        if delay <= 0:
            self.add(key)
            return

        def fire():
            with self._cond:
                self._timers.discard(timer)
            self.add(key)

        timer = threading.Timer(delay, fire)
        timer.daemon = True
        with self._cond:
            if self._shutting_down:
                return
            self._timers.add(timer)
        timer.start()

    def backoff_for(self, key: Hashable) -> float:
        failures = self._failures.get(key, 0)
        if failures == 0:
            return 0.0
        return min(self.backoff_base ** (failures - 1), self.max_backoff)

    def add_rate_limited(self, key: Hashable):
        """Requeue a failed key after an exponential backoff"""
        with self._cond:
            self._failures[key] = self._failures.get(key, 0) + 1
            failures = self._failures[key]
        delay = self.backoff_for(key)
        logger.info(f"Requeueing {key} in {delay:.1f}s (failure {failures})")
        self.add_after(key, delay)

    def forget(self, key: Hashable):
        with self._cond:
            self._failures.pop(key, None)

    def num_requeues(self, key: Hashable) -> int:
        with self._cond:
            return self._failures.get(key, 0)

    def shutdown(self):
        """Stop handing out keys and wake every blocked worker"""
        with self._cond:
            self._shutting_down = True
            timers = list(self._timers)
            self._timers.clear()
            self._queue.clear()
            self._cond.notify_all()
        for timer in timers:
            timer.cancel()
