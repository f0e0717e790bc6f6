"""
The WorkQueue holds the class names waiting to be reconciled. It collapses
repeated triggers for one key into a single pending item and never hands a key
to a worker while another worker still holds it. Delayed and rate-limited adds
are scheduled on a TimerThread.
"""

# Standard
from collections import deque
from typing import Deque, Dict, Optional, Set
import threading

# First Party
import alog

# Local
from .rate_limiter import RateLimiterBase
from .threads.timer import TimerThread

log = alog.use_channel("WRKQUE")


class WorkQueue:
    """Deduplicating, single-flight, rate-limited queue of keys"""

    def __init__(
        self,
        rate_limiter: RateLimiterBase,
        timer_thread: Optional[TimerThread] = None,
    ):
        """
        Args:
            rate_limiter:  RateLimiterBase
                Strategy giving the delay of add_rate_limited
            timer_thread:  Optional[TimerThread]
                Thread that runs delayed adds. One is created (and started on
                first use) if not given.
        """
        self.rate_limiter = rate_limiter
        self.timer_thread = timer_thread or TimerThread(name="work_queue_timer")

        self._condition = threading.Condition()
        # Keys ready to hand out, in FIFO order
        self._queue: Deque[str] = deque()
        # Keys that need processing. A dirty key is either in _queue or is
        # being processed and will be queued again by done()
        self._dirty: Set[str] = set()
        # Keys currently held by a worker
        self._processing: Set[str] = set()
        # Consecutive failures per key
        self._failures: Dict[str, int] = {}
        self._shutting_down = False

    ## Adding ##################################################################

    def add(self, key: str):
        """Mark a key as needing processing"""
        with self._condition:
            if self._shutting_down:
                log.debug2("Queue shutting down, dropping %s", key)
                return
            if key in self._dirty:
                log.debug3("Key %s already pending", key)
                return
            self._dirty.add(key)
            if key in self._processing:
                log.debug3("Key %s in flight, will be requeued when done", key)
                return
            self._queue.append(key)
            self._condition.notify()

    def add_after(self, key: str, delay: float):
        """Add a key once the delay (in seconds) has passed"""
        if delay <= 0:
            self.add(key)
            return
        if self.is_shutting_down():
            return
        log.debug3("Adding %s after %ss", key, delay)
        self.timer_thread.start_thread()
        self.timer_thread.put_event_after(delay, self.add, key)

    def add_rate_limited(self, key: str) -> float:
        """Record a failure of the key and add it back once the rate limiter
        allows

        Returns:
            delay:  float
                The delay the key was scheduled with
        """
        with self._condition:
            failure_count = self._failures.get(key, 0) + 1
            self._failures[key] = failure_count
        delay = self.rate_limiter.delay(key, failure_count)
        log.debug2("Requeuing %s after failure %d in %ss", key, failure_count, delay)
        self.add_after(key, delay)
        return delay

    def forget(self, key: str):
        """Clear the failure history of a key after it succeeds"""
        with self._condition:
            self._failures.pop(key, None)
        self.rate_limiter.forget(key)

    def num_requeues(self, key: str) -> int:
        """Number of consecutive failures recorded for the key"""
        with self._condition:
            return self._failures.get(key, 0)

    ## Processing ##############################################################

    def get(self, timeout: Optional[float] = None) -> Optional[str]:
        """Block until a key is ready and take it. The caller must call
        done(key) when finished.

        Returns:
            key:  Optional[str]
                The key to process, or None on timeout or shutdown
        """
        with self._condition:
            if not self._condition.wait_for(
                lambda: self._queue or self._shutting_down, timeout=timeout
            ):
                return None
            if not self._queue:
                return None
            key = self._queue.popleft()
            self._processing.add(key)
            self._dirty.discard(key)
            log.debug3("Handing out %s", key)
            return key

    def done(self, key: str):
        """Release a key taken with get(). If it was triggered again while
        held it is queued again.
        """
        with self._condition:
            self._processing.discard(key)
            if key in self._dirty and not self._shutting_down:
                log.debug3("Requeuing %s triggered while in flight", key)
                self._queue.append(key)
                self._condition.notify()

    ## Lifecycle ###############################################################

    def shutdown(self):
        """Stop handing out keys and wake every waiting worker"""
        log.debug("Shutting down work queue")
        with self._condition:
            self._shutting_down = True
            self._condition.notify_all()
        self.timer_thread.stop_thread()

    def is_shutting_down(self) -> bool:
        with self._condition:
            return self._shutting_down

    def __len__(self):
        with self._condition:
            return len(self._queue)

    def in_flight(self) -> Set[str]:
        """The keys currently held by workers"""
        with self._condition:
            return set(self._processing)
