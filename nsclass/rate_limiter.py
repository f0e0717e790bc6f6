"""
Rate limiters decide how long a key waits before it is retried. Each strategy
answers delay(key, failure_count) on its own and strategies are combined with
MaxOfRateLimiter, so a key waits as long as the strictest strategy demands.
"""

# Standard
from typing import Callable, List
import abc
import threading
import time

# First Party
import aconfig
import alog

log = alog.use_channel("RATELMT")


class RateLimiterBase(abc.ABC):
    """Interface for a retry delay strategy"""

    @abc.abstractmethod
    def delay(self, key: str, failure_count: int) -> float:
        """Get the number of seconds the key must wait before it is retried

        Args:
            key:  str
                The key being retried
            failure_count:  int
                The number of consecutive failures of the key, including the
                one being retried (always >= 1)

        Returns:
            delay:  float
                The delay in seconds
        """

    def forget(self, key: str):
        """Drop any state held for the key after it succeeds"""


class ItemExponentialFailureRateLimiter(RateLimiterBase):
    """Per-key exponential backoff: base_delay * 2^(failures - 1), capped at
    max_delay
    """

    def __init__(self, base_delay: float, max_delay: float):
        self.base_delay = base_delay
        self.max_delay = max_delay

    def delay(self, key: str, failure_count: int) -> float:
        exponent = max(failure_count - 1, 0)
        # Avoid float overflow on very long failure streaks
        if self.base_delay <= 0 or exponent >= 64:
            backoff = self.max_delay if self.base_delay > 0 else 0.0
        else:
            backoff = self.base_delay * (2**exponent)
        backoff = min(backoff, self.max_delay)
        log.debug3("Backoff for %s after %d failures: %ss", key, failure_count, backoff)
        return backoff


class BucketRateLimiter(RateLimiterBase):
    """Token bucket shared by every key. Each call reserves one token and
    returns how long the caller must wait for it. A non-positive qps disables
    the limit.
    """

    def __init__(
        self,
        qps: float,
        burst: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.qps = qps
        self.burst = burst
        self._clock = clock
        self._lock = threading.Lock()
        self._tokens = float(burst)
        self._last = clock()

    def delay(self, key: str, failure_count: int) -> float:
        if self.qps <= 0:
            return 0.0
        with self._lock:
            now = self._clock()
            self._tokens = min(
                float(self.burst), self._tokens + (now - self._last) * self.qps
            )
            self._last = now
            self._tokens -= 1
            if self._tokens >= 0:
                return 0.0
            wait = -self._tokens / self.qps
        log.debug3("Bucket empty, %s waits %ss", key, wait)
        return wait


class MaxOfRateLimiter(RateLimiterBase):
    """Combine strategies by taking the longest delay any of them gives"""

    def __init__(self, *limiters: RateLimiterBase):
        assert limiters, "MaxOfRateLimiter needs at least one limiter"
        self.limiters: List[RateLimiterBase] = list(limiters)

    def delay(self, key: str, failure_count: int) -> float:
        return max(limiter.delay(key, failure_count) for limiter in self.limiters)

    def forget(self, key: str):
        for limiter in self.limiters:
            limiter.forget(key)


def default_rate_limiter(rate_limiter_config: aconfig.Config) -> RateLimiterBase:
    """Build the per-key backoff combined with the shared bucket from the
    rate_limiter section of the library config
    """
    log.debug2("Building rate limiter from %s", rate_limiter_config)
    return MaxOfRateLimiter(
        ItemExponentialFailureRateLimiter(
            base_delay=rate_limiter_config.base_delay,
            max_delay=rate_limiter_config.max_delay,
        ),
        BucketRateLimiter(
            qps=rate_limiter_config.qps,
            burst=rate_limiter_config.burst,
        ),
    )
