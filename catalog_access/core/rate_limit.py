# catalog_access/core/rate_limit.py
import math
import time

from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter

from catalog_access.core.errors import RateLimited


class SlidingWindowRateLimiter:
    """
    Per-IP limiter on top of ``limits``' moving window.

    At most ``max_attempts`` hits per ``window_seconds`` per key; hits older
    than the window fall out, so the counter resets once the window
    elapses. Rejected attempts are not counted.

    Counters live in process memory (``limits.storage.MemoryStorage``, which
    expires idle keys on its own). Not cluster-safe: a multi-instance
    deployment should pass a shared storage such as ``RedisStorage``.
    """

    def __init__(self, max_attempts: int, window_seconds: int, storage=None):
        self.item = RateLimitItemPerSecond(max_attempts, window_seconds)
        self.storage = storage or MemoryStorage()
        self.strategy = MovingWindowRateLimiter(self.storage)

    @property
    def max_attempts(self) -> int:
        return self.item.amount

    def hit(self, key: str, message: str | None = None) -> None:
        """
        Record one attempt for ``key``.

        Raises:
            RateLimited: with the seconds until the oldest hit leaves the window.
        """
        if self.strategy.hit(self.item, key):
            return
        stats = self.strategy.get_window_stats(self.item, key)
        retry_after = max(1, math.ceil(stats.reset_time - time.time()))
        raise RateLimited(retry_after, message)

    def remaining(self, key: str) -> int:
        return self.strategy.get_window_stats(self.item, key).remaining

    def reset(self, key: str) -> None:
        self.strategy.clear(self.item, key)
