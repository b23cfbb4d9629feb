"""Per-session quotas (token bucket)."""

from __future__ import annotations

import time
from typing import Callable


class TokenBucket:
    def __init__(self, rate_per_sec: float, burst: float, clock: Callable[[], float] = time.monotonic):
        self.rate = float(rate_per_sec)
        self.capacity = float(burst)
        self.tokens = float(burst)
        self._clock = clock
        self.last = clock()

    def allow(self, cost: float = 1.0) -> bool:
        now = self._clock()
        self.tokens = min(self.capacity, self.tokens + (now - self.last) * self.rate)
        self.last = now
        if self.tokens < cost:
            return False
        self.tokens -= cost
        return True
