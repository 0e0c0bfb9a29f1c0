"""In-memory fixed-window rate limiting for contact submissions."""

import math
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict, Optional, Protocol

from gateway.shared.contact.config import RATE_LIMIT_MAX_REQUESTS, RATE_LIMIT_WINDOW_SECONDS


@dataclass
class RateLimitRecord:
    count: int
    window_start: float


@dataclass
class RateLimitDecision:
    allowed: bool
    retry_after: int = 0


class Admitter(Protocol):
    """Anything the pipeline can ask whether a client may submit again."""

    def check(self, key: str) -> RateLimitDecision:
        ...


class RateLimiter:
    """
    Fixed-window limiter keyed by client IP.

    State lives only in this object and is lost on restart. Expired records are
    dropped lazily when the same key is seen again; there is no sweeper.
    """

    def __init__(
        self,
        max_requests: int = RATE_LIMIT_MAX_REQUESTS,
        window_seconds: float = RATE_LIMIT_WINDOW_SECONDS,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock or time.monotonic
        self._records: Dict[str, RateLimitRecord] = {}
        self._lock = Lock()

    def check(self, key: str) -> RateLimitDecision:
        """Count a request for `key` and report whether it is admitted."""
        now = self._clock()
        with self._lock:
            record = self._records.get(key)
            if record is not None and now - record.window_start > self.window_seconds:
                del self._records[key]
                record = None

            if record is None:
                self._records[key] = RateLimitRecord(count=1, window_start=now)
                return RateLimitDecision(allowed=True)

            if record.count >= self.max_requests:
                remaining = self.window_seconds - (now - record.window_start)
                return RateLimitDecision(allowed=False, retry_after=max(math.ceil(remaining), 1))

            record.count += 1
            return RateLimitDecision(allowed=True)

    def admit(self, key: str) -> bool:
        return self.check(key).allowed

    def get(self, key: str) -> Optional[RateLimitRecord]:
        with self._lock:
            return self._records.get(key)

    def __len__(self) -> int:
        return len(self._records)
