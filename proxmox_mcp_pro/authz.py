from __future__ import annotations

import math
import threading
import time
from typing import Callable, Optional

from .config import RateLimitConfig, SafetyConfig


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class RateLimiter:
    """Non-blocking token bucket with continuous refill.

    ``clock`` returns a monotonic timestamp in milliseconds.
    """

    def __init__(
        self,
        max_requests: int,
        window_ms: float,
        clock: Callable[[], float] = monotonic_ms,
        enabled: bool = True,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if window_ms <= 0:
            raise ValueError("window_ms must be > 0")
        self.enabled = enabled
        self.max_tokens = max_requests
        self.refill_rate_per_ms = max_requests / window_ms
        self._clock = clock
        self._tokens = float(max_requests)
        self._last_refill = clock()
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, cfg: RateLimitConfig, clock: Callable[[], float] = monotonic_ms) -> "RateLimiter":
        return cls(cfg.max_requests, cfg.window_ms, clock=clock, enabled=cfg.enabled)

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(float(self.max_tokens), self._tokens + elapsed * self.refill_rate_per_ms)
        self._last_refill = max(self._last_refill, now)

    def try_acquire(self) -> bool:
        if not self.enabled:
            return True
        with self._lock:
            self._refill()
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return True
            return False

    @property
    def tokens(self) -> float:
        """Current fractional token count, refilled first."""
        with self._lock:
            self._refill()
            return self._tokens

    def get_token_count(self) -> int:
        return math.floor(self.tokens)

    def reset(self) -> None:
        with self._lock:
            self._tokens = float(self.max_tokens)
            self._last_refill = self._clock()


class OperationPolicy:
    def __init__(self, safety: SafetyConfig):
        self._allowed = safety.allowed_operations
        self._denied = safety.denied_operations
        self._require_confirmation = safety.require_confirmation

    def is_allowed(self, operation: str) -> bool:
        if operation in self._denied:
            return False
        if not self._allowed:
            return True
        return operation in self._allowed

    def check(self, operation: str, destructive: bool = False, confirm: Optional[bool] = False) -> None:
        if not self.is_allowed(operation):
            raise PermissionError(f"Operation '{operation}' is not allowed")
        if destructive and self._require_confirmation and not confirm:
            raise PermissionError("Destructive operation: set confirm=True to proceed")
