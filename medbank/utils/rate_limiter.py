"""In-memory sliding-window rate limiter for login and verification e-mails."""

import time
from collections import defaultdict


class RateLimiter:
    """Sliding window rate limiter keyed by identifier (client IP, e-mail address)."""

    def __init__(self, max_attempts: int = 5, window_seconds: int = 300, max_keys: int = 10000):
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self.max_keys = max_keys
        self._attempts: dict[str, list[float]] = defaultdict(list)

    def _prune(self, key: str, now: float) -> list[float]:
        cutoff = now - self.window_seconds
        recent = [t for t in self._attempts.get(key, []) if t > cutoff]
        if recent:
            self._attempts[key] = recent
        else:
            self._attempts.pop(key, None)
        return recent

    def is_rate_limited(self, key: str) -> bool:
        """True once ``key`` used up its attempts inside the window."""
        return len(self._prune(key, time.time())) >= self.max_attempts

    def record_attempt(self, key: str) -> None:
        now = time.time()
        self._prune(key, now)
        self._attempts[key].append(now)

        if len(self._attempts) > self.max_keys:
            for stale in list(self._attempts)[:100]:
                self._prune(stale, now)

    def remaining_attempts(self, key: str) -> int:
        return max(0, self.max_attempts - len(self._prune(key, time.time())))

    def reset(self, key: str) -> None:
        self._attempts.pop(key, None)
