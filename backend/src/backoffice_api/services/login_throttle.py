"""Per-identifier login attempt throttling.

State is per process. A multi-instance deployment needs a shared store
for the counters; the HTTP-level slowapi limiter does not replace this.
"""

import logging
import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import NamedTuple

from backoffice_api.config import get_settings

logger = logging.getLogger(__name__)


class ThrottleResult(NamedTuple):
    """Outcome of a throttle check."""

    allowed: bool
    minutes_left: int | None = None


@dataclass
class LoginAttemptCounter:
    """Attempts recorded for one identifier."""

    count: int
    last_attempt_at: float


class LoginThrottle:
    """Counts login attempts and locks an identifier out for a fixed window."""

    def __init__(
        self,
        max_attempts: int | None = None,
        window_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        settings = get_settings()
        self.max_attempts = max_attempts or settings.max_login_attempts
        self.window_seconds = window_seconds or settings.lockout_duration_minutes * 60
        self._clock = clock
        self._attempts: dict[str, LoginAttemptCounter] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(identifier: str) -> str:
        return identifier.strip().lower()

    def _purge_expired(self, now: float) -> None:
        expired = [
            key
            for key, counter in self._attempts.items()
            if now - counter.last_attempt_at >= self.window_seconds
        ]
        for key in expired:
            del self._attempts[key]

    def check(self, identifier: str) -> ThrottleResult:
        """Record an attempt for ``identifier`` and decide whether it may proceed.

        Every call also drops all identifiers whose window has elapsed.

        Args:
            identifier: Login identifier, usually the email address

        Returns:
            ThrottleResult; ``minutes_left`` is set when the attempt is denied
        """
        key = self._key(identifier)
        with self._lock:
            now = self._clock()
            self._purge_expired(now)

            counter = self._attempts.get(key)
            if counter is None:
                self._attempts[key] = LoginAttemptCounter(count=1, last_attempt_at=now)
                return ThrottleResult(allowed=True)

            if counter.count >= self.max_attempts:
                remaining = self.window_seconds - (now - counter.last_attempt_at)
                minutes_left = max(1, math.ceil(remaining / 60))
                logger.info(f"Login throttled for identifier, {minutes_left} minute(s) left")
                return ThrottleResult(allowed=False, minutes_left=minutes_left)

            counter.count += 1
            counter.last_attempt_at = now
            return ThrottleResult(allowed=True)

    def reset(self, identifier: str) -> None:
        """Forget all attempts for ``identifier`` after a successful login."""
        with self._lock:
            self._attempts.pop(self._key(identifier), None)

    def attempts(self, identifier: str) -> int:
        """Current attempt count for ``identifier`` (0 when untracked)."""
        with self._lock:
            counter = self._attempts.get(self._key(identifier))
            return counter.count if counter else 0

    def tracked_count(self) -> int:
        """Number of identifiers currently tracked."""
        with self._lock:
            return len(self._attempts)


# Global instance
_login_throttle: LoginThrottle | None = None


def get_login_throttle() -> LoginThrottle:
    """Get or create the login throttle singleton."""
    global _login_throttle
    if _login_throttle is None:
        _login_throttle = LoginThrottle()
    return _login_throttle


def reset_login_throttle() -> None:
    """Reset the login throttle singleton (for testing)."""
    global _login_throttle
    _login_throttle = None
