"""
Fixed-window admission control keyed by an opaque identity string.
"""

import threading
import time
from typing import Callable, Dict, Optional

from ..models.core import Admission
from ..utils.config import RateLimitConfig
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

# Registry size above which closed windows are purged on the next bucket creation.
PURGE_THRESHOLD = 10000


class _Window:
    __slots__ = ('lock', 'started_at', 'count', 'retired')

    def __init__(self, started_at: float):
        self.lock = threading.Lock()
        self.started_at = started_at
        self.count = 0
        self.retired = False


class FixedWindowRateLimiter:
    """Allows at most ``max_requests`` per identity in each ``window_seconds`` window.

    A window opens at the first request an identity makes and closes
    ``window_seconds`` later. Each identity owns its own lock; the registry lock
    is only held while a bucket is looked up, created or purged.
    """

    def __init__(self,
                 max_requests: int = 10,
                 window_seconds: float = 10.0,
                 clock: Optional[Callable[[], float]] = None):
        """
        Initialize the rate limiter.

        Args:
            max_requests: Admissions allowed per window
            window_seconds: Window length in seconds
            clock: Monotonic time source, injectable for tests

        Raises:
            ValueError: If the budget or window is not positive
        """
        if max_requests < 1:
            raise ValueError('max_requests must be at least 1')
        if window_seconds <= 0:
            raise ValueError('window_seconds must be positive')

        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock or time.monotonic
        self._registry_lock = threading.Lock()
        self._windows: Dict[str, _Window] = {}

    @classmethod
    def from_config(cls, config: RateLimitConfig) -> 'FixedWindowRateLimiter':
        return cls(max_requests=config.max_requests, window_seconds=config.window_seconds)

    def admit(self, identity: str) -> Admission:
        """
        Decide whether a request for ``identity`` may proceed.

        Args:
            identity: Opaque identity string (user + companion)

        Returns:
            Admission.ALLOWED and a consumed unit of budget, or
            Admission.THROTTLED with no change to the counter
        """
        while True:
            window = self._window_for(identity)
            with window.lock:
                if window.retired:
                    # Purged between lookup and lock; fetch the replacement.
                    continue

                now = self._clock()
                if now - window.started_at >= self.window_seconds:
                    window.started_at = now
                    window.count = 0

                if window.count >= self.max_requests:
                    logger.info(f'Rate limit exceeded for {identity}')
                    return Admission.THROTTLED

                window.count += 1
                return Admission.ALLOWED

    def remaining(self, identity: str) -> int:
        """Admissions left for ``identity`` in its current window."""
        with self._registry_lock:
            window = self._windows.get(identity)
        if window is None:
            return self.max_requests

        with window.lock:
            if window.retired or self._clock() - window.started_at >= self.window_seconds:
                return self.max_requests
            return max(self.max_requests - window.count, 0)

    def purge_expired(self) -> int:
        """Drop buckets whose window has closed. Returns the number removed."""
        with self._registry_lock:
            removed = self._purge_locked()

        if removed:
            logger.debug(f'Purged {removed} closed rate limit windows')
        return removed

    def _purge_locked(self) -> int:
        now = self._clock()
        removed = 0
        for identity, window in list(self._windows.items()):
            # A busy window is in use right now; leave it for the next purge.
            if not window.lock.acquire(blocking=False):
                continue
            try:
                if now - window.started_at >= self.window_seconds:
                    window.retired = True
                    del self._windows[identity]
                    removed += 1
            finally:
                window.lock.release()
        return removed

    def _window_for(self, identity: str) -> _Window:
        with self._registry_lock:
            window = self._windows.get(identity)
            if window is not None:
                return window

            if len(self._windows) >= PURGE_THRESHOLD:
                self._purge_locked()

            window = _Window(started_at=self._clock())
            self._windows[identity] = window
            return window
