"""
Per-user request rate limiting.

Sliding-window counter kept in process memory. Each check discards
timestamps that have left the trailing window before counting, so the
window always ends at "now" rather than at a fixed bucket boundary.
"""

import logging
import math
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, Optional


logger = logging.getLogger(__name__)


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


@dataclass
class RateLimitEntry:
    """Request timestamps (ms) observed for one user, oldest first."""
    timestamps: Deque[float] = field(default_factory=deque)
    last_seen: float = 0.0


class RateLimiter:
    """Sliding-window rate limiter keyed by user id.

    All access to the entry map is serialized by a single lock, which keeps
    the at-most-``max_requests`` guarantee when called from several threads.
    A background sweep evicts users untouched for twice the cleanup interval.
    """

    def __init__(
        self,
        window_ms: int = 60_000,
        max_requests: int = 10,
        cleanup_interval_ms: int = 300_000,
        clock: Callable[[], float] = _monotonic_ms,
    ):
        """Initialize the limiter.

        Args:
            window_ms: Length of the trailing window in milliseconds
            max_requests: Requests allowed per user within one window
            cleanup_interval_ms: Period of the background sweep
            clock: Returns the current time in milliseconds

        Raises:
            ValueError: If any limit is not positive
        """
        if window_ms <= 0:
            raise ValueError("window_ms must be > 0")
        if max_requests <= 0:
            raise ValueError("max_requests must be > 0")
        if cleanup_interval_ms <= 0:
            raise ValueError("cleanup_interval_ms must be > 0")

        self.window_ms = window_ms
        self.max_requests = max_requests
        self.cleanup_interval_ms = cleanup_interval_ms
        self._clock = clock
        self._entries: Dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._cleanup_thread: Optional[threading.Thread] = None

    def check_limit(self, user_id: str) -> bool:
        """Record a request for ``user_id`` if it is within the limit.

        Denied attempts are not recorded, so hammering while throttled
        does not extend the lockout.

        Returns:
            True if the request is allowed, False otherwise
        """
        with self._lock:
            now = self._clock()
            entry = self._entries.get(user_id)
            if entry is None:
                entry = RateLimitEntry()
                self._entries[user_id] = entry

            entry.last_seen = now
            self._prune(entry, now)

            if len(entry.timestamps) >= self.max_requests:
                return False

            entry.timestamps.append(now)
            return True

    def get_remaining_requests(self, user_id: str) -> int:
        """Requests still available to ``user_id`` in the current window."""
        with self._lock:
            return max(0, self.max_requests - self._count_in_window(user_id))

    def get_reset_time(self, user_id: str) -> int:
        """Whole seconds until the oldest in-window request expires.

        Returns 0 if the user has no requests in the window.
        """
        with self._lock:
            entry = self._entries.get(user_id)
            if entry is None:
                return 0

            now = self._clock()
            cutoff = now - self.window_ms
            for ts in entry.timestamps:
                if ts > cutoff:
                    return math.ceil((ts + self.window_ms - now) / 1000)
            return 0

    def reset(self, user_id: str) -> None:
        """Forget every recorded request for ``user_id``."""
        with self._lock:
            self._entries.pop(user_id, None)

    def get_stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "total_users": len(self._entries),
                "window_ms": self.window_ms,
                "max_requests": self.max_requests,
            }

    def cleanup(self) -> int:
        """Evict users not seen for longer than twice the cleanup interval.

        Returns:
            Number of evicted entries
        """
        with self._lock:
            cutoff = self._clock() - 2 * self.cleanup_interval_ms
            stale = [uid for uid, entry in self._entries.items() if entry.last_seen < cutoff]
            for uid in stale:
                del self._entries[uid]

        if stale:
            logger.debug("Rate limiter evicted %d idle entries", len(stale))
        return len(stale)

    def start_cleanup(self) -> None:
        """Start the background sweep on a daemon thread. Idempotent."""
        if self._cleanup_thread is not None and self._cleanup_thread.is_alive():
            return
        self._stop.clear()
        self._cleanup_thread = threading.Thread(
            target=self._run_cleanup,
            name="rate-limiter-cleanup",
            daemon=True,
        )
        self._cleanup_thread.start()

    def stop_cleanup(self) -> None:
        self._stop.set()
        if self._cleanup_thread is not None:
            self._cleanup_thread.join()
            self._cleanup_thread = None

    def _run_cleanup(self) -> None:
        interval = self.cleanup_interval_ms / 1000
        while not self._stop.wait(interval):
            self.cleanup()

    def _count_in_window(self, user_id: str) -> int:
        entry = self._entries.get(user_id)
        if entry is None:
            return 0
        cutoff = self._clock() - self.window_ms
        return sum(1 for ts in entry.timestamps if ts > cutoff)

    def _prune(self, entry: RateLimitEntry, now: float) -> None:
        cutoff = now - self.window_ms
        while entry.timestamps and entry.timestamps[0] <= cutoff:
            entry.timestamps.popleft()
