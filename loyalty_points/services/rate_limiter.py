import threading
import time
from typing import Callable, Dict, Tuple

# In-memory, per-process fixed windows. Not shared across instances.


class RateLimiter:
    def __init__(self, limit: int, window_seconds: int, *, clock: Callable[[], float] = time.monotonic):
        self.limit = int(limit)
        self.window_seconds = int(window_seconds)
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: Dict[str, Tuple[float, int]] = {}
        self._last_prune = clock()

    def hit(self, key: str) -> bool:
        """
        Counts one request for key. Returns False once the window is exhausted.
        A limit <= 0 disables limiting.
        """
        if self.limit <= 0:
            return True

        now = self._clock()
        with self._lock:
            # full scan at most once per window
            if now - self._last_prune >= self.window_seconds:
                self._prune_locked(now)

            started, count = self._windows.get(key, (now, 0))
            if now - started >= self.window_seconds:
                started, count = now, 0
            if count >= self.limit:
                self._windows[key] = (started, count)
                return False
            self._windows[key] = (started, count + 1)
            return True

    def _prune_locked(self, now: float) -> None:
        stale = [k for k, (started, _) in self._windows.items() if now - started >= self.window_seconds]
        for k in stale:
            del self._windows[k]
        self._last_prune = now

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._windows)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()
