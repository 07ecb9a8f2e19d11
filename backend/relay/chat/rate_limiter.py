"""Fixed-reset window rate limiting.

Each window carries a start time and a counter. When more than ``interval``
seconds have elapsed since the window started, the counter restarts at zero and
the window start moves to now. A call is allowed iff the post-increment count is
within ``limit``. This costs O(1) time and memory per check; it is an abuse
guard, not a fairness meter.

Three budgets use it:
    - chat messages per connection (12 per 10s by default)
    - room creation per client address (10 per hour by default)
    - file chunks per connection, via :class:`ChunkBudget`, whose counter is
      reset by a timer owned by the connection rather than lazily.
"""
import time
from dataclasses import dataclass
from typing import Callable, Dict, Tuple

Clock = Callable[[], float]


@dataclass
class RateWindow:
    """Mutable window state for one rate-limited subject."""
    started_at: float
    count: int = 0


class RateLimiter:
    """Counts events against ``limit`` per ``interval`` seconds."""

    def __init__(self, limit: int, interval: float, clock: Clock = time.monotonic) -> None:
        self.limit = limit
        self.interval = interval
        self._clock = clock

    def new_window(self) -> RateWindow:
        return RateWindow(started_at=self._clock())

    def allow(self, window: RateWindow) -> bool:
        """Record one event and return whether it is within the budget."""
        now = self._clock()
        if now - window.started_at > self.interval:
            window.count = 0
            # never move the window start backwards
            window.started_at = max(now, window.started_at)
        window.count += 1
        return window.count <= self.limit


class KeyedRateLimiter:
    """A :class:`RateLimiter` with one window per key (e.g. client address)."""

    def __init__(self, limit: int, interval: float, clock: Clock = time.monotonic) -> None:
        self._limiter = RateLimiter(limit, interval, clock)
        self._clock = clock
        self._windows: Dict[str, RateWindow] = {}

    def allow(self, key: str) -> bool:
        self._prune()
        window = self._windows.get(key)
        if window is None:
            window = self._windows[key] = self._limiter.new_window()
        return self._limiter.allow(window)

    def _prune(self) -> None:
        now = self._clock()
        expired = [
            key for key, window in self._windows.items()
            if now - window.started_at > self._limiter.interval
        ]
        for key in expired:
            del self._windows[key]

    def __len__(self) -> int:
        return len(self._windows)


class ChunkBudget:
    """Per-connection file-chunk allowance reset by an external timer.

    ``consume()`` returns ``(allowed, notify)``. ``notify`` is true only for the
    first rejected chunk of a window so the sender gets one throttle notice per
    violation window instead of one per dropped chunk.
    """

    def __init__(self, limit: int) -> None:
        self.limit = limit
        self.count = 0
        self._notified = False

    def consume(self) -> Tuple[bool, bool]:
        self.count += 1
        if self.count <= self.limit:
            return True, False
        notify = not self._notified
        self._notified = True
        return False, notify

    def reset(self) -> None:
        self.count = 0
        self._notified = False
