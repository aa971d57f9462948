import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from errors import RateLimitError

logger = logging.getLogger(__name__)


@dataclass
class WindowState:
    started_at: float
    count: int


class CounterStore(Protocol):
    """Storage for fixed-window counters keyed by ``<limiter>:<client>``."""

    def hit(self, key: str, window_secs: int, now: float) -> WindowState: ...

    def clear(self) -> None: ...


class InMemoryCounterStore:
    def __init__(self) -> None:
        self._windows: dict[str, WindowState] = {}
        self._lock = threading.Lock()

    def hit(self, key: str, window_secs: int, now: float) -> WindowState:
        with self._lock:
            state = self._windows.get(key)
            if state is None or now - state.started_at >= window_secs:
                state = WindowState(started_at=now, count=0)
                self._windows[key] = state
            state.count += 1
            return WindowState(started_at=state.started_at, count=state.count)

    def clear(self) -> None:
        with self._lock:
            self._windows.clear()


class RateLimiter:
    def __init__(
        self,
        name: str,
        max_requests: int,
        window_secs: int,
        store: CounterStore,
        message: str,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.name = name
        self.max_requests = max_requests
        self.window_secs = window_secs
        self.store = store
        self.message = message
        self.clock = clock

    def check(self, client: Optional[str]) -> int:
        """Count one request for ``client``; return the remaining quota."""
        now = self.clock()
        key = f"{self.name}:{client or 'unknown'}"
        state = self.store.hit(key, self.window_secs, now)
        if state.count > self.max_requests:
            retry_after = math.ceil(self.window_secs / 60)
            logger.warning(
                f"rate_limited: limiter={self.name} client={client} count={state.count}"
            )
            raise RateLimitError(self.message, retry_after=retry_after)
        return self.max_requests - state.count
