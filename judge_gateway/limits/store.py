import threading
import time
from typing import Optional, Protocol


class CounterStore(Protocol):
    """Shared counters behind the rate limiter and the quota tracker.

    ``window`` is the bucket lifetime in seconds; ``None`` keeps the
    counter until it is deleted. Implementations must make ``increment``
    atomic per key.
    """

    async def increment(self, key: str, window: Optional[float] = None) -> int: ...

    async def get(self, key: str, window: Optional[float] = None) -> int: ...

    async def delete(self, key: str) -> None: ...

    async def keys(self, prefix: str = "") -> list[str]: ...


class InMemoryCounterStore:
    """Process-local store for single-instance deployments."""

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._counts: dict[str, int] = {}
        self._expires: dict[str, float] = {}
        self._lock = threading.Lock()

    def _expire(self, key: str, now: float) -> None:
        deadline = self._expires.get(key)
        if deadline is not None and deadline <= now:
            self._counts.pop(key, None)
            self._expires.pop(key, None)

    async def increment(self, key: str, window: Optional[float] = None) -> int:
        with self._lock:
            now = self._clock()
            self._expire(key, now)
            count = self._counts.get(key, 0) + 1
            self._counts[key] = count
            if window is not None and key not in self._expires:
                self._expires[key] = now + window
            return count

    async def get(self, key: str, window: Optional[float] = None) -> int:
        with self._lock:
            self._expire(key, self._clock())
            return self._counts.get(key, 0)

    async def delete(self, key: str) -> None:
        with self._lock:
            self._counts.pop(key, None)
            self._expires.pop(key, None)

    async def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            now = self._clock()
            for key in list(self._counts):
                self._expire(key, now)
            return [k for k in self._counts if k.startswith(prefix)]

    async def clear(self) -> None:
        with self._lock:
            self._counts.clear()
            self._expires.clear()
