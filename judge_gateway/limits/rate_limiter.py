import logging
import math
import time
from dataclasses import dataclass

from judge_gateway.exceptions import RateLimited

from .store import CounterStore

logger = logging.getLogger(__name__)


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after: int

    def headers(self) -> dict[str, str]:
        return {
            "RateLimit-Limit": str(self.limit),
            "RateLimit-Remaining": str(self.remaining),
            "RateLimit-Reset": str(self.retry_after),
        }


class RateLimiter:
    """Fixed-window request counter keyed by caller identity."""

    def __init__(
        self,
        store: CounterStore,
        name: str,
        limit: int,
        window_seconds: float,
        message: str,
        retry_after: str,
        clock=time.time,
    ):
        self.store = store
        self.name = name
        self.limit = limit
        self.window_seconds = window_seconds
        self.message = message
        self.retry_after = retry_after
        self._clock = clock

    def _bucket(self, identity: str) -> tuple[str, float]:
        now = self._clock()
        index = int(now // self.window_seconds)
        reset_at = (index + 1) * self.window_seconds
        return f"rl:{self.name}:{identity}:{index}", reset_at

    def _result(self, count: int, reset_at: float) -> RateLimitResult:
        retry_after = max(0, math.ceil(reset_at - self._clock()))
        return RateLimitResult(
            allowed=count <= self.limit,
            limit=self.limit,
            remaining=max(0, self.limit - count),
            reset_at=reset_at,
            retry_after=retry_after,
        )

    async def hit(self, identity: str) -> RateLimitResult:
        key, reset_at = self._bucket(identity)
        count = await self.store.increment(key, self.window_seconds)
        result = self._result(count, reset_at)
        if not result.allowed:
            logger.warning("Rate limit '%s' exceeded for %s (%d/%d)", self.name, identity, count, self.limit)
        return result

    async def peek(self, identity: str) -> RateLimitResult:
        key, reset_at = self._bucket(identity)
        return self._result(await self.store.get(key, self.window_seconds), reset_at)

    async def check(self, identity: str) -> RateLimitResult:
        """Count a request and raise ``RateLimited`` once the window is full."""
        result = await self.hit(identity)
        if not result.allowed:
            raise RateLimited(self.message, self.retry_after, result.retry_after, headers=result.headers())
        return result


def create_rate_limiters(store: CounterStore, clock=time.time) -> dict[str, RateLimiter]:
    return {
        "general": RateLimiter(
            store,
            name="general",
            limit=100,
            window_seconds=15 * 60,
            message="Too many requests from this IP, please try again later.",
            retry_after="15 minutes",
            clock=clock,
        ),
        "execution": RateLimiter(
            store,
            name="execution",
            limit=5,
            window_seconds=60,
            message="Too many code executions. Please wait before trying again.",
            retry_after="1 minute",
            clock=clock,
        ),
    }


def execution_identity(user_id, client_ip: str) -> str:
    if user_id is not None:
        return f"user:{user_id}"
    return f"ip:{client_ip}"
