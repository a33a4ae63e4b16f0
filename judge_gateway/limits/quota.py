import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from pydantic import BaseModel

from judge_gateway.exceptions import QuotaExceeded

from .store import CounterStore

logger = logging.getLogger(__name__)

ANONYMOUS = "anonymous"
DAILY_RETENTION_DAYS = 30
MONTHLY_RETENTION_MONTHS = 12


class QuotaUsage(BaseModel):
    dailyExecutions: int = 0
    monthlyExecutions: int = 0
    totalExecutions: int = 0
    lastExecution: Optional[str] = None
    quotaExceeded: bool = False
    quotaWarning: bool = False


class QuotaLimits(BaseModel):
    maxDailyExecutions: int = 1000
    maxMonthlyExecutions: int = 30000
    maxTotalExecutions: int = 100000
    warningThreshold: float = 0.9


class TopUser(BaseModel):
    userId: str
    executions: int


class QuotaAnalytics(BaseModel):
    totalUsers: int
    activeUsers: int
    averageExecutionsPerUser: float
    topUsers: List[TopUser]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QuotaTracker:
    """Cumulative dispatch counters against the judging backend's limits.

    Counters live in daily, monthly and lifetime buckets per identity.
    Bookkeeping never raises: a broken store means executions are allowed
    and a warning is logged.
    """

    def __init__(self, store: CounterStore, limits: Optional[QuotaLimits] = None, now=_utcnow):
        self.store = store
        self.limits = limits or QuotaLimits()
        self._now = now
        self._last_executions: dict[str, datetime] = {}

    @staticmethod
    def _identity(user_id) -> str:
        return str(user_id) if user_id else ANONYMOUS

    @staticmethod
    def _day(moment: datetime) -> str:
        return moment.strftime("%Y-%m-%d")

    @staticmethod
    def _month(moment: datetime) -> str:
        return moment.strftime("%Y-%m")

    def _keys(self, identity: str, moment: datetime) -> tuple[str, str, str]:
        return (
            f"quota:daily:{identity}:{self._day(moment)}",
            f"quota:monthly:{identity}:{self._month(moment)}",
            f"quota:total:{identity}",
        )

    def _evaluate(self, daily: int, monthly: int, total: int) -> tuple[bool, bool]:
        limits = self.limits
        exceeded = (
            daily >= limits.maxDailyExecutions
            or monthly >= limits.maxMonthlyExecutions
            or total >= limits.maxTotalExecutions
        )
        threshold = limits.warningThreshold
        warning = (
            daily >= limits.maxDailyExecutions * threshold
            or monthly >= limits.maxMonthlyExecutions * threshold
            or total >= limits.maxTotalExecutions * threshold
        )
        return exceeded, warning

    async def check_quota(self, user_id=None) -> QuotaUsage:
        identity = self._identity(user_id)
        try:
            daily_key, monthly_key, total_key = self._keys(identity, self._now())
            daily = await self.store.get(daily_key)
            monthly = await self.store.get(monthly_key)
            total = await self.store.get(total_key)
            exceeded, warning = self._evaluate(daily, monthly, total)
            last = self._last_executions.get(identity)
            usage = QuotaUsage(
                dailyExecutions=daily,
                monthlyExecutions=monthly,
                totalExecutions=total,
                lastExecution=last.isoformat() if last else None,
                quotaExceeded=exceeded,
                quotaWarning=warning,
            )
        except Exception:
            logger.warning("Quota check failed for %s, allowing execution", identity, exc_info=True)
            return QuotaUsage()
        logger.debug("Quota check for %s: %s", identity, usage)
        return usage

    async def ensure_available(self, user_id=None) -> QuotaUsage:
        usage = await self.check_quota(user_id)
        if usage.quotaExceeded:
            raise QuotaExceeded(
                "Code execution quota exhausted. Please try again after the quota resets."
            )
        if usage.quotaWarning:
            logger.warning("Quota nearly exhausted for %s: %s", self._identity(user_id), usage)
        return usage

    async def log_execution(self, user_id=None) -> None:
        identity = self._identity(user_id)
        try:
            now = self._now()
            for key in self._keys(identity, now):
                await self.store.increment(key)
            self._last_executions[identity] = now
        except Exception:
            logger.warning("Failed to log execution for quota tracking (%s)", identity, exc_info=True)

    def get_limits(self) -> QuotaLimits:
        return self.limits

    def update_limits(self, **changes) -> QuotaLimits:
        self.limits = self.limits.model_copy(update=changes)
        logger.info("Quota limits updated: %s", self.limits)
        return self.limits

    async def reset_daily_quota(self) -> None:
        try:
            for key in await self.store.keys("quota:daily:"):
                await self.store.delete(key)
        except Exception:
            logger.warning("Daily quota reset failed", exc_info=True)
            return
        logger.info("Daily quota reset completed")

    async def cleanup_old_data(self) -> None:
        try:
            now = self._now()
            day_cutoff = self._day(now - timedelta(days=DAILY_RETENTION_DAYS))
            month_cutoff = self._month(now.replace(year=now.year - 1, day=1))
            removed = 0
            for key in await self.store.keys("quota:daily:"):
                if key.rsplit(":", 1)[-1] < day_cutoff:
                    await self.store.delete(key)
                    removed += 1
            for key in await self.store.keys("quota:monthly:"):
                if key.rsplit(":", 1)[-1] < month_cutoff:
                    await self.store.delete(key)
                    removed += 1
            stale_after = now - timedelta(days=DAILY_RETENTION_DAYS)
            for identity, last in list(self._last_executions.items()):
                if last < stale_after:
                    del self._last_executions[identity]
            logger.info("Old quota data cleanup completed, %d buckets removed", removed)
        except Exception:
            logger.warning("Quota cleanup failed", exc_info=True)

    async def _sum(self, prefix: str, suffix: str = "") -> int:
        total = 0
        for key in await self.store.keys(prefix):
            if key.endswith(suffix):
                total += await self.store.get(key)
        return total

    async def usage_ratio(self) -> float:
        """Highest fraction of any limit consumed across all identities."""
        now = self._now()
        daily = await self._sum("quota:daily:", f":{self._day(now)}")
        monthly = await self._sum("quota:monthly:", f":{self._month(now)}")
        total = await self._sum("quota:total:")
        return max(
            daily / self.limits.maxDailyExecutions,
            monthly / self.limits.maxMonthlyExecutions,
            total / self.limits.maxTotalExecutions,
        )

    async def get_analytics(self) -> QuotaAnalytics:
        counts = {}
        try:
            for key in await self.store.keys("quota:total:"):
                counts[key[len("quota:total:"):]] = await self.store.get(key)
        except Exception:
            logger.warning("Quota analytics could not read usage", exc_info=True)
            counts = {}

        week_ago = self._now() - timedelta(days=7)
        active = [u for u in counts if u in self._last_executions and self._last_executions[u] > week_ago]
        top = sorted(counts.items(), key=lambda item: item[1], reverse=True)[:10]

        return QuotaAnalytics(
            totalUsers=len(counts),
            activeUsers=len(active),
            averageExecutionsPerUser=sum(counts.values()) / len(counts) if counts else 0,
            topUsers=[TopUser(userId=u, executions=n) for u, n in top],
        )
