"""
Usage Accounting Service - Current-month usage against the plan limit.

Read-through / write-through over the usage cache. The event log in the
database is the only authority; the cache only ever short-circuits the
monthly COUNT and is healed on the next miss or month rollover.
"""

from collections.abc import Callable
from datetime import datetime
from uuid import UUID
from zoneinfo import ZoneInfo

from structlog import get_logger

from app.exceptions import AccountNotFoundError, CacheError, SubscriptionNotFoundError
from app.models.api import UsageActionType
from app.models.domain import (
    MonthWindow,
    PlanData,
    UsageEventData,
    UsageSnapshot,
    UserUsage,
    is_unlimited,
)
from app.observability.metrics import metrics
from app.observability.tracing import trace_operation
from app.services.account_store import AccountStore
from app.services.usage_cache import UsageCache

logger = get_logger(__name__)


def current_month_window(now: datetime | None = None, tz: ZoneInfo | None = None) -> MonthWindow:
    """
    Calendar month containing `now`.

    Args:
        now: Reference instant (defaults to the current time)
        tz: Zone defining month boundaries; server local time when None

    Returns:
        MonthWindow with label "YYYY-MM" and [start, end) bounds
    """
    if now is None:
        now = datetime.now(tz) if tz is not None else datetime.now().astimezone()
    elif tz is not None:
        now = now.astimezone(tz)
    elif now.tzinfo is None:
        now = now.astimezone()

    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)

    return MonthWindow(label=f"{start.year:04d}-{start.month:02d}", start=start, end=end)


class UsageService:
    """Computes and records monthly usage for gated actions."""

    def __init__(
        self,
        store: AccountStore,
        cache: UsageCache,
        timezone: str | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.cache = cache
        self.tz = ZoneInfo(timezone) if timezone else None
        self._clock = clock

    def month_window(self) -> MonthWindow:
        """Window of the current calendar month."""
        now = self._clock() if self._clock is not None else None
        return current_month_window(now, self.tz)

    async def get_usage(self, external_id: str) -> UserUsage:
        """
        Resolve the caller's current-month usage.

        Raises:
            AccountNotFoundError: No account for the external identity
            SubscriptionNotFoundError: Account has no subscription
        """
        window = self.month_window()

        with trace_operation("usage.get", clerk_id=external_id) as span:
            snapshot = await self._read_snapshot(external_id)
            cache_hit = snapshot is not None and snapshot.is_current(window.label)
            span.set_attribute("cache_hit", cache_hit)

            account = await self.store.find_account_by_clerk_id(external_id)
            if account is None:
                raise AccountNotFoundError(external_id)

            plan = await self.store.find_subscription_plan(account.id)
            if plan is None:
                raise SubscriptionNotFoundError(account.id)

            # The ceiling always follows the subscribed plan; the snapshot only supplies the count
            limit = plan.image_generation_limit
            if cache_hit and snapshot is not None:
                usage_count = snapshot.current_usage
                if snapshot.plan_limit != limit:
                    await self._write_snapshot(
                        external_id,
                        UsageSnapshot(current_usage=usage_count, plan_limit=limit, month=window.label),
                    )
            else:
                usage_count = await self.store.count_usage_events(account.id, window)
                await self._write_snapshot(
                    external_id,
                    UsageSnapshot(current_usage=usage_count, plan_limit=limit, month=window.label),
                )

        metrics.record_usage_check(cache_hit)
        logger.debug(
            "usage_resolved",
            account_id=str(account.id),
            plan_name=plan.plan_name,
            usage_count=usage_count,
            limit=limit,
            cache_hit=cache_hit,
        )

        return UserUsage(
            account_id=account.id,
            plan_name=plan.plan_name,
            limit=limit,
            usage_count=usage_count,
        )

    async def record_usage(
        self, account_id: UUID, external_id: str, action_type: UsageActionType
    ) -> None:
        """
        Append one usage event, then bump the snapshot when it is current.

        Raises:
            PersistenceError: If the event insert fails (cache untouched)
        """
        try:
            await self.store.insert_usage_event(account_id, action_type)
        except Exception:
            metrics.record_usage_event(action_type.value, success=False)
            raise

        metrics.record_usage_event(action_type.value, success=True)
        logger.info(
            "usage_recorded",
            account_id=str(account_id),
            action_type=action_type.value,
        )

        window = self.month_window()
        snapshot = await self._read_snapshot(external_id)
        if snapshot is None or not snapshot.is_current(window.label):
            # Next read recomputes from the event log
            return

        await self._write_snapshot(external_id, snapshot.incremented())

    async def list_recent_events(self, account_id: UUID, limit: int = 100) -> list[UsageEventData]:
        """Newest events of the current month."""
        events = await self.store.list_usage_events(account_id, self.month_window(), limit=limit)
        return [
            UsageEventData(event_id=event.id, action_type=event.type, created_at=event.created_at)
            for event in events
        ]

    async def find_next_plan(self, current_limit: int) -> PlanData | None:
        """Cheapest upgrade above the current limit; None for unlimited plans."""
        if is_unlimited(current_limit):
            return None

        plan = await self.store.find_next_plan(current_limit)
        if plan is None:
            return None

        return PlanData(
            plan_id=plan.id,
            name=plan.name,
            image_generation_limit=plan.image_generation_limit,
            price_monthly=plan.price_monthly,
            stripe_price_id=plan.stripe_price_id,
        )

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _read_snapshot(self, external_id: str) -> UsageSnapshot | None:
        """Cache read; any failure counts as a miss."""
        try:
            return await self.cache.get(external_id)
        except CacheError as exc:
            metrics.record_cache_error("get")
            logger.warning("usage_cache_read_failed", clerk_id=external_id, error=str(exc))
            return None

    async def _write_snapshot(self, external_id: str, snapshot: UsageSnapshot) -> None:
        """Cache write; failures are logged and ignored."""
        try:
            await self.cache.set(external_id, snapshot)
        except CacheError as exc:
            metrics.record_cache_error("set")
            logger.warning("usage_cache_write_failed", clerk_id=external_id, error=str(exc))
