"""
Account Store - Relational source of truth for accounts, plans,
subscriptions and the usage event log.

Every subscription mutation is a single statement keyed by a unique column
(user_id or stripe_subscription_id), so replaying a webhook repeats the
same write.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.models import Account, Plan, Subscription, UsageEvent, utc_now
from app.exceptions import PersistenceError
from app.models.api import SubscriptionStatus, UsageActionType
from app.models.domain import ClerkUserCreated, MonthWindow, SubscriptionPlan

logger = get_logger(__name__)


class AccountStore:
    """Data access for the metering and subscription tables."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize store with database session."""
        self.session = session

    # ========================================================================
    # Accounts
    # ========================================================================

    async def find_account_by_clerk_id(self, clerk_id: str) -> Account | None:
        """Find account by its external identity reference."""
        stmt = select(Account).where(Account.clerk_id == clerk_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_account(self, account_id: UUID) -> Account | None:
        """Find account by primary key."""
        return await self.session.get(Account, account_id)

    async def create_account(self, user: ClerkUserCreated) -> tuple[Account, bool]:
        """
        Insert an account for a new auth-provider user.

        Returns:
            (account, created). created is False when the identity already
            existed (redelivered sign-up event).

        Raises:
            PersistenceError: If the insert fails for any other reason
        """
        account = Account(
            clerk_id=user.clerk_id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
        )
        self.session.add(account)

        try:
            await self.session.flush()
            await self.session.commit()
        except IntegrityError as exc:
            # Race or redelivery - account created by another request
            await self.session.rollback()
            existing = await self.find_account_by_clerk_id(user.clerk_id)
            if existing is None:
                raise PersistenceError(f"Account creation failed: {exc}") from exc
            logger.info("account_already_exists", clerk_id=user.clerk_id, account_id=str(existing.id))
            return existing, False
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise PersistenceError(f"Account creation failed: {exc}") from exc

        return account, True

    # ========================================================================
    # Plans
    # ========================================================================

    async def find_plan_by_name(self, name: str) -> Plan | None:
        """Find plan by unique name."""
        stmt = select(Plan).where(Plan.name == name)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_next_plan(self, current_limit: int) -> Plan | None:
        """
        Find the plan with the smallest limit above the current one.

        Unlimited plans (negative limit) sort after every finite plan, so they
        are offered only when no finite plan is larger.
        """
        unlimited = Plan.image_generation_limit < 0
        stmt = (
            select(Plan)
            .where(or_(Plan.image_generation_limit > current_limit, unlimited))
            .order_by(unlimited, Plan.image_generation_limit)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    # ========================================================================
    # Subscriptions
    # ========================================================================

    async def find_subscription(self, account_id: UUID) -> Subscription | None:
        """Find the subscription row of an account."""
        stmt = select(Subscription).where(Subscription.user_id == account_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_subscription_plan(self, account_id: UUID) -> SubscriptionPlan | None:
        """Resolve the Subscription -> Plan join for an account."""
        stmt = (
            select(Subscription, Plan)
            .join(Plan, Subscription.plan_id == Plan.id)
            .where(Subscription.user_id == account_id)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        row = result.first()
        if row is None:
            return None

        subscription, plan = row
        return SubscriptionPlan(
            subscription_id=subscription.id,
            plan_id=plan.id,
            plan_name=plan.name,
            image_generation_limit=plan.image_generation_limit,
            price_monthly=plan.price_monthly,
            stripe_customer_id=subscription.stripe_customer_id,
            stripe_subscription_id=subscription.stripe_subscription_id,
            status=subscription.status,
        )

    async def create_subscription(
        self,
        account_id: UUID,
        plan_id: UUID,
        stripe_customer_id: str | None = None,
        stripe_subscription_id: str | None = None,
    ) -> Subscription:
        """
        Insert the initial (active) subscription of a new account.

        Raises:
            PersistenceError: If the insert fails
        """
        subscription = Subscription(
            user_id=account_id,
            plan_id=plan_id,
            stripe_customer_id=stripe_customer_id,
            stripe_subscription_id=stripe_subscription_id,
            status=SubscriptionStatus.ACTIVE.value,
        )
        self.session.add(subscription)

        try:
            await self.session.flush()
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise PersistenceError(f"Subscription creation failed: {exc}") from exc

        return subscription

    async def upsert_checkout_subscription(
        self,
        account_id: UUID,
        plan_id: UUID,
        stripe_subscription_id: str | None,
        stripe_customer_id: str | None,
    ) -> None:
        """
        Create or overwrite the account's subscription after checkout.

        Single INSERT ... ON CONFLICT (user_id) DO UPDATE statement.

        Raises:
            PersistenceError: If the write fails
        """
        now = utc_now()
        values = {
            "plan_id": plan_id,
            "stripe_subscription_id": stripe_subscription_id,
            "stripe_customer_id": stripe_customer_id,
            "status": SubscriptionStatus.ACTIVE.value,
            "updated_at": now,
        }
        stmt = pg_insert(Subscription).values(user_id=account_id, created_at=now, **values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[Subscription.user_id],
            set_=values,
        )
        await self._execute_write(stmt, "checkout subscription upsert")

    async def update_subscription_status(
        self,
        stripe_subscription_id: str,
        status: str,
        current_period_start: datetime | None = None,
        current_period_end: datetime | None = None,
    ) -> int:
        """
        Update the status of the subscription with a provider reference.

        Period bounds are only written when supplied.

        Returns:
            Number of rows matched (0 when the reference is unknown)
        """
        values: dict[str, object] = {"status": status, "updated_at": utc_now()}
        if current_period_start is not None:
            values["current_period_start"] = current_period_start
        if current_period_end is not None:
            values["current_period_end"] = current_period_end

        stmt = (
            update(Subscription)
            .where(Subscription.stripe_subscription_id == stripe_subscription_id)
            .values(**values)
        )
        return await self._execute_write(stmt, "subscription status update")

    async def cancel_subscription(self, stripe_subscription_id: str, default_plan_id: UUID) -> int:
        """
        Mark a subscription cancelled and move it to the default plan.

        Returns:
            Number of rows matched
        """
        stmt = (
            update(Subscription)
            .where(Subscription.stripe_subscription_id == stripe_subscription_id)
            .values(
                status=SubscriptionStatus.CANCELLED.value,
                plan_id=default_plan_id,
                updated_at=utc_now(),
            )
        )
        return await self._execute_write(stmt, "subscription cancellation")

    async def set_stripe_customer(self, account_id: UUID, stripe_customer_id: str) -> int:
        """Store a newly created billing customer on the account's subscription."""
        stmt = (
            update(Subscription)
            .where(Subscription.user_id == account_id)
            .values(stripe_customer_id=stripe_customer_id, updated_at=utc_now())
        )
        return await self._execute_write(stmt, "stripe customer update")

    # ========================================================================
    # Usage Events
    # ========================================================================

    async def count_usage_events(self, account_id: UUID, window: MonthWindow) -> int:
        """Count usage events of an account inside [window.start, window.end)."""
        stmt = select(func.count(UsageEvent.id)).where(
            UsageEvent.user_id == account_id,
            UsageEvent.created_at >= window.start,
            UsageEvent.created_at < window.end,
        )
        result = await self.session.execute(stmt)
        return int(result.scalar_one() or 0)

    async def insert_usage_event(
        self, account_id: UUID, action_type: UsageActionType
    ) -> UsageEvent:
        """
        Append one usage event.

        Raises:
            PersistenceError: If the insert fails; nothing else may proceed
        """
        event = UsageEvent(user_id=account_id, type=action_type, created_at=utc_now())
        self.session.add(event)

        try:
            await self.session.flush()
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise PersistenceError(f"Usage event insert failed: {exc}") from exc

        return event

    async def list_usage_events(
        self, account_id: UUID, window: MonthWindow, limit: int = 100
    ) -> list[UsageEvent]:
        """List an account's events inside the window, newest first."""
        stmt = (
            select(UsageEvent)
            .where(
                UsageEvent.user_id == account_id,
                UsageEvent.created_at >= window.start,
                UsageEvent.created_at < window.end,
            )
            .order_by(UsageEvent.created_at.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _execute_write(self, stmt, description: str) -> int:  # type: ignore[no-untyped-def]
        """Execute and commit a single write statement."""
        try:
            result = await self.session.execute(stmt)
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise PersistenceError(f"{description} failed: {exc}") from exc
        return int(result.rowcount or 0)
