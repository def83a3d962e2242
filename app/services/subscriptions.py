"""
Subscription Reconciler - Applies billing provider events to subscriptions.

Delivery is at-least-once and unordered. Each event maps to exactly one
statement keyed by user_id or stripe_subscription_id, so a replay rewrites
the same values and leaves the final state unchanged.
"""

from structlog import get_logger

from app.exceptions import PlanNotFoundError
from app.models.domain import (
    BillingEvent,
    CheckoutCompleted,
    SubscriptionDeleted,
    SubscriptionUpdated,
    UnhandledEvent,
)
from app.observability.metrics import metrics
from app.services.account_store import AccountStore

logger = get_logger(__name__)


class SubscriptionReconciler:
    """Mutates subscription state from verified webhook events."""

    def __init__(self, store: AccountStore, default_plan_name: str = "free") -> None:
        self.store = store
        self.default_plan_name = default_plan_name

    async def apply(self, event: BillingEvent) -> str:
        """
        Apply one event.

        Returns:
            Outcome label: "applied", "no_match" or "ignored"

        Raises:
            PlanNotFoundError: Default plan missing on cancellation
            PersistenceError: Write failed (provider should retry)
        """
        if isinstance(event, CheckoutCompleted):
            outcome = await self._apply_checkout(event)
            event_type = "checkout.session.completed"
        elif isinstance(event, SubscriptionUpdated):
            outcome = await self._apply_update(event)
            event_type = "customer.subscription.updated"
        elif isinstance(event, SubscriptionDeleted):
            outcome = await self._apply_deletion(event)
            event_type = "customer.subscription.deleted"
        else:
            outcome = self._ignore(event)
            event_type = event.event_type

        metrics.record_webhook_event(event_type, outcome)
        return outcome

    async def _apply_checkout(self, event: CheckoutCompleted) -> str:
        await self.store.upsert_checkout_subscription(
            account_id=event.account_id,
            plan_id=event.plan_id,
            stripe_subscription_id=event.stripe_subscription_id,
            stripe_customer_id=event.stripe_customer_id,
        )
        logger.info(
            "subscription_checkout_applied",
            event_id=event.event_id,
            account_id=str(event.account_id),
            plan_id=str(event.plan_id),
            stripe_subscription_id=event.stripe_subscription_id,
        )
        return "applied"

    async def _apply_update(self, event: SubscriptionUpdated) -> str:
        matched = await self.store.update_subscription_status(
            event.stripe_subscription_id,
            event.status,
            current_period_start=event.current_period_start,
            current_period_end=event.current_period_end,
        )
        if matched == 0:
            # Checkout event may not have arrived yet; acknowledge anyway
            logger.warning(
                "subscription_update_no_match",
                event_id=event.event_id,
                stripe_subscription_id=event.stripe_subscription_id,
                status=event.status,
            )
            return "no_match"

        logger.info(
            "subscription_status_updated",
            event_id=event.event_id,
            stripe_subscription_id=event.stripe_subscription_id,
            status=event.status,
        )
        return "applied"

    async def _apply_deletion(self, event: SubscriptionDeleted) -> str:
        default_plan = await self.store.find_plan_by_name(self.default_plan_name)
        if default_plan is None:
            logger.error("default_plan_missing", plan_name=self.default_plan_name)
            raise PlanNotFoundError(self.default_plan_name)

        matched = await self.store.cancel_subscription(event.stripe_subscription_id, default_plan.id)
        if matched == 0:
            logger.warning(
                "subscription_cancel_no_match",
                event_id=event.event_id,
                stripe_subscription_id=event.stripe_subscription_id,
            )
            return "no_match"

        logger.info(
            "subscription_cancelled",
            event_id=event.event_id,
            stripe_subscription_id=event.stripe_subscription_id,
            plan_id=str(default_plan.id),
        )
        return "applied"

    def _ignore(self, event: UnhandledEvent) -> str:
        logger.info("webhook_event_ignored", event_id=event.event_id, event_type=event.event_type)
        return "ignored"
