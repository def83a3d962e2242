"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from app.models.api import UsageActionType

# Cache key prefix for usage snapshots
USER_USAGE_KEY_PREFIX = "user_usage:"


def user_usage_key(external_id: str) -> str:
    """Cache key holding the usage snapshot of one identity."""
    return f"{USER_USAGE_KEY_PREFIX}{external_id}"


def is_unlimited(limit: int) -> bool:
    """A negative plan limit means no monthly ceiling."""
    return limit < 0


@dataclass(frozen=True)
class MonthWindow:
    """Calendar month as a label and a half-open [start, end) instant range."""

    label: str  # "YYYY-MM"
    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        """Validate window bounds."""
        if self.start >= self.end:
            raise ValueError(f"Month window start must precede end: {self.start} >= {self.end}")

    def contains(self, instant: datetime) -> bool:
        """True when the instant falls inside the window."""
        return self.start <= instant < self.end


@dataclass(frozen=True)
class UsageSnapshot:
    """Cached projection of one month's usage. Never authoritative."""

    current_usage: int
    plan_limit: int
    month: str

    def __post_init__(self) -> None:
        """Validate snapshot fields."""
        if self.current_usage < 0:
            raise ValueError(f"current_usage cannot be negative: {self.current_usage}")
        if len(self.month) != 7 or self.month[4] != "-":
            raise ValueError(f"month must be YYYY-MM: {self.month}")

    def is_current(self, month_label: str) -> bool:
        """Stale snapshots are ignored, not deleted."""
        return self.month == month_label

    def incremented(self) -> "UsageSnapshot":
        """Snapshot with one more recorded action."""
        return UsageSnapshot(
            current_usage=self.current_usage + 1,
            plan_limit=self.plan_limit,
            month=self.month,
        )

    def to_json(self) -> str:
        """Serialize to the wire format stored in the cache."""
        return json.dumps(
            {
                "current_usage": self.current_usage,
                "plan_limit": self.plan_limit,
                "month": self.month,
            }
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> "UsageSnapshot":
        """
        Parse the cache wire format.

        Raises:
            ValueError: If the payload is not a valid snapshot
        """
        try:
            data = json.loads(raw)
            return cls(
                current_usage=int(data["current_usage"]),
                plan_limit=int(data["plan_limit"]),
                month=str(data["month"]),
            )
        except (TypeError, KeyError, json.JSONDecodeError) as exc:
            raise ValueError(f"Malformed usage snapshot: {exc}") from exc


@dataclass(frozen=True)
class SubscriptionPlan:
    """Subscription joined with its plan."""

    subscription_id: UUID
    plan_id: UUID
    plan_name: str
    image_generation_limit: int
    price_monthly: Decimal | None
    stripe_customer_id: str | None
    stripe_subscription_id: str | None
    status: str


@dataclass(frozen=True)
class UserUsage:
    """Current-month usage of one account against its plan."""

    account_id: UUID
    plan_name: str
    limit: int
    usage_count: int

    @property
    def is_unlimited(self) -> bool:
        """Plan has no monthly ceiling."""
        return is_unlimited(self.limit)

    @property
    def is_exhausted(self) -> bool:
        """True when one more billable action must be denied."""
        return not self.is_unlimited and self.usage_count >= self.limit


@dataclass(frozen=True)
class UsageEventData:
    """Usage event as exposed to the usage endpoint."""

    event_id: UUID
    action_type: UsageActionType
    created_at: datetime


@dataclass(frozen=True)
class PlanData:
    """Immutable plan snapshot."""

    plan_id: UUID
    name: str
    image_generation_limit: int
    price_monthly: Decimal | None
    stripe_price_id: str | None


@dataclass(frozen=True)
class GateContext:
    """Context handed to gated handlers. All fields are None for anonymous callers."""

    account_id: UUID | None = None
    external_id: str | None = None
    usage: UserUsage | None = None

    @property
    def is_authenticated(self) -> bool:
        """Caller presented a verified credential resolving to an account."""
        return self.account_id is not None and self.external_id is not None


# ============================================================================
# Billing Provider Webhook Events (tagged variants)
# ============================================================================


@dataclass(frozen=True)
class CheckoutCompleted:
    """checkout.session.completed"""

    event_id: str
    account_id: UUID
    plan_id: UUID
    stripe_subscription_id: str | None
    stripe_customer_id: str | None


@dataclass(frozen=True)
class SubscriptionUpdated:
    """customer.subscription.updated"""

    event_id: str
    stripe_subscription_id: str
    status: str
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None


@dataclass(frozen=True)
class SubscriptionDeleted:
    """customer.subscription.deleted"""

    event_id: str
    stripe_subscription_id: str


@dataclass(frozen=True)
class UnhandledEvent:
    """Any event type the service does not act on."""

    event_id: str
    event_type: str


BillingEvent = CheckoutCompleted | SubscriptionUpdated | SubscriptionDeleted | UnhandledEvent


# ============================================================================
# Auth Provider Models
# ============================================================================


@dataclass(frozen=True)
class VerifiedToken:
    """Claims of a verified auth-provider session token."""

    subject: str
    session_id: str | None = None
    expires_at: int | None = None

    def __post_init__(self) -> None:
        """Validate subject."""
        if not self.subject:
            raise ValueError("subject cannot be empty")


@dataclass(frozen=True)
class ClerkUserCreated:
    """user.created event from the auth provider."""

    clerk_id: str
    email: str
    first_name: str | None
    last_name: str | None

    def __post_init__(self) -> None:
        """Validate required identity fields."""
        if not self.clerk_id:
            raise ValueError("clerk_id cannot be empty")
        if not self.email:
            raise ValueError("email cannot be empty")

    @property
    def display_name(self) -> str | None:
        """First and last name joined, or None when both are empty."""
        parts = [part for part in (self.first_name, self.last_name) if part]
        return " ".join(parts) or None
