"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
"""

from datetime import UTC, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from app.models.api import UsageActionType


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class Account(Base):
    """
    ORM model for users table.

    One row per auth-provider identity, created on the sign-up webhook.
    """

    __tablename__ = "users"

    # Primary Key
    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    # Identity - immutable external reference from the auth provider
    clerk_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    # Contact information
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    subscription: Mapped["Subscription | None"] = relationship(
        back_populates="account",
        cascade="all, delete-orphan",
        passive_deletes=True,
        uselist=False,
    )

    @property
    def display_name(self) -> str | None:
        """First and last name joined, or None when both are empty."""
        parts = [part for part in (self.first_name, self.last_name) if part]
        return " ".join(parts) or None

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Account(id={self.id}, clerk_id={self.clerk_id}, email={self.email})>"


class Plan(Base):
    """
    ORM model for plans table.

    Static reference data seeded at deploy time. A negative
    image_generation_limit means the plan is unlimited.
    """

    __tablename__ = "plans"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    image_generation_limit: Mapped[int] = mapped_column(Integer, nullable=False)
    price_monthly: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    stripe_price_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Plan(id={self.id}, name={self.name}, "
            f"limit={self.image_generation_limit})>"
        )


class Subscription(Base):
    """
    ORM model for user_subscriptions table.

    Binds one account to one plan. Mutated by checkout completion and
    by billing provider webhooks, never deleted while the account exists.
    """

    __tablename__ = "user_subscriptions"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    plan_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("plans.id"),
        nullable=False,
    )

    # Billing provider references
    stripe_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Provider-defined status string ("active", "cancelled", "past_due", ...)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="active")

    current_period_start: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    current_period_end: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    account: Mapped[Account] = relationship(back_populates="subscription")
    plan: Mapped[Plan] = relationship()

    __table_args__ = (
        UniqueConstraint("user_id", name="uq_subscription_user"),
        Index("idx_subscriptions_stripe_subscription", "stripe_subscription_id"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Subscription(id={self.id}, user_id={self.user_id}, "
            f"plan_id={self.plan_id}, status={self.status})>"
        )


class UsageEvent(Base):
    """
    ORM model for image_logs table.

    Append-only log of billable actions. The number of rows for an
    account inside a calendar month is its authoritative usage.
    """

    __tablename__ = "image_logs"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )

    type: Mapped[UsageActionType] = mapped_column(
        SQLEnum(
            UsageActionType,
            name="usage_action_type",
            native_enum=False,
            length=50,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        Index("user_type_created_idx", "user_id", "type", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<UsageEvent(id={self.id}, user_id={self.user_id}, type={self.type})>"
