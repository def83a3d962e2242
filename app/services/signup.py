"""
Account Provisioning - Creates accounts from Clerk sign-up webhooks.

A new account gets the default plan. The billing customer and its
default-plan subscription are best-effort: when the payment provider is
unavailable the account is still created, without billing references.
"""

from collections.abc import Mapping
from typing import Any

from structlog import get_logger
from svix.webhooks import Webhook
from svix.webhooks import WebhookVerificationError as SvixVerificationError

from app.db.models import Account
from app.exceptions import (
    PaymentProviderError,
    PlanNotFoundError,
    WebhookPayloadError,
    WebhookVerificationError,
)
from app.models.domain import ClerkUserCreated
from app.services.account_store import AccountStore
from app.services.payment_provider import CustomerRequest, PaymentProvider

logger = get_logger(__name__)

SVIX_HEADERS = ("svix-id", "svix-timestamp", "svix-signature")


def verify_clerk_webhook(secret: str, payload: bytes, headers: Mapping[str, str]) -> dict[str, Any]:
    """
    Verify a Svix-signed delivery and return the decoded event.

    Raises:
        WebhookPayloadError: If a svix header is missing
        WebhookVerificationError: If the signature does not match
    """
    svix_headers = {name: headers.get(name, "") for name in SVIX_HEADERS}
    missing = [name for name, value in svix_headers.items() if not value]
    if missing:
        raise WebhookPayloadError(f"Missing svix headers: {', '.join(missing)}")

    try:
        event: dict[str, Any] = Webhook(secret).verify(payload, svix_headers)
    except SvixVerificationError as exc:
        logger.warning("clerk_webhook_verification_failed", error=str(exc))
        raise WebhookVerificationError("Invalid svix signature") from exc

    return event


def parse_user_created(event: Mapping[str, Any]) -> ClerkUserCreated | None:
    """
    Extract the new user from a user.created event.

    Returns:
        None for any other event type

    Raises:
        WebhookPayloadError: If the user id or primary email is missing
    """
    if event.get("type") != "user.created":
        return None

    data = event.get("data") or {}
    addresses = data.get("email_addresses") or []
    email = addresses[0].get("email_address") if addresses else None
    clerk_id = data.get("id")

    if not clerk_id or not email:
        raise WebhookPayloadError("Missing required user data")

    return ClerkUserCreated(
        clerk_id=clerk_id,
        email=email,
        first_name=data.get("first_name") or None,
        last_name=data.get("last_name") or None,
    )


class AccountProvisioningService:
    """Creates the account, its default subscription and billing customer."""

    def __init__(
        self,
        store: AccountStore,
        payment_provider: PaymentProvider,
        default_plan_name: str = "free",
    ) -> None:
        self.store = store
        self.payment_provider = payment_provider
        self.default_plan_name = default_plan_name

    async def provision(self, user: ClerkUserCreated) -> Account:
        """
        Provision a signed-up user. Safe to call again for the same user.

        Raises:
            PlanNotFoundError: Default plan is not seeded
            PersistenceError: A database write failed
        """
        account, created = await self.store.create_account(user)
        if created:
            logger.info("account_created", account_id=str(account.id), clerk_id=user.clerk_id)
        elif await self.store.find_subscription(account.id) is not None:
            return account

        plan = await self.store.find_plan_by_name(self.default_plan_name)
        if plan is None:
            logger.error(
                "default_plan_missing",
                plan_name=self.default_plan_name,
                account_id=str(account.id),
            )
            raise PlanNotFoundError(self.default_plan_name)

        customer_id: str | None = None
        subscription_id: str | None = None
        try:
            customer_id = await self.payment_provider.create_customer(
                CustomerRequest(
                    email=user.email,
                    name=user.display_name,
                    account_id=account.id,
                    clerk_id=user.clerk_id,
                )
            )
            if plan.stripe_price_id:
                subscription_id = await self.payment_provider.create_subscription(
                    customer_id, plan.stripe_price_id, account.id, plan.id
                )
            else:
                logger.warning("default_plan_missing_price_id", plan_name=plan.name)
        except PaymentProviderError as exc:
            logger.error(
                "signup_billing_setup_failed",
                account_id=str(account.id),
                error=str(exc),
            )

        await self.store.create_subscription(
            account.id,
            plan.id,
            stripe_customer_id=customer_id,
            stripe_subscription_id=subscription_id,
        )
        logger.info(
            "account_provisioned",
            account_id=str(account.id),
            plan_name=plan.name,
            stripe_customer_id=customer_id,
            stripe_subscription_id=subscription_id,
        )
        return account
