"""
Stripe Payment Provider Implementation.

NO DICTIONARIES - Webhook payloads are parsed into tagged domain events at
this boundary. The Stripe SDK is synchronous, so every API call runs in a
worker thread.
"""

import asyncio
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

import stripe
from structlog import get_logger

from app.exceptions import PaymentProviderError, WebhookPayloadError, WebhookVerificationError
from app.models.domain import (
    BillingEvent,
    CheckoutCompleted,
    SubscriptionDeleted,
    SubscriptionUpdated,
    UnhandledEvent,
)
from app.services.payment_provider import (
    CheckoutRequest,
    CustomerRequest,
    InvoiceData,
    InvoiceStatus,
)

logger = get_logger(__name__)


def _timestamp(value: Any) -> datetime | None:
    """Convert a Unix timestamp to an aware UTC datetime."""
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=UTC)


def _reference(value: Any) -> str | None:
    """ID of a field that may be a plain ID or an expanded object."""
    if value is None or isinstance(value, str):
        return value
    ref = value.get("id")
    return str(ref) if ref else None


def _metadata_uuid(metadata: Mapping[str, Any], key: str) -> UUID:
    raw = metadata.get(key)
    if not raw:
        raise WebhookPayloadError(f"Missing {key} in session metadata")
    try:
        return UUID(str(raw))
    except ValueError as exc:
        raise WebhookPayloadError(f"Invalid {key} in session metadata: {raw}") from exc


def invoice_status(stripe_status: str | None) -> InvoiceStatus:
    """Collapse Stripe invoice statuses to Paid / Pending / Failed."""
    if stripe_status == "paid":
        return "Paid"
    if stripe_status == "open":
        return "Pending"
    return "Failed"


def parse_billing_event(event: Mapping[str, Any]) -> BillingEvent:
    """
    Map a verified Stripe event to a tagged billing event.

    Raises:
        WebhookPayloadError: If a handled event type lacks required fields
    """
    event_id = str(event["id"])
    event_type = str(event["type"])
    obj = event["data"]["object"]

    if event_type == "checkout.session.completed":
        metadata = obj.get("metadata") or {}
        return CheckoutCompleted(
            event_id=event_id,
            account_id=_metadata_uuid(metadata, "userId"),
            plan_id=_metadata_uuid(metadata, "planId"),
            stripe_subscription_id=_reference(obj.get("subscription")),
            stripe_customer_id=_reference(obj.get("customer")),
        )

    if event_type in ("customer.subscription.updated", "customer.subscription.deleted"):
        subscription_id = obj.get("id")
        if not subscription_id:
            raise WebhookPayloadError(f"{event_type} without subscription id")

        if event_type == "customer.subscription.deleted":
            return SubscriptionDeleted(event_id=event_id, stripe_subscription_id=subscription_id)

        status = obj.get("status")
        if not status:
            raise WebhookPayloadError(f"{event_type} without status")
        return SubscriptionUpdated(
            event_id=event_id,
            stripe_subscription_id=subscription_id,
            status=status,
            current_period_start=_timestamp(obj.get("current_period_start")),
            current_period_end=_timestamp(obj.get("current_period_end")),
        )

    return UnhandledEvent(event_id=event_id, event_type=event_type)


class StripeProvider:
    """
    Stripe payment provider implementation.

    Implements the PaymentProvider protocol for Stripe.
    """

    def __init__(self, api_key: str, webhook_secret: str) -> None:
        """
        Initialize Stripe provider.

        Args:
            api_key: Stripe secret API key
            webhook_secret: Stripe webhook signing secret
        """
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        stripe.api_key = api_key

    async def verify_webhook(self, payload: bytes, signature: str) -> BillingEvent:
        """
        Verify and parse Stripe webhook event.

        Args:
            payload: Raw webhook payload
            signature: Stripe-Signature header value

        Returns:
            Tagged billing event

        Raises:
            WebhookVerificationError: If signature verification fails
            WebhookPayloadError: If the payload is malformed
        """
        if not self.webhook_secret:
            raise WebhookPayloadError("Webhook secret not configured")

        try:
            event = stripe.Webhook.construct_event(  # type: ignore[no-untyped-call]
                payload, signature, self.webhook_secret
            )
        except stripe.SignatureVerificationError as exc:
            logger.error("stripe_webhook_verification_failed", error=str(exc))
            raise WebhookVerificationError("Invalid Stripe webhook signature") from exc
        except ValueError as exc:
            logger.error("stripe_webhook_parsing_failed", error=str(exc))
            raise WebhookPayloadError(f"Failed to parse Stripe webhook: {exc}") from exc

        logger.info("stripe_webhook_verified", event_id=event["id"], event_type=event["type"])

        try:
            return parse_billing_event(event)
        except (KeyError, TypeError) as exc:
            raise WebhookPayloadError(f"Malformed Stripe event: {exc}") from exc

    async def create_customer(self, request: CustomerRequest) -> str:
        """
        Create a Stripe customer tagged with the account references.

        Raises:
            PaymentProviderError: If Stripe API call fails
        """
        params: dict[str, Any] = {
            "email": request.email,
            "metadata": {"userId": str(request.account_id), "clerkId": request.clerk_id},
        }
        if request.name:
            params["name"] = request.name

        try:
            customer = await asyncio.to_thread(stripe.Customer.create, **params)
        except stripe.StripeError as exc:
            logger.error(
                "stripe_customer_create_failed",
                account_id=str(request.account_id),
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise PaymentProviderError(f"Stripe customer creation failed: {exc}") from exc

        logger.info(
            "stripe_customer_created",
            account_id=str(request.account_id),
            customer_id=customer.id,
        )
        customer_id: str = customer.id
        return customer_id

    async def create_subscription(
        self, customer_id: str, price_id: str, account_id: UUID, plan_id: UUID
    ) -> str:
        """
        Subscribe a customer to a price.

        Raises:
            PaymentProviderError: If Stripe API call fails
        """
        try:
            subscription = await asyncio.to_thread(
                stripe.Subscription.create,
                customer=customer_id,
                items=[{"price": price_id}],
                metadata={"userId": str(account_id), "planId": str(plan_id)},
            )
        except stripe.StripeError as exc:
            logger.error(
                "stripe_subscription_create_failed",
                customer_id=customer_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise PaymentProviderError(f"Stripe subscription creation failed: {exc}") from exc

        logger.info(
            "stripe_subscription_created",
            customer_id=customer_id,
            subscription_id=subscription.id,
            status=subscription.status,
        )
        subscription_id: str = subscription.id
        return subscription_id

    async def create_checkout_session(self, request: CheckoutRequest) -> str:
        """
        Create a subscription-mode checkout session.

        Raises:
            PaymentProviderError: If Stripe API call fails or returns no URL
        """
        try:
            session = await asyncio.to_thread(
                stripe.checkout.Session.create,
                mode="subscription",
                customer=request.customer_id,
                line_items=[{"price": request.price_id, "quantity": 1}],
                success_url=request.success_url,
                cancel_url=request.cancel_url,
                metadata={
                    "userId": str(request.account_id),
                    "planId": str(request.plan_id),
                    "planName": request.plan_name,
                },
            )
        except stripe.StripeError as exc:
            logger.error(
                "stripe_checkout_session_failed",
                account_id=str(request.account_id),
                plan_name=request.plan_name,
                error=str(exc),
            )
            raise PaymentProviderError(f"Stripe checkout session failed: {exc}") from exc

        if not session.url:
            raise PaymentProviderError("Stripe checkout session has no URL")

        logger.info(
            "stripe_checkout_session_created",
            account_id=str(request.account_id),
            plan_name=request.plan_name,
            session_id=session.id,
        )
        url: str = session.url
        return url

    async def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """
        Create a billing portal session.

        Raises:
            PaymentProviderError: If Stripe API call fails
        """
        try:
            session = await asyncio.to_thread(
                stripe.billing_portal.Session.create,
                customer=customer_id,
                return_url=return_url,
            )
        except stripe.StripeError as exc:
            logger.error("stripe_portal_session_failed", customer_id=customer_id, error=str(exc))
            raise PaymentProviderError(f"Stripe portal session failed: {exc}") from exc

        url: str = session.url
        return url

    async def list_invoices(self, customer_id: str, limit: int = 100) -> list[InvoiceData]:
        """
        List a customer's invoices.

        Raises:
            PaymentProviderError: If Stripe API call fails
        """
        try:
            result = await asyncio.to_thread(stripe.Invoice.list, customer=customer_id, limit=limit)
        except stripe.StripeError as exc:
            logger.error("stripe_invoice_list_failed", customer_id=customer_id, error=str(exc))
            raise PaymentProviderError(f"Failed to list invoices: {exc}") from exc

        invoices = []
        for invoice in result.data:
            created_at = datetime.fromtimestamp(invoice.created, tz=UTC)
            lines = invoice.get("lines") or {}
            line_items = lines.get("data") or []
            description = (line_items[0].get("description") if line_items else None) or (
                f"Invoice for {created_at.strftime('%b %d, %Y')}"
            )
            invoices.append(
                InvoiceData(
                    invoice_id=invoice.id,
                    created_at=created_at,
                    description=description,
                    status=invoice_status(invoice.status),
                    amount=(invoice.get("amount_paid") or 0) / 100,
                    currency=str(invoice.currency).upper(),
                    invoice_url=invoice.get("hosted_invoice_url"),
                )
            )
        return invoices
