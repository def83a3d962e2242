"""
Tests for the Stripe provider: webhook verification, event parsing and API
call wrapping.
"""

import hashlib
import hmac
import json
import time
from datetime import UTC, datetime
from unittest.mock import MagicMock, patch
from uuid import uuid4

import pytest
import stripe

from app.exceptions import PaymentProviderError, WebhookPayloadError, WebhookVerificationError
from app.models.domain import (
    CheckoutCompleted,
    SubscriptionDeleted,
    SubscriptionUpdated,
    UnhandledEvent,
)
from app.services.payment_provider import CheckoutRequest, CustomerRequest
from app.services.stripe_provider import StripeProvider, invoice_status, parse_billing_event

WEBHOOK_SECRET = "whsec_test_fake_secret"


def sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a Stripe-Signature header the way Stripe does."""
    ts = timestamp if timestamp is not None else int(time.time())
    signed = f"{ts}.{payload.decode()}".encode()
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


def event(event_type: str, obj: dict) -> dict:
    return {"id": "evt_1", "object": "event", "type": event_type, "data": {"object": obj}}


@pytest.fixture
def provider() -> StripeProvider:
    return StripeProvider(api_key="sk_test_fake_key", webhook_secret=WEBHOOK_SECRET)


# ============================================================================
# Event Parsing
# ============================================================================


class TestParseBillingEvent:
    """Tests for parse_billing_event."""

    def test_checkout_completed(self):
        account_id, plan_id = uuid4(), uuid4()

        parsed = parse_billing_event(
            event(
                "checkout.session.completed",
                {
                    "id": "cs_1",
                    "metadata": {"userId": str(account_id), "planId": str(plan_id), "planName": "standard"},
                    "subscription": "sub_123",
                    "customer": "cus_123",
                },
            )
        )

        assert parsed == CheckoutCompleted(
            event_id="evt_1",
            account_id=account_id,
            plan_id=plan_id,
            stripe_subscription_id="sub_123",
            stripe_customer_id="cus_123",
        )

    def test_checkout_with_expanded_references(self):
        """Expanded subscription/customer objects are reduced to their ids."""
        parsed = parse_billing_event(
            event(
                "checkout.session.completed",
                {
                    "metadata": {"userId": str(uuid4()), "planId": str(uuid4())},
                    "subscription": {"id": "sub_9", "object": "subscription"},
                    "customer": None,
                },
            )
        )

        assert isinstance(parsed, CheckoutCompleted)
        assert parsed.stripe_subscription_id == "sub_9"
        assert parsed.stripe_customer_id is None

    def test_checkout_without_metadata_rejected(self):
        with pytest.raises(WebhookPayloadError, match="userId"):
            parse_billing_event(event("checkout.session.completed", {"metadata": {}}))

    def test_checkout_with_malformed_plan_id_rejected(self):
        with pytest.raises(WebhookPayloadError, match="planId"):
            parse_billing_event(
                event(
                    "checkout.session.completed",
                    {"metadata": {"userId": str(uuid4()), "planId": "not-a-uuid"}},
                )
            )

    def test_subscription_updated_with_period(self):
        parsed = parse_billing_event(
            event(
                "customer.subscription.updated",
                {
                    "id": "sub_123",
                    "status": "past_due",
                    "current_period_start": 1740787200,
                    "current_period_end": 1743465600,
                },
            )
        )

        assert parsed == SubscriptionUpdated(
            event_id="evt_1",
            stripe_subscription_id="sub_123",
            status="past_due",
            current_period_start=datetime(2025, 3, 1, tzinfo=UTC),
            current_period_end=datetime(2025, 4, 1, tzinfo=UTC),
        )

    def test_subscription_updated_without_status_rejected(self):
        with pytest.raises(WebhookPayloadError):
            parse_billing_event(event("customer.subscription.updated", {"id": "sub_1"}))

    def test_subscription_deleted(self):
        parsed = parse_billing_event(
            event("customer.subscription.deleted", {"id": "sub_123", "status": "canceled"})
        )

        assert parsed == SubscriptionDeleted(event_id="evt_1", stripe_subscription_id="sub_123")

    def test_unhandled_type(self):
        parsed = parse_billing_event(event("invoice.paid", {"id": "in_1"}))

        assert parsed == UnhandledEvent(event_id="evt_1", event_type="invoice.paid")


class TestInvoiceStatus:
    """Tests for invoice_status."""

    @pytest.mark.parametrize(
        ("stripe_status", "expected"),
        [("paid", "Paid"), ("open", "Pending"), ("void", "Failed"), ("uncollectible", "Failed"), (None, "Failed")],
    )
    def test_mapping(self, stripe_status, expected):
        assert invoice_status(stripe_status) == expected


# ============================================================================
# Webhook Verification
# ============================================================================


class TestVerifyWebhook:
    """Tests for StripeProvider.verify_webhook with real HMAC signatures."""

    async def test_valid_signature(self, provider):
        payload = json.dumps(
            event("customer.subscription.deleted", {"id": "sub_123", "object": "subscription"})
        ).encode()

        parsed = await provider.verify_webhook(payload, sign(payload))

        assert parsed == SubscriptionDeleted(event_id="evt_1", stripe_subscription_id="sub_123")

    async def test_wrong_secret(self, provider):
        payload = json.dumps(event("invoice.paid", {"id": "in_1"})).encode()

        with pytest.raises(WebhookVerificationError):
            await provider.verify_webhook(payload, sign(payload, secret="whsec_other"))

    async def test_tampered_body(self, provider):
        payload = json.dumps(event("invoice.paid", {"id": "in_1"})).encode()
        header = sign(payload)

        with pytest.raises(WebhookVerificationError):
            await provider.verify_webhook(payload.replace(b"in_1", b"in_2"), header)

    async def test_stale_timestamp(self, provider):
        payload = json.dumps(event("invoice.paid", {"id": "in_1"})).encode()

        with pytest.raises(WebhookVerificationError):
            await provider.verify_webhook(payload, sign(payload, timestamp=int(time.time()) - 3600))

    async def test_not_json(self, provider):
        payload = b"not json"

        with pytest.raises(WebhookPayloadError):
            await provider.verify_webhook(payload, sign(payload))

    async def test_missing_secret(self):
        provider = StripeProvider(api_key="sk_test_fake_key", webhook_secret="")

        with pytest.raises(WebhookPayloadError):
            await provider.verify_webhook(b"{}", "t=1,v1=abc")


# ============================================================================
# API Calls
# ============================================================================


class TestApiCalls:
    """Stripe SDK calls are wrapped and translated."""

    async def test_create_customer(self, provider):
        account_id = uuid4()
        with patch.object(stripe.Customer, "create", return_value=MagicMock(id="cus_1")) as create:
            customer_id = await provider.create_customer(
                CustomerRequest(email="a@example.com", name="Ada", account_id=account_id, clerk_id="user_1")
            )

        assert customer_id == "cus_1"
        kwargs = create.call_args.kwargs
        assert kwargs["email"] == "a@example.com"
        assert kwargs["name"] == "Ada"
        assert kwargs["metadata"] == {"userId": str(account_id), "clerkId": "user_1"}

    async def test_create_customer_error(self, provider):
        with patch.object(stripe.Customer, "create", side_effect=stripe.APIConnectionError("down")):
            with pytest.raises(PaymentProviderError):
                await provider.create_customer(
                    CustomerRequest(email="a@example.com", name=None, account_id=uuid4(), clerk_id="user_1")
                )

    async def test_create_subscription(self, provider):
        account_id, plan_id = uuid4(), uuid4()
        with patch.object(
            stripe.Subscription, "create", return_value=MagicMock(id="sub_1", status="active")
        ) as create:
            subscription_id = await provider.create_subscription("cus_1", "price_free", account_id, plan_id)

        assert subscription_id == "sub_1"
        assert create.call_args.kwargs["items"] == [{"price": "price_free"}]
        assert create.call_args.kwargs["metadata"] == {"userId": str(account_id), "planId": str(plan_id)}

    async def test_checkout_session(self, provider):
        request = CheckoutRequest(
            customer_id="cus_1",
            price_id="price_standard",
            account_id=uuid4(),
            plan_id=uuid4(),
            plan_name="standard",
            success_url="https://canvas.example.com/?checkout=success",
            cancel_url="https://canvas.example.com/?checkout=cancelled",
        )
        with patch.object(
            stripe.checkout.Session,
            "create",
            return_value=MagicMock(id="cs_1", url="https://checkout.stripe.com/c/cs_1"),
        ) as create:
            url = await provider.create_checkout_session(request)

        assert url == "https://checkout.stripe.com/c/cs_1"
        kwargs = create.call_args.kwargs
        assert kwargs["mode"] == "subscription"
        assert kwargs["line_items"] == [{"price": "price_standard", "quantity": 1}]
        assert kwargs["metadata"]["planName"] == "standard"

    async def test_checkout_session_without_url(self, provider):
        request = CheckoutRequest("cus_1", "price_x", uuid4(), uuid4(), "standard", "s", "c")
        with patch.object(stripe.checkout.Session, "create", return_value=MagicMock(id="cs_1", url=None)):
            with pytest.raises(PaymentProviderError):
                await provider.create_checkout_session(request)

    async def test_portal_session(self, provider):
        with patch.object(
            stripe.billing_portal.Session, "create", return_value=MagicMock(url="https://billing.stripe.com/p/1")
        ) as create:
            url = await provider.create_portal_session("cus_1", "https://canvas.example.com/?portal=success")

        assert url == "https://billing.stripe.com/p/1"
        assert create.call_args.kwargs == {
            "customer": "cus_1",
            "return_url": "https://canvas.example.com/?portal=success",
        }

    async def test_list_invoices(self, provider):
        invoices = [
            stripe.Invoice.construct_from(
                {
                    "id": "in_1",
                    "object": "invoice",
                    "created": 1740787200,
                    "status": "paid",
                    "amount_paid": 999,
                    "currency": "usd",
                    "hosted_invoice_url": "https://invoice.stripe.com/i/1",
                    "lines": {"object": "list", "data": [{"description": "1 x Standard"}]},
                },
                "sk_test_fake_key",
            ),
            stripe.Invoice.construct_from(
                {
                    "id": "in_2",
                    "object": "invoice",
                    "created": 1743465600,
                    "status": "open",
                    "amount_paid": 0,
                    "currency": "eur",
                    "lines": {"object": "list", "data": []},
                },
                "sk_test_fake_key",
            ),
        ]
        with patch.object(stripe.Invoice, "list", return_value=MagicMock(data=invoices)):
            result = await provider.list_invoices("cus_1")

        assert [i.invoice_id for i in result] == ["in_1", "in_2"]
        assert result[0].description == "1 x Standard"
        assert result[0].status == "Paid"
        assert result[0].amount == 9.99
        assert result[0].currency == "USD"
        assert result[1].description == "Invoice for Apr 01, 2025"
        assert result[1].status == "Pending"
        assert result[1].invoice_url is None

    async def test_list_invoices_error(self, provider):
        with patch.object(stripe.Invoice, "list", side_effect=stripe.AuthenticationError("bad key")):
            with pytest.raises(PaymentProviderError):
                await provider.list_invoices("cus_1")
