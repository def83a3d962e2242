"""
Payment Provider Protocol - Provider-agnostic interface.

NO DICTIONARIES - All data uses strongly typed models.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Protocol
from uuid import UUID

from app.models.domain import BillingEvent

InvoiceStatus = Literal["Paid", "Pending", "Failed"]


@dataclass(frozen=True)
class CustomerRequest:
    """
    Request to create a billing customer for an account.
    """

    email: str
    name: str | None
    account_id: UUID
    clerk_id: str


@dataclass(frozen=True)
class CheckoutRequest:
    """
    Request to open a hosted subscription checkout.

    account_id, plan_id and plan_name travel as session metadata and come
    back on checkout.session.completed.
    """

    customer_id: str
    price_id: str
    account_id: UUID
    plan_id: UUID
    plan_name: str
    success_url: str
    cancel_url: str


@dataclass(frozen=True)
class InvoiceData:
    """
    Provider-agnostic invoice summary.
    """

    invoice_id: str
    created_at: datetime
    description: str
    status: InvoiceStatus
    amount: float  # Major units
    currency: str
    invoice_url: str | None


class PaymentProvider(Protocol):
    """
    Payment provider protocol.

    The billing provider must implement this interface; routes and services
    never import the provider SDK directly.
    """

    async def verify_webhook(self, payload: bytes, signature: str) -> BillingEvent:
        """
        Verify and parse a webhook delivery.

        Args:
            payload: Raw webhook payload
            signature: Webhook signature for verification

        Returns:
            Tagged billing event

        Raises:
            WebhookVerificationError: If signature verification fails
            WebhookPayloadError: If a handled event lacks required data
        """
        ...

    async def create_customer(self, request: CustomerRequest) -> str:
        """
        Create a customer.

        Returns:
            Provider customer ID

        Raises:
            PaymentProviderError: If the provider call fails
        """
        ...

    async def create_subscription(
        self, customer_id: str, price_id: str, account_id: UUID, plan_id: UUID
    ) -> str:
        """
        Subscribe a customer to a price.

        Returns:
            Provider subscription ID

        Raises:
            PaymentProviderError: If the provider call fails
        """
        ...

    async def create_checkout_session(self, request: CheckoutRequest) -> str:
        """
        Create a hosted checkout session.

        Returns:
            Checkout URL

        Raises:
            PaymentProviderError: If the provider call fails
        """
        ...

    async def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """
        Create a self-service billing portal session.

        Returns:
            Portal URL

        Raises:
            PaymentProviderError: If the provider call fails
        """
        ...

    async def list_invoices(self, customer_id: str, limit: int = 100) -> list[InvoiceData]:
        """
        List a customer's invoices, newest first.

        Raises:
            PaymentProviderError: If the provider call fails
        """
        ...
