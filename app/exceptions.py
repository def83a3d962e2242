"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""

from typing import Any
from uuid import UUID


class BillingError(Exception):
    """Base exception for all billing errors."""

    pass


class AccountNotFoundError(BillingError):
    """Raised when no account exists for an external identity."""

    def __init__(self, external_id: str) -> None:
        self.external_id = external_id
        super().__init__(f"Account not found: {external_id}")


class SubscriptionNotFoundError(BillingError):
    """Raised when an account has no subscription row."""

    def __init__(self, account_id: UUID) -> None:
        self.account_id = account_id
        super().__init__(f"No subscription found for account {account_id}")


class PlanNotFoundError(BillingError):
    """Raised when a plan cannot be resolved by name or id."""

    def __init__(self, plan: str) -> None:
        self.plan = plan
        super().__init__(f"Plan not found: {plan}")


class UsageLimitExceededError(BillingError):
    """Raised when an account has used its whole monthly allowance."""

    def __init__(self, usage_count: int, limit: int, plan_name: str) -> None:
        self.usage_count = usage_count
        self.limit = limit
        self.plan_name = plan_name
        super().__init__(
            f"Usage limit reached. Used: {usage_count}, Limit: {limit}, Plan: {plan_name}"
        )


class PersistenceError(BillingError):
    """Raised when a write to the source of truth fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Persistence error: {message}")


class CacheError(BillingError):
    """Raised by cache backends; never surfaced to callers."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Cache error: {message}")


class InvalidRequestError(BillingError):
    """Raised when a request is missing required fields or is malformed."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Invalid request: {message}")


class WebhookPayloadError(BillingError):
    """Raised when a verified webhook event lacks required data. Not retryable."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Invalid webhook payload: {message}")


class WebhookVerificationError(BillingError):
    """Raised when webhook verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Webhook verification error: {message}")


class AuthenticationError(BillingError):
    """Raised when a bearer credential is missing, invalid or expired."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")


class PaymentProviderError(BillingError):
    """Raised when payment provider operation fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Payment provider error: {message}")


class ImageProviderError(BillingError):
    """Raised when the AI image provider returns a non-success response."""

    def __init__(
        self,
        status_code: int,
        message: str,
        details: Any | None = None,
    ) -> None:
        self.status_code = status_code
        self.message = message
        self.details = details
        super().__init__(f"Image provider error ({status_code}): {message}")

    @property
    def is_validation_error(self) -> bool:
        """Provider rejected the input (422-class)."""
        return self.status_code == 422
