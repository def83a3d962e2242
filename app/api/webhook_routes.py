"""
Webhook Routes - Billing provider and auth provider deliveries.

Both providers retry on non-2xx, so only transient failures return 5xx;
malformed payloads are rejected with 4xx and not retried.
"""

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from structlog import get_logger

from app.api.dependencies import get_account_store, get_context
from app.context import AppContext
from app.exceptions import (
    PersistenceError,
    PlanNotFoundError,
    WebhookPayloadError,
    WebhookVerificationError,
)
from app.models.api import SignupResponse, WebhookAck
from app.observability.logging import log_context
from app.observability.metrics import metrics
from app.services.account_store import AccountStore
from app.services.signup import AccountProvisioningService, parse_user_created, verify_clerk_webhook
from app.services.subscriptions import SubscriptionReconciler

logger = get_logger(__name__)

router = APIRouter(tags=["webhooks"])


@router.post("/api/webhooks/stripe", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(None, alias="Stripe-Signature"),
    store: AccountStore = Depends(get_account_store),
    app_context: AppContext = Depends(get_context),
) -> WebhookAck:
    """
    Apply subscription changes from Stripe.

    Auth: Stripe-Signature header (HMAC over the raw body)
    """
    if not stripe_signature or not app_context.settings.stripe_webhook_secret:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Missing signature or secret"
        )

    payload = await request.body()

    try:
        event = await app_context.payment_provider.verify_webhook(payload, stripe_signature)
    except WebhookVerificationError as exc:
        metrics.record_webhook_event("unknown", "rejected")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=exc.message) from exc
    except WebhookPayloadError as exc:
        metrics.record_webhook_event("unknown", "invalid")
        logger.warning("stripe_webhook_invalid_payload", error=exc.message)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message) from exc

    reconciler = SubscriptionReconciler(store, app_context.settings.default_plan_name)
    try:
        with log_context(stripe_event_id=event.event_id):
            await reconciler.apply(event)
    except PlanNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Free plan not found"
        ) from exc
    except PersistenceError as exc:
        logger.error("stripe_webhook_persistence_failed", event_id=event.event_id, error=exc.message)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Webhook processing failed"
        ) from exc

    return WebhookAck()


@router.post("/api/webhooks/clerk/signup", response_model=SignupResponse)
async def clerk_signup_webhook(
    request: Request,
    store: AccountStore = Depends(get_account_store),
    app_context: AppContext = Depends(get_context),
) -> SignupResponse:
    """
    Provision an account when a user signs up.

    Auth: svix-id / svix-timestamp / svix-signature headers
    """
    secret = app_context.settings.clerk_webhook_secret
    if not secret:
        logger.error("clerk_webhook_secret_missing")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook secret not configured",
        )

    payload = await request.body()

    try:
        event = verify_clerk_webhook(secret, payload, request.headers)
        user = parse_user_created(event)
    except WebhookVerificationError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature") from exc
    except WebhookPayloadError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message) from exc

    if user is None:
        return SignupResponse(message="Event type not handled")

    service = AccountProvisioningService(
        store, app_context.payment_provider, app_context.settings.default_plan_name
    )
    try:
        account = await service.provision(user)
    except PlanNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Free plan not found"
        ) from exc
    except PersistenceError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to create user"
        ) from exc

    return SignupResponse(
        user_id=account.id,
        message="User created and assigned to free plan",
    )
