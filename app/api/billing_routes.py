"""
Billing Routes - Checkout, customer portal and invoice history.

All endpoints require a signed-in caller and are never metered.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response
from fastapi.security import HTTPAuthorizationCredentials
from structlog import get_logger

from app.api.dependencies import bearer_scheme, get_account_store, get_context, request_gate
from app.api.gate import GateConfig, RequestGate
from app.context import AppContext
from app.exceptions import PaymentProviderError
from app.models.api import (
    CheckoutSessionRequest,
    InvoiceItem,
    InvoiceListResponse,
    SessionUrlResponse,
)
from app.models.domain import GateContext
from app.services.account_store import AccountStore
from app.services.payment_provider import CheckoutRequest, CustomerRequest

logger = get_logger(__name__)

router = APIRouter(tags=["billing"])

BILLING = GateConfig(require_auth=True, check_usage_limits=False, track_usage=False)


def _account_id(context: GateContext) -> UUID:
    if context.account_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return context.account_id


async def _ensure_customer(
    store: AccountStore,
    app_context: AppContext,
    account_id: UUID,
    existing_customer_id: str | None,
    has_subscription: bool,
) -> str:
    """
    Return the account's billing customer, creating it on first use.

    The new customer ID is stored on the subscription when one exists.
    """
    if existing_customer_id:
        return existing_customer_id

    account = await store.get_account(account_id)
    if account is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    if not account.email:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User email not found. Please contact support.",
        )

    customer_id = await app_context.payment_provider.create_customer(
        CustomerRequest(
            email=account.email,
            name=account.display_name,
            account_id=account.id,
            clerk_id=account.clerk_id,
        )
    )
    if has_subscription:
        await store.set_stripe_customer(account_id, customer_id)

    return customer_id


@router.post("/api/stripe/create-checkout-session", response_model=SessionUrlResponse)
async def create_checkout_session(
    request: CheckoutSessionRequest,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    gate: RequestGate = Depends(request_gate(BILLING)),
    store: AccountStore = Depends(get_account_store),
    app_context: AppContext = Depends(get_context),
) -> Response:
    """
    Open a hosted checkout for a paid plan.

    Auth: Bearer {clerk_session_token}
    """

    async def handler(context: GateContext) -> SessionUrlResponse:
        account_id = _account_id(context)

        if not request.plan_name:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Plan name is required")

        plan = await store.find_plan_by_name(request.plan_name)
        if plan is None or not plan.stripe_price_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid plan or missing Stripe price ID",
            )

        subscription = await store.find_subscription(account_id)
        base_url = app_context.settings.app_base_url.rstrip("/")

        try:
            customer_id = await _ensure_customer(
                store,
                app_context,
                account_id,
                subscription.stripe_customer_id if subscription else None,
                has_subscription=subscription is not None,
            )
            url = await app_context.payment_provider.create_checkout_session(
                CheckoutRequest(
                    customer_id=customer_id,
                    price_id=plan.stripe_price_id,
                    account_id=account_id,
                    plan_id=plan.id,
                    plan_name=plan.name,
                    success_url=f"{base_url}/?checkout=success",
                    cancel_url=f"{base_url}/?checkout=cancelled",
                )
            )
        except PaymentProviderError as exc:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail=f"Failed to create checkout session: {exc.message}",
            ) from exc

        logger.info("checkout_session_opened", account_id=str(account_id), plan_name=plan.name)
        return SessionUrlResponse(url=url)

    return await gate.handle(credentials, handler)


@router.post("/api/stripe/create-portal-session", response_model=SessionUrlResponse)
async def create_portal_session(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    gate: RequestGate = Depends(request_gate(BILLING)),
    store: AccountStore = Depends(get_account_store),
    app_context: AppContext = Depends(get_context),
) -> Response:
    """
    Open the self-service billing portal.

    Auth: Bearer {clerk_session_token}
    """

    async def handler(context: GateContext) -> SessionUrlResponse:
        account_id = _account_id(context)

        subscription = await store.find_subscription(account_id)
        if subscription is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail="User subscription not found"
            )

        base_url = app_context.settings.app_base_url.rstrip("/")
        try:
            customer_id = await _ensure_customer(
                store,
                app_context,
                account_id,
                subscription.stripe_customer_id,
                has_subscription=True,
            )
            url = await app_context.payment_provider.create_portal_session(
                customer_id, f"{base_url}/?portal=success"
            )
        except PaymentProviderError as exc:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail=f"Failed to create portal session: {exc.message}",
            ) from exc

        return SessionUrlResponse(url=url)

    return await gate.handle(credentials, handler)


@router.get("/api/billing/invoices", response_model=InvoiceListResponse)
async def list_invoices(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    gate: RequestGate = Depends(request_gate(BILLING)),
    store: AccountStore = Depends(get_account_store),
    app_context: AppContext = Depends(get_context),
) -> Response:
    """
    Invoice history of the caller's billing customer (last 100).

    Auth: Bearer {clerk_session_token}
    """

    async def handler(context: GateContext) -> InvoiceListResponse:
        account_id = _account_id(context)

        subscription = await store.find_subscription(account_id)
        if subscription is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail="User subscription not found"
            )
        if not subscription.stripe_customer_id:
            return InvoiceListResponse(invoices=[])

        try:
            invoices = await app_context.payment_provider.list_invoices(
                subscription.stripe_customer_id
            )
        except PaymentProviderError as exc:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail=f"Failed to fetch invoices: {exc.message}",
            ) from exc

        return InvoiceListResponse(
            invoices=[
                InvoiceItem(
                    id=invoice.invoice_id,
                    date=invoice.created_at.strftime("%b %d, %Y"),
                    description=invoice.description,
                    status=invoice.status,
                    amount=invoice.amount,
                    currency=invoice.currency,
                    invoice_url=invoice.invoice_url,
                )
                for invoice in invoices
            ]
        )

    return await gate.handle(credentials, handler)
