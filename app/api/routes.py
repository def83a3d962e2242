"""
API Routes - Usage and gated image endpoints.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse, Response
from fastapi.security import HTTPAuthorizationCredentials
from structlog import get_logger

from app.api.dependencies import (
    bearer_scheme,
    get_account_store,
    get_context,
    get_usage_service,
    request_gate,
)
from app.api.gate import GateConfig, RequestGate
from app.context import AppContext
from app.exceptions import ImageProviderError
from app.models.api import (
    EditImageRequest,
    ErrorResponse,
    GenerateImageRequest,
    ImageResponse,
    NextPlanItem,
    UsageActionType,
    UsageEventItem,
    UsageLimitResponse,
    UserUsageResponse,
)
from app.models.domain import GateContext
from app.services.account_store import AccountStore
from app.services.usage import UsageService

logger = get_logger(__name__)

router = APIRouter()

# Gate configurations
USAGE_VIEW = GateConfig(require_auth=True, check_usage_limits=False, track_usage=False)
GENERATE_IMAGE = GateConfig(action_type=UsageActionType.IMAGE_GENERATION)
EDIT_IMAGE = GateConfig(action_type=UsageActionType.IMAGE_EDITS)


def image_error_response(exc: ImageProviderError) -> JSONResponse:
    """Relay the provider's status and error payload."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=exc.message,
            message=str(exc),
            details=exc.details,
        ).model_dump(),
    )


@router.get("/api/user-usage", response_model=UserUsageResponse)
async def get_user_usage(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    gate: RequestGate = Depends(request_gate(USAGE_VIEW)),
    store: AccountStore = Depends(get_account_store),
    usage_service: UsageService = Depends(get_usage_service),
) -> Response:
    """
    Current-month usage, recent events and the next plan up.

    Auth: Bearer {clerk_session_token}
    """

    async def handler(context: GateContext) -> UserUsageResponse:
        if context.usage is None or context.account_id is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User usage data not found")

        subscription = await store.find_subscription_plan(context.account_id)
        if subscription is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No subscription found")

        events = await usage_service.list_recent_events(context.account_id)
        next_plan = await usage_service.find_next_plan(subscription.image_generation_limit)

        return UserUsageResponse(
            plan_name=subscription.plan_name,
            image_generation_limit=subscription.image_generation_limit,
            image_generations_used=context.usage.usage_count,
            has_stripe_subscription=subscription.stripe_subscription_id is not None,
            events=[
                UsageEventItem(
                    id=event.event_id,
                    type=event.action_type,
                    date=event.created_at.isoformat(),
                )
                for event in events
            ],
            next_plan=NextPlanItem(
                name=next_plan.name,
                image_generation_limit=next_plan.image_generation_limit,
                price_monthly=str(next_plan.price_monthly)
                if next_plan.price_monthly is not None
                else None,
            )
            if next_plan is not None
            else None,
        )

    return await gate.handle(credentials, handler)


@router.post(
    "/api/generate-image",
    response_model=ImageResponse,
    responses={403: {"model": UsageLimitResponse}},
)
async def generate_image(
    request: GenerateImageRequest,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    gate: RequestGate = Depends(request_gate(GENERATE_IMAGE)),
    app_context: AppContext = Depends(get_context),
) -> Response:
    """
    Generate an image from a prompt.

    Auth: optional Bearer {clerk_session_token}; signed-in callers are
    metered against their plan.
    """

    async def handler(context: GateContext) -> Response | ImageResponse:
        try:
            return await app_context.image_provider.generate_image(request)
        except ImageProviderError as exc:
            logger.warning("image_generation_failed", status=exc.status_code, error=exc.message)
            return image_error_response(exc)

    return await gate.handle(credentials, handler)


@router.post(
    "/api/edit-image",
    response_model=ImageResponse,
    responses={403: {"model": UsageLimitResponse}},
)
async def edit_image(
    request: EditImageRequest,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    gate: RequestGate = Depends(request_gate(EDIT_IMAGE)),
    app_context: AppContext = Depends(get_context),
) -> Response:
    """
    Edit one or more images with a prompt.

    Auth: optional Bearer {clerk_session_token}
    """

    async def handler(context: GateContext) -> Response | ImageResponse:
        try:
            return await app_context.image_provider.edit_image(request)
        except ImageProviderError as exc:
            logger.warning("image_edit_failed", status=exc.status_code, error=exc.message)
            return image_error_response(exc)

    return await gate.handle(credentials, handler)
