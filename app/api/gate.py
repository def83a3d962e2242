"""
Request Gate - Authentication, quota enforcement and usage tracking around
billable handlers.

Per request:
    Anonymous -> TokenPresented -> Authenticated | AuthFailed
    -> Admitted | Denied
    -> Completed | Failed

Usage is recorded only after a handler completes with a non-error status,
as a detached task whose outcome never alters the response.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from uuid import UUID

from fastapi import HTTPException, status
from fastapi.responses import JSONResponse, Response
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import BaseModel
from structlog import get_logger

from app.exceptions import (
    AccountNotFoundError,
    AuthenticationError,
    SubscriptionNotFoundError,
    UsageLimitExceededError,
)
from app.models.api import ErrorResponse, UsageActionType, UsageLimitDetails, UsageLimitResponse
from app.models.domain import GateContext, UserUsage
from app.observability.metrics import metrics
from app.services.background import BackgroundDispatcher
from app.services.clerk_auth import TokenVerifier
from app.services.usage import UsageService

logger = get_logger(__name__)

Handler = Callable[[GateContext], Awaitable[Response | BaseModel]]
UsageRecorder = Callable[[UUID, str, UsageActionType], Awaitable[None]]


@dataclass(frozen=True)
class GateConfig:
    """Per-route gate behaviour."""

    require_auth: bool = False
    check_usage_limits: bool = True
    track_usage: bool = True
    action_type: UsageActionType = UsageActionType.IMAGE_GENERATION


def enforce_quota(usage: UserUsage) -> None:
    """
    Raises:
        UsageLimitExceededError: When one more action would exceed the plan limit
    """
    if usage.is_exhausted:
        raise UsageLimitExceededError(usage.usage_count, usage.limit, usage.plan_name)


def quota_response(exc: UsageLimitExceededError) -> JSONResponse:
    """403 body carrying the usage that caused the denial."""
    body = UsageLimitResponse(
        details=UsageLimitDetails(
            usage_count=exc.usage_count,
            limit=exc.limit,
            plan_name=exc.plan_name,
        )
    )
    return JSONResponse(
        status_code=status.HTTP_403_FORBIDDEN,
        content=body.model_dump(by_alias=True),
    )


def to_response(result: Response | BaseModel) -> Response:
    """Render a handler result."""
    if isinstance(result, Response):
        return result
    return JSONResponse(content=result.model_dump(mode="json", by_alias=True))


class RequestGate:
    """Wraps one billable handler invocation."""

    def __init__(
        self,
        config: GateConfig,
        token_verifier: TokenVerifier,
        usage_service: UsageService,
        recorder: UsageRecorder,
        dispatcher: BackgroundDispatcher,
    ) -> None:
        self.config = config
        self.token_verifier = token_verifier
        self.usage_service = usage_service
        self.recorder = recorder
        self.dispatcher = dispatcher

    async def handle(
        self, credentials: HTTPAuthorizationCredentials | None, handler: Handler
    ) -> Response:
        """
        Run the handler behind authentication and quota checks.

        Raises:
            HTTPException: 401/404 when auth is mandatory and fails, or any
                HTTPException the handler raised
        """
        context = await self._authenticate(credentials)

        if context.usage is not None and self.config.check_usage_limits:
            try:
                enforce_quota(context.usage)
            except UsageLimitExceededError as exc:
                metrics.record_usage_denial(exc.plan_name)
                logger.info(
                    "usage_limit_reached",
                    account_id=str(context.account_id),
                    usage_count=exc.usage_count,
                    limit=exc.limit,
                    plan_name=exc.plan_name,
                )
                return quota_response(exc)

        try:
            response = to_response(await handler(context))
        except HTTPException:
            raise
        except Exception as exc:
            logger.error(
                "gated_handler_failed",
                action_type=self.config.action_type.value,
                error=str(exc),
                exc_info=True,
            )
            metrics.record_error(type(exc).__name__, "gated_handler")
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content=ErrorResponse(error="Internal server error", message=str(exc)).model_dump(
                    exclude_none=True
                ),
            )

        if (
            response.status_code < 400
            and self.config.track_usage
            and context.account_id is not None
            and context.external_id is not None
        ):
            self.dispatcher.dispatch(
                "record_usage",
                self.recorder(context.account_id, context.external_id, self.config.action_type),
            )

        return response

    async def _authenticate(self, credentials: HTTPAuthorizationCredentials | None) -> GateContext:
        """Resolve the caller; anonymous unless auth is mandatory."""
        if credentials is None or not credentials.credentials:
            if self.config.require_auth:
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail="Unauthorized",
                    headers={"WWW-Authenticate": "Bearer"},
                )
            return GateContext()

        try:
            token = await self.token_verifier.verify(credentials.credentials)
            usage = await self.usage_service.get_usage(token.subject)
        except AuthenticationError as exc:
            if self.config.require_auth:
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail="Invalid token",
                    headers={"WWW-Authenticate": "Bearer"},
                ) from exc
            logger.info("optional_auth_failed", error=exc.message)
            return GateContext()
        except (AccountNotFoundError, SubscriptionNotFoundError) as exc:
            if self.config.require_auth:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
            logger.info("optional_auth_unresolved", error=str(exc))
            return GateContext()

        return GateContext(account_id=usage.account_id, external_id=token.subject, usage=usage)
