"""
FastAPI Dependencies - Context, services and request gates.

NO DICTIONARIES - All dependencies return typed objects.
"""

from collections.abc import Awaitable, Callable

from fastapi import Depends
from fastapi.security import HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.gate import GateConfig, RequestGate
from app.context import AppContext, get_app_context
from app.db.session import get_db
from app.services.account_store import AccountStore
from app.services.usage import UsageService

# Bearer token scheme for Clerk session tokens
bearer_scheme = HTTPBearer(auto_error=False)


def get_context() -> AppContext:
    """FastAPI dependency for the process-wide application context."""
    return get_app_context()


def get_account_store(db: AsyncSession = Depends(get_db)) -> AccountStore:
    """Request-scoped account store."""
    return AccountStore(db)


def get_usage_service(
    store: AccountStore = Depends(get_account_store),
    context: AppContext = Depends(get_context),
) -> UsageService:
    """Request-scoped usage service."""
    return UsageService(store, context.cache, context.settings.usage_timezone)


def request_gate(config: GateConfig) -> Callable[..., Awaitable[RequestGate]]:
    """
    Build a dependency yielding a RequestGate for a route.

    Usage:
        @router.post("/api/generate-image")
        async def generate_image(
            gate: RequestGate = Depends(request_gate(GateConfig(...))),
        ):
            ...
    """

    async def dependency(
        usage_service: UsageService = Depends(get_usage_service),
        context: AppContext = Depends(get_context),
    ) -> RequestGate:
        return RequestGate(
            config=config,
            token_verifier=context.token_verifier,
            usage_service=usage_service,
            recorder=context.record_usage,
            dispatcher=context.dispatcher,
        )

    return dependency
