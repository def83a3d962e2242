"""
Application Context - Process-wide clients built once and injected.

Routes reach the cache, token verifier, payment provider, image provider and
background dispatcher through this object, so tests can swap any of them
with set_app_context().
"""

from dataclasses import dataclass
from uuid import UUID

from app.config import Settings, settings
from app.db.session import get_session
from app.models.api import UsageActionType
from app.services.account_store import AccountStore
from app.services.background import BackgroundDispatcher
from app.services.clerk_auth import ClerkTokenVerifier, TokenVerifier
from app.services.image_provider import FalImageClient, ImageProvider
from app.services.payment_provider import PaymentProvider
from app.services.stripe_provider import StripeProvider
from app.services.usage import UsageService
from app.services.usage_cache import RedisUsageCache, UsageCache, create_redis_client


@dataclass
class AppContext:
    """Injected singletons shared by all requests."""

    settings: Settings
    cache: UsageCache
    token_verifier: TokenVerifier
    payment_provider: PaymentProvider
    image_provider: ImageProvider
    dispatcher: BackgroundDispatcher

    async def record_usage(
        self, account_id: UUID, external_id: str, action_type: UsageActionType
    ) -> None:
        """Record one usage event on a session independent of any request."""
        async with get_session() as session:
            service = UsageService(AccountStore(session), self.cache, self.settings.usage_timezone)
            await service.record_usage(account_id, external_id, action_type)

    async def close(self) -> None:
        """Drain background work, then release client pools."""
        await self.dispatcher.drain(self.settings.background_drain_timeout)
        if isinstance(self.cache, RedisUsageCache):
            await self.cache.close()
        if isinstance(self.image_provider, FalImageClient):
            await self.image_provider.close()


def build_app_context(config: Settings) -> AppContext:
    """Construct production clients from settings."""
    return AppContext(
        settings=config,
        cache=RedisUsageCache(create_redis_client(config)),
        token_verifier=ClerkTokenVerifier(
            jwt_key=config.clerk_jwt_key,
            jwks_url=config.clerk_jwks_url,
            secret_key=config.clerk_secret_key,
            authorized_parties=config.authorized_parties,
        ),
        payment_provider=StripeProvider(
            api_key=config.stripe_api_key,
            webhook_secret=config.stripe_webhook_secret,
        ),
        image_provider=FalImageClient(
            api_key=config.fal_api_key,
            base_url=config.fal_base_url,
            generate_model=config.fal_generate_model,
            edit_model=config.fal_edit_model,
            timeout=config.fal_timeout,
        ),
        dispatcher=BackgroundDispatcher(),
    )


# Global context instance, built on first use
_app_context: AppContext | None = None


def get_app_context() -> AppContext:
    """Get or create the application context."""
    global _app_context
    if _app_context is None:
        _app_context = build_app_context(settings)
    return _app_context


def set_app_context(context: AppContext | None) -> None:
    """Replace the application context (None resets to lazy construction)."""
    global _app_context
    _app_context = context


async def close_app_context() -> None:
    """Shut down the context if one was built."""
    global _app_context
    if _app_context is not None:
        await _app_context.close()
        _app_context = None
