"""
Service Container

Builds and owns the long-lived collaborators of the application: database
engine, order store, gateway client, lifecycle engine, webhook processor,
reconciliation sweeper and scheduler, request authenticator and identity
provider.

The FastAPI app keeps one container on app.state.services; request handlers
reach it through api/deps.py. Tests build their own container around a
temporary database and the mock gateway.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from .config import Settings
from .db.init_db import create_engine_and_sessionmaker
from .mocks.payment_gateway import MockPaymentGateway
from .services.gateway_client import PaymentGateway, StripeGatewayClient
from .services.identity import IdentityProvider, JwtIdentityProvider
from .services.order_lifecycle import OrderLifecycleEngine
from .services.order_store import OrderStore
from .services.reconciliation import ReconciliationSweeper
from .services.request_auth import RequestAuthenticator
from .services.scheduler import ReconciliationScheduler
from .services.webhook_processor import WebhookProcessor

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    engine: AsyncEngine
    session_factory: async_sessionmaker
    store: OrderStore
    gateway: PaymentGateway
    lifecycle: OrderLifecycleEngine
    webhooks: WebhookProcessor
    sweeper: ReconciliationSweeper
    scheduler: ReconciliationScheduler
    authenticator: RequestAuthenticator
    identity: IdentityProvider

    @classmethod
    def from_settings(cls, settings: Settings) -> "ServiceContainer":
        """Wire every service from application settings."""
        engine, session_factory = create_engine_and_sessionmaker(settings.database_url)
        store = OrderStore(session_factory)

        if settings.stripe_configured:
            gateway: PaymentGateway = StripeGatewayClient(
                settings.stripe_secret_key,
                timeout_seconds=settings.gateway_timeout_seconds
            )
        else:
            logger.warning("STRIPE_SECRET_KEY not configured; using mock payment gateway")
            gateway = MockPaymentGateway(auto_approve=settings.demo_mode)

        lifecycle = OrderLifecycleEngine(store)
        sweeper = ReconciliationSweeper(
            store,
            lifecycle,
            gateway,
            stale_after=timedelta(minutes=settings.reconciliation_stale_after_minutes)
        )

        return cls(
            engine=engine,
            session_factory=session_factory,
            store=store,
            gateway=gateway,
            lifecycle=lifecycle,
            webhooks=WebhookProcessor(
                lifecycle,
                settings.stripe_webhook_secret,
                tolerance_seconds=settings.stripe_webhook_tolerance_seconds
            ),
            sweeper=sweeper,
            scheduler=ReconciliationScheduler(
                sweeper,
                interval_minutes=settings.reconciliation_interval_minutes
            ),
            authenticator=RequestAuthenticator.from_settings(settings),
            identity=JwtIdentityProvider.from_settings(settings)
        )

    async def close(self) -> None:
        """Stop the scheduler and release database connections."""
        self.scheduler.shutdown(wait=False)
        await self.engine.dispose()
