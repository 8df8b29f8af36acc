"""
Shared fixtures: a temporary SQLite database per test, the mock gateway, a
fully wired service container and an HTTP client for the FastAPI app.
"""
import hashlib
import hmac
import json
import time
import uuid
from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio

from paysync.container import ServiceContainer
from paysync.db.init_db import create_engine_and_sessionmaker, initialize_database
from paysync.mocks.payment_gateway import MockPaymentGateway
from paysync.services.identity import JwtIdentityProvider
from paysync.services.order_lifecycle import OrderLifecycleEngine
from paysync.services.order_store import OrderStore
from paysync.services.reconciliation import ReconciliationSweeper
from paysync.services.request_auth import RequestAuthenticator, parse_api_keys
from paysync.services.scheduler import ReconciliationScheduler
from paysync.services.signature_service import build_canonical_payload, compute_signature
from paysync.services.webhook_processor import WebhookProcessor

API_KEY = "abc123"
API_SECRET = "s3cr3t"
PUBLIC_API_KEYS = f"shop:{API_KEY}:{API_SECRET}"
WEBHOOK_SECRET = "whsec_test_secret"
ADMIN_JWT_SECRET = "admin-jwt-secret"
ADMIN_SUBJECT = "user_admin"


@pytest_asyncio.fixture
async def db(tmp_path):
    """Engine and session factory over a fresh SQLite file."""
    engine, session_factory = create_engine_and_sessionmaker(
        f"sqlite+aiosqlite:///{tmp_path / 'paysync.db'}"
    )
    await initialize_database(engine)
    yield engine, session_factory
    await engine.dispose()


@pytest.fixture
def store(db):
    _, session_factory = db
    return OrderStore(session_factory)


@pytest.fixture
def gateway():
    return MockPaymentGateway(auto_approve=True)


@pytest.fixture
def lifecycle(store):
    return OrderLifecycleEngine(store)


@pytest.fixture
def sweeper(store, lifecycle, gateway):
    return ReconciliationSweeper(store, lifecycle, gateway, stale_after=timedelta(minutes=5))


@pytest.fixture
def webhooks(lifecycle):
    return WebhookProcessor(lifecycle, WEBHOOK_SECRET)


@pytest_asyncio.fixture
async def product(store):
    return await store.add_product("Demo Widget", price=2999, currency="usd", description="A widget")


@pytest.fixture
def services(db, store, gateway, lifecycle, sweeper, webhooks):
    engine, session_factory = db
    return ServiceContainer(
        engine=engine,
        session_factory=session_factory,
        store=store,
        gateway=gateway,
        lifecycle=lifecycle,
        webhooks=webhooks,
        sweeper=sweeper,
        scheduler=ReconciliationScheduler(sweeper, interval_minutes=5),
        authenticator=RequestAuthenticator(parse_api_keys(PUBLIC_API_KEYS)),
        identity=JwtIdentityProvider(ADMIN_JWT_SECRET, admin_subjects={ADMIN_SUBJECT})
    )


@pytest_asyncio.fixture
async def client(services):
    """HTTP client for the app, bypassing the lifespan (services are injected)."""
    from paysync.main import app

    app.state.services = services
    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac
    del app.state.services


# ============================================================================
# Request signing helpers
# ============================================================================

def signed_headers(
    method: str,
    path: str,
    body: bytes = b"",
    api_key: str = API_KEY,
    secret: str = API_SECRET,
    timestamp: str = None,
    nonce: str = None
) -> dict:
    """Headers a storefront client sends for a signed request."""
    timestamp = timestamp or datetime.now(timezone.utc).isoformat()
    nonce = nonce or uuid.uuid4().hex
    payload = build_canonical_payload(method, path, timestamp, nonce, body)
    return {
        "content-type": "application/json",
        "x-api-key": api_key,
        "x-timestamp": timestamp,
        "x-nonce": nonce,
        "x-signature": compute_signature(secret, payload),
    }


def stripe_event(event_type: str, obj: dict, event_id: str = None) -> bytes:
    """Serialized Stripe event envelope."""
    return json.dumps({
        "id": event_id or f"evt_{uuid.uuid4().hex[:16]}",
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }).encode()


def stripe_signature(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    """stripe-signature header value for a payload (t=...,v1=...)."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload.decode()}".encode()
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"
