"""
Test configuration and fixtures.
Uses a per-test SQLite file database (aiosqlite) so concurrent sessions behave
like separate connections. Mocks all external services.
"""
import pytest
from unittest.mock import AsyncMock, patch
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

import payhooks.models  # noqa: F401 - registers tables on Base.metadata
from payhooks.config import Settings
from payhooks.database import Base
from payhooks.services.event_processor import EventProcessor, ProcessResult
from payhooks.services.idempotency import IdempotencyStore
from payhooks.services.webhook_pipeline import WebhookPipeline
from payhooks.utils.locks import InFlightClaims
from payhooks.utils.metrics import MetricsRegistry
from payhooks.utils.rate_limiter import RateLimiterService
from factories import TEST_HEALTH_TOKEN, TEST_SECRET, Clock


@pytest.fixture
async def session_factory(tmp_path):
    """Session factory bound to a fresh SQLite database."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'payhooks.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        app_env="test",
        webhook_shared_secret=TEST_SECRET,
        health_check_token=TEST_HEALTH_TOKEN,
        rate_limit_max=100,
        rate_limit_window_ms=60000,
        handler_timeout_seconds=2.0,
    )


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def handler_calls():
    """Records (event_id, event_type) for every invocation of the test handler."""
    return []


@pytest.fixture
def processor(handler_calls):
    async def record_handler(payload, context):
        handler_calls.append((context.event_id, context.event_type))
        return None

    async def failing_handler(payload, context):
        handler_calls.append((context.event_id, context.event_type))
        return ProcessResult.failed("Insufficient inventory")

    return EventProcessor(
        {
            "payment_intent.succeeded": record_handler,
            "invoice.payment_failed": failing_handler,
        },
        timeout_seconds=2.0,
    )


@pytest.fixture
def pipeline(settings, session_factory, processor):
    """Pipeline wired with in-memory coordination and the test processor."""
    return WebhookPipeline(
        settings=settings,
        rate_limiter=RateLimiterService(),
        idempotency_store=IdempotencyStore(session_factory),
        claims=InFlightClaims(),
        processor=processor,
        metrics=MetricsRegistry(),
        session_factory=session_factory,
    )


@pytest.fixture
def mock_redis():
    """Mock for async Redis - prevents real Redis calls in tests."""
    with patch("payhooks.utils.redis_client.get_redis") as mock:
        redis_mock = AsyncMock()
        redis_mock.set = AsyncMock(return_value=True)
        redis_mock.eval = AsyncMock(return_value=1)
        redis_mock.ping = AsyncMock(return_value=True)
        mock.return_value = redis_mock
        yield redis_mock
