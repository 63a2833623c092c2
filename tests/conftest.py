from pathlib import Path
from typing import Any, AsyncGenerator, Callable, Dict, Generator, List, Optional, Tuple
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import Tracer
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from message_relay.database import Base, build_engine, build_session_factory
from message_relay.main import create_app
from message_relay.models import db as db_models  # noqa: F401
from message_relay.providers.mock_provider import MockProvider
from message_relay.providers.provider_router import ProviderRouter, default_providers
from message_relay.workers.jobs import InMemoryJobScheduler
from message_relay.workers.message_delivery_worker import MessageDeliveryWorker

MOCK_ONLY: Dict[str, Dict[str, Any]] = {
    "mock": {"enabled": True, "config": {"provider_name": "mock"}},
}


def database_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"


@pytest.fixture(scope="function")
async def test_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """Create a file-backed sqlite engine with every table for one test."""
    engine = build_engine(database_url(tmp_path), echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(test_engine)


@pytest.fixture(scope="function")
async def test_db(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def mock_provider() -> MockProvider:
    return MockProvider()


@pytest.fixture
def provider_router(mock_provider: MockProvider) -> ProviderRouter:
    """Router with only the mock transport enabled."""
    providers = default_providers()
    providers["mock"] = mock_provider
    return ProviderRouter(MOCK_ONLY, providers=providers)


@pytest.fixture
def scheduler() -> InMemoryJobScheduler:
    return InMemoryJobScheduler()


@pytest.fixture
def span_exporter() -> InMemorySpanExporter:
    return InMemorySpanExporter()


@pytest.fixture
def tracer(span_exporter: InMemorySpanExporter) -> Tracer:
    """Tracer whose finished spans land in ``span_exporter``."""
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    return provider.get_tracer("message_relay.tests")


RecordedEvents = Callable[[Optional[str]], List[Tuple[str, Dict[str, Any]]]]


@pytest.fixture
def events(span_exporter: InMemorySpanExporter) -> RecordedEvents:
    """Span events recorded so far as ``(name, attributes)``, optionally filtered by name."""

    def recorded(name: Optional[str] = None) -> List[Tuple[str, Dict[str, Any]]]:
        spans = sorted(span_exporter.get_finished_spans(), key=lambda span: span.start_time)
        return [
            (event.name, dict(event.attributes or {}))
            for span in spans
            for event in span.events
            if name is None or event.name == name
        ]

    return recorded


@pytest.fixture
def worker(
    session_factory: async_sessionmaker[AsyncSession],
    provider_router: ProviderRouter,
    scheduler: InMemoryJobScheduler,
    tracer: Tracer,
) -> MessageDeliveryWorker:
    return MessageDeliveryWorker(
        session_factory, provider_router, scheduler, max_attempts=3, tracer=tracer
    )


@pytest.fixture
def client(tmp_path: Path) -> Generator[TestClient, Any, None]:
    """Create a test client for an app backed by a fresh sqlite database.

    Delivery jobs are recorded but not executed, so sent messages stay queued.
    """
    app = create_app(
        database_url=database_url(tmp_path),
        provider_configs=MOCK_ONLY,
        create_tables=True,
        run_jobs=False,
    )
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def live_client(tmp_path: Path) -> Generator[TestClient, Any, None]:
    """Create a test client whose app executes delivery jobs in the background."""
    app = create_app(
        database_url=database_url(tmp_path),
        provider_configs=MOCK_ONLY,
        create_tables=True,
        run_jobs=True,
        job_poll_interval=0.01,
    )
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture(scope="function")
def mock_db() -> AsyncMock:
    """Create a mock database session for unit tests."""
    mock_session = AsyncMock()
    mock_session.commit = AsyncMock()
    mock_session.rollback = AsyncMock()
    mock_session.execute = AsyncMock()
    mock_session.delete = AsyncMock()
    mock_session.add = MagicMock()  # add is sync, not async
    return mock_session
