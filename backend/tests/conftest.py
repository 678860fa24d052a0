"""Pytest configuration and fixtures for async testing."""
import base64
import os
from typing import AsyncGenerator

# The engine is created at import time, so point it at SQLite before loading the app.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["APP_ENV"] = "test"

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import donations.models  # noqa: E402,F401
from donations.adapters.cybersource_adapter import CybersourceAdapter  # noqa: E402
from donations.config import FormDefinition, Settings  # noqa: E402
from donations.database import Base  # noqa: E402
from donations.main import app  # noqa: E402
from tests.utils.factories import FakeGateway, FakeMailer  # noqa: E402

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
TEST_SHARED_SECRET = base64.b64encode(b"test-shared-secret-value").decode()


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """
    Create an in-memory database for each test.

    A static pool keeps every session on the same connection, so all of
    them see the same tables.
    """
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_engine) -> async_sessionmaker:
    """Session factory handed to the workers through their context."""
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """
    Create a fresh database session for each test.

    Yields:
        AsyncSession: Database session for testing
    """
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
def test_settings() -> Settings:
    """
    Settings with shared secret credentials and two payment forms.

    Returns:
        Settings: Isolated from the process environment and any .env file
    """
    return Settings(
        _env_file=None,
        database_url=TEST_DATABASE_URL,
        app_env="test",
        gateway_environment="development",
        gateway_auth_type="http_signature",
        merchant_id="testmerchant",
        merchant_key_id="test-key-id",
        merchant_secret_key=TEST_SHARED_SECRET,
        receipt_lookup_attempts=2,
        receipt_lookup_delay_seconds=0,
        smtp_host="",
        forms=[
            FormDefinition(form_id="donation_form"),
            FormDefinition(form_id="gala_form", code_prefix="GALA"),
        ],
    )


@pytest.fixture(scope="function")
def gateway() -> FakeGateway:
    """In-memory stand-in for the CyberSource REST API."""
    return FakeGateway()


@pytest.fixture(scope="function")
def gateway_client(test_settings: Settings, gateway: FakeGateway) -> CybersourceAdapter:
    """Gateway client wired to the fake gateway's transport."""
    return CybersourceAdapter(test_settings, transport=gateway.transport)


@pytest.fixture(scope="function")
def mailer(test_settings: Settings) -> FakeMailer:
    """Mailer that records messages instead of sending them."""
    return FakeMailer(test_settings)


@pytest.fixture(scope="function")
def worker_ctx(session_factory, gateway_client, mailer, test_settings) -> dict:
    """Worker context as the job host would pass it."""
    return {
        "session_factory": session_factory,
        "gateway_client": gateway_client,
        "mailer": mailer,
        "config": test_settings,
    }


@pytest_asyncio.fixture(scope="function")
async def async_client(
    session_factory,
    test_settings: Settings,
    gateway_client: CybersourceAdapter,
    mailer: FakeMailer,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Create an async HTTP client for testing with dependency overrides.

    Yields:
        AsyncClient: Async HTTP client for API testing
    """
    from donations.api.deps import get_db, get_gateway_client, get_mailer, get_settings

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        """Override database dependency to use test database."""
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_gateway_client] = lambda: gateway_client
    app.dependency_overrides[get_mailer] = lambda: mailer

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    # Clean up
    app.dependency_overrides.clear()
