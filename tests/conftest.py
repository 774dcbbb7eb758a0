"""
Pytest configuration and fixtures for TechHub tests.

Provides:
- Async test database with SQLite (file-backed, so concurrent sessions get
  their own connections)
- Test client for API testing
- Factory fixtures for creating test data
"""

import uuid
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from techhub.config import DeliveryConfig, RetentionConfig, get_settings
from techhub.core.database import get_db, get_session_factory
from techhub.core.datetime_utils import utc_now
from techhub.main import app
from techhub.models import Base, DeliveryTask, IdempotencyRecord, NewsletterIssue
from techhub.models.user import Session, User

@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """Create async test database engine."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
        connect_args={"timeout": 5},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def db_session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test database."""
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(db_session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests."""
    async with db_session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def client(db_session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client with database override."""

    async def override_get_db():
        async with db_session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: db_session_factory

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def admin_user(user_factory) -> User:
    return await user_factory(email="admin@example.com", is_admin=True)


@pytest_asyncio.fixture
async def admin_client(client: AsyncClient, admin_user: User, auth_session_factory) -> AsyncClient:
    """Test client logged in as an admin."""
    session = await auth_session_factory(admin_user)
    client.cookies.set("session_id", str(session.id))
    return client


@pytest.fixture
def delivery_config() -> DeliveryConfig:
    """Delivery settings with the production defaults."""
    return DeliveryConfig({})


@pytest.fixture
def retention_config() -> RetentionConfig:
    return RetentionConfig({})


@pytest.fixture(autouse=True)
def no_resend_api_key(monkeypatch):
    """Keep tests away from the real email provider."""
    monkeypatch.setenv("RESEND_API_KEY", "")
    monkeypatch.setenv("DEBUG", "false")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# ============================================================================
# Factory Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def user_factory(db_session: AsyncSession):
    """Factory for creating test users. Rows are committed so every session sees them."""

    async def _create_user(
        email: str | None = None,
        name: str = "Test User",
        is_activated: bool = True,
        is_subscribed: bool = False,
        is_admin: bool = False,
    ) -> User:
        if email is None:
            email = f"test-{uuid.uuid4().hex[:8]}@example.com"

        user = User(
            email=email,
            name=name,
            is_activated=is_activated,
            is_subscribed=is_subscribed,
            is_admin=is_admin,
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _create_user


@pytest_asyncio.fixture
async def subscriber_factory(user_factory):
    """Factory for activated, subscribed users."""

    async def _create_subscriber(email: str | None = None) -> User:
        return await user_factory(email=email, is_subscribed=True)

    return _create_subscriber


@pytest_asyncio.fixture
async def auth_session_factory(db_session: AsyncSession, user_factory):
    """Factory for creating login sessions."""

    async def _create_session(user: User | None = None, expired: bool = False) -> Session:
        if user is None:
            user = await user_factory()

        session = Session(
            user_id=user.id,
            expires_at=utc_now() + timedelta(days=-1 if expired else 30),
        )
        db_session.add(session)
        await db_session.commit()
        return session

    return _create_session


@pytest_asyncio.fixture
async def issue_factory(db_session: AsyncSession):
    """Factory for creating newsletter issues."""

    async def _create_issue(
        title: str = "Test Issue",
        html_content: str = "<p>Test issue</p>",
        text_content: str = "Test issue",
        created_at: datetime | None = None,
    ) -> NewsletterIssue:
        issue = NewsletterIssue(
            id=uuid.uuid4(),
            title=title,
            html_content=html_content,
            text_content=text_content,
            created_at=created_at or utc_now(),
        )
        db_session.add(issue)
        await db_session.commit()
        return issue

    return _create_issue


@pytest_asyncio.fixture
async def task_factory(db_session: AsyncSession, issue_factory):
    """Factory for creating delivery tasks (due immediately by default)."""

    async def _create_task(
        issue: NewsletterIssue | None = None,
        recipient_email: str | None = None,
        retry_count: int = 0,
        execute_after: datetime | None = None,
    ) -> DeliveryTask:
        if issue is None:
            issue = await issue_factory()
        if recipient_email is None:
            recipient_email = f"reader-{uuid.uuid4().hex[:8]}@example.com"

        task = DeliveryTask(
            newsletter_issue_id=issue.id,
            recipient_email=recipient_email,
            retry_count=retry_count,
            execute_after=execute_after or utc_now() - timedelta(seconds=1),
        )
        db_session.add(task)
        await db_session.commit()
        return task

    return _create_task


@pytest_asyncio.fixture
async def idempotency_record_factory(db_session: AsyncSession):
    """Factory for idempotency records, completed unless told otherwise."""

    async def _create_record(
        user: User,
        key: str = "key-1",
        complete: bool = True,
        created_at: datetime | None = None,
    ) -> IdempotencyRecord:
        record = IdempotencyRecord(
            user_id=user.id,
            idempotency_key=key,
            created_at=created_at or utc_now(),
        )
        if complete:
            record.response_status_code = 200
            record.response_headers = [["content-length", "0"]]
            record.response_body = b""
        db_session.add(record)
        await db_session.commit()
        return record

    return _create_record
