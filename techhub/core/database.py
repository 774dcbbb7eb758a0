import ssl
from collections.abc import AsyncGenerator
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from sqlalchemy import DateTime
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.sql.expression import FunctionElement

from techhub.config import get_settings
from techhub.core.logging import get_logger

logger = get_logger(__name__)

settings = get_settings()


def _split_ssl_params(url: str) -> tuple[str, dict]:
    """
    Strip libpq-only query params that asyncpg rejects.

    Hosted Postgres URLs carry params like sslmode and channel_binding.
    asyncpg doesn't accept them, so SSL is passed via connect_args instead.

    - For local dev (localhost/127.0.0.1/db) and SQLite: no SSL
    - Anything else: SSL with the default context
    """
    parsed = urlparse(url)
    if not parsed.scheme.startswith("postgresql"):
        return url, {}

    params = parse_qs(parsed.query)

    # Remove unsupported asyncpg params
    unsupported = ["sslmode", "channel_binding", "options"]
    for param in unsupported:
        params.pop(param, None)

    new_query = urlencode(params, doseq=True)
    clean_url = urlunparse(parsed._replace(query=new_query))

    hostname = parsed.hostname or ""
    is_local = hostname in ("localhost", "127.0.0.1", "db")

    if is_local:
        return clean_url, {}
    else:
        ssl_context = ssl.create_default_context()
        return clean_url, {"ssl": ssl_context}


clean_url, connect_args = _split_ssl_params(settings.database_url)


engine = create_async_engine(
    clean_url,
    echo=settings.debug,
    pool_pre_ping=True,
    pool_size=5,
    max_overflow=10,
    pool_recycle=280,
    connect_args=connect_args,
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency that provides a database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.bind(error=str(e)).error("database_transaction_rollback")
            await session.rollback()
            raise


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Dependency for code that owns its transactions (publish, worker)."""
    return AsyncSessionLocal


class db_utc_now(FunctionElement):
    """The database server's current time as a naive UTC timestamp.

    Task eligibility is judged against this rather than the host clock so
    that workers on different machines agree on when a task is due.
    """

    type = DateTime()
    inherit_cache = True


@compiles(db_utc_now)
def _db_utc_now_default(element, compiler, **kw):
    return "CURRENT_TIMESTAMP"


@compiles(db_utc_now, "postgresql")
def _db_utc_now_postgresql(element, compiler, **kw):
    return "TIMEZONE('utc', CURRENT_TIMESTAMP)"


@compiles(db_utc_now, "sqlite")
def _db_utc_now_sqlite(element, compiler, **kw):
    # Same text layout as stored DATETIME values, to millisecond precision
    return "STRFTIME('%Y-%m-%d %H:%M:%f', 'now')"
