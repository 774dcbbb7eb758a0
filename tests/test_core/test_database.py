"""Tests for database helpers."""

from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.dialects import postgresql

from techhub.core.database import _split_ssl_params, db_utc_now
from techhub.core.datetime_utils import utc_now


class TestDbUtcNow:
    def test_postgresql_uses_server_clock_in_utc(self):
        sql = str(select(db_utc_now()).compile(dialect=postgresql.dialect()))
        assert "TIMEZONE('utc', CURRENT_TIMESTAMP)" in sql

    @pytest.mark.asyncio
    async def test_sqlite_returns_naive_utc(self, db_session):
        value = (await db_session.execute(select(db_utc_now()))).scalar_one()

        assert value.tzinfo is None
        assert abs(value - utc_now()) < timedelta(seconds=5)


class TestSplitSslParams:
    def test_sqlite_untouched(self):
        url = "sqlite+aiosqlite:///./test.db"
        assert _split_ssl_params(url) == (url, {})

    def test_local_postgres_strips_libpq_params(self):
        url, args = _split_ssl_params(
            "postgresql+asyncpg://u:p@localhost:5432/db?sslmode=require"
        )
        assert url == "postgresql+asyncpg://u:p@localhost:5432/db"
        assert args == {}

    def test_remote_postgres_gets_ssl_context(self):
        url, args = _split_ssl_params(
            "postgresql+asyncpg://u:p@db.example.com/db?sslmode=require&channel_binding=require"
        )
        assert url == "postgresql+asyncpg://u:p@db.example.com/db"
        assert "ssl" in args
