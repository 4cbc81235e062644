"""Tests for engine construction and the request session dependency."""

import pytest

from tollgate.config import settings
from tollgate.db import session as db_session
from tollgate.db.session import (
    build_engine,
    close_db,
    get_db,
    get_db_health,
    init_db,
    normalize_database_url,
)


class TestNormalizeDatabaseUrl:
    def test_plain_postgres_gets_asyncpg(self):
        assert (
            normalize_database_url("postgresql://u:p@db:5432/tollgate")
            == "postgresql+asyncpg://u:p@db:5432/tollgate"
        )

    @pytest.mark.parametrize(
        "url",
        ["postgresql+asyncpg://u:p@db/tollgate", "sqlite+aiosqlite:///:memory:"],
    )
    def test_explicit_driver_kept(self, url):
        assert normalize_database_url(url) == url


class TestBuildEngine:
    async def test_postgres_pool_settings(self, monkeypatch):
        monkeypatch.setattr(settings, "database_pool_size", 3)
        monkeypatch.setattr(settings, "database_max_overflow", 1)
        engine = build_engine("postgresql://u:p@db:5432/tollgate")
        try:
            assert engine.dialect.driver == "asyncpg"
            assert engine.pool.size() == 3
        finally:
            await engine.dispose()

    async def test_sqlite_has_no_pool_sizing(self):
        engine = build_engine("sqlite+aiosqlite:///:memory:")
        try:
            assert engine.dialect.name == "sqlite"
        finally:
            await engine.dispose()


class TestLifecycle:
    async def test_get_db_requires_init(self):
        with pytest.raises(RuntimeError):
            await anext(get_db())

    async def test_health_without_engine(self):
        assert await get_db_health() is False

    async def test_init_and_close(self, monkeypatch):
        monkeypatch.setattr(settings, "database_url", "sqlite+aiosqlite:///:memory:")

        await init_db()
        try:
            assert await get_db_health() is True
            sessions = get_db()
            session = await anext(sessions)
            assert session.bind is db_session._engine
            await sessions.aclose()
        finally:
            await close_db()

        assert db_session._engine is None
        assert await get_db_health() is False
