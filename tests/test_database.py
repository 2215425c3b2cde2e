"""
Tests for engine construction
"""

from sqlalchemy.pool import StaticPool

from opsportal.core.database import build_engine, normalize_database_url


def test_plain_postgres_url_gets_async_driver():
    assert normalize_database_url("postgresql://u:p@db:5432/portal") == "postgresql+asyncpg://u:p@db:5432/portal"
    assert normalize_database_url("postgresql+asyncpg://db/portal") == "postgresql+asyncpg://db/portal"


async def test_in_memory_sqlite_shares_one_connection():
    for url in ("sqlite+aiosqlite://", "sqlite+aiosqlite:///:memory:"):
        engine = build_engine(url)
        assert isinstance(engine.pool, StaticPool)
        await engine.dispose()
