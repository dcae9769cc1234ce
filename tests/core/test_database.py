from __future__ import annotations

import pytest

from app.config import settings
from app.core import database
from app.core.database import async_database_url


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("postgresql://u:p@db:5432/app", "postgresql+asyncpg://u:p@db:5432/app"),
        ("postgresql+psycopg2://u:p@db/app", "postgresql+asyncpg://u:p@db/app"),
        ("postgresql://u:p@db/app?sslmode=require", "postgresql+asyncpg://u:p@db/app?ssl=require"),
        ("sqlite:///./backlinks.db", "sqlite+aiosqlite:///./backlinks.db"),
        ("postgresql+asyncpg://u:p@db/app", "postgresql+asyncpg://u:p@db/app"),
    ],
)
def test_async_database_url(url, expected):
    assert async_database_url(url) == expected


@pytest.mark.asyncio
async def test_health_is_true_without_database(monkeypatch):
    monkeypatch.setattr(settings, "database_url", None)
    monkeypatch.setattr(database, "engine", None)

    await database.init_database()

    assert database.engine is None
    assert await database.check_database_health() is True


@pytest.mark.asyncio
async def test_sqlite_engine_round_trip(monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "database_url", f"sqlite:///{tmp_path / 'ready.db'}")
    monkeypatch.setattr(settings, "debug", False)
    monkeypatch.setattr(database, "engine", None)

    await database.init_database()
    try:
        assert database.engine is not None
        assert await database.check_database_health() is True
    finally:
        await database.dispose_database()

    assert database.engine is None
