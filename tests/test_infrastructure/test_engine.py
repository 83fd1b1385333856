"""Tests for engine construction and the settings-driven lifecycle hooks."""

from __future__ import annotations

import pytest
from sqlalchemy import inspect
from sqlalchemy.pool import StaticPool

from p2p_escrow.config import get_settings
from p2p_escrow.infrastructure.database import engine as db_engine


@pytest.fixture
def sqlite_settings(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


async def test_in_memory_sqlite_shares_one_connection() -> None:
    engine = db_engine.build_engine("sqlite+aiosqlite:///:memory:")
    try:
        assert isinstance(engine.pool, StaticPool)
    finally:
        await engine.dispose()


async def test_init_and_close_db(sqlite_settings) -> None:
    await db_engine.init_db()
    try:
        engine = db_engine._get_engine()
        async with engine.connect() as conn:
            tables = await conn.run_sync(lambda sync: inspect(sync).get_table_names())
        assert {"escrows", "escrow_events", "ledger_accounts"} <= set(tables)
    finally:
        await db_engine.close_db()
    assert db_engine._engine is None
    assert db_engine._session_factory is None
