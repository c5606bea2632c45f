# tests/infra/test_database.py
"""
Тесты менеджера PostgreSQL.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import asyncpg
import pytest

from src.infra.database import SCHEMA_LOCK_ID, DatabaseManager, with_retry


def make_pool(connection: AsyncMock) -> MagicMock:
    """Пул, у которого acquire() отдаёт один и тот же connection."""

    @asynccontextmanager
    async def acquire():
        yield connection

    pool = MagicMock()
    pool.acquire = acquire
    pool.close = AsyncMock()
    return pool


@pytest.fixture
def connection() -> AsyncMock:
    conn = AsyncMock()

    @asynccontextmanager
    async def transaction():
        yield

    conn.transaction = transaction
    return conn


@pytest.fixture
def db(connection: AsyncMock) -> DatabaseManager:
    manager = DatabaseManager(retry_attempts=2, retry_delay=0)
    manager._pool = make_pool(connection)
    return manager


class TestRetry:
    """Тесты повторов при обрыве соединения."""

    @pytest.mark.asyncio
    async def test_recovers_after_connection_error(self) -> None:
        attempts = []

        async def flaky() -> str:
            attempts.append(1)
            if len(attempts) < 3:
                raise ConnectionRefusedError("refused")
            return "ok"

        assert await with_retry(flaky, attempts=3, delay=0) == "ok"
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_gives_up(self) -> None:
        async def broken() -> None:
            raise OSError("network unreachable")

        with pytest.raises(OSError):
            await with_retry(broken, attempts=2, delay=0)

    @pytest.mark.asyncio
    async def test_sql_errors_not_retried(self) -> None:
        attempts = []

        async def bad_sql() -> None:
            attempts.append(1)
            raise asyncpg.PostgresError("syntax error")

        with pytest.raises(asyncpg.PostgresError):
            await with_retry(bad_sql, attempts=3, delay=0)
        assert len(attempts) == 1

    @pytest.mark.asyncio
    async def test_manager_retries_query(self, db: DatabaseManager, connection: AsyncMock) -> None:
        connection.fetch.side_effect = [OSError("reset by peer"), [{"id": "sub-1"}]]

        rows = await db.fetch("SELECT id FROM subscriptions")

        assert rows == [{"id": "sub-1"}]
        assert connection.fetch.await_count == 2


class TestDatabaseManager:
    """Тесты DatabaseManager."""

    def test_pool_not_initialized(self) -> None:
        manager = DatabaseManager()

        assert manager.is_connected is False
        with pytest.raises(RuntimeError, match="Пул соединений не инициализирован"):
            _ = manager.pool

    @pytest.mark.asyncio
    async def test_connect_creates_pool(self, connection: AsyncMock) -> None:
        manager = DatabaseManager()
        pool = make_pool(connection)

        with patch("src.infra.database.asyncpg.create_pool", new_callable=AsyncMock, return_value=pool) as create:
            await manager.connect(dsn="postgresql://u:p@localhost/db", min_size=1, max_size=3)
            await manager.connect(dsn="postgresql://u:p@localhost/db")

        create.assert_awaited_once()
        assert create.call_args.kwargs["max_size"] == 3
        assert manager.is_connected

    @pytest.mark.asyncio
    async def test_fetchrow_passes_args(self, db: DatabaseManager, connection: AsyncMock) -> None:
        connection.fetchrow.return_value = {"id": "sub-1"}

        row = await db.fetchrow("SELECT * FROM subscriptions WHERE id = $1", "sub-1")

        assert row == {"id": "sub-1"}
        connection.fetchrow.assert_awaited_once_with("SELECT * FROM subscriptions WHERE id = $1", "sub-1")

    @pytest.mark.asyncio
    async def test_health_check(self, db: DatabaseManager, connection: AsyncMock) -> None:
        connection.fetchval.return_value = 1
        assert await db.health_check() is True

        connection.fetchval.side_effect = asyncpg.PostgresError("down")
        assert await db.health_check() is False

    @pytest.mark.asyncio
    async def test_disconnect(self, db: DatabaseManager) -> None:
        pool = db.pool

        await db.disconnect()

        pool.close.assert_awaited_once()
        assert db.is_connected is False

    @pytest.mark.asyncio
    async def test_apply_schema_under_advisory_lock(self, db: DatabaseManager, connection: AsyncMock) -> None:
        await db.apply_schema()

        calls = connection.execute.call_args_list
        assert calls[0].args == ("SELECT pg_advisory_xact_lock($1)", SCHEMA_LOCK_ID)
        assert "CREATE TABLE IF NOT EXISTS subscriptions" in calls[1].args[0]

    @pytest.mark.asyncio
    async def test_apply_schema_ignores_concurrent_creation(
        self, db: DatabaseManager, connection: AsyncMock
    ) -> None:
        connection.execute.side_effect = [None, asyncpg.PostgresError('relation "subscriptions" already exists')]

        await db.apply_schema()
