# src/infra/database.py
"""
Пул соединений PostgreSQL для репозитория подписок.

Обрывы соединения повторяются с линейной задержкой, ошибки SQL
пробрасываются сразу. Схема из migrations/init.sql применяется при старте
под advisory-локом. Экземпляр создаётся явно и передаётся зависимым компонентам.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Awaitable, Callable, TypeVar

import asyncpg
from asyncpg import Connection, Pool, Record

from src.common.logger import log_error, log_info, log_warning
from src.common.constants import TypeMsg

T = TypeVar("T")

# Произвольный ID advisory-лока для миграций
SCHEMA_LOCK_ID = 734_120_915

# Ошибки, после которых запрос имеет смысл повторить
RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (
    asyncpg.PostgresConnectionError,
    asyncpg.InterfaceError,
    ConnectionRefusedError,
    OSError,
)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    attempts: int = 3,
    delay: float = 1.0,
) -> T:
    """
    Выполняет operation, повторяя её при обрыве соединения.

    Args:
        operation: Корутинная функция без аргументов
        attempts: Сколько всего попыток
        delay: Задержка перед второй попыткой, дальше растёт линейно
    """
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except RETRYABLE_ERRORS as e:
            if attempt == attempts:
                await log_error(f"PostgreSQL недоступен после {attempts} попыток: {e}")
                raise
            await log_warning(f"PostgreSQL: обрыв соединения, попытка {attempt}/{attempts}: {e}")
            await asyncio.sleep(delay * attempt)
    raise RuntimeError("attempts должно быть больше нуля")


class DatabaseManager:
    """
    Пул соединений к PostgreSQL.

    execute/fetch/fetchrow/fetchval берут соединение из пула на один запрос
    и повторяют запрос при обрыве соединения.
    """

    def __init__(self, retry_attempts: int = 3, retry_delay: float = 1.0) -> None:
        self._pool: Pool | None = None
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay

    @property
    def pool(self) -> Pool:
        if self._pool is None:
            raise RuntimeError("Пул соединений не инициализирован. Вызовите connect() сначала.")
        return self._pool

    @property
    def is_connected(self) -> bool:
        return self._pool is not None

    async def connect(self, dsn: str, min_size: int = 2, max_size: int = 10, command_timeout: int = 60) -> None:
        """Создаёт пул. Повторный вызов ничего не делает."""
        if self._pool is not None:
            return

        await log_info("Подключение к PostgreSQL...", type_msg=TypeMsg.INFO)
        self._pool = await with_retry(
            lambda: asyncpg.create_pool(
                dsn=dsn,
                min_size=min_size,
                max_size=max_size,
                command_timeout=command_timeout,
            ),
            self.retry_attempts,
            self.retry_delay,
        )
        await log_info("Пул PostgreSQL создан", type_msg=TypeMsg.INFO)

    async def disconnect(self) -> None:
        if self._pool is None:
            return
        pool, self._pool = self._pool, None
        await pool.close()
        await log_info("Пул PostgreSQL закрыт", type_msg=TypeMsg.INFO)

    @asynccontextmanager
    async def acquire(self) -> AsyncGenerator[Connection, None]:
        async with self.pool.acquire() as connection:
            yield connection

    async def _run(self, method: str, query: str, *args: Any, **kwargs: Any) -> Any:
        async def operation() -> Any:
            async with self.acquire() as conn:
                return await getattr(conn, method)(query, *args, **kwargs)

        return await with_retry(operation, self.retry_attempts, self.retry_delay)

    async def execute(self, query: str, *args: Any) -> str:
        """Возвращает статус команды, например "UPDATE 1"."""
        return await self._run("execute", query, *args)

    async def fetch(self, query: str, *args: Any) -> list[Record]:
        return await self._run("fetch", query, *args)

    async def fetchrow(self, query: str, *args: Any) -> Record | None:
        return await self._run("fetchrow", query, *args)

    async def fetchval(self, query: str, *args: Any, column: int = 0) -> Any:
        return await self._run("fetchval", query, *args, column=column)

    async def health_check(self) -> bool:
        try:
            return await self.fetchval("SELECT 1") == 1
        except (asyncpg.PostgresError, RuntimeError, *RETRYABLE_ERRORS) as e:
            await log_error(f"Health check PostgreSQL failed: {e}")
            return False

    async def apply_schema(self) -> None:
        """
        Применяет migrations/init.sql.
        Advisory-лок не даёт API и планировщику применять схему одновременно.
        """
        from src.config.loader import get_project_root

        schema_path = get_project_root() / "migrations" / "init.sql"
        if not schema_path.exists():
            await log_error(f"Файл схемы БД не найден: {schema_path}")
            return

        schema_sql = schema_path.read_text(encoding="utf-8")

        await log_info("Применение схемы БД...", type_msg=TypeMsg.INFO)
        try:
            async with self.acquire() as conn:
                async with conn.transaction():
                    await conn.execute("SELECT pg_advisory_xact_lock($1)", SCHEMA_LOCK_ID)
                    await conn.execute(schema_sql)
        except asyncpg.PostgresError as e:
            # Гонка при одновременном старте нескольких процессов
            if "deadlock detected" in str(e) or "already exists" in str(e):
                await log_warning(f"Игнорируем ошибку инициализации схемы: {e}")
                return
            await log_error(f"Ошибка при инициализации схемы БД: {e}")
            raise

        await log_info("Схема БД применена", type_msg=TypeMsg.INFO)


async def init_db() -> DatabaseManager:
    """Создаёт менеджер БД по настройкам из конфигурации и применяет схему."""
    from src.config import settings

    db = DatabaseManager(
        retry_attempts=settings.database.DB_RETRY_ATTEMPTS,
        retry_delay=settings.database.DB_RETRY_DELAY,
    )
    await db.connect(
        dsn=settings.database.dsn,
        min_size=settings.database.DB_MIN_POOL_SIZE,
        max_size=settings.database.DB_MAX_POOL_SIZE,
        command_timeout=settings.database.DB_COMMAND_TIMEOUT,
    )
    await log_info(
        f"PostgreSQL подключён: {settings.database.DB_HOST}:{settings.database.DB_PORT}/{settings.database.DB_NAME}",
        type_msg=TypeMsg.INFO,
    )
    await db.apply_schema()
    return db


async def close_db(db: DatabaseManager) -> None:
    await db.disconnect()
