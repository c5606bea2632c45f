"""
Базовый класс для периодических воркеров.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, List, Optional

from src.common.logger import log_info, log_error, log_warning
from src.common.constants import TypeMsg


class BaseWorker(ABC):
    """
    Базовый класс для воркеров, выполняющих run_once по таймеру.

    Тики не перекрываются: если предыдущий проход ещё идёт, очередной
    тик пропускается с предупреждением. stop() не прерывает текущий
    проход, а ждёт его завершения.
    """

    def __init__(self, interval: float, run_on_startup: bool = False) -> None:
        """
        Инициализирует воркер.

        Args:
            interval: Период запуска в секундах
            run_on_startup: Выполнить проход сразу после старта
        """
        self.interval = interval
        self.run_on_startup = run_on_startup
        self._running = False
        self._tasks: List[asyncio.Task] = []
        self._stop_event = asyncio.Event()
        self._run_lock = asyncio.Lock()
        self.skipped_ticks = 0
        self.last_result: Any = None

    @property
    @abstractmethod
    def name(self) -> str:
        """Имя воркера."""
        pass

    @abstractmethod
    async def run_once(self) -> Any:
        """Один проход воркера."""
        pass

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_busy(self) -> bool:
        """Идёт ли сейчас проход."""
        return self._run_lock.locked()

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    async def start(self) -> None:
        """Запускает цикл тиков в фоне."""
        if self._running:
            return

        self._running = True
        self._stop_event.clear()
        self._tasks.append(asyncio.create_task(self._loop(), name=f"worker-{self.name}"))
        await log_info(
            f"Воркер {self.name} запущен (интервал {self.interval} с)",
            type_msg=TypeMsg.INFO,
        )

    async def stop(self, timeout: Optional[float] = None) -> None:
        """
        Останавливает воркер.
        Текущий проход дорабатывает; по истечении timeout задача отменяется.
        """
        if not self._running:
            return

        self._running = False
        self._stop_event.set()

        if self._tasks:
            done, pending = await asyncio.wait(self._tasks, timeout=timeout)
            for task in pending:
                task.cancel()
            if pending:
                await log_warning(f"Воркер {self.name} не завершился за {timeout} с, задача отменена")
                await asyncio.gather(*pending, return_exceptions=True)

        self._tasks.clear()
        await log_info(f"Воркер {self.name} остановлен", type_msg=TypeMsg.INFO)

    async def tick(self) -> bool:
        """
        Выполняет проход, если предыдущий уже закончился.

        Returns:
            False, если тик пропущен
        """
        if self._run_lock.locked():
            self.skipped_ticks += 1
            await log_warning(f"Воркер {self.name}: предыдущий проход ещё выполняется, тик пропущен")
            return False

        async with self._run_lock:
            try:
                self.last_result = await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                await log_error(f"Ошибка в воркере {self.name}: {e}", exc_info=True)
        return True

    async def _loop(self) -> None:
        if self.run_on_startup:
            await self._spawn_tick()

        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                await self._spawn_tick()

        # Дожидаемся прохода, начатого до остановки
        active = [t for t in self._tasks if t is not asyncio.current_task() and not t.done()]
        if active:
            await asyncio.gather(*active, return_exceptions=True)

    async def _spawn_tick(self) -> None:
        """Запускает тик отдельной задачей, чтобы таймер не ждал долгий проход."""
        self._tasks = [t for t in self._tasks if not t.done()]
        self._tasks.append(asyncio.create_task(self.tick(), name=f"worker-{self.name}-tick"))
        await asyncio.sleep(0)
