#!/usr/bin/env python3
# main.py
"""
Главная точка входа сервиса подписок.
Запускает HTTP API, планировщик или оба компонента в одном процессе.
"""

from __future__ import annotations

import asyncio
import signal
import sys

from src.config import settings
from src.common.logger import setup_logging, log_info, log_error
from src.common.constants import TypeMsg


VALID_MODES = ("api", "scheduler", "all")

# Глобальный флаг для graceful shutdown
_shutdown_event: asyncio.Event | None = None


def setup_signal_handlers() -> None:
    """Настраивает обработчики сигналов для graceful shutdown."""
    global _shutdown_event
    _shutdown_event = asyncio.Event()

    def signal_handler(sig: int) -> None:
        """Обработчик сигналов SIGINT и SIGTERM."""
        if _shutdown_event and not _shutdown_event.is_set():
            print(f"\nПолучен сигнал остановки (sig={sig}), завершаем работу...")
            _shutdown_event.set()

    try:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))
    except NotImplementedError:
        # Windows не поддерживает add_signal_handler
        signal.signal(signal.SIGINT, lambda s, f: signal_handler(s))
        signal.signal(signal.SIGTERM, lambda s, f: signal_handler(s))


async def run_api(with_scheduler: bool = False) -> None:
    """Запускает HTTP API (и планировщик в том же процессе, если with_scheduler)."""
    import uvicorn

    from src.services.subscriptions.app import create_app

    await log_info(
        f"Запуск Subscription Service на порту {settings.deployment.SUBSCRIPTIONS_SERVICE_PORT}...",
        type_msg=TypeMsg.INFO,
    )

    config = uvicorn.Config(
        create_app(with_scheduler=with_scheduler),
        host=settings.deployment.SUBSCRIPTIONS_SERVICE_HOST,
        port=settings.deployment.SUBSCRIPTIONS_SERVICE_PORT,
        log_level="debug" if settings.system.DEBUG else "info",
    )
    server = uvicorn.Server(config)

    # uvicorn сам ставит обработчики сигналов, наш флаг дублирует их для общего выхода
    serve_task = asyncio.create_task(server.serve())
    stop_task = asyncio.create_task(_shutdown_event.wait())
    done, _ = await asyncio.wait({serve_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)

    if stop_task in done:
        server.should_exit = True
        await serve_task
    else:
        stop_task.cancel()


async def run_scheduler() -> None:
    """Запускает только ежедневный планировщик."""
    from src.worker.runner import run_scheduler as run_scheduler_worker

    await run_scheduler_worker(stop_event=_shutdown_event)


async def main(mode: str | None = None) -> None:
    """
    Главная функция запуска.

    Args:
        mode: Режим запуска (api, scheduler, all).
              Если None, берётся COMPONENT_MODE из конфига.
    """
    setup_logging()
    setup_signal_handlers()

    if mode is None:
        mode = settings.system.COMPONENT_MODE or "api"
    if mode not in VALID_MODES:
        await log_error(f"Неизвестный режим '{mode}', ожидается один из {VALID_MODES}")
        sys.exit(1)

    await log_info(
        f"{settings.system.PROJECT_NAME} v{settings.system.VERSION}: запуск в режиме '{mode}'",
        type_msg=TypeMsg.INFO,
    )

    try:
        if mode == "api":
            await run_api(with_scheduler=False)
        elif mode == "scheduler":
            await run_scheduler()
        elif mode == "all":
            await run_api(with_scheduler=settings.scheduler.SCHEDULER_ENABLED)
    except asyncio.CancelledError:
        await log_info("Получен сигнал остановки", type_msg=TypeMsg.INFO)
    finally:
        await log_info("Приложение остановлено", type_msg=TypeMsg.INFO)


def print_usage() -> None:
    """Выводит справку по использованию."""
    print("""
Subscription Service: подписки на регулярную уборку

Использование:
    python main.py [режим]

Режимы:
    api        - HTTP API (:8092)
    scheduler  - только ежедневный планировщик
    all        - API и планировщик в одном процессе

Без аргумента режим берётся из COMPONENT_MODE в config/config.json.
    """)


if __name__ == "__main__":
    mode = None

    if len(sys.argv) > 1:
        arg = sys.argv[1].lower()
        if arg in ("--help", "-h"):
            print_usage()
            sys.exit(0)
        elif arg in VALID_MODES:
            mode = arg
        else:
            print(f"Ошибка: неизвестный режим '{arg}'")
            print_usage()
            sys.exit(1)

    try:
        asyncio.run(main(mode))
    except KeyboardInterrupt:
        pass
