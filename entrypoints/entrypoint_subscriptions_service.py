#!/usr/bin/env python3
# entrypoint_subscriptions_service.py
"""
Точка входа для Subscription Service.
Порт: 8092
"""

import asyncio
import sys
from pathlib import Path

# Добавляем корневую директорию проекта в путь
project_root = Path(__file__).parent.parent.resolve()
sys.path.insert(0, str(project_root))

import uvicorn

from src.config import settings
from src.common.logger import setup_logging, log_info
from src.common.constants import TypeMsg


async def main() -> None:
    """Запуск Subscription Service."""
    setup_logging()
    await log_info(
        f"Запуск Subscription Service на порту {settings.deployment.SUBSCRIPTIONS_SERVICE_PORT}",
        type_msg=TypeMsg.INFO,
    )

    config = uvicorn.Config(
        "src.services.subscriptions.app:app",
        host=settings.deployment.SUBSCRIPTIONS_SERVICE_HOST,
        port=settings.deployment.SUBSCRIPTIONS_SERVICE_PORT,
        reload=settings.system.DEBUG,
        log_level="debug" if settings.system.DEBUG else "info",
    )

    server = uvicorn.Server(config)
    await server.serve()


if __name__ == "__main__":
    asyncio.run(main())
