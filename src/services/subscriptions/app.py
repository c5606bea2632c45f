# src/services/subscriptions/app.py
"""
FastAPI-приложение сервиса подписок.
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.common.constants import TypeMsg
from src.common.exceptions import SubscriptionServiceError
from src.common.logger import log_error, log_info, log_warning
from src.config import settings
from src.infra.database import init_db, close_db
from src.infra.redis_client import init_redis, close_redis
from src.infra.service_clients import create_service_clients
from src.services.subscriptions.routes import router
from src.shared.models.common import ErrorResponse, HealthStatus
from src.worker.runner import build_dispatcher, build_scheduler, build_service

SERVICE_NAME = "subscription_service"


def _scheduler_in_process() -> bool:
    return settings.system.COMPONENT_MODE == "all" and settings.scheduler.SCHEDULER_ENABLED


def create_app(init_infra: bool = True, with_scheduler: Optional[bool] = None) -> FastAPI:
    """
    Создаёт приложение.

    Args:
        init_infra: Подключать БД, Redis и внешние сервисы в lifespan.
                    Тесты передают False и заполняют app.state сами.
        with_scheduler: Запускать планировщик в этом же процессе
                        (по умолчанию только в режиме all)
    """
    run_scheduler = _scheduler_in_process() if with_scheduler is None else with_scheduler
    started_at = time.monotonic()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if not init_infra:
            yield
            return

        await log_info("Запуск Subscription Service...", type_msg=TypeMsg.INFO)
        db = await init_db()
        redis = await init_redis()
        clients = create_service_clients()
        dispatcher = build_dispatcher(clients["notifications"])
        service = build_service(db, redis, dispatcher, clients["payments"])
        await dispatcher.start()

        app.state.db = db
        app.state.redis = redis
        app.state.auth_client = clients["auth"]
        app.state.subscription_service = service
        app.state.scheduler = None

        if run_scheduler:
            app.state.scheduler = build_scheduler(service, clients["orders"], redis, dispatcher)
            await app.state.scheduler.start()

        try:
            yield
        finally:
            await log_info("Остановка Subscription Service...", type_msg=TypeMsg.INFO)
            if app.state.scheduler is not None:
                await app.state.scheduler.stop()
            await dispatcher.stop()
            for client in clients.values():
                await client.close()
            await close_redis(redis)
            await close_db(db)

    app = FastAPI(
        title="Subscription Service",
        description="Подписки на регулярную уборку и планировщик заказов",
        version=settings.system.VERSION,
        lifespan=lifespan,
    )
    app.include_router(router)

    @app.exception_handler(SubscriptionServiceError)
    async def subscription_error_handler(request: Request, exc: SubscriptionServiceError) -> JSONResponse:
        if exc.status_code >= 500:
            await log_error(
                f"{request.method} {request.url.path}: {exc.message}",
                extra={"error_code": exc.error_code},
            )
        else:
            await log_warning(f"{request.method} {request.url.path}: {exc.status_code} {exc.message}")
        body = ErrorResponse(error_code=exc.error_code, message=exc.message, details=exc.details or None)
        return JSONResponse(status_code=exc.status_code, content=body.model_dump(mode="json"))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        body = ErrorResponse(
            error_code="validation_error",
            message="Некорректный запрос",
            details={"errors": [{"loc": list(e.get("loc", [])), "msg": e.get("msg")} for e in exc.errors()]},
        )
        return JSONResponse(status_code=400, content=body.model_dump(mode="json"))

    @app.get("/health", response_model=HealthStatus)
    async def health_check(request: Request):
        dependencies: dict[str, str] = {}
        db = getattr(request.app.state, "db", None)
        redis = getattr(request.app.state, "redis", None)
        if db is not None:
            dependencies["postgres"] = "healthy" if await db.health_check() else "unhealthy"
        if redis is not None:
            dependencies["redis"] = "healthy" if await redis.health_check() else "unhealthy"

        scheduler = getattr(request.app.state, "scheduler", None)
        status = "healthy" if all(v == "healthy" for v in dependencies.values()) else "degraded"
        return HealthStatus(
            service=SERVICE_NAME,
            status=status,
            version=settings.system.VERSION,
            uptime_seconds=round(time.monotonic() - started_at, 1),
            scheduler=None if scheduler is None else ("running" if scheduler.is_running else "stopped"),
            dependencies=dependencies,
        )

    return app


app = create_app()
