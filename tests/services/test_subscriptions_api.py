# tests/services/test_subscriptions_api.py
"""
Тесты REST API подписок.
Инфраструктура не поднимается: в app.state кладутся сервис поверх
репозитория в памяти и мок сервиса авторизации.
"""

from __future__ import annotations

from datetime import date
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from src.common.exceptions import AuthenticationError, CollaboratorUnavailable
from src.core.subscriptions.models import AuthContext
from src.core.subscriptions.service import SubscriptionService
from src.services.subscriptions.app import create_app

USERS = {
    "client-token": AuthContext(user_id="user-1", role="user"),
    "other-token": AuthContext(user_id="user-2", role="user"),
    "manager-token": AuthContext(user_id="manager-1", role="manager"),
}


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def payments() -> AsyncMock:
    client = AsyncMock()
    client.charge_subscription = AsyncMock(return_value={"status": "paid"})
    return client


@pytest.fixture
def auth_client() -> AsyncMock:
    async def validate(token: str) -> AuthContext:
        if token not in USERS:
            raise AuthenticationError("Недействительный токен")
        return USERS[token].model_copy(update={"token": token})

    client = AsyncMock()
    client.validate = AsyncMock(side_effect=validate)
    return client


@pytest.fixture
def client(fake_repository, mock_notifier, payments, auth_client, fixed_clock, sample_subscription) -> TestClient:
    fake_repository.put(sample_subscription)
    app = create_app(init_infra=False, with_scheduler=False)
    app.state.subscription_service = SubscriptionService(
        fake_repository, notifier=mock_notifier, payments=payments, clock=fixed_clock
    )
    app.state.auth_client = auth_client
    app.state.redis = None
    return TestClient(app)


class TestAuth:
    """Тесты аутентификации."""

    def test_missing_header(self, client: TestClient) -> None:
        response = client.get("/api/subscriptions/my")

        assert response.status_code == 401
        assert response.json()["error_code"] == "unauthorized"

    def test_invalid_token(self, client: TestClient) -> None:
        response = client.get("/api/subscriptions/my", headers=auth("bogus"))
        assert response.status_code == 401

    def test_auth_service_down(self, client: TestClient, auth_client: AsyncMock) -> None:
        auth_client.validate = AsyncMock(side_effect=CollaboratorUnavailable("auth_service", "down"))

        response = client.get("/api/subscriptions/my", headers=auth("client-token"))

        assert response.status_code == 502


class TestCreate:
    """Тесты POST /api/subscriptions."""

    def test_create(self, client: TestClient, fake_repository) -> None:
        response = client.post(
            "/api/subscriptions",
            headers=auth("client-token"),
            json={
                "order_id": "order-9",
                "start_date": "2025-06-02",
                "end_date": "2025-06-30",
                "schedule": {"frequency": "biweekly", "days_of_week": ["Tue"], "week_numbers": [1, 3]},
                "price": 40,
            },
        )

        assert response.status_code == 201
        created = fake_repository.rows[response.json()["id"]]
        assert created.user_id == "user-1"
        assert created.next_planned_date == date(2025, 6, 2)

    def test_invalid_schedule(self, client: TestClient) -> None:
        response = client.post(
            "/api/subscriptions",
            headers=auth("client-token"),
            json={
                "order_id": "order-9",
                "start_date": "2025-06-02",
                "end_date": "2025-06-30",
                "schedule": {"frequency": "weekly", "days_of_week": ["Someday"]},
                "price": 40,
            },
        )

        assert response.status_code == 400
        assert response.json()["error_code"] == "validation_error"

    def test_malformed_body(self, client: TestClient) -> None:
        response = client.post("/api/subscriptions", headers=auth("client-token"), json={"price": 40})
        assert response.status_code == 400


class TestRead:
    """Тесты чтения."""

    def test_get_own(self, client: TestClient) -> None:
        response = client.get("/api/subscriptions/sub-1", headers=auth("client-token"))

        assert response.status_code == 200
        body = response.json()
        assert body["id"] == "sub-1"
        assert body["next_planned_date"] == "2025-06-02"
        assert body["schedule"]["days_of_week"] == ["Mon", "Wed"]

    def test_get_foreign_forbidden(self, client: TestClient) -> None:
        response = client.get("/api/subscriptions/sub-1", headers=auth("other-token"))
        assert response.status_code == 403

    def test_staff_reads_any(self, client: TestClient) -> None:
        response = client.get("/api/subscriptions/sub-1", headers=auth("manager-token"))
        assert response.status_code == 200

    def test_not_found(self, client: TestClient) -> None:
        response = client.get("/api/subscriptions/missing", headers=auth("client-token"))

        assert response.status_code == 404
        assert response.json()["error_code"] == "not_found"

    def test_my(self, client: TestClient) -> None:
        assert [s["id"] for s in client.get("/api/subscriptions/my", headers=auth("client-token")).json()] == ["sub-1"]
        assert client.get("/api/subscriptions/my", headers=auth("other-token")).json() == []

    def test_list_staff_only(self, client: TestClient) -> None:
        response = client.get("/api/subscriptions", headers=auth("client-token"))
        assert response.status_code == 403

    def test_list_with_filters(self, client: TestClient, fake_repository, make_subscription) -> None:
        fake_repository.put(make_subscription(id="sub-2", user_id="user-2", cleaner_id="cleaner-7"))

        response = client.get(
            "/api/subscriptions",
            headers=auth("manager-token"),
            params={"status": "active", "cleaner_id": "cleaner-7"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        assert body["items"][0]["id"] == "sub-2"
        assert body["page"] == 1

    def test_list_bad_page(self, client: TestClient) -> None:
        response = client.get("/api/subscriptions", headers=auth("manager-token"), params={"page": 0})
        assert response.status_code == 400


class TestModify:
    """Тесты изменения, продления и отмены."""

    def test_extend(self, client: TestClient, payments: AsyncMock) -> None:
        """Продление до 9 июля добавляет визиты 2, 7 и 9 июля."""
        response = client.post(
            "/api/subscriptions/extend/sub-1",
            headers=auth("client-token"),
            json={"end_date": "2025-07-09"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["new_cleanings"] == 3
        assert body["end_date"] == "2025-07-09"
        assert payments.charge_subscription.call_args.kwargs["amount"] == 150

    def test_extend_payment_failed(self, client: TestClient, payments: AsyncMock, fake_repository) -> None:
        payments.charge_subscription = AsyncMock(side_effect=CollaboratorUnavailable("payment_service", "declined"))

        response = client.post(
            "/api/subscriptions/extend/sub-1",
            headers=auth("client-token"),
            json={"end_date": "2025-07-09"},
        )

        assert response.status_code == 402
        assert fake_repository.rows["sub-1"].end_date == date(2025, 6, 30)

    def test_update_schedule(self, client: TestClient) -> None:
        response = client.put(
            "/api/subscriptions/sub-1",
            headers=auth("client-token"),
            json={"days_of_week": ["Fri"]},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["schedule"]["days_of_week"] == ["Fri"]
        assert body["schedule"]["frequency"] == "weekly"
        assert body["next_planned_date"] == "2025-06-06"

    def test_cancel_then_modify(self, client: TestClient) -> None:
        response = client.delete("/api/subscriptions/sub-1", headers=auth("client-token"))

        assert response.status_code == 200
        assert response.json() == {"message": "Подписка отменена", "id": "sub-1", "status": "cancelled"}

        # Повторная отмена идемпотентна, а продление запрещено
        assert client.delete("/api/subscriptions/sub-1", headers=auth("client-token")).status_code == 200
        response = client.post(
            "/api/subscriptions/extend/sub-1",
            headers=auth("client-token"),
            json={"end_date": "2025-07-09"},
        )
        assert response.status_code == 409

    def test_cancel_foreign_forbidden(self, client: TestClient) -> None:
        response = client.delete("/api/subscriptions/sub-1", headers=auth("other-token"))
        assert response.status_code == 403


class TestHealth:
    """Тесты /health."""

    def test_without_dependencies(self, client: TestClient) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["scheduler"] is None
        assert body["uptime_seconds"] >= 0

    def test_degraded(self, client: TestClient) -> None:
        db = AsyncMock()
        db.health_check = AsyncMock(return_value=False)
        client.app.state.db = db
        client.app.state.scheduler = MagicMock(is_running=True)

        body = client.get("/health").json()

        assert body["status"] == "degraded"
        assert body["dependencies"] == {"postgres": "unhealthy"}
        assert body["scheduler"] == "running"
