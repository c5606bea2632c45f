# tests/core/test_subscriptions_repository.py
"""
Тесты репозитория подписок (SQL поверх мока DatabaseManager).
"""

from __future__ import annotations

import json
from datetime import date
from unittest.mock import AsyncMock

import asyncpg
import pytest

from src.common.constants import Frequency, SubscriptionAction, SubscriptionStatus
from src.common.exceptions import PersistenceError
from src.core.subscriptions.models import ScheduleSpec, SubscriptionFilter, SubscriptionLog
from src.core.subscriptions.repository import SubscriptionRepository


@pytest.fixture
def repository(mock_db: AsyncMock) -> SubscriptionRepository:
    return SubscriptionRepository(mock_db)


class TestRead:
    """Тесты чтения."""

    @pytest.mark.asyncio
    async def test_get_by_id_maps_row(self, repository, mock_db, sample_subscription_row) -> None:
        mock_db.fetchrow.return_value = sample_subscription_row

        result = await repository.get_by_id("sub-1")

        assert result is not None
        assert result.id == "sub-1"
        assert result.schedule.frequency == Frequency.WEEKLY
        assert result.schedule.days_of_week == ["Mon", "Wed"]
        assert result.price == 50.0
        assert result.status == SubscriptionStatus.ACTIVE
        assert mock_db.fetchrow.call_args.args[1] == "sub-1"

    @pytest.mark.asyncio
    async def test_get_by_id_missing(self, repository, mock_db) -> None:
        mock_db.fetchrow.return_value = None
        assert await repository.get_by_id("missing") is None

    @pytest.mark.asyncio
    async def test_list_filtered_builds_where(self, repository, mock_db, sample_subscription_row) -> None:
        mock_db.fetch.return_value = [sample_subscription_row]
        criteria = SubscriptionFilter(status=SubscriptionStatus.ACTIVE, cleaner_id="cleaner-7")

        result = await repository.list_filtered(criteria, limit=10, offset=20)

        query = mock_db.fetch.call_args.args[0]
        params = mock_db.fetch.call_args.args[1:]
        assert "status = $1" in query
        assert "cleaner_id = $2" in query
        assert "user_id" not in query.split("FROM subscriptions")[1]
        assert "LIMIT $3 OFFSET $4" in query
        assert params == ("active", "cleaner-7", 10, 20)
        assert len(result) == 1

    @pytest.mark.asyncio
    async def test_empty_filter_has_no_where(self, repository, mock_db) -> None:
        mock_db.fetchval.return_value = 3

        total = await repository.count_filtered(SubscriptionFilter())

        assert total == 3
        assert "WHERE" not in mock_db.fetchval.call_args.args[0]

    @pytest.mark.asyncio
    async def test_list_active_with_cursor(self, repository, mock_db) -> None:
        await repository.list_active_with_cursor()

        query = mock_db.fetch.call_args.args[0]
        assert "next_planned_date IS NOT NULL" in query
        assert mock_db.fetch.call_args.args[1] == "active"

    @pytest.mark.asyncio
    async def test_list_ending_from(self, repository, mock_db) -> None:
        await repository.list_ending_from(
            date(2025, 6, 4), (SubscriptionStatus.ACTIVE, SubscriptionStatus.EXPIRED)
        )

        query = mock_db.fetch.call_args.args[0]
        assert "status = ANY($1::text[])" in query
        assert "end_date >= $2" in query
        assert mock_db.fetch.call_args.args[1:] == (["active", "expired"], date(2025, 6, 4))


class TestWrite:
    """Тесты записи."""

    @pytest.mark.asyncio
    async def test_create_passes_schedule_columns(
        self, repository, mock_db, sample_subscription, sample_subscription_row
    ) -> None:
        mock_db.fetchrow.return_value = sample_subscription_row

        created = await repository.create(sample_subscription)

        params = mock_db.fetchrow.call_args.args[1:]
        assert params[0] == "sub-1"
        assert params[6] == "weekly"
        assert params[7] == ["Mon", "Wed"]
        assert params[8] == []
        assert params[10] == "active"
        assert created.id == "sub-1"

    @pytest.mark.asyncio
    async def test_advance_plain(self, repository, mock_db) -> None:
        mock_db.fetchrow.return_value = None

        result = await repository.advance("sub-1", date(2025, 6, 9))

        query = mock_db.fetchrow.call_args.args[0]
        params = mock_db.fetchrow.call_args.args[1:]
        assert result is None
        assert "IS DISTINCT FROM $2::date" in query
        assert "$5" not in query
        assert params == ("sub-1", date(2025, 6, 9), "active", "expired")

    @pytest.mark.asyncio
    async def test_advance_compare_and_swap(self, repository, mock_db, sample_subscription_row) -> None:
        mock_db.fetchrow.return_value = {**sample_subscription_row, "next_planned_date": date(2025, 6, 9)}

        result = await repository.advance("sub-1", date(2025, 6, 9), expected=date(2025, 6, 2))

        query = mock_db.fetchrow.call_args.args[0]
        params = mock_db.fetchrow.call_args.args[1:]
        assert "next_planned_date IS NOT DISTINCT FROM $5::date" in query
        assert params[-1] == date(2025, 6, 2)
        assert result.next_planned_date == date(2025, 6, 9)

    @pytest.mark.asyncio
    async def test_advance_expected_none(self, repository, mock_db) -> None:
        """expected=None означает «курсор пуст», а не «без проверки»."""
        await repository.advance("sub-1", None, expected=None)

        params = mock_db.fetchrow.call_args.args[1:]
        assert len(params) == 5
        assert params[-1] is None

    @pytest.mark.asyncio
    async def test_update_status_requires_expected(self, repository, mock_db) -> None:
        await repository.update_status("sub-1", SubscriptionStatus.CANCELLED, SubscriptionStatus.ACTIVE)

        assert "status = $3" in mock_db.fetchrow.call_args.args[0]
        assert mock_db.fetchrow.call_args.args[1:] == ("sub-1", "cancelled", "active")

    @pytest.mark.asyncio
    async def test_update_schedule(self, repository, mock_db) -> None:
        schedule = ScheduleSpec(frequency=Frequency.BIWEEKLY, days_of_week=["Tue"], week_numbers=[1, 3])

        await repository.update_schedule("sub-1", schedule, date(2025, 6, 3))

        assert mock_db.fetchrow.call_args.args[1:] == (
            "sub-1", "biweekly", ["Tue"], [1, 3], date(2025, 6, 3), "active",
        )

    @pytest.mark.asyncio
    async def test_extend_checks_current_end(self, repository, mock_db) -> None:
        await repository.extend("sub-1", date(2025, 6, 30), date(2025, 7, 31))

        assert "end_date = $2" in mock_db.fetchrow.call_args.args[0]
        assert mock_db.fetchrow.call_args.args[1:] == (
            "sub-1", date(2025, 6, 30), date(2025, 7, 31), "active",
        )

    @pytest.mark.asyncio
    async def test_add_log_serializes_details(self, repository, mock_db) -> None:
        entry = SubscriptionLog(
            subscription_id="sub-1",
            client_id="user-1",
            action=SubscriptionAction.EXTENDED,
            details={"end_date": date(2025, 7, 31), "new_cleanings": 9},
        )

        await repository.add_log(entry)

        params = mock_db.execute.call_args.args[1:]
        assert params[2] == "extended"
        assert json.loads(params[3]) == {"end_date": "2025-07-31", "new_cleanings": 9}


class TestErrors:
    """Ошибки драйвера превращаются в PersistenceError."""

    @pytest.mark.asyncio
    async def test_postgres_error(self, repository, mock_db) -> None:
        mock_db.fetchrow.side_effect = asyncpg.PostgresError("boom")

        with pytest.raises(PersistenceError):
            await repository.get_by_id("sub-1")

    @pytest.mark.asyncio
    async def test_connection_error(self, repository, mock_db) -> None:
        mock_db.fetch.side_effect = ConnectionRefusedError("refused")

        with pytest.raises(PersistenceError):
            await repository.list_active_with_cursor()
