# src/core/subscriptions/schedule.py
"""
Вычисление дат по расписанию подписки.

Чистые функции без зависимостей от инфраструктуры. Диапазоны включительные,
время приводится к UTC и отбрасывается (дневная гранулярность).
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from src.common.constants import (
    Frequency,
    MAX_WEEK_NUMBER,
    MIN_WEEK_NUMBER,
    WEEK_NUMBERS_REQUIRED,
    WEEKDAYS,
)
from src.common.exceptions import ValidationError
from src.core.subscriptions.models import ScheduleSpec

_ONE_DAY = timedelta(days=1)


def to_utc_date(value: date | datetime) -> date:
    """Приводит date/datetime к календарной дате UTC. Наивный datetime считается UTC."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value


def week_of_month(day: date) -> int:
    """Номер недели месяца: дни 1-7 -> 1, 8-14 -> 2, ..., 29-31 -> 5. Не ISO-неделя."""
    return (day.day - 1) // 7 + 1


def weekday_abbr(day: date) -> str:
    return WEEKDAYS[day.weekday()]


def _matches(spec: ScheduleSpec, day: date, days: frozenset[str], weeks: frozenset[int]) -> bool:
    if weekday_abbr(day) not in days:
        return False
    if spec.frequency == Frequency.WEEKLY:
        return True
    return week_of_month(day) in weeks


def next_dates(
    spec: ScheduleSpec,
    start: date | datetime,
    until: date | datetime,
) -> list[date]:
    """
    Возвращает все даты в [start, until], подходящие под расписание.

    Дата подходит, если её день недели есть в days_of_week и, для всех
    периодичностей кроме weekly, номер недели месяца есть в week_numbers.
    Результат отсортирован по возрастанию и не содержит повторов.
    При start > until возвращается пустой список.

    Example:
        >>> spec = ScheduleSpec(frequency="weekly", days_of_week=["Mon", "Wed"])
        >>> next_dates(spec, date(2025, 6, 1), date(2025, 6, 10))
        [datetime.date(2025, 6, 2), datetime.date(2025, 6, 4), datetime.date(2025, 6, 9)]
    """
    current = to_utc_date(start)
    last = to_utc_date(until)

    days = frozenset(spec.days_of_week)
    weeks = frozenset(spec.week_numbers)

    result: list[date] = []
    while current <= last:
        if _matches(spec, current, days, weeks):
            result.append(current)
        current += _ONE_DAY
    return result


def first_date(spec: ScheduleSpec, start: date | datetime, until: date | datetime) -> date | None:
    """Первая подходящая дата в [start, until] или None."""
    dates = next_dates(spec, start, until)
    return dates[0] if dates else None


def count_occurrences(spec: ScheduleSpec, start: date | datetime, until: date | datetime) -> int:
    return len(next_dates(spec, start, until))


def validate_schedule(spec: ScheduleSpec) -> None:
    """
    Проверяет структурную корректность расписания.

    Raises:
        ValidationError: пустые или неизвестные дни недели, номера недель
            вне 1..5 или неверное их количество для периодичности
    """
    if not spec.days_of_week:
        raise ValidationError("days_of_week не может быть пустым")

    unknown = [d for d in spec.days_of_week if d not in WEEKDAYS]
    if unknown:
        raise ValidationError(
            f"Неизвестные дни недели: {', '.join(map(str, unknown))}",
            details={"allowed": list(WEEKDAYS)},
        )

    if spec.frequency == Frequency.WEEKLY:
        return

    required = WEEK_NUMBERS_REQUIRED[spec.frequency]
    if len(spec.week_numbers) != required:
        raise ValidationError(
            f"Для периодичности {spec.frequency.value} требуется ровно {required} номер(а) недели",
            details={"week_numbers": spec.week_numbers},
        )

    out_of_range = [w for w in spec.week_numbers if not MIN_WEEK_NUMBER <= w <= MAX_WEEK_NUMBER]
    if out_of_range:
        raise ValidationError(
            f"Номера недель должны быть в диапазоне {MIN_WEEK_NUMBER}..{MAX_WEEK_NUMBER}",
            details={"week_numbers": spec.week_numbers},
        )

    if len(set(spec.week_numbers)) != len(spec.week_numbers):
        raise ValidationError(
            "Номера недель не должны повторяться",
            details={"week_numbers": spec.week_numbers},
        )
