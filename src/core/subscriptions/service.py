# src/core/subscriptions/service.py
"""
Сервис подписок.
Жизненный цикл подписки: создание, сдвиг курсора, отмена, продление,
изменение расписания. Ошибки журнала действий и уведомлений
не влияют на результат операции.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable, Optional

from redis.exceptions import RedisError

from src.common.constants import (
    NotificationEvent,
    SubscriptionAction,
    SubscriptionStatus,
    TypeMsg,
)
from src.common.exceptions import (
    CollaboratorUnavailable,
    InvalidStatusTransition,
    NotFoundError,
    PaymentRequired,
    PermissionDenied,
    PersistenceError,
    ValidationError,
)
from src.common.logger import log_info, log_warning
from src.core.subscriptions.models import (
    AuthContext,
    ScheduleUpdateDTO,
    Subscription,
    SubscriptionCreateDTO,
    SubscriptionExtendDTO,
    SubscriptionFilter,
    SubscriptionLog,
    utc_now,
)
from src.core.subscriptions.repository import SubscriptionRepository
from src.core.subscriptions.schedule import count_occurrences, first_date, to_utc_date, validate_schedule
from src.core.subscriptions.state_machine import SubscriptionStateMachine
from src.infra.redis_client import RedisClient

if TYPE_CHECKING:
    from src.core.notifications.dispatcher import NotificationDispatcher
    from src.infra.service_clients import PaymentServiceClient

_ONE_DAY = timedelta(days=1)


class SubscriptionService:
    """Бизнес-логика подписок."""

    def __init__(
        self,
        repository: SubscriptionRepository,
        redis: Optional[RedisClient] = None,
        notifier: Optional[NotificationDispatcher] = None,
        payments: Optional[PaymentServiceClient] = None,
        cache_ttl: int = 300,
        horizon_days: int = 4,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """
        Args:
            repository: Репозиторий подписок
            redis: Кэш чтений (опционально)
            notifier: Диспетчер уведомлений (опционально)
            payments: Клиент сервиса платежей для продлений (опционально)
            cache_ttl: TTL кэша подписки в секундах
            horizon_days: Горизонт материализации планировщика в днях
            clock: Источник текущего времени (UTC)
        """
        self._repo = repository
        self._redis = redis
        self._notifier = notifier
        self._payments = payments
        self._cache_ttl = cache_ttl
        self.horizon_days = horizon_days
        self._clock = clock

    def today(self) -> date:
        return to_utc_date(self._clock())

    # =========================================================================
    # СОЗДАНИЕ И ЧТЕНИЕ
    # =========================================================================

    async def create(self, dto: SubscriptionCreateDTO, caller: AuthContext) -> Subscription:
        """
        Создаёт активную подписку с курсором на дату начала.

        Raises:
            ValidationError: некорректное расписание, даты или цена
        """
        validate_schedule(dto.schedule)
        if dto.end_date < dto.start_date:
            raise ValidationError("end_date не может быть раньше start_date")
        if dto.price <= 0:
            raise ValidationError("price должна быть больше нуля")

        subscription = Subscription(
            user_id=caller.user_id,
            order_id=dto.order_id,
            cleaner_id=dto.cleaner_id,
            start_date=dto.start_date,
            end_date=dto.end_date,
            schedule=dto.schedule,
            price=dto.price,
            status=SubscriptionStatus.ACTIVE,
            next_planned_date=dto.start_date,
        )
        created = await self._repo.create(subscription)

        await log_info(
            f"Подписка {created.id} создана для пользователя {created.user_id}",
            type_msg=TypeMsg.INFO,
        )
        await self._write_log(created, SubscriptionAction.CREATED, {
            "start_date": created.start_date,
            "end_date": created.end_date,
            "frequency": created.schedule.frequency.value,
        })
        await self._notify(NotificationEvent.CREATED, created)
        return created

    async def get(self, subscription_id: str) -> Subscription:
        """
        Возвращает подписку (через кэш Redis).

        Raises:
            NotFoundError: подписка не найдена
        """
        cached = await self._cache_get(subscription_id)
        if cached is not None:
            return cached

        subscription = await self._repo.get_by_id(subscription_id)
        if subscription is None:
            raise NotFoundError(f"Подписка {subscription_id} не найдена")

        await self._cache_set(subscription)
        return subscription

    async def get_for_caller(self, subscription_id: str, caller: AuthContext) -> Subscription:
        subscription = await self.get(subscription_id)
        self._check_access(subscription, caller)
        return subscription

    async def list_for_client(self, user_id: str) -> list[Subscription]:
        return await self._repo.list_by_client(user_id)

    async def list_filtered(
        self,
        criteria: SubscriptionFilter,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[Subscription], int]:
        """Возвращает страницу подписок по фильтру и общее количество."""
        items = await self._repo.list_filtered(criteria, limit=limit, offset=offset)
        total = await self._repo.count_filtered(criteria)
        return items, total

    async def list_active_with_cursor(self) -> list[Subscription]:
        return await self._repo.list_active_with_cursor()

    async def list_ending_from(self, target: date) -> list[Subscription]:
        """Неотменённые подписки, у которых end_date не раньше target."""
        return await self._repo.list_ending_from(
            target,
            (SubscriptionStatus.ACTIVE, SubscriptionStatus.EXPIRED),
        )

    # =========================================================================
    # ЖИЗНЕННЫЙ ЦИКЛ
    # =========================================================================

    async def advance(self, subscription_id: str, next_date: Optional[date]) -> Subscription:
        """
        Устанавливает next_planned_date; None переводит подписку в expired.
        Повторный вызов с теми же аргументами ничего не меняет.

        Raises:
            NotFoundError: подписка не найдена
            InvalidStatusTransition: попытка сдвинуть курсор завершённой подписки
        """
        current = await self._repo.get_by_id(subscription_id)
        if current is None:
            raise NotFoundError(f"Подписка {subscription_id} не найдена")

        if current.is_terminal:
            if current.next_planned_date == next_date:
                return current
            raise InvalidStatusTransition(
                f"Подписка {subscription_id} в статусе {current.status.value}, курсор не меняется"
            )

        updated = await self._repo.advance(subscription_id, next_date)
        if updated is None:
            return current

        await self._after_advance(current, updated)
        return updated

    async def advance_if_current(
        self,
        subscription: Subscription,
        next_date: Optional[date],
    ) -> Optional[Subscription]:
        """
        Сдвигает курсор, только если он не менялся с момента чтения subscription.

        Returns:
            Обновлённая подписка или None, если курсор уже сдвинул кто-то другой
        """
        updated = await self._repo.advance(
            subscription.id,
            next_date,
            expected=subscription.next_planned_date,
        )
        if updated is None:
            return None

        await self._after_advance(subscription, updated)
        return updated

    async def record_occurrence(self, subscription_id: str, when: Optional[datetime] = None) -> Subscription:
        """Фиксирует время создания очередного заказа по подписке."""
        updated = await self._repo.record_occurrence(subscription_id, when or self._clock())
        if updated is None:
            raise NotFoundError(f"Подписка {subscription_id} не найдена")
        await self._cache_invalidate(subscription_id)
        return updated

    async def cancel(self, subscription_id: str, caller: Optional[AuthContext] = None) -> Subscription:
        """
        Отменяет активную подписку. Курсор не меняется.
        Повторная отмена возвращает подписку без изменений.

        Raises:
            NotFoundError: подписка не найдена
            PermissionDenied: чужая подписка
            InvalidStatusTransition: подписка уже истекла
        """
        current = await self._repo.get_by_id(subscription_id)
        if current is None:
            raise NotFoundError(f"Подписка {subscription_id} не найдена")
        if caller is not None:
            self._check_access(current, caller)

        if current.status == SubscriptionStatus.CANCELLED:
            return current
        self._ensure_transition(current, SubscriptionStatus.CANCELLED)

        updated = await self._repo.update_status(
            subscription_id,
            SubscriptionStatus.CANCELLED,
            expected_status=SubscriptionStatus.ACTIVE,
        )
        if updated is None:
            # Статус успел смениться параллельно
            return await self._resolve_race(subscription_id, SubscriptionStatus.CANCELLED)

        await self._cache_invalidate(subscription_id)
        await log_info(f"Подписка {subscription_id} отменена", type_msg=TypeMsg.INFO)
        await self._write_log(updated, SubscriptionAction.CANCELLED, {
            "cancelled_by": caller.user_id if caller else "system",
        })
        await self._notify(NotificationEvent.CANCELLED, updated)
        return updated

    async def update_schedule(
        self,
        subscription_id: str,
        dto: ScheduleUpdateDTO,
        caller: AuthContext,
    ) -> Subscription:
        """
        Меняет расписание активной подписки и пересчитывает курсор.

        Курсор ставится на первую дату нового расписания, начиная с
        first_unprocessed_date: даты до неё планировщик уже обработал
        по старому расписанию.

        Raises:
            ValidationError: некорректное расписание или в нём не осталось дат
        """
        current = await self.get_for_caller(subscription_id, caller)
        if current.is_terminal:
            raise InvalidStatusTransition(
                f"Нельзя изменить расписание подписки в статусе {current.status.value}"
            )

        schedule = dto.apply_to(current.schedule)
        validate_schedule(schedule)

        start_from = self.first_unprocessed_date(current)
        next_date = first_date(schedule, start_from, current.end_date)
        if next_date is None:
            raise ValidationError("По новому расписанию не осталось дат до окончания подписки")

        updated = await self._repo.update_schedule(subscription_id, schedule, next_date)
        if updated is None:
            return await self._resolve_race(subscription_id, SubscriptionStatus.ACTIVE)

        await self._cache_invalidate(subscription_id)
        await self._write_log(updated, SubscriptionAction.SCHEDULE_UPDATED, {
            "frequency": schedule.frequency.value,
            "days_of_week": ",".join(schedule.days_of_week),
            "week_numbers": ",".join(map(str, schedule.week_numbers)),
            "next_planned_date": next_date,
        })
        return updated

    def first_unprocessed_date(self, subscription: Subscription) -> date:
        """
        Первая дата, которую планировщик ещё не обработал.

        Даты раньше курсора уже обработаны. Курсор за горизонтом означает,
        что проход дошёл до today + horizon_days включительно.
        """
        today = self.today()
        past_horizon = today + timedelta(days=self.horizon_days + 1)
        cursor = subscription.next_planned_date
        processed_until = past_horizon if cursor is None else min(cursor, past_horizon)
        return max(subscription.start_date, today, processed_until)

    async def extend(
        self,
        subscription_id: str,
        dto: SubscriptionExtendDTO,
        caller: AuthContext,
    ) -> tuple[Subscription, int]:
        """
        Продлевает подписку до новой даты окончания и списывает оплату
        за добавленные визиты.

        Returns:
            (подписка, количество добавленных визитов)

        Raises:
            ValidationError: новая дата не добавляет ни одного визита
            InvalidStatusTransition: подписка завершена
            PaymentRequired: платёж не прошёл
        """
        current = await self.get_for_caller(subscription_id, caller)
        if current.is_terminal:
            raise InvalidStatusTransition(
                f"Нельзя продлить подписку в статусе {current.status.value}"
            )
        if dto.end_date <= current.end_date:
            raise ValidationError("Новая end_date должна быть позже текущей")

        new_count = count_occurrences(current.schedule, current.end_date + _ONE_DAY, dto.end_date)
        if new_count <= 0:
            raise ValidationError("Продление не добавляет ни одного визита")

        amount = current.price * new_count
        if self._payments is not None:
            try:
                await self._payments.charge_subscription(
                    order_id=current.order_id,
                    user_id=current.user_id,
                    amount=amount,
                    token=caller.token or None,
                )
            except CollaboratorUnavailable as e:
                raise PaymentRequired("Оплата продления не прошла", details=e.details) from e

        updated = await self._repo.extend(subscription_id, current.end_date, dto.end_date)
        if updated is None:
            await log_warning(
                f"Подписка {subscription_id} изменилась во время продления, оплата {amount} требует сверки",
                extra={"subscription_id": subscription_id, "amount": amount},
            )
            raise InvalidStatusTransition("Подписка была изменена параллельно, повторите запрос")

        await self._cache_invalidate(subscription_id)
        await log_info(
            f"Подписка {subscription_id} продлена до {dto.end_date.isoformat()} (+{new_count} визитов)",
            type_msg=TypeMsg.INFO,
        )
        await self._write_log(updated, SubscriptionAction.EXTENDED, {
            "previous_end_date": current.end_date,
            "end_date": dto.end_date,
            "new_cleanings": new_count,
            "amount": amount,
        })
        await self._notify(NotificationEvent.EXTENDED, updated)
        return updated, new_count

    # =========================================================================
    # ВСПОМОГАТЕЛЬНОЕ
    # =========================================================================

    async def _after_advance(self, before: Subscription, after: Subscription) -> None:
        await self._cache_invalidate(after.id)
        if before.is_active and after.status == SubscriptionStatus.EXPIRED:
            await log_info(f"Подписка {after.id} истекла", type_msg=TypeMsg.INFO)
            await self._write_log(after, SubscriptionAction.EXPIRED, {
                "end_date": after.end_date,
            })
            await self._notify(NotificationEvent.EXPIRED, after)

    async def _resolve_race(self, subscription_id: str, wanted: SubscriptionStatus) -> Subscription:
        latest = await self._repo.get_by_id(subscription_id)
        if latest is None:
            raise NotFoundError(f"Подписка {subscription_id} не найдена")
        await self._cache_invalidate(subscription_id)
        if latest.status == wanted and wanted != SubscriptionStatus.ACTIVE:
            return latest
        raise InvalidStatusTransition(
            f"Подписка {subscription_id} в статусе {latest.status.value}"
        )

    @staticmethod
    def _ensure_transition(subscription: Subscription, new_status: SubscriptionStatus) -> None:
        if not SubscriptionStateMachine.can_transition(subscription.status.value, new_status.value):
            raise InvalidStatusTransition(
                f"Переход {subscription.status.value} -> {new_status.value} запрещён"
            )

    @staticmethod
    def _check_access(subscription: Subscription, caller: AuthContext) -> None:
        if caller.is_staff or subscription.user_id == caller.user_id:
            return
        raise PermissionDenied("Нет доступа к подписке")

    async def _write_log(
        self,
        subscription: Subscription,
        action: SubscriptionAction,
        details: dict[str, Any],
    ) -> None:
        entry = SubscriptionLog(
            subscription_id=subscription.id,
            client_id=subscription.user_id,
            action=action,
            details={k: (v.isoformat() if isinstance(v, date) else str(v)) for k, v in details.items()},
        )
        try:
            await self._repo.add_log(entry)
        except PersistenceError:
            await log_warning(
                f"Не удалось записать {action.value} в журнал подписки {subscription.id}",
            )

    async def _notify(self, event: NotificationEvent, subscription: Subscription, **params: Any) -> None:
        if self._notifier is not None:
            await self._notifier.notify(event, subscription, **params)

    @staticmethod
    def _cache_key(subscription_id: str) -> str:
        return f"subscription:{subscription_id}"

    async def _cache_get(self, subscription_id: str) -> Optional[Subscription]:
        if self._redis is None:
            return None
        try:
            return await self._redis.get_model(self._cache_key(subscription_id), Subscription)
        except (RedisError, RuntimeError) as e:
            await log_warning(f"Кэш подписок недоступен: {e}")
            return None

    async def _cache_set(self, subscription: Subscription) -> None:
        if self._redis is None:
            return
        try:
            await self._redis.set_model(self._cache_key(subscription.id), subscription, ttl=self._cache_ttl)
        except (RedisError, RuntimeError) as e:
            await log_warning(f"Кэш подписок недоступен: {e}")

    async def _cache_invalidate(self, subscription_id: str) -> None:
        if self._redis is None:
            return
        try:
            await self._redis.delete(self._cache_key(subscription_id))
        except (RedisError, RuntimeError) as e:
            await log_warning(f"Кэш подписок недоступен: {e}")
