# src/services/subscriptions/routes.py
"""
REST API подписок.
"""

from __future__ import annotations

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query

from src.common.constants import SubscriptionStatus
from src.core.subscriptions.models import (
    ScheduleUpdateDTO,
    Subscription,
    SubscriptionCreateDTO,
    SubscriptionCreatedResponse,
    SubscriptionExtendDTO,
    SubscriptionFilter,
)
from src.core.subscriptions.service import SubscriptionService
from src.services.subscriptions.auth import CurrentUser, StaffUser
from src.services.subscriptions.dependencies import get_subscription_service
from src.shared.models.common import CancelResponse, ExtendResponse, PaginatedResponse, PaginationParams

router = APIRouter(prefix="/api/subscriptions", tags=["Subscriptions"])

Service = Annotated[SubscriptionService, Depends(get_subscription_service)]


@router.post("", response_model=SubscriptionCreatedResponse, status_code=201)
async def create_subscription(dto: SubscriptionCreateDTO, caller: CurrentUser, service: Service):
    subscription = await service.create(dto, caller)
    return SubscriptionCreatedResponse(id=subscription.id)


@router.post("/extend/{subscription_id}", response_model=ExtendResponse)
async def extend_subscription(
    subscription_id: str,
    dto: SubscriptionExtendDTO,
    caller: CurrentUser,
    service: Service,
):
    subscription, new_count = await service.extend(subscription_id, dto, caller)
    return ExtendResponse(
        message="Подписка продлена",
        new_cleanings=new_count,
        end_date=subscription.end_date,
    )


# /my объявлен раньше /{subscription_id}, иначе "my" совпадёт с id
@router.get("/my", response_model=list[Subscription])
async def get_my_subscriptions(caller: CurrentUser, service: Service):
    return await service.list_for_client(caller.user_id)


@router.get("", response_model=PaginatedResponse[Subscription])
async def list_subscriptions(
    caller: StaffUser,
    service: Service,
    status: Optional[SubscriptionStatus] = None,
    client_id: Optional[str] = None,
    cleaner_id: Optional[str] = None,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=100)] = 20,
):
    criteria = SubscriptionFilter(status=status, client_id=client_id, cleaner_id=cleaner_id)
    pagination = PaginationParams(page=page, page_size=page_size)
    items, total = await service.list_filtered(criteria, limit=pagination.limit, offset=pagination.offset)
    return PaginatedResponse[Subscription].create(items=items, total=total, pagination=pagination)


@router.get("/{subscription_id}", response_model=Subscription)
async def get_subscription(subscription_id: str, caller: CurrentUser, service: Service):
    return await service.get_for_caller(subscription_id, caller)


@router.put("/{subscription_id}", response_model=Subscription)
async def update_subscription_schedule(
    subscription_id: str,
    dto: ScheduleUpdateDTO,
    caller: CurrentUser,
    service: Service,
):
    return await service.update_schedule(subscription_id, dto, caller)


@router.delete("/{subscription_id}", response_model=CancelResponse)
async def cancel_subscription(subscription_id: str, caller: CurrentUser, service: Service):
    subscription = await service.cancel(subscription_id, caller)
    return CancelResponse(message="Подписка отменена", id=subscription.id, status=subscription.status.value)
