# backend/app/routes/v1/appeals.py
"""
No-show charge appeal routes - API v1

Endpoints:
    POST / - Customer submits an appeal
    GET / - List appeals (admin: all; others: their own)
    GET /{appeal_id} - Appeal details
    POST /{appeal_id}/resolve - Reviewer approves or rejects
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, status
from fastapi.params import Path

from ...api.dependencies import get_appeal_service, get_current_actor
from ...core.enums import Actor
from ...core.exceptions import DomainException, ForbiddenException
from ...schemas.appeal import (
    AppealCreate,
    AppealListResponse,
    AppealResolveRequest,
    AppealResponse,
)
from ...services.appeal_service import AppealService
from .bookings import ULID_PATH_PATTERN, handle_domain_exception

logger = logging.getLogger(__name__)

router = APIRouter(tags=["appeals-v1"])


@router.post("", response_model=AppealResponse, status_code=status.HTTP_201_CREATED)
async def submit_appeal(
    payload: AppealCreate = Body(...),
    actor: Actor = Depends(get_current_actor),
    appeal_service: AppealService = Depends(get_appeal_service),
) -> AppealResponse:
    """Appeal the no-show charge on one of the actor's bookings."""
    try:
        appeal = await asyncio.to_thread(
            appeal_service.submit_appeal,
            payload.booking_id,
            actor.id,
            payload.reason,
            payload.description,
        )
        return AppealResponse.model_validate(appeal)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("", response_model=AppealListResponse)
async def list_appeals(
    status_filter: Optional[str] = Query(None, alias="status"),
    booking_id: Optional[str] = Query(None),
    actor: Actor = Depends(get_current_actor),
    appeal_service: AppealService = Depends(get_appeal_service),
) -> AppealListResponse:
    try:
        appeals = await asyncio.to_thread(appeal_service.list_appeals, status_filter, booking_id)
        if not actor.is_admin:
            appeals = [a for a in appeals if a.customer_id == actor.id]
        items = [AppealResponse.model_validate(a) for a in appeals]
        return AppealListResponse(items=items, total=len(items))
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/{appeal_id}", response_model=AppealResponse)
async def get_appeal(
    appeal_id: str = Path(..., description="Appeal ULID", pattern=ULID_PATH_PATTERN),
    actor: Actor = Depends(get_current_actor),
    appeal_service: AppealService = Depends(get_appeal_service),
) -> AppealResponse:
    try:
        appeal = await asyncio.to_thread(appeal_service.get_appeal, appeal_id)
        if not actor.is_admin and appeal.customer_id != actor.id:
            raise ForbiddenException("You do not have access to this appeal")
        return AppealResponse.model_validate(appeal)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{appeal_id}/resolve", response_model=AppealResponse)
async def resolve_appeal(
    appeal_id: str = Path(..., description="Appeal ULID", pattern=ULID_PATH_PATTERN),
    payload: AppealResolveRequest = Body(...),
    actor: Actor = Depends(get_current_actor),
    appeal_service: AppealService = Depends(get_appeal_service),
) -> AppealResponse:
    """Resolve a pending appeal; approval refunds the no-show charge."""
    try:
        appeal = await asyncio.to_thread(
            appeal_service.resolve_appeal, appeal_id, actor, payload.decision, payload.notes
        )
        return AppealResponse.model_validate(appeal)
    except DomainException as e:
        handle_domain_exception(e)
