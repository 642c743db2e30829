# backend/app/routes/v1/admin.py
"""
Admin routes - API v1

Endpoints:
    GET /platform-settings - Current platform settings
    PUT /platform-settings - Update platform settings
    POST /bookings/{booking_id}/cancel - Administrative cancellation
    POST /no-show/sweep - Fire all due no-show timers now
"""

import asyncio
import logging

from fastapi import APIRouter, Body, Depends
from fastapi.params import Path

from ...api.dependencies import (
    get_booking_state_machine,
    get_no_show_service,
    get_platform_settings_service,
    require_admin,
)
from ...core.enums import Actor
from ...core.exceptions import DomainException
from ...schemas.booking import BookingCancelRequest, BookingResponse, NoShowSweepResponse
from ...schemas.platform_settings import PlatformSettingsResponse, PlatformSettingsUpdate
from ...services.booking_state_machine import BookingStateMachine
from ...services.config_service import PlatformSettingsService
from ...services.no_show_service import NoShowService
from .bookings import ULID_PATH_PATTERN, handle_domain_exception

logger = logging.getLogger(__name__)

router = APIRouter(tags=["admin-v1"])


@router.get("/platform-settings", response_model=PlatformSettingsResponse)
async def get_platform_settings(
    _: Actor = Depends(require_admin),
    settings_service: PlatformSettingsService = Depends(get_platform_settings_service),
) -> PlatformSettingsResponse:
    current, updated_at = await asyncio.to_thread(settings_service.get_settings_with_timestamp)
    return PlatformSettingsResponse(settings=current, updated_at=updated_at)


@router.put("/platform-settings", response_model=PlatformSettingsResponse)
async def update_platform_settings(
    payload: PlatformSettingsUpdate = Body(...),
    actor: Actor = Depends(require_admin),
    settings_service: PlatformSettingsService = Depends(get_platform_settings_service),
) -> PlatformSettingsResponse:
    """Update platform settings; existing bookings keep their snapshotted rates."""
    try:
        updated, updated_at = await asyncio.to_thread(
            settings_service.update_settings,
            payload.model_dump(exclude_none=True),
            updated_by=actor.id,
        )
        return PlatformSettingsResponse(settings=updated, updated_at=updated_at)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/bookings/{booking_id}/cancel", response_model=BookingResponse)
async def admin_cancel_booking(
    booking_id: str = Path(..., description="Booking ULID", pattern=ULID_PATH_PATTERN),
    payload: BookingCancelRequest = Body(...),
    actor: Actor = Depends(require_admin),
    state_machine: BookingStateMachine = Depends(get_booking_state_machine),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(
            state_machine.admin_cancel, booking_id, actor, payload.reason
        )
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/no-show/sweep", response_model=NoShowSweepResponse)
async def sweep_no_show_timers(
    _: Actor = Depends(require_admin),
    no_show_service: NoShowService = Depends(get_no_show_service),
) -> NoShowSweepResponse:
    try:
        result = await asyncio.to_thread(no_show_service.sweep_due_timers)
        return NoShowSweepResponse(
            processed=result.processed, charged=result.charged, skipped=result.skipped
        )
    except DomainException as e:
        handle_domain_exception(e)
