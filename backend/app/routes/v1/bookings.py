# backend/app/routes/v1/bookings.py
"""
Booking routes - API v1

Versioned booking endpoints under /api/v1/bookings.
All business logic delegated to the booking services.

Endpoints:
    GET / - List the actor's bookings (as customer or provider)
    POST / - Create a booking
    GET /{booking_id} - Full booking details
    POST /{booking_id}/accept - Provider accepts
    POST /{booking_id}/decline - Provider declines (reason required)
    POST /{booking_id}/cancel - Customer cancels before confirmation
    POST /{booking_id}/payment-intent - Authorize the booking total
    POST /{booking_id}/payment-outcome - Apply a gateway callback
    POST /{booking_id}/arrival - Provider records arrival
    POST /{booking_id}/confirm-access - Customer confirms access
    POST /{booking_id}/start - Provider starts work
    POST /{booking_id}/end - Provider ends work
    POST /{booking_id}/release - Release escrow
    GET /{booking_id}/ledger - Escrow ledger summary
"""

import asyncio
import logging
from typing import Any, NoReturn, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from fastapi.params import Path

from ...api.dependencies import (
    get_arrival_verifier,
    get_booking_state_machine,
    get_current_actor,
    get_escrow_ledger_service,
    get_time_tracker,
)
from ...core.enums import Actor
from ...core.exceptions import DomainException
from ...models.escrow import ReleaseType
from ...schemas.booking import (
    ArrivalRequest,
    BookingCancelRequest,
    BookingCreate,
    BookingDeclineRequest,
    BookingListResponse,
    BookingResponse,
    PaymentOutcomeRequest,
)
from ...schemas.escrow import LedgerSummaryResponse, PaymentReleaseResponse, ReleaseRequest
from ...services.arrival_verifier import ArrivalVerifier
from ...services.booking_state_machine import BookingStateMachine
from ...services.escrow_ledger_service import EscrowLedgerService
from ...services.time_tracker import TimeTracker

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["bookings-v1"])

ULID_PATH_PATTERN = r"^[0-9A-HJKMNP-TV-Z]{26}$"


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _booking_path() -> Any:
    return Path(
        ...,
        description="Booking ULID",
        pattern=ULID_PATH_PATTERN,
        examples=["01HF4G12ABCDEF3456789XYZAB"],
    )


# ============================================================================
# SECTION 1: Collection routes
# ============================================================================


@router.get("", response_model=BookingListResponse)
async def list_bookings(
    status_filter: Optional[str] = Query(None, alias="status"),
    actor: Actor = Depends(get_current_actor),
    state_machine: BookingStateMachine = Depends(get_booking_state_machine),
) -> BookingListResponse:
    """List bookings where the actor is the customer or the provider."""
    try:
        bookings = await asyncio.to_thread(state_machine.list_bookings, actor, status_filter)
        items = [BookingResponse.model_validate(b) for b in bookings]
        return BookingListResponse(items=items, total=len(items))
    except DomainException as e:
        handle_domain_exception(e)


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingCreate = Body(...),
    actor: Actor = Depends(get_current_actor),
    state_machine: BookingStateMachine = Depends(get_booking_state_machine),
) -> BookingResponse:
    """Create a booking in pending; the acting user is the customer."""
    try:
        booking = await asyncio.to_thread(
            state_machine.create_booking,
            actor.id,
            **payload.model_dump(),
        )
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


# ============================================================================
# SECTION 2: Single booking and provider decisions
# ============================================================================


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: str = _booking_path(),
    actor: Actor = Depends(get_current_actor),
    state_machine: BookingStateMachine = Depends(get_booking_state_machine),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(state_machine.get_booking, booking_id)
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/accept", response_model=BookingResponse)
async def accept_booking(
    booking_id: str = _booking_path(),
    actor: Actor = Depends(get_current_actor),
    state_machine: BookingStateMachine = Depends(get_booking_state_machine),
) -> BookingResponse:
    """Provider accepts a pending booking."""
    try:
        booking = await asyncio.to_thread(state_machine.accept, booking_id, actor.id)
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/decline", response_model=BookingResponse)
async def decline_booking(
    booking_id: str = _booking_path(),
    payload: BookingDeclineRequest = Body(...),
    actor: Actor = Depends(get_current_actor),
    state_machine: BookingStateMachine = Depends(get_booking_state_machine),
) -> BookingResponse:
    """Provider declines a pending booking with a reason."""
    try:
        booking = await asyncio.to_thread(
            state_machine.decline, booking_id, actor.id, payload.reason
        )
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: str = _booking_path(),
    payload: Optional[BookingCancelRequest] = Body(None),
    actor: Actor = Depends(get_current_actor),
    state_machine: BookingStateMachine = Depends(get_booking_state_machine),
) -> BookingResponse:
    """Customer cancels before the provider confirms."""
    try:
        booking = await asyncio.to_thread(
            state_machine.cancel_by_customer,
            booking_id,
            actor.id,
            payload.reason if payload else None,
        )
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


# ============================================================================
# SECTION 3: Payment
# ============================================================================


@router.post("/{booking_id}/payment-intent", response_model=BookingResponse)
async def create_payment_intent(
    booking_id: str = _booking_path(),
    actor: Actor = Depends(get_current_actor),
    state_machine: BookingStateMachine = Depends(get_booking_state_machine),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(state_machine.create_payment_intent, booking_id)
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/payment-outcome", response_model=BookingResponse)
async def record_payment_outcome(
    booking_id: str = _booking_path(),
    payload: PaymentOutcomeRequest = Body(...),
    actor: Actor = Depends(get_current_actor),
    state_machine: BookingStateMachine = Depends(get_booking_state_machine),
) -> BookingResponse:
    """Apply the gateway's outcome for the booking's payment intent."""
    try:
        booking = await asyncio.to_thread(
            state_machine.record_payment_outcome, booking_id, payload.gateway_status
        )
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


# ============================================================================
# SECTION 4: On-site execution
# ============================================================================


@router.post("/{booking_id}/arrival", response_model=BookingResponse)
async def record_arrival(
    booking_id: str = _booking_path(),
    payload: ArrivalRequest = Body(...),
    actor: Actor = Depends(get_current_actor),
    verifier: ArrivalVerifier = Depends(get_arrival_verifier),
) -> BookingResponse:
    """Provider records arrival; starts the no-show timer unless access is confirmed."""
    try:
        booking = await asyncio.to_thread(
            verifier.record_arrival,
            booking_id,
            payload.latitude,
            payload.longitude,
            payload.customer_confirmed,
            actor.id,
        )
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/confirm-access", response_model=BookingResponse)
async def confirm_access(
    booking_id: str = _booking_path(),
    actor: Actor = Depends(get_current_actor),
    verifier: ArrivalVerifier = Depends(get_arrival_verifier),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(verifier.confirm_customer_access, booking_id, actor.id)
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/start", response_model=BookingResponse)
async def start_work(
    booking_id: str = _booking_path(),
    actor: Actor = Depends(get_current_actor),
    tracker: TimeTracker = Depends(get_time_tracker),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(tracker.start_work, booking_id, actor.id)
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/end", response_model=BookingResponse)
async def end_work(
    booking_id: str = _booking_path(),
    actor: Actor = Depends(get_current_actor),
    tracker: TimeTracker = Depends(get_time_tracker),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(tracker.end_work, booking_id, actor.id)
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


# ============================================================================
# SECTION 5: Escrow
# ============================================================================


@router.post(
    "/{booking_id}/release",
    response_model=PaymentReleaseResponse,
    status_code=status.HTTP_201_CREATED,
)
async def release_payment(
    booking_id: str = _booking_path(),
    payload: Optional[ReleaseRequest] = Body(None),
    actor: Actor = Depends(get_current_actor),
    ledger: EscrowLedgerService = Depends(get_escrow_ledger_service),
) -> PaymentReleaseResponse:
    try:
        release = await asyncio.to_thread(ledger.release,
            booking_id,
            actor,
            payload.release_type if payload else ReleaseType.FULL,
        )
        return PaymentReleaseResponse.model_validate(release)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/{booking_id}/ledger", response_model=LedgerSummaryResponse)
async def get_ledger(
    booking_id: str = _booking_path(),
    actor: Actor = Depends(get_current_actor),
    ledger: EscrowLedgerService = Depends(get_escrow_ledger_service),
) -> LedgerSummaryResponse:
    try:
        summary = await asyncio.to_thread(ledger.ledger_summary, booking_id)
        return LedgerSummaryResponse.model_validate(summary)
    except DomainException as e:
        handle_domain_exception(e)
