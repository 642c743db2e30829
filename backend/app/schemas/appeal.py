"""Schemas for no-show charge appeals."""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import Field

from ..core.constants import MAX_APPEAL_DESCRIPTION_LENGTH, MAX_REVIEWER_NOTES_LENGTH
from ..models.charge_appeal import AppealReason
from .base import StandardizedModel, StrictRequestModel


class AppealCreate(StrictRequestModel):
    booking_id: str
    reason: AppealReason
    description: str = Field(..., max_length=MAX_APPEAL_DESCRIPTION_LENGTH)


class AppealResolveRequest(StrictRequestModel):
    decision: Literal["approved", "rejected"]
    notes: str = Field(..., max_length=MAX_REVIEWER_NOTES_LENGTH)


class AppealResponse(StandardizedModel):
    id: str
    booking_id: str
    customer_id: str
    reason: str
    description: str
    status: str
    reviewer_id: Optional[str] = None
    reviewer_notes: Optional[str] = None
    resolved_at: Optional[datetime] = None
    refund_reference: Optional[str] = None
    created_at: datetime


class AppealListResponse(StandardizedModel):
    items: List[AppealResponse]
    total: int
