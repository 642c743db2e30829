"""Schemas for escrow releases and the per-booking ledger view."""

from datetime import datetime
from typing import List, Optional

from ..models.escrow import ReleaseType
from .base import Money, StandardizedModel, StrictRequestModel


class ReleaseRequest(StrictRequestModel):
    release_type: ReleaseType = ReleaseType.FULL


class PaymentReleaseResponse(StandardizedModel):
    id: str
    booking_id: str
    released_by: str
    release_type: str
    amount_released: Money
    commission_amount: Money
    transfer_reference: Optional[str] = None
    created_at: datetime


class EscrowTransactionResponse(StandardizedModel):
    id: str
    kind: str
    amount: Money
    payment_reference: Optional[str] = None
    source_reference: Optional[str] = None
    status: str
    failure_reason: Optional[str] = None
    attempts: int
    created_at: datetime


class LedgerSummaryResponse(StandardizedModel):
    booking_id: str
    payment_status: str
    captured_amount: Money
    released_amount: Money
    refunded_amount: Money
    no_show_charged_amount: Money
    releases: List[PaymentReleaseResponse]
    transactions: List[EscrowTransactionResponse]
