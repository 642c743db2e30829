"""Repository for the escrow ledger: releases and gateway transactions."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
import logging
from typing import List, Optional, cast

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..core.money import quantize_money
from ..models.escrow import (
    EscrowTransaction,
    EscrowTransactionKind,
    EscrowTransactionStatus,
    PaymentRelease,
)
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")


class EscrowRepository(BaseRepository[EscrowTransaction]):
    """
    Ledger reads and appends.

    Entries are never updated in amount; only an EscrowTransaction's outcome
    fields (status, attempts, failure_reason) move after creation.
    """

    def __init__(self, db: Session):
        super().__init__(db, EscrowTransaction)

    # Releases

    def create_release(self, **kwargs) -> PaymentRelease:
        release = PaymentRelease(**kwargs)
        self.db.add(release)
        self.db.flush()
        return release

    def list_releases(self, booking_id: str) -> List[PaymentRelease]:
        return cast(
            List[PaymentRelease],
            self.db.query(PaymentRelease)
            .filter(PaymentRelease.booking_id == booking_id)
            .order_by(PaymentRelease.created_at)
            .all(),
        )

    def released_total(self, booking_id: str) -> Decimal:
        total = (
            self.db.query(func.coalesce(func.sum(PaymentRelease.amount_released), 0))
            .filter(PaymentRelease.booking_id == booking_id)
            .scalar()
        )
        return quantize_money(total or _ZERO)

    # Gateway transactions

    def list_transactions(self, booking_id: str) -> List[EscrowTransaction]:
        return cast(
            List[EscrowTransaction],
            self.db.query(EscrowTransaction)
            .filter(EscrowTransaction.booking_id == booking_id)
            .order_by(EscrowTransaction.created_at)
            .all(),
        )

    def succeeded_total(self, booking_id: str, kind: EscrowTransactionKind) -> Decimal:
        total = (
            self.db.query(func.coalesce(func.sum(EscrowTransaction.amount), 0))
            .filter(
                EscrowTransaction.booking_id == booking_id,
                EscrowTransaction.kind == kind.value,
                EscrowTransaction.status == EscrowTransactionStatus.SUCCEEDED.value,
            )
            .scalar()
        )
        return quantize_money(total or _ZERO)

    def refunded_total(self, booking_id: str, source_reference: str) -> Decimal:
        """Succeeded refunds issued against one capture or charge reference."""
        total = (
            self.db.query(func.coalesce(func.sum(EscrowTransaction.amount), 0))
            .filter(
                EscrowTransaction.booking_id == booking_id,
                EscrowTransaction.kind == EscrowTransactionKind.REFUND.value,
                EscrowTransaction.status == EscrowTransactionStatus.SUCCEEDED.value,
                EscrowTransaction.source_reference == source_reference,
            )
            .scalar()
        )
        return quantize_money(total or _ZERO)

    def get_latest(
        self, booking_id: str, kind: EscrowTransactionKind
    ) -> Optional[EscrowTransaction]:
        return cast(
            Optional[EscrowTransaction],
            self.db.query(EscrowTransaction)
            .filter(
                EscrowTransaction.booking_id == booking_id,
                EscrowTransaction.kind == kind.value,
            )
            .order_by(EscrowTransaction.created_at.desc())
            .first(),
        )

    def record_transaction(
        self,
        *,
        booking_id: str,
        kind: EscrowTransactionKind,
        amount: Decimal,
        payment_reference: Optional[str],
        status: EscrowTransactionStatus,
        created_at: datetime,
        failure_reason: Optional[str] = None,
        attempts: int = 1,
        source_reference: Optional[str] = None,
    ) -> EscrowTransaction:
        return self.create(
            booking_id=booking_id,
            kind=kind.value,
            amount=amount,
            payment_reference=payment_reference,
            source_reference=source_reference,
            status=status.value,
            failure_reason=failure_reason,
            attempts=attempts,
            created_at=created_at,
            updated_at=created_at,
        )

    def get_failed_no_show_charges(self, max_attempts: int, limit: int = 100) -> List[EscrowTransaction]:
        """No-show charge captures that failed and still have retry budget."""
        return cast(
            List[EscrowTransaction],
            self.db.query(EscrowTransaction)
            .filter(
                EscrowTransaction.kind == EscrowTransactionKind.NO_SHOW_CHARGE.value,
                EscrowTransaction.status == EscrowTransactionStatus.FAILED.value,
                EscrowTransaction.attempts < max_attempts,
            )
            .order_by(EscrowTransaction.created_at)
            .limit(limit)
            .all(),
        )


__all__ = ["EscrowRepository"]
