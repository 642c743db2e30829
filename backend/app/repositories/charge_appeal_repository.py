"""Repository for no-show charge appeals."""

from __future__ import annotations

import logging
from typing import List, Optional, cast

from sqlalchemy.orm import Session

from ..models.charge_appeal import AppealStatus, ChargeAppeal
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class ChargeAppealRepository(BaseRepository[ChargeAppeal]):
    """Data access for ChargeAppeal rows."""

    def __init__(self, db: Session):
        super().__init__(db, ChargeAppeal)

    def get_pending_for_booking(self, booking_id: str) -> Optional[ChargeAppeal]:
        return cast(
            Optional[ChargeAppeal],
            self.db.query(ChargeAppeal)
            .filter(
                ChargeAppeal.booking_id == booking_id,
                ChargeAppeal.status == AppealStatus.PENDING.value,
            )
            .first(),
        )

    def get_for_update(self, appeal_id: str) -> Optional[ChargeAppeal]:
        return cast(
            Optional[ChargeAppeal],
            self.db.query(ChargeAppeal)
            .filter(ChargeAppeal.id == appeal_id)
            .populate_existing()
            .with_for_update()
            .first(),
        )

    def list_appeals(
        self,
        *,
        status: Optional[str] = None,
        booking_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[ChargeAppeal]:
        query = self.db.query(ChargeAppeal)
        if status:
            query = query.filter(ChargeAppeal.status == status)
        if booking_id:
            query = query.filter(ChargeAppeal.booking_id == booking_id)
        return self._execute_query(query.order_by(ChargeAppeal.created_at.desc()).limit(limit))


__all__ = ["ChargeAppealRepository"]
