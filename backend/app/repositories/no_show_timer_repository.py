"""Repository for durable no-show timers."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional, cast

from sqlalchemy.orm import Session

from ..models.no_show_timer import NoShowTimer, NoShowTimerStatus
from .base_repository import BaseRepository


class NoShowTimerRepository(BaseRepository[NoShowTimer]):
    def __init__(self, db: Session):
        super().__init__(db, NoShowTimer)

    def get_by_booking(self, booking_id: str) -> Optional[NoShowTimer]:
        return cast(
            Optional[NoShowTimer],
            self.db.query(NoShowTimer)
            .filter(NoShowTimer.booking_id == booking_id)
            .populate_existing()
            .first(),
        )

    def get_due(self, now: datetime, limit: int = 100) -> List[NoShowTimer]:
        """Scheduled timers whose due-time has passed, oldest first."""
        return cast(
            List[NoShowTimer],
            self.db.query(NoShowTimer)
            .filter(
                NoShowTimer.status == NoShowTimerStatus.SCHEDULED.value,
                NoShowTimer.fires_at <= now,
            )
            .order_by(NoShowTimer.fires_at)
            .limit(limit)
            .all(),
        )


__all__ = ["NoShowTimerRepository"]
