# backend/app/repositories/booking_repository.py
"""
Booking Repository for CleanConnect Platform

Implements data access for the booking aggregate:
- Booking CRUD operations
- Guarded (status + version) status transitions
- Row-level locking reads for per-booking serialization
- Customer/provider booking listings
- Auto-release candidate queries
"""

from datetime import datetime
import logging
from typing import Any, Dict, List, Optional, cast

from sqlalchemy import and_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session, selectinload

from ..core.exceptions import RepositoryException
from ..models.booking import Booking, BookingStatus
from ..models.escrow import PaymentRelease
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class BookingRepository(BaseRepository[Booking]):
    """Repository for booking data access."""

    def __init__(self, db: Session):
        super().__init__(db, Booking)
        self.logger = logging.getLogger(__name__)

    def get_for_update(self, booking_id: str) -> Optional[Booking]:
        """
        Load a booking with a row lock, discarding any stale identity-map state.

        Callers hold the booking mutex; the row lock covers writers that do not.
        SQLite ignores FOR UPDATE.
        """
        try:
            return cast(
                Optional[Booking],
                self.db.query(Booking)
                .filter(Booking.id == booking_id)
                .populate_existing()
                .with_for_update()
                .first(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error locking booking {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to load booking for update: {str(e)}")

    # Status Management Methods

    def transition_status(
        self,
        booking_id: str,
        *,
        expected_status: str,
        expected_version: int,
        target_status: str,
        values: Optional[Dict[str, Any]] = None,
    ) -> int:
        """
        Conditionally move a booking to ``target_status``.

        The UPDATE only matches when the stored status and version still equal
        what the caller read, so a concurrent writer makes it match zero rows.

        Returns:
            Number of rows updated (0 or 1)
        """
        payload: Dict[str, Any] = dict(values or {})
        payload["status"] = target_status
        payload["version"] = expected_version + 1
        try:
            stmt = (
                update(Booking)
                .where(
                    and_(
                        Booking.id == booking_id,
                        Booking.status == expected_status,
                        Booking.version == expected_version,
                    )
                )
                .values(**payload)
                .execution_options(synchronize_session=False)
            )
            result = self.db.execute(stmt)
            return int(result.rowcount or 0)
        except SQLAlchemyError as e:
            self.logger.error(f"Error transitioning booking {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to transition booking: {str(e)}")

    def mark_no_show(
        self, booking_id: str, *, charge_amount: Any, charged_at: datetime
    ) -> int:
        """
        Record the no-show charge fields exactly once.

        Matches only while ``no_show_detected`` is still false, so a second
        writer updates zero rows instead of replacing the amount or timestamp.
        """
        try:
            stmt = (
                update(Booking)
                .where(and_(Booking.id == booking_id, Booking.no_show_detected.is_(False)))
                .values(
                    no_show_detected=True,
                    no_show_charge_amount=charge_amount,
                    no_show_charged_at=charged_at,
                    updated_at=charged_at,
                    version=Booking.version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            result = self.db.execute(stmt)
            return int(result.rowcount or 0)
        except SQLAlchemyError as e:
            self.logger.error(f"Error recording no-show for booking {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to record no-show charge: {str(e)}")

    # Listing queries

    def get_customer_bookings(
        self, customer_id: str, status: Optional[str] = None, limit: int = 100
    ) -> List[Booking]:
        query = self.db.query(Booking).filter(Booking.customer_id == customer_id)
        if status:
            query = query.filter(Booking.status == status)
        return self._execute_query(query.order_by(Booking.created_at.desc()).limit(limit))

    def get_provider_bookings(
        self, provider_id: str, status: Optional[str] = None, limit: int = 100
    ) -> List[Booking]:
        query = self.db.query(Booking).filter(Booking.provider_id == provider_id)
        if status:
            query = query.filter(Booking.status == status)
        return self._execute_query(query.order_by(Booking.created_at.desc()).limit(limit))

    def get_bookings_for_auto_release(self, completed_before: datetime) -> List[Booking]:
        """
        Get bookings eligible for automatic escrow release.

        Returns bookings that are:
        - Status: COMPLETED or AUTO_RELEASE_PENDING (staged by an earlier sweep)
        - Completed at or before ``completed_before``
        - Without any PaymentRelease entry
        """
        try:
            released = self.db.query(PaymentRelease.booking_id)
            return cast(
                List[Booking],
                self.db.query(Booking)
                .filter(
                    and_(
                        Booking.status.in_(
                            [
                                BookingStatus.COMPLETED.value,
                                BookingStatus.AUTO_RELEASE_PENDING.value,
                            ]
                        ),
                        Booking.completed_at.isnot(None),
                        Booking.completed_at <= completed_before,
                        ~Booking.id.in_(released),
                    )
                )
                .order_by(Booking.completed_at)
                .all(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting bookings for auto release: {str(e)}")
            raise RepositoryException(f"Failed to get bookings for auto release: {str(e)}")

    # Helper method overrides

    def _apply_eager_loading(self, query: Query) -> Query:
        return query.options(
            selectinload(Booking.releases),
            selectinload(Booking.escrow_transactions),
        )
