"""
Celery tasks for the booking lifecycle.

Fires no-show timers at their ETA, sweeps for due timers that were missed,
auto-releases escrow past the configured delay, and retries failed no-show
captures.
"""

from datetime import datetime, timezone
import logging
from typing import Any, Callable, List, Optional, ParamSpec, Protocol, TypedDict, TypeVar, cast

from celery.result import AsyncResult
from sqlalchemy.orm import Session

from app.core.exceptions import GatewayFailureException, StateConflictException
from app.services.escrow_ledger_service import EscrowLedgerService
from app.services.no_show_service import NoShowService
from app.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R", covariant=True)

LOCK_BUSY_RETRY_SECONDS = 15


class TaskWrapper(Protocol[P, R]):
    def __call__(self, *args: P.args, **kwargs: P.kwargs) -> R:
        ...

    delay: Callable[..., AsyncResult]
    apply_async: Callable[..., AsyncResult]


def typed_task(
    *task_args: Any, **task_kwargs: Any
) -> Callable[[Callable[P, R]], TaskWrapper[P, R]]:
    """Return a typed Celery task decorator for mypy."""

    return cast(
        Callable[[Callable[P, R]], TaskWrapper[P, R]],
        celery_app.task(*task_args, **task_kwargs),
    )


class FireTimerResult(TypedDict):
    booking_id: str
    charged: bool
    capture_status: Optional[str]


class SweepResults(TypedDict):
    processed: int
    charged: int
    skipped: int
    processed_at: str


class AutoReleaseResults(TypedDict):
    evaluated: int
    released: int
    failed: List[str]
    processed_at: str


class CaptureRetryResults(TypedDict):
    captured: List[str]
    processed_at: str


def _open_session() -> Session:
    from app.database import SessionLocal

    return cast(Session, SessionLocal())


@typed_task(bind=True, max_retries=5, name="app.tasks.booking_tasks.fire_no_show_timer")
def fire_no_show_timer(self: Any, booking_id: str) -> FireTimerResult:
    """
    Fire one booking's no-show timer at its ETA.

    A busy booking is retried shortly; a failed capture is left to the
    capture retry job since the charge itself is already recorded.
    """
    db = _open_session()
    try:
        charge = NoShowService(db).fire_timer(booking_id)
        return {
            "booking_id": booking_id,
            "charged": charge is not None and not charge.already_charged,
            "capture_status": charge.capture_status if charge else None,
        }
    except StateConflictException as exc:
        raise self.retry(exc=exc, countdown=LOCK_BUSY_RETRY_SECONDS)
    except GatewayFailureException as exc:
        logger.warning(f"No-show capture failed for booking {booking_id}: {exc.message}")
        return {"booking_id": booking_id, "charged": True, "capture_status": "failed"}
    finally:
        db.close()


@typed_task(bind=True, max_retries=3, name="app.tasks.booking_tasks.sweep_due_no_show_timers")
def sweep_due_no_show_timers(self: Any) -> SweepResults:
    """Fire every scheduled timer whose due-time has passed."""
    db = _open_session()
    try:
        result = NoShowService(db).sweep_due_timers()
        if result.processed:
            logger.info(
                f"No-show sweep: {result.processed} processed, {result.charged} charged, "
                f"{result.skipped} skipped"
            )
        return {
            "processed": result.processed,
            "charged": result.charged,
            "skipped": result.skipped,
            "processed_at": datetime.now(timezone.utc).isoformat(),
        }
    except Exception as exc:
        logger.error(f"No-show sweep failed: {exc}")
        raise self.retry(exc=exc, countdown=30)
    finally:
        db.close()


@typed_task(bind=True, max_retries=3, name="app.tasks.booking_tasks.evaluate_auto_release")
def evaluate_auto_release(self: Any) -> AutoReleaseResults:
    """Auto-release escrow for bookings completed longer ago than the configured delay."""
    db = _open_session()
    try:
        result = EscrowLedgerService(db).evaluate_auto_release()
        if result.failed:
            logger.warning(f"Auto-release failed for {len(result.failed)} bookings")
        logger.info(
            f"Auto-release evaluated {result.evaluated} bookings, released {len(result.released)}"
        )
        return {
            "evaluated": result.evaluated,
            "released": len(result.released),
            "failed": result.failed,
            "processed_at": datetime.now(timezone.utc).isoformat(),
        }
    except Exception as exc:
        logger.error(f"Auto-release job failed: {exc}")
        raise self.retry(exc=exc, countdown=300)
    finally:
        db.close()


@typed_task(
    bind=True, max_retries=3, name="app.tasks.booking_tasks.retry_failed_no_show_captures"
)
def retry_failed_no_show_captures(self: Any) -> CaptureRetryResults:
    """Retry no-show captures that failed at the gateway."""
    db = _open_session()
    try:
        captured = NoShowService(db).retry_failed_captures()
        if captured:
            logger.info(f"Captured {len(captured)} previously failed no-show charges")
        return {"captured": captured, "processed_at": datetime.now(timezone.utc).isoformat()}
    except Exception as exc:
        logger.error(f"No-show capture retry job failed: {exc}")
        raise self.retry(exc=exc, countdown=300)
    finally:
        db.close()
