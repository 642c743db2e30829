from __future__ import annotations

from contextlib import contextmanager
import logging
import threading
import time
from typing import Dict, Iterator, Optional

from redis import Redis

from app.core.config import settings
from app.monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

_SYNC_REDIS: Optional[Redis] = None
_SYNC_REDIS_LOCK = threading.Lock()

# In-process mutexes, used when Redis is unavailable or the local backend is configured
_LOCAL_LOCKS: Dict[str, threading.Lock] = {}
_LOCAL_LOCKS_GUARD = threading.Lock()

# booking_id -> backend that granted the currently held lock ("redis" | "local")
_HELD: Dict[str, str] = {}


def _lock_key(booking_id: str) -> str:
    return f"booking:{booking_id}:mutex"


def _namespaced_key(key: str) -> str:
    return f"{settings.redis_key_namespace}:lock:{key}"


def _get_sync_redis() -> Optional[Redis]:
    global _SYNC_REDIS
    if settings.booking_lock_backend == "local":
        return None
    if _SYNC_REDIS is not None:
        return _SYNC_REDIS
    with _SYNC_REDIS_LOCK:
        if _SYNC_REDIS is not None:
            return _SYNC_REDIS
        try:
            client = Redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=1,
            )
            client.ping()
        except Exception as exc:
            logger.warning("booking_lock_sync_redis_unavailable: %s", exc)
            return None
        _SYNC_REDIS = client
        return _SYNC_REDIS


def _acquire_local(booking_id: str) -> bool:
    with _LOCAL_LOCKS_GUARD:
        lock = _LOCAL_LOCKS.setdefault(booking_id, threading.Lock())
        acquired = lock.acquire(blocking=False)
    if acquired:
        _HELD[booking_id] = "local"
        prometheus_metrics.record_booking_lock("acquire", "local")
    else:
        prometheus_metrics.record_booking_lock("acquire", "blocked")
    return acquired


def _release_local(booking_id: str) -> None:
    # Local acquires never wait, so no other caller holds this lock object
    with _LOCAL_LOCKS_GUARD:
        lock = _LOCAL_LOCKS.pop(booking_id, None)
        if lock is not None:
            lock.release()


def acquire_booking_lock_sync(booking_id: str, ttl_s: Optional[int] = None) -> bool:
    ttl = ttl_s or settings.booking_lock_ttl_seconds
    client = _get_sync_redis()
    if client is None:
        return _acquire_local(booking_id)
    try:
        acquired = bool(
            client.set(_namespaced_key(_lock_key(booking_id)), str(time.time()), nx=True, ex=ttl)
        )
    except Exception as exc:
        prometheus_metrics.record_booking_lock("acquire", "error")
        logger.warning(
            "booking_lock_sync_failed",
            extra={
                "booking_id": booking_id,
                "error": str(exc),
                "error_type": type(exc).__name__,
            },
        )
        return _acquire_local(booking_id)
    if acquired:
        _HELD[booking_id] = "redis"
        prometheus_metrics.record_booking_lock("acquire", "success")
    else:
        prometheus_metrics.record_booking_lock("acquire", "blocked")
    return acquired


def release_booking_lock_sync(booking_id: str) -> None:
    backend = _HELD.pop(booking_id, None)
    if backend == "local":
        _release_local(booking_id)
        prometheus_metrics.record_booking_lock("release", "local")
        return
    client = _get_sync_redis()
    if backend is None or client is None:
        prometheus_metrics.record_booking_lock("release", "not_found")
        return
    try:
        deleted = client.delete(_namespaced_key(_lock_key(booking_id)))
        if deleted:
            prometheus_metrics.record_booking_lock("release", "success")
        else:
            prometheus_metrics.record_booking_lock("release", "not_found")
    except Exception as exc:
        prometheus_metrics.record_booking_lock("release", "error")
        logger.warning(
            "booking_lock_sync_release_failed",
            extra={
                "booking_id": booking_id,
                "error": str(exc),
                "error_type": type(exc).__name__,
            },
        )


@contextmanager
def booking_lock_sync(booking_id: str, ttl_s: Optional[int] = None) -> Iterator[bool]:
    acquired = acquire_booking_lock_sync(booking_id, ttl_s=ttl_s)
    try:
        yield acquired
    finally:
        if acquired:
            release_booking_lock_sync(booking_id)
