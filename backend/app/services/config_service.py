"""Service helpers for platform configuration."""

from __future__ import annotations

from datetime import datetime, timezone
import threading
from time import monotonic
from typing import Any, Dict, Optional, Tuple

from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import ValidationException
from app.repositories.factory import RepositoryFactory
from app.schemas.platform_settings import PlatformSettings

PLATFORM_SETTINGS_KEY = "platform_settings"

DEFAULT_PLATFORM_SETTINGS: Dict[str, Any] = PlatformSettings().model_dump()

# (loaded_at, settings, updated_at) shared by every session in the process
_cache_lock = threading.Lock()
_cache_entry: Optional[Tuple[float, PlatformSettings, Optional[datetime]]] = None


def invalidate_platform_settings_cache() -> None:
    global _cache_entry
    with _cache_lock:
        _cache_entry = None


class PlatformSettingsService:
    """
    Single read/write point for admin-editable platform settings.

    Reads go through an in-process cache; a value may be up to
    ``PLATFORM_SETTINGS_CACHE_TTL_SECONDS`` stale. Writes invalidate it.
    """

    def __init__(self, db: Session) -> None:
        self.db = db
        self.repo = RepositoryFactory.create_platform_config_repository(db)

    def get_settings(self) -> PlatformSettings:
        return self.get_settings_with_timestamp()[0]

    def get_settings_with_timestamp(self) -> Tuple[PlatformSettings, Optional[datetime]]:
        global _cache_entry
        ttl = settings.platform_settings_cache_ttl_seconds
        entry = _cache_entry
        if entry is not None and ttl > 0 and (monotonic() - entry[0]) <= ttl:
            return entry[1], entry[2]

        loaded, updated_at = self._load()
        with _cache_lock:
            _cache_entry = (monotonic(), loaded, updated_at)
        return loaded, updated_at

    def update_settings(
        self, changes: Dict[str, Any], *, updated_by: Optional[str] = None
    ) -> Tuple[PlatformSettings, datetime]:
        current, _ = self._load()
        merged = {**current.model_dump(), **{k: v for k, v in changes.items() if v is not None}}
        try:
            validated = PlatformSettings(**merged)
        except ValidationError as exc:
            raise ValidationException(
                "Invalid platform settings",
                details={"errors": exc.errors(include_url=False, include_context=False)},
            ) from exc

        now = datetime.now(timezone.utc)
        record = self.repo.upsert(
            key=PLATFORM_SETTINGS_KEY,
            value=validated.model_dump(mode="json"),
            updated_at=now,
            updated_by=updated_by,
        )
        self.db.commit()  # repo-pattern-ignore: settings writes are single-statement
        invalidate_platform_settings_cache()
        return validated, record.updated_at or now

    def _load(self) -> Tuple[PlatformSettings, Optional[datetime]]:
        record = self.repo.get_by_key(PLATFORM_SETTINGS_KEY)
        if record is None or not record.value_json:
            return PlatformSettings(**DEFAULT_PLATFORM_SETTINGS), None
        # Stored rows may predate newer keys; defaults fill the gaps
        return PlatformSettings(**{**DEFAULT_PLATFORM_SETTINGS, **record.value_json}), record.updated_at
