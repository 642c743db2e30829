from datetime import datetime, timezone

import pytest

from app.core.config import settings
from app.core.exceptions import ValidationException
from app.models.platform_config import PlatformConfig
from app.services import config_service
from app.services.config_service import PLATFORM_SETTINGS_KEY, PlatformSettingsService
from tests._utils import ADMIN_ID

UPDATED_AT = datetime(2026, 3, 1, tzinfo=timezone.utc)


class TestPlatformSettingsService:
    def test_defaults_without_stored_row(self, settings_service):
        current, updated_at = settings_service.get_settings_with_timestamp()

        assert current.commission_rate == 5.0
        assert current.auto_release_hours == 24
        assert current.no_show_grace_minutes == 15
        assert current.min_hourly_rate == 15
        assert current.max_hourly_rate == 200
        assert current.booking_buffer_hours == 2
        assert current.platform_email == "support@cleanconnect.com"
        assert updated_at is None

    def test_partial_update_merges(self, db, settings_service):
        updated, updated_at = settings_service.update_settings(
            {"commission_rate": 7.5, "auto_release_hours": None}, updated_by=ADMIN_ID
        )

        assert updated.commission_rate == 7.5
        assert updated.auto_release_hours == 24
        assert updated_at is not None
        record = db.query(PlatformConfig).filter_by(key=PLATFORM_SETTINGS_KEY).one()
        assert record.updated_by == ADMIN_ID
        assert record.value_json["commission_rate"] == 7.5

    @pytest.mark.parametrize(
        "changes",
        [
            {"commission_rate": 150},
            {"min_hourly_rate": 50, "max_hourly_rate": 40},
            {"no_show_grace_minutes": 0},
            {"platform_email": "not-an-email"},
        ],
    )
    def test_rejects_invalid_values(self, db, settings_service, changes):
        with pytest.raises(ValidationException):
            settings_service.update_settings(changes, updated_by=ADMIN_ID)
        assert db.query(PlatformConfig).count() == 0

    def test_stored_row_missing_new_keys_uses_defaults(self, db, settings_service):
        db.add(
            PlatformConfig(
                key=PLATFORM_SETTINGS_KEY, value_json={"commission_rate": 8}, updated_at=UPDATED_AT
            )
        )
        db.commit()

        current = settings_service.get_settings()

        assert current.commission_rate == 8
        assert current.no_show_grace_minutes == 15

    def test_cache_serves_stale_value_until_invalidated(self, monkeypatch, db):
        monkeypatch.setattr(settings, "platform_settings_cache_ttl_seconds", 300)
        service = PlatformSettingsService(db)
        assert service.get_settings().commission_rate == 5.0

        # Written behind the service's back: cached value survives
        db.add(
            PlatformConfig(
                key=PLATFORM_SETTINGS_KEY, value_json={"commission_rate": 9}, updated_at=UPDATED_AT
            )
        )
        db.commit()
        assert service.get_settings().commission_rate == 5.0

        config_service.invalidate_platform_settings_cache()
        assert service.get_settings().commission_rate == 9

    def test_update_invalidates_cache(self, monkeypatch, db):
        monkeypatch.setattr(settings, "platform_settings_cache_ttl_seconds", 300)
        service = PlatformSettingsService(db)
        service.get_settings()

        service.update_settings({"auto_release_hours": 48}, updated_by=ADMIN_ID)

        assert service.get_settings().auto_release_hours == 48
