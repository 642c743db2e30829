"""Pydantic schemas for admin-editable platform settings."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, model_validator

from .base import StrictRequestModel


class PlatformSettings(BaseModel):
    commission_rate: float = Field(
        5.0, ge=0, lt=100, description="Platform commission as a percentage (5.0 means 5%)"
    )
    auto_release_hours: int = Field(
        24, ge=0, description="Hours after completion before escrow is released automatically"
    )
    no_show_grace_minutes: int = Field(
        15, ge=1, description="Minutes a provider waits for access before a no-show charge"
    )
    min_hourly_rate: float = Field(15, gt=0, description="Lowest hourly rate a booking may use")
    max_hourly_rate: float = Field(200, gt=0, description="Highest hourly rate a booking may use")
    booking_buffer_hours: int = Field(
        2, ge=0, description="Minimum lead time between booking creation and start"
    )
    platform_email: EmailStr = Field("support@cleanconnect.com")

    @model_validator(mode="after")
    def validate_rate_bounds(self) -> "PlatformSettings":
        if self.max_hourly_rate < self.min_hourly_rate:
            raise ValueError("max_hourly_rate must be greater than or equal to min_hourly_rate")
        return self


class PlatformSettingsUpdate(StrictRequestModel):
    """Partial update; omitted fields keep their stored value."""

    commission_rate: Optional[float] = None
    auto_release_hours: Optional[int] = None
    no_show_grace_minutes: Optional[int] = None
    min_hourly_rate: Optional[float] = None
    max_hourly_rate: Optional[float] = None
    booking_buffer_hours: Optional[int] = None
    platform_email: Optional[str] = None


class PlatformSettingsResponse(BaseModel):
    settings: PlatformSettings
    updated_at: Optional[datetime] = None
