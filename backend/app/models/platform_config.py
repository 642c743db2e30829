"""Database model for platform configuration."""

from sqlalchemy import JSON, Column, Text

from ..database import Base
from .types import UTCDateTime


class PlatformConfig(Base):
    """Key/value configuration stored as JSON for admin-editable settings."""

    __tablename__ = "platform_config"

    key = Column(Text, primary_key=True, nullable=False)
    value_json = Column(JSON, nullable=False)
    updated_by = Column(Text, nullable=True)
    updated_at = Column(UTCDateTime, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<PlatformConfig key={self.key}>"


__all__ = ["PlatformConfig"]
