# backend/app/core/enums.py
"""
Core enums for the CleanConnect platform.

Role names are asserted by the caller (``X-Actor-Role``); authentication
happens upstream of this service.
"""

from dataclasses import dataclass
from enum import Enum


class RoleName(str, Enum):
    """Roles an actor may hold when calling the booking core."""

    ADMIN = "admin"
    PROVIDER = "provider"
    CUSTOMER = "customer"
    SYSTEM = "system"


SYSTEM_ACTOR_ID = "system"


@dataclass(frozen=True)
class Actor:
    """The user (or scheduler) performing an operation."""

    id: str
    role: RoleName = RoleName.CUSTOMER

    @property
    def is_admin(self) -> bool:
        return self.role == RoleName.ADMIN

    @classmethod
    def system(cls) -> "Actor":
        return cls(id=SYSTEM_ACTOR_ID, role=RoleName.SYSTEM)
