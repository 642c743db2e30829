# backend/app/api/dependencies/__init__.py
"""
Central export point for all dependencies.

This module re-exports all dependencies from submodules
for convenient access throughout the application.
"""

from .auth import get_current_actor, require_admin
from .database import get_db
from .services import (
    get_appeal_service,
    get_arrival_verifier,
    get_booking_state_machine,
    get_escrow_ledger_service,
    get_gateway,
    get_no_show_service,
    get_notification_service,
    get_platform_settings_service,
    get_time_tracker,
)

__all__ = [
    # Actor
    "get_current_actor",
    "require_admin",
    # Database
    "get_db",
    # Services
    "get_appeal_service",
    "get_arrival_verifier",
    "get_booking_state_machine",
    "get_escrow_ledger_service",
    "get_gateway",
    "get_no_show_service",
    "get_notification_service",
    "get_platform_settings_service",
    "get_time_tracker",
]
