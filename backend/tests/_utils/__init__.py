"""Shared helpers for backend test suites."""

from .gateway import FakePaymentGateway
from .ids import (
    ADMIN_ID,
    BOOKING_DATE,
    CREATED_AT,
    CUSTOMER_ID,
    OTHER_USER_ID,
    PROVIDER_ID,
    START_TIME,
    actor_headers,
)

__all__ = [
    "ADMIN_ID",
    "BOOKING_DATE",
    "CREATED_AT",
    "CUSTOMER_ID",
    "OTHER_USER_ID",
    "PROVIDER_ID",
    "START_TIME",
    "FakePaymentGateway",
    "actor_headers",
]
