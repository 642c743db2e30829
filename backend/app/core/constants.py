"""Application-wide constants for CleanConnect platform."""

from __future__ import annotations

from decimal import Decimal

BRAND_NAME = "CleanConnect"

# Money
MONEY_QUANTUM = Decimal("0.01")

# Worked hours are stored to the microhour
HOURS_QUANTUM = Decimal("0.000001")

# No-show policy: the penalty is one hour of the booked hourly rate
NO_SHOW_CHARGE_HOURS = Decimal("1")

# Text constraints
MAX_REASON_LENGTH = 500
MAX_APPEAL_DESCRIPTION_LENGTH = 2000
MAX_REVIEWER_NOTES_LENGTH = 2000

# Query limits
DEFAULT_QUERY_LIMIT = 100

# API metadata
API_TITLE = f"{BRAND_NAME} API"
API_DESCRIPTION = "Booking lifecycle and escrow payments for the CleanConnect marketplace"
API_VERSION = "1.0.0"

# CORS
ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
