from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal

import pytest

from app.core.money import money_or_none, percent_of, quantize_money, to_decimal
from app.core.timezone_utils import ensure_utc, hours_between, local_to_utc, to_local


class TestMoney:
    def test_to_decimal_avoids_float_artifacts(self):
        assert to_decimal(0.1) == Decimal("0.1")
        assert to_decimal("25") == Decimal("25")

    @pytest.mark.parametrize(
        "value,expected",
        [("1.875", "1.88"), ("1.874", "1.87"), ("0.005", "0.01"), (50, "50.00")],
    )
    def test_quantize_rounds_half_up(self, value, expected):
        assert quantize_money(value) == Decimal(expected)

    def test_percent_of(self):
        assert percent_of(Decimal("50.00"), Decimal("5")) == Decimal("2.50")
        assert percent_of(Decimal("37.50"), 5.0) == Decimal("1.88")

    def test_money_or_none(self):
        assert money_or_none(None) is None
        assert money_or_none("3.456") == Decimal("3.46")


class TestTimezones:
    def test_local_to_utc_standard_time(self):
        assert local_to_utc(date(2026, 3, 5), time(10, 0)) == datetime(
            2026, 3, 5, 15, 0, tzinfo=timezone.utc
        )

    def test_local_to_utc_daylight_time(self):
        assert local_to_utc(date(2026, 7, 1), time(10, 0)) == datetime(
            2026, 7, 1, 14, 0, tzinfo=timezone.utc
        )

    def test_explicit_zone(self):
        assert local_to_utc(date(2026, 3, 5), time(10, 0), "America/Los_Angeles") == datetime(
            2026, 3, 5, 18, 0, tzinfo=timezone.utc
        )

    def test_unknown_zone_falls_back_to_default(self):
        assert to_local(datetime(2026, 3, 5, 15, 0, tzinfo=timezone.utc), "Mars/Olympus").hour == 10

    def test_ensure_utc(self):
        assert ensure_utc(None) is None
        assert ensure_utc(datetime(2026, 3, 5, 15, 0)).tzinfo == timezone.utc

    def test_hours_between_is_exact(self):
        start = datetime(2026, 3, 5, 15, 0, tzinfo=timezone.utc)
        assert hours_between(start, start + timedelta(minutes=90)) == Decimal("1.5")
        assert hours_between(start, start + timedelta(seconds=36)) == Decimal("0.01")

    def test_missing_datetimes_raise_value_error(self):
        start = datetime(2026, 3, 5, 15, 0, tzinfo=timezone.utc)
        with pytest.raises(ValueError):
            hours_between(start, None)
        with pytest.raises(ValueError):
            to_local(None, "America/New_York")
