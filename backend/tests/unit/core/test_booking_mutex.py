import pytest

from app.core import booking_lock
from app.core.exceptions import StateConflictException
from app.services.base import booking_mutex


class TestBookingMutex:
    def test_held_mutex_rejects_second_holder(self):
        with booking_mutex("01J0B00K1NG000000000000001"):
            with pytest.raises(StateConflictException):
                with booking_mutex("01J0B00K1NG000000000000001"):
                    pass

    def test_released_after_exit(self):
        with booking_mutex("01J0B00K1NG000000000000002"):
            pass
        with booking_mutex("01J0B00K1NG000000000000002"):
            pass

    def test_released_when_body_raises(self):
        with pytest.raises(RuntimeError):
            with booking_mutex("01J0B00K1NG000000000000003"):
                raise RuntimeError("boom")
        assert "01J0B00K1NG000000000000003" not in booking_lock._HELD

    def test_different_bookings_do_not_block(self):
        with booking_mutex("01J0B00K1NG000000000000004"):
            with booking_mutex("01J0B00K1NG000000000000005"):
                pass

    def test_falls_back_to_local_when_redis_unreachable(self, monkeypatch):
        monkeypatch.setattr(booking_lock, "_get_sync_redis", lambda: None)
        assert booking_lock.acquire_booking_lock_sync("01J0B00K1NG000000000000006") is True
        assert booking_lock._HELD["01J0B00K1NG000000000000006"] == "local"
        booking_lock.release_booking_lock_sync("01J0B00K1NG000000000000006")
        assert "01J0B00K1NG000000000000006" not in booking_lock._HELD

    def test_local_lock_entry_dropped_on_release(self, monkeypatch):
        monkeypatch.setattr(booking_lock, "_get_sync_redis", lambda: None)
        booking_id = "01J0B00K1NG000000000000007"

        with booking_mutex(booking_id):
            assert booking_id in booking_lock._LOCAL_LOCKS
            with pytest.raises(StateConflictException):
                with booking_mutex(booking_id):
                    pass
            assert booking_id in booking_lock._LOCAL_LOCKS

        assert booking_id not in booking_lock._LOCAL_LOCKS
        with booking_mutex(booking_id):
            pass
        assert booking_id not in booking_lock._LOCAL_LOCKS
