import asyncio
import logging
from datetime import datetime, timedelta

import pytest
from sqlalchemy import event
from sqlalchemy.exc import OperationalError

from app.core.database import engine
from app.core.exceptions import TransactionFailedError
from app.jobs.reconciliation import ReconciliationJob
from app.models import Booking, BookingStatus, Slot
from app.services.booking_service import BookingService
from app.services.reconciliation_service import ReconciliationService, SweepResult
from tests.conftest import add_booking

PENDING_TIMEOUT = timedelta(minutes=2)
BUFFER_WINDOW = timedelta(minutes=10)


def _sweep(db, now=None):
    return ReconciliationService(
        db, pending_timeout=PENDING_TIMEOUT, buffer_window=BUFFER_WINDOW
    ).run_sweep(now)


def _state(db, booking, slot):
    db.expire_all()
    return db.get(Booking, booking.id).status, db.get(Slot, slot.id).is_booked


@pytest.fixture
def executed_sql(test_db):
    statements = []

    def record(conn, cursor, statement, parameters, context, executemany):
        statements.append(" ".join(statement.split()))

    event.listen(engine, "before_cursor_execute", record)
    yield statements
    event.remove(engine, "before_cursor_execute", record)


def _first_index(statements, prefix):
    return next(i for i, sql in enumerate(statements) if sql.startswith(prefix))


class TestSweep:

    def test_stale_pending_becomes_failed_and_slot_is_released(self, db_session, slot, patient):
        entered = datetime.utcnow() - PENDING_TIMEOUT - timedelta(seconds=5)
        booking = add_booking(db_session, slot, patient, BookingStatus.PENDING, entered_at=entered)
        slot.is_booked = True
        db_session.commit()

        result = _sweep(db_session)

        assert result == SweepResult(failed_count=1, released_count=0, slots_released=1)
        assert _state(db_session, booking, slot) == (BookingStatus.FAILED, False)

    def test_fresh_pending_is_left_alone(self, db_session, slot, patient):
        booking = add_booking(db_session, slot, patient, BookingStatus.PENDING)

        result = _sweep(db_session)

        assert result.failed_count == 0
        assert _state(db_session, booking, slot)[0] == BookingStatus.PENDING

    def test_buffer_is_held_until_window_elapses(self, db_session, slot, patient):
        service = BookingService(db_session)
        booking = service.reserve(slot.id, patient.id)
        service.cancel_as_admin(booking.id)
        buffered_at = db_session.get(Booking, booking.id).status_changed_at

        early = _sweep(db_session, now=buffered_at + BUFFER_WINDOW - timedelta(seconds=1))
        assert not early.changed
        assert _state(db_session, booking, slot) == (BookingStatus.BUFFER, True)

        late = _sweep(db_session, now=buffered_at + BUFFER_WINDOW + timedelta(seconds=1))
        assert late == SweepResult(failed_count=0, released_count=1, slots_released=1)
        assert _state(db_session, booking, slot) == (BookingStatus.CANCELLED, False)

    def test_buffer_deadline_counts_from_last_transition(self, db_session, slot, patient):
        # Confirmed an hour ago, buffered just now: the buffer window restarts
        long_ago = datetime.utcnow() - timedelta(hours=1)
        booking = add_booking(
            db_session, slot, patient, BookingStatus.CONFIRMED,
            entered_at=long_ago, created_at=long_ago,
        )
        BookingService(db_session).cancel_as_admin(booking.id)

        result = _sweep(db_session)

        assert result.released_count == 0
        assert _state(db_session, booking, slot) == (BookingStatus.BUFFER, True)

    def test_finalized_booking_gets_new_state_entry_time(self, db_session, slot, patient):
        entered = datetime.utcnow() - timedelta(hours=1)
        booking = add_booking(db_session, slot, patient, BookingStatus.BUFFER, entered_at=entered)
        now = datetime.utcnow()

        _sweep(db_session, now=now)

        db_session.expire_all()
        assert db_session.get(Booking, booking.id).status_changed_at == now

    def test_second_sweep_changes_nothing(self, db_session, slot, later_slot, patient, other_patient):
        stale = datetime.utcnow() - timedelta(hours=1)
        add_booking(db_session, slot, patient, BookingStatus.PENDING, entered_at=stale)
        add_booking(db_session, later_slot, other_patient, BookingStatus.BUFFER, entered_at=stale)

        first = _sweep(db_session)
        second = _sweep(db_session)

        assert first.failed_count == 1
        assert first.released_count == 1
        assert second == SweepResult()

    def test_terminal_bookings_are_ignored(self, db_session, slot, patient):
        stale = datetime.utcnow() - timedelta(hours=1)
        add_booking(db_session, slot, patient, BookingStatus.CANCELLED, entered_at=stale)
        add_booking(db_session, slot, patient, BookingStatus.FAILED, entered_at=stale)

        assert _sweep(db_session) == SweepResult()

    def test_slot_held_by_another_booking_stays_booked(self, db_session, slot, patient, other_patient):
        stale = datetime.utcnow() - timedelta(hours=1)
        pending = add_booking(db_session, slot, patient, BookingStatus.PENDING, entered_at=stale)
        add_booking(db_session, slot, other_patient, BookingStatus.CONFIRMED)

        result = _sweep(db_session)

        assert result.failed_count == 1
        assert result.slots_released == 0
        assert _state(db_session, pending, slot) == (BookingStatus.FAILED, True)

    def test_failed_sweep_rolls_back_everything(self, db_session, slot, later_slot, patient, other_patient, monkeypatch):
        stale = datetime.utcnow() - timedelta(hours=1)
        pending = add_booking(db_session, slot, patient, BookingStatus.PENDING, entered_at=stale)
        buffered = add_booking(db_session, later_slot, other_patient, BookingStatus.BUFFER, entered_at=stale)

        def broken_release(self, slot_ids):
            raise OperationalError("UPDATE slots", {}, Exception("lock timeout"))

        monkeypatch.setattr(ReconciliationService, "_release_slots", broken_release)
        with pytest.raises(TransactionFailedError):
            _sweep(db_session)
        monkeypatch.undo()

        assert _state(db_session, pending, slot)[0] == BookingStatus.PENDING
        assert _state(db_session, buffered, later_slot) == (BookingStatus.BUFFER, True)

        # The next sweep picks up the whole set
        retry = _sweep(db_session)
        assert retry.failed_count == 1
        assert retry.released_count == 1

    def test_slots_are_locked_before_bookings(self, db_session, slot, later_slot, patient, other_patient, executed_sql):
        stale = datetime.utcnow() - timedelta(hours=1)
        add_booking(db_session, slot, patient, BookingStatus.PENDING, entered_at=stale)
        add_booking(db_session, later_slot, other_patient, BookingStatus.BUFFER, entered_at=stale)
        executed_sql.clear()

        result = _sweep(db_session)

        assert result.failed_count == 1
        assert result.released_count == 1
        slot_lock = _first_index(executed_sql, "SELECT slots.id")
        booking_lock = _first_index(executed_sql, "SELECT bookings.id")
        booking_write = _first_index(executed_sql, "UPDATE bookings")
        assert slot_lock < booking_lock < booking_write
        assert "FROM bookings" in executed_sql[slot_lock]

    def test_default_windows_come_from_settings(self, db_session):
        service = ReconciliationService(db_session)
        assert service.pending_timeout == timedelta(minutes=2)
        assert service.buffer_window == timedelta(minutes=10)

    def test_zero_windows_are_honoured(self, db_session, slot, patient):
        booking = add_booking(db_session, slot, patient, BookingStatus.BUFFER)
        service = ReconciliationService(
            db_session, pending_timeout=timedelta(0), buffer_window=timedelta(0)
        )

        assert service.pending_timeout == timedelta(0)
        assert service.buffer_window == timedelta(0)

        result = service.run_sweep(now=datetime.utcnow() + timedelta(seconds=1))
        assert result.released_count == 1
        assert _state(db_session, booking, slot)[0] == BookingStatus.CANCELLED


class TestReconciliationJob:

    def test_run_once_returns_counts(self, test_db, db_session, slot, patient):
        stale = datetime.utcnow() - timedelta(hours=1)
        add_booking(db_session, slot, patient, BookingStatus.BUFFER, entered_at=stale)

        result = ReconciliationJob().run_once()

        assert result.released_count == 1

    def test_overlapping_sweep_is_skipped(self, test_db):
        job = ReconciliationJob()
        job._sweep_lock.acquire()
        try:
            assert job.sweep_in_progress
            assert job.run_once() is None
        finally:
            job._sweep_lock.release()

        assert job.run_once() == SweepResult()

    def test_guard_is_local_to_each_job(self, test_db):
        # Separate workers each own a job; their sweeps are not serialized
        busy = ReconciliationJob()
        busy._sweep_lock.acquire()
        try:
            assert ReconciliationJob().run_once() == SweepResult()
        finally:
            busy._sweep_lock.release()

    def test_interval_override_is_kept(self):
        assert ReconciliationJob(interval_seconds=0).interval_seconds == 0
        assert ReconciliationJob().interval_seconds == 60

    def test_failed_tick_is_logged_and_swallowed(self, test_db, monkeypatch, caplog):
        def failing_sweep(self, now=None):
            raise TransactionFailedError()

        monkeypatch.setattr(ReconciliationService, "run_sweep", failing_sweep)
        job = ReconciliationJob()

        with caplog.at_level(logging.ERROR, logger="app.jobs.reconciliation"):
            job._tick()

        assert "retrying on next tick" in caplog.text
        assert not job.sweep_in_progress

    def test_timer_keeps_ticking(self, test_db):
        ticks = []
        job = ReconciliationJob(interval_seconds=0.05)
        job.run_once = lambda now=None: ticks.append(datetime.utcnow())

        async def scenario():
            await job.start()
            assert job.running
            await asyncio.sleep(0.4)
            await job.stop()

        asyncio.run(scenario())

        assert len(ticks) >= 2
        assert not job.running
