from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple
import logging

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.database import transaction
from ..models.booking import Booking, BookingStatus, ACTIVE_STATUSES
from ..models.slot import Slot

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class SweepResult:
    failed_count: int = 0
    released_count: int = 0
    slots_released: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.failed_count or self.released_count or self.slots_released)

class ReconciliationService:
    """Resolve bookings left in transient states past their deadline.

    PENDING bookings older than the pending timeout become FAILED and BUFFER
    bookings older than the buffer window become CANCELLED. Ages are measured
    from ``status_changed_at``. One sweep is one transaction: either every
    stale booking found is finalized and its slot released, or nothing is.
    """

    def __init__(
        self,
        db: Session,
        pending_timeout: Optional[timedelta] = None,
        buffer_window: Optional[timedelta] = None,
    ):
        self.db = db
        if pending_timeout is None:
            pending_timeout = timedelta(seconds=settings.PENDING_TIMEOUT_SECONDS)
        if buffer_window is None:
            buffer_window = timedelta(seconds=settings.BUFFER_WINDOW_SECONDS)
        self.pending_timeout = pending_timeout
        self.buffer_window = buffer_window

    def run_sweep(self, now: Optional[datetime] = None) -> SweepResult:
        now = now or datetime.utcnow()

        pending_cutoff = now - self.pending_timeout
        buffer_cutoff = now - self.buffer_window

        with transaction(self.db):
            # Slots before bookings, the same order the booking engine locks in
            self._lock_affected_slots(pending_cutoff, buffer_cutoff)

            stale_pending = self._lock_stale(BookingStatus.PENDING, pending_cutoff)
            stale_buffer = self._lock_stale(BookingStatus.BUFFER, buffer_cutoff)

            self._finalize(stale_pending, BookingStatus.FAILED, now)
            self._finalize(stale_buffer, BookingStatus.CANCELLED, now)

            slot_ids = {slot_id for _, slot_id in stale_pending + stale_buffer}
            slots_released = self._release_slots(slot_ids)

        result = SweepResult(
            failed_count=len(stale_pending),
            released_count=len(stale_buffer),
            slots_released=slots_released,
        )
        if stale_pending:
            logger.info(f"Failed {result.failed_count} stale PENDING booking(s)")
        if stale_buffer:
            logger.info(f"Released {result.released_count} BUFFER booking(s) to the public pool")
        return result

    @staticmethod
    def _stale(status: BookingStatus, cutoff: datetime):
        return and_(Booking.status == status, Booking.status_changed_at < cutoff)

    def _lock_affected_slots(self, pending_cutoff: datetime, buffer_cutoff: datetime) -> List[int]:
        """Row-lock every slot that has a stale PENDING or BUFFER booking."""
        stale_slot_ids = select(Booking.slot_id).where(
            or_(
                self._stale(BookingStatus.PENDING, pending_cutoff),
                self._stale(BookingStatus.BUFFER, buffer_cutoff),
            )
        )
        rows = (
            self.db.query(Slot.id)
            .filter(Slot.id.in_(stale_slot_ids))
            .order_by(Slot.id)
            .with_for_update()
            .all()
        )
        return [row.id for row in rows]

    def _lock_stale(self, status: BookingStatus, cutoff: datetime) -> List[Tuple[int, int]]:
        """Row-lock bookings in ``status`` that entered it before ``cutoff``."""
        rows = (
            self.db.query(Booking.id, Booking.slot_id)
            .filter(self._stale(status, cutoff))
            .order_by(Booking.id)
            .with_for_update()
            .all()
        )
        return [(row.id, row.slot_id) for row in rows]

    def _finalize(self, stale: List[Tuple[int, int]], status: BookingStatus, now: datetime):
        if not stale:
            return
        booking_ids = [booking_id for booking_id, _ in stale]
        self.db.query(Booking).filter(Booking.id.in_(booking_ids)).update(
            {Booking.status: status, Booking.status_changed_at: now},
            synchronize_session=False,
        )

    def _release_slots(self, slot_ids: Iterable[int]) -> int:
        """Free the given slots unless another active booking still holds one."""
        slot_ids = sorted(slot_ids)
        if not slot_ids:
            return 0

        still_held = (
            select(Booking.id)
            .where(and_(Booking.slot_id == Slot.id, Booking.status.in_(ACTIVE_STATUSES)))
            .correlate(Slot)
            .exists()
        )
        return (
            self.db.query(Slot)
            .filter(Slot.id.in_(slot_ids), Slot.is_booked == True, ~still_held)  # noqa: E712
            .update({Slot.is_booked: False}, synchronize_session=False)
        )
