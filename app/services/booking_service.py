from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from datetime import datetime
from typing import List, Optional
import logging

from ..core.database import transaction
from ..core.exceptions import (
    SlotNotFoundError, SlotUnavailableError, BookingNotFoundError,
    BookingNotCancellableError, NotOwnerError
)
from ..models.booking import Booking, BookingStatus
from ..models.doctor import Doctor
from ..models.slot import Slot
from ..models.user import User
from ..schemas.booking import UserBookingView, AdminBookingView

logger = logging.getLogger(__name__)

class BookingService:
    """Reserve and cancel slots.

    Every mutation runs in one transaction that holds the slot row lock, so
    concurrent calls against the same slot are serialized and a failure at
    any step leaves neither the slot nor the ledger changed.
    """

    def __init__(self, db: Session):
        self.db = db

    def reserve(self, slot_id: int, user_id: int) -> Booking:
        """Book a slot for a user, or fail if it is already taken."""
        with transaction(self.db):
            slot = self._lock_slot(slot_id)
            if slot is None:
                raise SlotNotFoundError()

            if slot.is_booked:
                logger.info(f"Slot {slot_id} already booked, rejecting user {user_id}")
                raise SlotUnavailableError()

            self._claim_slot(slot_id)
            booking = self._insert_booking(slot_id, user_id)

        self.db.refresh(booking)
        logger.info(f"Booking {booking.id} confirmed: slot {slot_id} for user {user_id}")
        return booking

    def cancel_as_user(self, booking_id: int, user_id: int) -> Booking:
        """Cancel an owned booking and release its slot immediately."""
        with transaction(self.db):
            booking = self._lock_booking_and_slot(booking_id)
            if booking.user_id != user_id:
                raise NotOwnerError()
            self._ensure_cancellable(booking)

            booking.transition(BookingStatus.CANCELLED)
            booking.slot.is_booked = False

        logger.info(f"Booking {booking_id} cancelled by user {user_id}, slot {booking.slot_id} released")
        return booking

    def cancel_as_admin(self, booking_id: int) -> Booking:
        """Move a booking to BUFFER; the slot stays held until the reconciler
        finalizes it after the buffer window."""
        with transaction(self.db):
            booking = self._lock_booking_and_slot(booking_id)
            self._ensure_cancellable(booking)

            booking.transition(BookingStatus.BUFFER)

        logger.info(f"Booking {booking_id} moved to BUFFER by admin, slot {booking.slot_id} held")
        return booking

    def get_booking(self, booking_id: int) -> Booking:
        booking = self.db.query(Booking).filter(Booking.id == booking_id).first()
        if not booking:
            raise BookingNotFoundError()
        return booking

    def list_user_bookings(self, user_id: int) -> List[UserBookingView]:
        rows = (
            self.db.query(
                Booking.id,
                Booking.status,
                Booking.created_at,
                Slot.start_time,
                Doctor.name.label("doctor_name"),
                Doctor.specialization,
            )
            .join(Slot, Booking.slot_id == Slot.id)
            .join(Doctor, Slot.doctor_id == Doctor.id)
            .filter(Booking.user_id == user_id)
            .order_by(Slot.start_time.asc())
            .all()
        )
        return [UserBookingView(**row._asdict()) for row in rows]

    def list_all_bookings(self, status: Optional[BookingStatus] = None) -> List[AdminBookingView]:
        query = (
            self.db.query(
                Booking.id.label("booking_id"),
                Booking.status,
                Booking.status_changed_at,
                Booking.created_at,
                User.name.label("patient_name"),
                User.email.label("patient_email"),
                Doctor.name.label("doctor_name"),
                Doctor.specialization,
                Slot.start_time,
            )
            .join(User, Booking.user_id == User.id)
            .join(Slot, Booking.slot_id == Slot.id)
            .join(Doctor, Slot.doctor_id == Doctor.id)
        )
        if status:
            query = query.filter(Booking.status == status)

        rows = query.order_by(Booking.created_at.desc(), Booking.id.desc()).all()
        return [AdminBookingView(**row._asdict()) for row in rows]

    def _lock_slot(self, slot_id: int) -> Optional[Slot]:
        """SELECT ... FOR UPDATE on the slot row, re-reading its state."""
        return (
            self.db.query(Slot)
            .filter(Slot.id == slot_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def _claim_slot(self, slot_id: int):
        # Guarded flip: only succeeds while the slot is still free
        claimed = (
            self.db.query(Slot)
            .filter(Slot.id == slot_id, Slot.is_booked == False)  # noqa: E712
            .update({Slot.is_booked: True}, synchronize_session=False)
        )
        if claimed != 1:
            raise SlotUnavailableError()

    def _insert_booking(self, slot_id: int, user_id: int) -> Booking:
        now = datetime.utcnow()
        booking = Booking(
            slot_id=slot_id,
            user_id=user_id,
            status=BookingStatus.CONFIRMED,
            status_changed_at=now,
            created_at=now,
        )
        self.db.add(booking)
        try:
            self.db.flush()
        except IntegrityError as exc:
            # Active-booking unique index
            raise SlotUnavailableError() from exc
        return booking

    def _lock_booking_and_slot(self, booking_id: int) -> Booking:
        """Lock the booking's slot, then the booking itself.

        The slot lock comes first so cancellations queue behind reservations
        of the same slot in the same order.
        """
        slot_id = (
            self.db.query(Booking.slot_id)
            .filter(Booking.id == booking_id)
            .scalar()
        )
        if slot_id is None:
            raise BookingNotFoundError()

        self._lock_slot(slot_id)
        booking = (
            self.db.query(Booking)
            .filter(Booking.id == booking_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if booking is None:
            raise BookingNotFoundError()
        return booking

    def _ensure_cancellable(self, booking: Booking):
        if booking.status != BookingStatus.CONFIRMED:
            raise BookingNotCancellableError(
                f"Booking is {booking.status.value} and cannot be cancelled"
            )
