from sqlalchemy.orm import Session, selectinload
from sqlalchemy.exc import IntegrityError
from datetime import datetime
from typing import List
import logging

from ..core.database import transaction
from ..core.exceptions import DoctorNotFoundError, SlotNotFoundError, SlotExistsError
from ..models.booking import Booking
from ..models.doctor import Doctor
from ..models.slot import Slot

logger = logging.getLogger(__name__)

class ScheduleService:
    """Doctor and slot administration, including cascading deletes."""

    def __init__(self, db: Session):
        self.db = db

    def create_doctor(self, name: str, specialization: str) -> Doctor:
        doctor = Doctor(name=name.strip(), specialization=specialization.strip())
        with transaction(self.db):
            self.db.add(doctor)

        self.db.refresh(doctor)
        logger.info(f"Doctor {doctor.id} created")
        return doctor

    def list_doctors(self) -> List[Doctor]:
        """All doctors with their slots, ordered by start time."""
        return (
            self.db.query(Doctor)
            .options(selectinload(Doctor.slots))
            .order_by(Doctor.id.asc())
            .all()
        )

    def create_slot(self, doctor_id: int, start_time: datetime) -> Slot:
        with transaction(self.db):
            doctor = self.db.query(Doctor).filter(Doctor.id == doctor_id).first()
            if not doctor:
                raise DoctorNotFoundError()

            slot = Slot(doctor_id=doctor_id, start_time=start_time, is_booked=False)
            self.db.add(slot)
            try:
                self.db.flush()
            except IntegrityError as exc:
                raise SlotExistsError() from exc

        self.db.refresh(slot)
        logger.info(f"Slot {slot.id} created for doctor {doctor_id} at {start_time.isoformat()}")
        return slot

    def delete_slot(self, slot_id: int) -> int:
        """Delete a slot and every booking referencing it.

        Returns the number of bookings removed.
        """
        with transaction(self.db):
            slot = (
                self.db.query(Slot)
                .filter(Slot.id == slot_id)
                .with_for_update()
                .first()
            )
            if not slot:
                raise SlotNotFoundError()

            removed = (
                self.db.query(Booking)
                .filter(Booking.slot_id == slot_id)
                .delete(synchronize_session=False)
            )
            self.db.query(Slot).filter(Slot.id == slot_id).delete(synchronize_session=False)

        self.db.expunge_all()
        logger.info(f"Slot {slot_id} deleted with {removed} booking(s)")
        return removed

    def delete_doctor(self, doctor_id: int) -> int:
        """Delete a doctor, its slots and their bookings as one unit.

        Returns the number of slots removed.
        """
        with transaction(self.db):
            doctor = self.db.query(Doctor).filter(Doctor.id == doctor_id).first()
            if not doctor:
                raise DoctorNotFoundError()

            slot_ids = [
                row.id for row in
                self.db.query(Slot.id)
                .filter(Slot.doctor_id == doctor_id)
                .with_for_update()
                .all()
            ]

            if slot_ids:
                self.db.query(Booking).filter(
                    Booking.slot_id.in_(slot_ids)
                ).delete(synchronize_session=False)
                self.db.query(Slot).filter(
                    Slot.id.in_(slot_ids)
                ).delete(synchronize_session=False)

            self.db.query(Doctor).filter(Doctor.id == doctor_id).delete(synchronize_session=False)

        self.db.expunge_all()
        logger.info(f"Doctor {doctor_id} deleted with {len(slot_ids)} slot(s)")
        return len(slot_ids)
