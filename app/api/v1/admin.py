from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List, Optional

from ...core.config import settings
from ...core.database import get_db
from ...core.exceptions import SweepInProgressError
from ...api.deps import get_admin_user
from ...jobs.reconciliation import reconciliation_job
from ...models.booking import BookingStatus
from ...services.booking_service import BookingService
from ...services.schedule_service import ScheduleService
from ...schemas.booking import AdminBookingView, BookingResponse, MessageResponse, SweepResponse
from ...schemas.schedule import DoctorCreate, DoctorResponse

router = APIRouter(
    prefix="/admin",
    tags=["Admin"],
    dependencies=[Depends(get_admin_user)]
)

@router.post("/doctors", response_model=DoctorResponse, status_code=201)
def create_doctor(doctor_data: DoctorCreate, db: Session = Depends(get_db)):
    doctor = ScheduleService(db).create_doctor(doctor_data.name, doctor_data.specialization)
    return DoctorResponse.model_validate(doctor)

@router.get("/bookings", response_model=List[AdminBookingView])
def list_bookings(
    status: Optional[BookingStatus] = None,
    db: Session = Depends(get_db)
):
    """Dashboard view of every booking, newest first."""
    return BookingService(db).list_all_bookings(status)

@router.delete("/bookings/{booking_id}", response_model=MessageResponse)
def cancel_booking(booking_id: int, db: Session = Depends(get_db)):
    """Cancel with buffering: the slot is held until the buffer window ends."""
    booking = BookingService(db).cancel_as_admin(booking_id)
    minutes = settings.BUFFER_WINDOW_SECONDS // 60
    return MessageResponse(
        message=f"Booking moved to BUFFER state. It will be released to the public in {minutes} minutes.",
        booking=BookingResponse.model_validate(booking)
    )

@router.delete("/slots/{slot_id}")
def delete_slot(slot_id: int, db: Session = Depends(get_db)):
    removed = ScheduleService(db).delete_slot(slot_id)
    return {"message": "Slot deleted", "bookings_removed": removed}

@router.delete("/doctors/{doctor_id}")
def delete_doctor(doctor_id: int, db: Session = Depends(get_db)):
    removed = ScheduleService(db).delete_doctor(doctor_id)
    return {"message": "Doctor and all associated data deleted", "slots_removed": removed}

@router.post("/reconcile", response_model=SweepResponse)
def run_reconciliation():
    """Run a reconciliation sweep now instead of waiting for the next tick."""
    result = reconciliation_job.run_once()
    if result is None:
        raise SweepInProgressError()
    return SweepResponse(
        failed_count=result.failed_count,
        released_count=result.released_count,
        slots_released=result.slots_released
    )
