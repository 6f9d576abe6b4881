from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List

from ...core.database import get_db
from ...api.deps import get_admin_user
from ...services.schedule_service import ScheduleService
from ...schemas.schedule import DoctorWithSlots, SlotCreate, SlotResponse

router = APIRouter(tags=["Doctors"])

@router.get("/doctors", response_model=List[DoctorWithSlots])
def list_doctors(db: Session = Depends(get_db)):
    """Public listing of doctors and their slot availability."""
    doctors = ScheduleService(db).list_doctors()
    return [DoctorWithSlots.model_validate(doctor) for doctor in doctors]

@router.post("/slots", response_model=SlotResponse, status_code=201, dependencies=[Depends(get_admin_user)])
def create_slot(slot_data: SlotCreate, db: Session = Depends(get_db)):
    """Create a bookable slot (admin only)."""
    slot = ScheduleService(db).create_slot(slot_data.doctor_id, slot_data.start_time)
    return SlotResponse.model_validate(slot)
