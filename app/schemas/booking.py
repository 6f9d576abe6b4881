from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict

from ..models.booking import BookingStatus

class BookingCreate(BaseModel):
    slot_id: int

class BookingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    slot_id: int
    user_id: int
    status: BookingStatus
    status_changed_at: datetime
    created_at: datetime

class UserBookingView(BaseModel):
    """A patient's booking with the slot and doctor it refers to."""

    id: int
    status: BookingStatus
    created_at: datetime
    start_time: datetime
    doctor_name: str
    specialization: str

class AdminBookingView(BaseModel):
    booking_id: int
    status: BookingStatus
    status_changed_at: datetime
    created_at: datetime
    patient_name: str
    patient_email: str
    doctor_name: str
    specialization: str
    start_time: datetime

class SweepResponse(BaseModel):
    failed_count: int
    released_count: int
    slots_released: int

class MessageResponse(BaseModel):
    message: str
    booking: Optional[BookingResponse] = None
