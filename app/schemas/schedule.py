from datetime import datetime
from typing import List
from pydantic import BaseModel, ConfigDict, Field

class DoctorCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    specialization: str = Field(min_length=1, max_length=100)

class SlotCreate(BaseModel):
    doctor_id: int
    start_time: datetime

class SlotResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    doctor_id: int
    start_time: datetime
    is_booked: bool

class DoctorResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    specialization: str

class DoctorWithSlots(DoctorResponse):
    slots: List[SlotResponse] = []
