from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List

from ...core.database import get_db
from ...api.deps import get_current_user
from ...services.booking_service import BookingService
from ...schemas.booking import BookingCreate, BookingResponse, MessageResponse, UserBookingView
from ...models.user import User

router = APIRouter(prefix="/bookings", tags=["Bookings"])

# Sync handlers: FastAPI runs each call in its own worker thread, so a request
# waiting on a slot row lock does not stall the event loop.

@router.post("", response_model=MessageResponse, status_code=201)
def book_slot(
    booking_data: BookingCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Reserve a slot. Responds 409 when the slot is already booked."""
    booking = BookingService(db).reserve(booking_data.slot_id, current_user.id)
    return MessageResponse(
        message="Booking confirmed",
        booking=BookingResponse.model_validate(booking)
    )

@router.get("/my", response_model=List[UserBookingView])
def my_bookings(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """List the caller's bookings ordered by appointment time."""
    return BookingService(db).list_user_bookings(current_user.id)

@router.delete("/my/{booking_id}", response_model=MessageResponse)
def cancel_my_booking(
    booking_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Cancel one of the caller's bookings; the slot is released at once."""
    booking = BookingService(db).cancel_as_user(booking_id, current_user.id)
    return MessageResponse(
        message="Booking cancelled successfully",
        booking=BookingResponse.model_validate(booking)
    )
