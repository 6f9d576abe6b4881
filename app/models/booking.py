from datetime import datetime
from sqlalchemy import Column, Integer, ForeignKey, DateTime, Index, Enum as SQLEnum, text
from sqlalchemy.orm import relationship
import enum

from ..core.database import Base

class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    BUFFER = "BUFFER"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"

# Statuses that hold the slot (is_booked is true while one of these exists)
ACTIVE_STATUSES = (BookingStatus.CONFIRMED, BookingStatus.BUFFER)
TERMINAL_STATUSES = (BookingStatus.CANCELLED, BookingStatus.FAILED)

class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)

    slot_id = Column(Integer, ForeignKey("slots.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    status = Column(
        SQLEnum(BookingStatus, native_enum=False, length=20),
        nullable=False,
        default=BookingStatus.CONFIRMED,
    )

    # State-entry timestamp, rewritten on every status change. The reconciler
    # measures PENDING and BUFFER deadlines from it.
    status_changed_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Relationships
    slot = relationship("Slot", back_populates="bookings")
    user = relationship("User", back_populates="bookings")

    __table_args__ = (
        # At most one active booking per slot
        Index(
            "uq_bookings_active_slot",
            "slot_id",
            unique=True,
            postgresql_where=text("status IN ('CONFIRMED', 'BUFFER')"),
            sqlite_where=text("status IN ('CONFIRMED', 'BUFFER')"),
        ),
    )

    def transition(self, status: BookingStatus, at: datetime = None):
        """Move to ``status`` and restart the state-entry clock."""
        self.status = status
        self.status_changed_at = at or datetime.utcnow()

    def __repr__(self):
        return f"<Booking(id={self.id}, slot_id={self.slot_id}, user_id={self.user_id}, status='{self.status}')>"
