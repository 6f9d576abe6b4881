"""
MediSlot

FastAPI service for booking doctor appointment slots: row-locked
reservations, buffered admin cancellations and a periodic reconciliation
sweep that finalizes stale bookings.
"""

__version__ = "1.0.0"
