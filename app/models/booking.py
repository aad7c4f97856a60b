"""
Booking model for customer service appointments.

Bookings are owned by the booking module; the job card core only reads
them and flips their status to ``completed`` when the linked job card
is completed.
"""

from sqlalchemy import Column, Integer, String, Date, DateTime, ForeignKey, Text
from sqlalchemy.sql import func

from app.database import Base


class Booking(Base):
    """Service booking made by a customer."""

    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=True, index=True)

    service_type = Column(String(50), nullable=False, default="general_service")
    booking_date = Column(Date)
    status = Column(String(20), default="pending")
    # pending, confirmed, in_progress, completed, cancelled

    notes = Column(Text)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<Booking {self.id} - {self.service_type} ({self.status})>"
