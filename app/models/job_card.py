"""
Job card models.

A job card is one repair engagement for one vehicle. Labor is recorded as
tasks, parts consumption as spare-part usages. ``total_cost`` is kept equal
to ``labor_cost`` plus the sum of usage ``total_price`` values; only the job
card service writes these columns.
"""

from sqlalchemy import Column, Integer, String, Text, Numeric, DateTime, ForeignKey, CheckConstraint, Index
from sqlalchemy.sql import func

from app.database import Base

JOB_CARD_STATUSES = ("pending", "assigned", "in_progress", "completed", "cancelled")
JOB_CARD_PRIORITIES = ("low", "medium", "high")


class JobCard(Base):
    """Job card model."""

    __tablename__ = "jobcards"
    __table_args__ = (
        CheckConstraint("percent_complete BETWEEN 0 AND 100", name="ck_jobcards_percent_complete"),
        Index("idx_jobcards_mechanic_status", "mechanic_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True, index=True)
    mechanic_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    status = Column(String(20), nullable=False, default="pending", index=True)
    priority = Column(String(10), nullable=False, default="medium")

    notes = Column(Text, default="")
    progress_notes = Column(Text)
    percent_complete = Column(Integer, nullable=False, default=0)
    estimated_hours = Column(Numeric(6, 2))

    # Accumulated by task / spare-part additions
    labor_cost = Column(Numeric(10, 2), nullable=False, default=0)
    total_cost = Column(Numeric(10, 2), nullable=False, default=0)

    started_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True), index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<JobCard {self.id} vehicle={self.vehicle_id} status={self.status}>"


class JobCardTask(Base):
    """Billable labor line item. Immutable once created."""

    __tablename__ = "jobcard_tasks"

    id = Column(Integer, primary_key=True, index=True)
    jobcard_id = Column(Integer, ForeignKey("jobcards.id", ondelete="CASCADE"), nullable=False, index=True)
    task_name = Column(String(255), nullable=False)
    task_cost = Column(Numeric(10, 2), nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<JobCardTask {self.id} {self.task_name}>"


class JobCardSparePart(Base):
    """Billable parts consumption, paired with a stock decrement on the part."""

    __tablename__ = "jobcard_spareparts"

    id = Column(Integer, primary_key=True, index=True)
    jobcard_id = Column(Integer, ForeignKey("jobcards.id", ondelete="CASCADE"), nullable=False, index=True)
    part_id = Column(Integer, ForeignKey("parts.id", ondelete="CASCADE"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)  # Price snapshot at time of use
    total_price = Column(Numeric(10, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<JobCardSparePart {self.id} part={self.part_id} x{self.quantity}>"
