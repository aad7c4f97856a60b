from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Numeric
from sqlalchemy.sql import func
from app.database import Base


class Invoice(Base):
    """Invoice produced when a job card is completed."""

    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True)
    jobcard_id = Column(Integer, ForeignKey("jobcards.id", ondelete="CASCADE"), nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    # Totals, fixed at creation time
    parts_total = Column(Numeric(10, 2), nullable=False, default=0)
    labor_total = Column(Numeric(10, 2), nullable=False, default=0)
    grand_total = Column(Numeric(10, 2), nullable=False, default=0)

    status = Column(String(20), default="unpaid", nullable=False, index=True)  # unpaid, paid, void

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Invoice {self.id} jobcard={self.jobcard_id} {self.grand_total}>"
