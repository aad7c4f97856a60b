"""Part model: on-hand stock for spare parts drawn by job cards."""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, CheckConstraint
from sqlalchemy.sql import func

from app.database import Base


class Part(Base):
    """Inventory item consumed by job cards."""

    __tablename__ = "parts"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_parts_quantity_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, index=True)
    part_number = Column(String(50), unique=True, index=True)
    price = Column(Numeric(10, 2), nullable=False, default=0)

    # Stock levels
    quantity = Column(Integer, nullable=False, default=0)
    reorder_level = Column(Integer, nullable=False, default=5)  # Alert when stock falls to this

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<Part {self.part_number} - {self.name}>"

    @property
    def needs_reorder(self) -> bool:
        """Check if part needs to be reordered."""
        return (self.quantity or 0) <= (self.reorder_level or 0)
