"""Part schemas for listing responses."""

from pydantic import BaseModel, ConfigDict
from typing import Optional


class PartResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    part_number: Optional[str] = None
    price: float
    quantity: int
    reorder_level: int
    needs_reorder: bool


class PartListResponse(BaseModel):
    items: list[PartResponse]
    total: int
