"""Job card schemas for request/response validation."""

from pydantic import BaseModel, ConfigDict, Field, AliasChoices
from datetime import datetime
from decimal import Decimal
from typing import Optional, Union, List


class JobCardCreate(BaseModel):
    """Schema for creating a job card.

    Ids are accepted as numbers or numeric strings; the service parses and
    checks them so failures name the offending field.
    """
    vehicle_id: Optional[Union[int, str]] = None
    customer_id: Optional[Union[int, str]] = None
    booking_id: Optional[Union[int, str]] = None
    notes: Optional[str] = None
    estimated_hours: Optional[Union[float, str]] = None
    priority: Optional[str] = None


class TaskCreate(BaseModel):
    task_name: str = Field(..., min_length=1, max_length=255)
    task_cost: Decimal = Field(..., ge=0)


class SparePartAdd(BaseModel):
    part_id: int
    quantity: int = Field(..., ge=1)


class MechanicAssign(BaseModel):
    mechanic_id: int


class StatusUpdate(BaseModel):
    status: str = Field(..., min_length=1)


class ProgressUpdate(BaseModel):
    """Progress update; ``percentComplete`` is accepted for older clients."""
    percent_complete: int = Field(
        ...,
        ge=0,
        le=100,
        validation_alias=AliasChoices("percent_complete", "percentComplete"),
    )
    notes: Optional[str] = None


class JobCardResponse(BaseModel):
    """Schema for job card response."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    customer_id: Optional[int] = None
    vehicle_id: int
    booking_id: Optional[int] = None
    mechanic_id: Optional[int] = None
    status: str
    priority: str
    notes: Optional[str] = None
    progress_notes: Optional[str] = None
    percent_complete: int = 0
    estimated_hours: Optional[float] = None
    labor_cost: float
    total_cost: float
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # Joined display fields; only set on read views
    vehicle_model: Optional[str] = None
    vehicle_vin: Optional[str] = None
    vehicle_year: Optional[int] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    mechanic_name: Optional[str] = None
    service_type: Optional[str] = None


class TaskResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    jobcard_id: int
    task_name: str
    task_cost: float
    created_at: Optional[datetime] = None


class SparePartUsageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    jobcard_id: int
    part_id: int
    quantity: int
    unit_price: float
    total_price: float
    created_at: Optional[datetime] = None
    part_name: Optional[str] = None
    part_number: Optional[str] = None


class JobCardDetailResponse(BaseModel):
    job_card: JobCardResponse
    tasks: List[TaskResponse]
    parts: List[SparePartUsageResponse]


class MechanicJobCardResponse(JobCardResponse):
    tasks: List[TaskResponse] = []
    parts_used: List[SparePartUsageResponse] = []


class JobCardNotesResponse(BaseModel):
    progress_notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
