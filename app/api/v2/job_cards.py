"""Job cards API - repair lifecycle, line items and completion billing."""

from fastapi import APIRouter, status, Query
from typing import Optional
import logging

from app.api.deps import ShopStaff, AdminOnly, JobCards
from app.models.job_card import JobCard, JobCardSparePart
from app.models.part import Part
from app.schemas.errors import ERROR_RESPONSES
from app.schemas.job_card import (
    JobCardCreate,
    TaskCreate,
    SparePartAdd,
    MechanicAssign,
    StatusUpdate,
    ProgressUpdate,
    JobCardResponse,
    TaskResponse,
    SparePartUsageResponse,
    JobCardDetailResponse,
    MechanicJobCardResponse,
    JobCardNotesResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter(responses=ERROR_RESPONSES)


def job_card_to_response(job_card: JobCard) -> dict:
    return JobCardResponse.model_validate(job_card).model_dump()


def usage_to_response(usage: JobCardSparePart, part: Optional[Part] = None) -> dict:
    data = SparePartUsageResponse.model_validate(usage).model_dump()
    if part is not None:
        data["part_name"] = part.name
        data["part_number"] = part.part_number
    return data


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_job_card(payload: JobCardCreate, principal: ShopStaff, service: JobCards):
    """Create a job card assigned to the caller."""
    job_card = await service.create_job_card(principal, payload.model_dump())
    return {"message": "Job card created successfully", "job_card": job_card_to_response(job_card)}


@router.get("")
async def list_job_cards(
    principal: ShopStaff,
    service: JobCards,
    status_filter: Optional[str] = Query(None, alias="status"),
    mechanic_id: Optional[int] = None,
):
    """List job cards, newest first."""
    job_cards = await service.list_job_cards(status=status_filter, mechanic_id=mechanic_id)
    return {"job_cards": [job_card_to_response(j) for j in job_cards]}


@router.get("/completed")
async def list_completed_job_cards(principal: ShopStaff, service: JobCards):
    """List completed job cards, most recently completed first."""
    job_cards = await service.list_completed()
    return {"job_cards": [job_card_to_response(j) for j in job_cards]}


@router.get("/mechanic/{mechanic_id}")
async def list_mechanic_job_cards(mechanic_id: int, principal: ShopStaff, service: JobCards):
    """List a mechanic's job cards with their tasks and parts."""
    job_cards = await service.list_job_cards(mechanic_id=mechanic_id)
    ids = [j.id for j in job_cards]
    tasks = await service.list_tasks(ids)
    usages = await service.list_spare_parts(ids)

    items = []
    for job_card in job_cards:
        item = MechanicJobCardResponse.model_validate(job_card).model_dump()
        item["tasks"] = [TaskResponse.model_validate(t).model_dump() for t in tasks if t.jobcard_id == job_card.id]
        item["parts_used"] = [usage_to_response(u, p) for u, p in usages if u.jobcard_id == job_card.id]
        items.append(item)
    return {"job_cards": items}


@router.get("/booking/{booking_id}")
async def get_job_card_by_booking(booking_id: int, principal: ShopStaff, service: JobCards):
    """Get the job card opened for a booking."""
    job_card = await service.get_by_booking(principal, booking_id)
    return {"job_card": job_card_to_response(job_card)}


@router.get("/{job_card_id}", response_model=JobCardDetailResponse)
async def get_job_card(job_card_id: int, principal: ShopStaff, service: JobCards):
    """Get a job card with its tasks and spare parts."""
    job_card = await service.get_job_card_view(job_card_id)
    tasks = await service.list_tasks([job_card_id])
    usages = await service.list_spare_parts([job_card_id])
    return {
        "job_card": job_card_to_response(job_card),
        "tasks": [TaskResponse.model_validate(t).model_dump() for t in tasks],
        "parts": [usage_to_response(u, p) for u, p in usages],
    }


@router.get("/{job_card_id}/notes")
async def get_job_card_notes(job_card_id: int, principal: ShopStaff, service: JobCards):
    notes = await service.get_notes(job_card_id)
    return {"notes": JobCardNotesResponse(**notes).model_dump()}


@router.put("/{job_card_id}/add-task", status_code=status.HTTP_201_CREATED)
async def add_task(job_card_id: int, payload: TaskCreate, principal: ShopStaff, service: JobCards):
    """Add a labor task to a job card."""
    task = await service.add_task(principal, job_card_id, payload.task_name, payload.task_cost)
    return {"message": "Task added successfully", "task": TaskResponse.model_validate(task).model_dump()}


@router.put("/{job_card_id}/add-mechanic")
async def assign_mechanic(job_card_id: int, payload: MechanicAssign, principal: AdminOnly, service: JobCards):
    """Assign or reassign the mechanic on a job card."""
    job_card = await service.assign_mechanic(job_card_id, payload.mechanic_id)
    return {"message": "Mechanic assigned successfully", "job_card": job_card_to_response(job_card)}


@router.put("/{job_card_id}/add-sparepart", status_code=status.HTTP_201_CREATED)
async def add_spare_part(job_card_id: int, payload: SparePartAdd, principal: ShopStaff, service: JobCards):
    """Draw a part from inventory for a job card."""
    usage = await service.add_spare_part(principal, job_card_id, payload.part_id, payload.quantity)
    return {"message": "Spare part added successfully", "spare_part": usage_to_response(usage)}


@router.put("/{job_card_id}/update-status")
async def update_status(job_card_id: int, payload: StatusUpdate, principal: ShopStaff, service: JobCards):
    """Change job card status. Completing a job card also bills it."""
    job_card = await service.update_status(principal, job_card_id, payload.status.strip())
    return {"message": "Job card status updated successfully", "job_card": job_card_to_response(job_card)}


@router.put("/{job_card_id}/update-progress")
async def update_progress(job_card_id: int, payload: ProgressUpdate, principal: ShopStaff, service: JobCards):
    job_card = await service.update_progress(principal, job_card_id, payload.percent_complete, payload.notes)
    return {"message": "Job card progress updated successfully", "job_card": job_card_to_response(job_card)}


@router.delete("/{job_card_id}")
async def delete_job_card(job_card_id: int, principal: AdminOnly, service: JobCards):
    """Delete a job card and its line items. Stock is not restored."""
    job_card = await service.delete_job_card(job_card_id)
    return {"message": "Job card deleted successfully", "job_card": job_card_to_response(job_card)}
