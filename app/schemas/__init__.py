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
from app.schemas.part import PartResponse, PartListResponse
