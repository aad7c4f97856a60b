from fastapi import APIRouter
from app.api.v2 import (
    job_cards,
    parts,
)

api_router = APIRouter()

# Include all v2 routers
api_router.include_router(job_cards.router, prefix="/job-cards", tags=["job-cards"])
api_router.include_router(parts.router, prefix="/parts", tags=["parts"])
