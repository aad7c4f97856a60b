from app.models.user import User
from app.models.vehicle import Vehicle
from app.models.booking import Booking
from app.models.part import Part
from app.models.job_card import JobCard, JobCardTask, JobCardSparePart, JOB_CARD_STATUSES, JOB_CARD_PRIORITIES
from app.models.invoice import Invoice

__all__ = [
    "User",
    "Vehicle",
    "Booking",
    "Part",
    "JobCard",
    "JobCardTask",
    "JobCardSparePart",
    "JOB_CARD_STATUSES",
    "JOB_CARD_PRIORITIES",
    "Invoice",
]
