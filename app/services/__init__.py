# Services module
from app.services.cache_service import CacheService, get_cache_service
from app.services.job_card_service import JobCardService

__all__ = [
    "CacheService",
    "get_cache_service",
    "JobCardService",
]
