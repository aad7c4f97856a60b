"""
Test factories for generating realistic test data.

Uses factory_boy for declarative test data generation. Factories build
plain dicts; tests pass them to the ORM models or post them as JSON.
"""

from .user import UserFactory, MechanicFactory, AdminFactory, InactiveUserFactory
from .part import PartFactory, LowStockPartFactory
from .job_card import JobCardPayloadFactory, TaskPayloadFactory

__all__ = [
    "UserFactory",
    "MechanicFactory",
    "AdminFactory",
    "InactiveUserFactory",
    "PartFactory",
    "LowStockPartFactory",
    "JobCardPayloadFactory",
    "TaskPayloadFactory",
]
