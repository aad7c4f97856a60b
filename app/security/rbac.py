"""
Role-Based Access Control (RBAC) Module

Roles decide which endpoints a user may call; the ownership guard decides
which job cards a mechanic may mutate. Administrators may act on any job
card, mechanics only on job cards assigned to them.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any
import logging

from app.exceptions import ForbiddenError

logger = logging.getLogger(__name__)


class Role(str, Enum):
    """User roles."""
    ADMIN = "admin"
    MECHANIC = "mechanic"
    CUSTOMER = "customer"


@dataclass(frozen=True)
class Principal:
    """An already-authenticated caller."""

    id: int
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def is_mechanic(self) -> bool:
        return self.role == Role.MECHANIC


def get_user_role(user: Any) -> Role:
    """Resolve a user's role, defaulting unknown values to CUSTOMER."""
    try:
        return Role(getattr(user, "role", None))
    except ValueError:
        return Role.CUSTOMER


def principal_from_user(user: Any) -> Principal:
    return Principal(id=user.id, role=get_user_role(user))


def has_role(principal: Principal, *roles: Role) -> bool:
    """Check if the principal holds one of the given roles."""
    return principal.role in roles


def can_mutate(principal: Principal, job_card: Any) -> bool:
    """Ownership guard for job card mutations.

    Admins may mutate any job card. Mechanics may mutate only job cards whose
    ``mechanic_id`` is their own id. Nobody else may mutate job cards.
    """
    if principal.is_admin:
        return True
    if principal.is_mechanic:
        return job_card.mechanic_id is not None and job_card.mechanic_id == principal.id
    return False


def ensure_can_mutate(principal: Principal, job_card: Any) -> None:
    """Raise ForbiddenError unless ``can_mutate`` allows the mutation."""
    if not can_mutate(principal, job_card):
        logger.warning(
            f"Job card access denied: user {principal.id} ({principal.role.value}) on job card {job_card.id}",
            extra={"user_id": principal.id, "job_card_id": job_card.id},
        )
        raise ForbiddenError("Access denied. You can only update job cards assigned to you.")
