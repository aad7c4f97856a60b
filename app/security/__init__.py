# Security module
from app.security.rbac import Role, Principal, can_mutate, ensure_can_mutate

__all__ = [
    "Role",
    "Principal",
    "can_mutate",
    "ensure_can_mutate",
]
