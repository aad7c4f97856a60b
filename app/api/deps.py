"""
FastAPI Dependencies

Provides dependency injection for database sessions, the authenticated
principal, role checks and the job card service.

SECURITY NOTES:
- JWT payloads are never logged
- Tokens are issued by the identity service; this API only verifies them
"""

from typing import Annotated
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from jose import JWTError, jwt
from datetime import datetime, timedelta
import logging

from app.database import get_db
from app.config import settings
from app.exceptions import UnauthorizedError, ForbiddenError
from app.models.user import User
from app.security.rbac import Principal, Role, principal_from_user
from app.services.cache_service import CacheService, get_cache_service
from app.services.job_card_service import JobCardService

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token."""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


async def get_current_user(
    db: Annotated[AsyncSession, Depends(get_db)],
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)] = None,
) -> User:
    """Resolve the bearer token to an active user."""
    if not credentials:
        raise UnauthorizedError()

    try:
        payload = jwt.decode(credentials.credentials, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        sub = payload.get("sub")
        if sub is None:
            raise UnauthorizedError()
        user_id = int(sub)
    except JWTError:
        logger.warning("JWT validation failed")
        raise UnauthorizedError()
    except ValueError:
        logger.warning("Invalid token subject")
        raise UnauthorizedError()

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if user is None:
        raise UnauthorizedError()
    if not user.is_active:
        raise ForbiddenError("User account is disabled")

    logger.debug("User authenticated", extra={"user_id": user.id})
    return user


async def get_current_principal(
    user: Annotated[User, Depends(get_current_user)],
) -> Principal:
    return principal_from_user(user)


def require_roles(*roles: Role):
    """
    Dependency factory restricting an endpoint to the given roles.

    Usage:
        @router.delete("/{id}")
        async def delete(principal: Annotated[Principal, Depends(require_roles(Role.ADMIN))]):
            ...
    """

    async def checker(principal: Annotated[Principal, Depends(get_current_principal)]) -> Principal:
        if principal.role not in roles:
            logger.warning(
                f"Role check failed: user {principal.id} is {principal.role.value}",
                extra={"user_id": principal.id, "role": principal.role.value},
            )
            raise ForbiddenError(f"Access denied. Requires role: {', '.join(r.value for r in roles)}")
        return principal

    return checker


def get_parts_cache() -> CacheService:
    return get_cache_service()


def get_job_card_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    cache: Annotated[CacheService, Depends(get_parts_cache)],
) -> JobCardService:
    return JobCardService(db, cache=cache)


# Type aliases for dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db)]
ShopStaff = Annotated[Principal, Depends(require_roles(Role.ADMIN, Role.MECHANIC))]
AdminOnly = Annotated[Principal, Depends(require_roles(Role.ADMIN))]
JobCards = Annotated[JobCardService, Depends(get_job_card_service)]
PartsCacheDep = Annotated[CacheService, Depends(get_parts_cache)]
