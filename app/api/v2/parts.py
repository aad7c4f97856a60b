"""Parts API - read-only stock listings backed by the parts cache.

Listings are cached under the current parts cache version. Every spare-part
usage bumps that version after its transaction commits, so a listing that
read stock before the commit can only write its payload to a retired key
that no request reads again.
"""

from fastapi import APIRouter
from sqlalchemy import select
import logging

from app.api.deps import DbSession, ShopStaff, PartsCacheDep
from app.config import settings
from app.models.part import Part
from app.schemas.errors import LIST_ERROR_RESPONSES
from app.schemas.part import PartResponse, PartListResponse
from app.services.cache_service import PARTS_ALL_KEY, PARTS_LOW_STOCK_KEY, PARTS_VERSION_KEY, parts_key

logger = logging.getLogger(__name__)
router = APIRouter(responses=LIST_ERROR_RESPONSES)


def part_to_response(part: Part) -> dict:
    return PartResponse.model_validate(part).model_dump()


async def _current_key(cache, key: str) -> str:
    return parts_key(key, await cache.get(PARTS_VERSION_KEY))


@router.get("", response_model=PartListResponse)
async def list_parts(db: DbSession, principal: ShopStaff, cache: PartsCacheDep):
    """List all parts ordered by name."""
    key = await _current_key(cache, PARTS_ALL_KEY)
    cached = await cache.get(key)
    if cached is not None:
        return cached

    result = await db.execute(select(Part).order_by(Part.name))
    items = [part_to_response(p) for p in result.scalars().all()]
    payload = {"items": items, "total": len(items)}

    await cache.set(key, payload, ttl=settings.PARTS_CACHE_TTL_SECONDS)
    return payload


@router.get("/low-stock", response_model=PartListResponse)
async def list_low_stock_parts(db: DbSession, principal: ShopStaff, cache: PartsCacheDep):
    """List parts at or below their reorder level, lowest stock first."""
    key = await _current_key(cache, PARTS_LOW_STOCK_KEY)
    cached = await cache.get(key)
    if cached is not None:
        return cached

    result = await db.execute(
        select(Part)
        .where(Part.quantity <= Part.reorder_level)
        .order_by(Part.quantity.asc(), Part.name)
    )
    items = [part_to_response(p) for p in result.scalars().all()]
    payload = {"items": items, "total": len(items)}

    if items:
        logger.info(f"{len(items)} parts at or below reorder level")
    await cache.set(key, payload, ttl=settings.PARTS_CACHE_TTL_SECONDS)
    return payload
