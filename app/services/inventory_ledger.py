"""Inventory ledger: atomic stock reservation for spare-part usage.

Part.quantity is the only value shared between job cards, so every change to
it goes through ``reserve_stock`` inside the caller's transaction. The part
row is locked for the rest of that transaction (``SELECT ... FOR UPDATE`` on
databases that support it), and the decrement itself is conditional on the
stock still being there. If two requests race for the last units, at most one
decrement matches and the other is reported as insufficient stock. Quantity
never goes negative.
"""

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from app.exceptions import NotFoundError, InsufficientStockError
from app.models.part import Part

logger = logging.getLogger(__name__)


async def lock_part(db: AsyncSession, part_id: int) -> Part | None:
    """Load a part and lock its row for the current transaction."""
    result = await db.execute(
        select(Part)
        .where(Part.id == part_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def reserve_stock(db: AsyncSession, part_id: int, quantity: int) -> Part:
    """
    Check and decrement stock for a part in one step.

    Args:
        db: Session with an open transaction (owned by the caller)
        part_id: Part to draw from
        quantity: Units requested, must be positive

    Returns:
        The part, refreshed so ``quantity`` reflects the decrement and
        ``price`` is the price the usage should be billed at.

    Raises:
        NotFoundError: part does not exist
        InsufficientStockError: on-hand stock is below ``quantity``; nothing is consumed
    """
    part = await lock_part(db, part_id)
    if part is None:
        raise NotFoundError("Part", part_id)

    if (part.quantity or 0) < quantity:
        raise InsufficientStockError(part_id, quantity, part.quantity or 0)

    result = await db.execute(
        update(Part)
        .where(Part.id == part_id, Part.quantity >= quantity)
        .values(quantity=Part.quantity - quantity, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        # Another transaction consumed the stock between our read and write
        logger.warning(f"Stock for part {part_id} changed under reservation of {quantity}")
        raise InsufficientStockError(part_id, quantity)

    await db.refresh(part)
    if part.needs_reorder:
        logger.info(
            f"Part {part.part_number or part.id} at or below reorder level "
            f"({part.quantity} <= {part.reorder_level})"
        )
    return part
