"""Billing trigger for completed job cards.

When a job card is moved to ``completed`` this service totals its line
items, creates an unpaid invoice and marks the originating booking as
completed. It runs inside the status-change transaction, wrapped in a
SAVEPOINT. A billing failure rolls back only the billing writes and is
logged; the status change itself still commits.

There is no guard against billing the same job card twice. Completing an
already-completed job card creates another invoice.
"""

from decimal import Decimal
from typing import Optional
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from app.models.booking import Booking
from app.models.invoice import Invoice
from app.models.job_card import JobCard, JobCardSparePart

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Normalize a numeric column value to a two-decimal Decimal."""
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(CENT)


async def sum_parts_total(db: AsyncSession, job_card_id: int) -> Decimal:
    """Sum of spare-part usage totals for a job card (0 when none)."""
    result = await db.execute(
        select(func.coalesce(func.sum(JobCardSparePart.total_price), 0))
        .where(JobCardSparePart.jobcard_id == job_card_id)
    )
    return to_money(result.scalar())


async def sync_booking_status(db: AsyncSession, booking_id: int) -> bool:
    """Mark the originating booking completed. Returns False if it is gone."""
    result = await db.execute(
        update(Booking)
        .where(Booking.id == booking_id)
        .values(status="completed", updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


async def bill_completed_job_card(db: AsyncSession, job_card: JobCard) -> Optional[Invoice]:
    """
    Create the invoice for a completed job card and sync its booking.

    Args:
        db: Session with the status-change transaction open
        job_card: The job card, already updated to ``completed``

    Returns:
        The created Invoice, or None if billing failed
    """
    try:
        async with db.begin_nested():
            parts_total = await sum_parts_total(db, job_card.id)
            labor_total = to_money(job_card.labor_cost)
            grand_total = parts_total + labor_total

            invoice = Invoice(
                jobcard_id=job_card.id,
                customer_id=job_card.customer_id,
                parts_total=parts_total,
                labor_total=labor_total,
                grand_total=grand_total,
                status="unpaid",
            )
            db.add(invoice)
            await db.flush()

            if job_card.booking_id:
                if await sync_booking_status(db, job_card.booking_id):
                    logger.info(f"Booking {job_card.booking_id} marked completed for job card {job_card.id}")
                else:
                    logger.info(f"No booking {job_card.booking_id} found for job card {job_card.id}")

        logger.info(
            f"Invoice {invoice.id} created for job card {job_card.id}: "
            f"parts ${parts_total} + labor ${labor_total} = ${grand_total}"
        )
        return invoice

    except Exception as e:
        logger.error(f"Failed to create invoice for completed job card {job_card.id}: {e}")
        # Don't raise - invoice failure shouldn't block job card completion
        return None
