"""Job card service.

Orchestrates the job card lifecycle: creation, labor and spare-part line
items, mechanic assignment, status changes (with billing on completion),
progress updates and deletion.

Every mutation runs in a single transaction owned by this service. Any
failure rolls the whole transaction back and surfaces as one of the
``app.exceptions`` types; a partially applied mutation never escapes.
The only exception is billing on completion, which is best-effort (see
``app.services.billing_service``).
"""

from contextlib import asynccontextmanager
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Protocol, Sequence
from sqlalchemy import select, delete, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased
from sqlalchemy.orm.exc import StaleDataError
import logging

from app.config import settings
from app.exceptions import (
    ShopException,
    InvalidInputError,
    NotFoundError,
    ForbiddenError,
    BusinessRuleError,
    InternalError,
)
from app.models.booking import Booking
from app.models.job_card import (
    JobCard,
    JobCardTask,
    JobCardSparePart,
    JOB_CARD_STATUSES,
    JOB_CARD_PRIORITIES,
)
from app.models.part import Part
from app.models.user import User
from app.models.vehicle import Vehicle
from app.security.rbac import Principal, Role, ensure_can_mutate
from app.services.billing_service import bill_completed_job_card, to_money
from app.services.cache_service import PARTS_CACHE_KEYS, PARTS_VERSION_KEY, parts_key
from app.services.inventory_ledger import reserve_stock

logger = logging.getLogger(__name__)

# Only enforced when STRICT_STATUS_TRANSITIONS is on; otherwise any
# whitelisted status may follow any other.
ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    "pending": {"assigned", "in_progress", "cancelled"},
    "assigned": {"pending", "in_progress", "cancelled"},
    "in_progress": {"assigned", "completed", "cancelled"},
    "completed": set(),
    "cancelled": {"pending"},
}

FOREIGN_KEY_VIOLATION = "23503"

# Display columns joined onto job cards by the read views
JOB_CARD_VIEW_FIELDS = (
    "vehicle_model",
    "vehicle_vin",
    "vehicle_year",
    "customer_name",
    "customer_email",
    "customer_phone",
    "mechanic_name",
    "service_type",
)


class PartsCache(Protocol):
    async def incr(self, key: str) -> Optional[int]: ...

    async def invalidate(self, *keys: str) -> int: ...


def is_foreign_key_violation(exc: IntegrityError) -> bool:
    """Detect FK violations across asyncpg, psycopg and sqlite drivers."""
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code == FOREIGN_KEY_VIOLATION:
        return True
    return "FOREIGN KEY constraint failed" in str(orig)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def _parse_int(value: Any, field: str, message: str) -> int:
    if isinstance(value, bool):
        raise InvalidInputError(field, message)
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise InvalidInputError(field, message)


def _parse_money(value: Any, field: str, message: str) -> Decimal:
    if isinstance(value, bool) or _is_blank(value):
        raise InvalidInputError(field, message)
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise InvalidInputError(field, message)
    if not amount.is_finite() or amount < 0:
        raise InvalidInputError(field, message)
    return amount


class JobCardService:
    """Job card lifecycle and billing orchestrator."""

    def __init__(
        self,
        db: AsyncSession,
        cache: Optional[PartsCache] = None,
        strict_transitions: Optional[bool] = None,
    ):
        self.db = db
        self.cache = cache
        if strict_transitions is None:
            strict_transitions = settings.STRICT_STATUS_TRANSITIONS
        self.strict_transitions = strict_transitions

    # ------------------------------------------------------------------
    # Transaction boundary
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _transaction(self, action: str, job_card_id: Optional[int] = None):
        """Commit on success; roll back and classify any failure."""
        try:
            yield
            await self.db.commit()
        except ShopException as e:
            await self.db.rollback()
            logger.warning(f"{action} rolled back for job card {job_card_id}: {e.detail}")
            raise
        except IntegrityError as e:
            await self.db.rollback()
            if is_foreign_key_violation(e):
                logger.warning(f"{action} hit a foreign key violation for job card {job_card_id}")
                raise NotFoundError("Job card", job_card_id) from e
            logger.error(f"{action} failed with integrity error for job card {job_card_id}: {e.orig}")
            raise InternalError("Database constraint violation") from e
        except StaleDataError as e:
            # The locked row vanished before flush; the UPDATE matched nothing
            await self.db.rollback()
            logger.warning(f"{action} found job card {job_card_id} deleted mid-transaction")
            raise NotFoundError("Job card", job_card_id) from e
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"{action} failed with database error for job card {job_card_id}: {e}")
            raise InternalError() from e
        except Exception as e:
            await self.db.rollback()
            logger.error(f"{action} failed unexpectedly for job card {job_card_id}: {e}")
            raise InternalError() from e

    async def _lock_job_card(self, job_card_id: int) -> JobCard:
        """Load a job card, locking its row until the transaction ends."""
        result = await self.db.execute(
            select(JobCard)
            .where(JobCard.id == job_card_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        job_card = result.scalar_one_or_none()
        if job_card is None:
            raise NotFoundError("Job card", job_card_id)
        return job_card

    async def _invalidate_parts_cache(self) -> None:
        """Move part listings to a new cache version and drop the old one.

        Listings are cached under the current version, so a listing that read
        stock before this commit can only write to the retired version.
        """
        if self.cache is None:
            return
        try:
            version = await self.cache.incr(PARTS_VERSION_KEY)
            if version is None:
                logger.warning("Parts cache version not bumped; listings may stay stale until TTL")
                return
            await self.cache.invalidate(*(parts_key(key, version - 1) for key in PARTS_CACHE_KEYS))
        except Exception as e:
            # Stock is already committed; a stale listing expires on its own TTL
            logger.warning(f"Failed to invalidate parts cache: {e}")

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create_job_card(self, principal: Principal, data: dict) -> JobCard:
        """
        Create a job card assigned to the creating mechanic.

        Fields are validated in order (vehicle, customer, booking, estimated
        hours, priority) and the first failure is reported before any write.
        """
        async with self._transaction("Create job card"):
            fields = await self._validate_new_job_card(data)
            job_card = JobCard(
                **fields,
                mechanic_id=principal.id,
                notes=data.get("notes") or "",
                status="in_progress",
                labor_cost=Decimal("0.00"),
                total_cost=Decimal("0.00"),
                percent_complete=0,
            )
            self.db.add(job_card)
            await self.db.flush()

        await self.db.refresh(job_card)
        logger.info(f"Job card {job_card.id} created by user {principal.id} for vehicle {job_card.vehicle_id}")
        return job_card

    async def _validate_new_job_card(self, data: dict) -> dict:
        vehicle_raw = data.get("vehicle_id")
        if _is_blank(vehicle_raw):
            raise InvalidInputError("vehicle_id", "Vehicle ID is required")
        vehicle_id = _parse_int(vehicle_raw, "vehicle_id", "Vehicle ID must be a valid number")
        if await self.db.get(Vehicle, vehicle_id) is None:
            raise InvalidInputError("vehicle_id", "Invalid vehicle ID")

        customer_id = None
        if not _is_blank(data.get("customer_id")):
            customer_id = _parse_int(data["customer_id"], "customer_id", "Customer ID must be a valid number")
            result = await self.db.execute(
                select(User.id).where(User.id == customer_id, User.role == Role.CUSTOMER.value)
            )
            if result.scalar_one_or_none() is None:
                raise InvalidInputError("customer_id", "Invalid customer ID or user is not a customer")

        booking_id = None
        if not _is_blank(data.get("booking_id")):
            booking_id = _parse_int(data["booking_id"], "booking_id", "Booking ID must be a valid number")
            if await self.db.get(Booking, booking_id) is None:
                raise InvalidInputError("booking_id", "Invalid booking ID")

        estimated_hours = None
        if not _is_blank(data.get("estimated_hours")):
            estimated_hours = _parse_money(
                data["estimated_hours"], "estimated_hours", "Estimated hours must be a valid positive number"
            )

        priority = "medium"
        if not _is_blank(data.get("priority")):
            if data["priority"] not in JOB_CARD_PRIORITIES:
                raise InvalidInputError("priority", "Priority must be one of: low, medium, high")
            priority = data["priority"]

        return {
            "vehicle_id": vehicle_id,
            "customer_id": customer_id,
            "booking_id": booking_id,
            "estimated_hours": estimated_hours,
            "priority": priority,
        }

    async def add_task(
        self,
        principal: Principal,
        job_card_id: int,
        task_name: str,
        task_cost: Any,
    ) -> JobCardTask:
        """Add a labor line item and raise the job card's labor and total cost by its cost."""
        if _is_blank(task_name):
            raise InvalidInputError("task_name", "Task name is required")
        cost = _parse_money(task_cost, "task_cost", "Valid task cost is required")

        async with self._transaction("Add task", job_card_id):
            job_card = await self._lock_job_card(job_card_id)
            ensure_can_mutate(principal, job_card)

            task = JobCardTask(jobcard_id=job_card_id, task_name=task_name.strip(), task_cost=cost)
            self.db.add(task)

            job_card.labor_cost = JobCard.labor_cost + cost
            job_card.total_cost = JobCard.total_cost + cost
            job_card.updated_at = func.now()
            await self.db.flush()

        await self.db.refresh(task)
        await self.db.refresh(job_card)
        logger.info(f"Task {task.id} (${cost}) added to job card {job_card_id} by user {principal.id}")
        return task

    async def add_spare_part(
        self,
        principal: Principal,
        job_card_id: int,
        part_id: Any,
        quantity: Any,
    ) -> JobCardSparePart:
        """Consume stock for a job card and bill it at the part's current price."""
        part_id = _parse_int(part_id, "part_id", "Valid part ID is required")
        quantity = _parse_int(quantity, "quantity", "Valid quantity is required")
        if quantity < 1:
            raise InvalidInputError("quantity", "Valid quantity is required")

        async with self._transaction("Add spare part", job_card_id):
            job_card = await self._lock_job_card(job_card_id)
            ensure_can_mutate(principal, job_card)

            part = await reserve_stock(self.db, part_id, quantity)
            unit_price = to_money(part.price)
            total_price = unit_price * quantity

            usage = JobCardSparePart(
                jobcard_id=job_card_id,
                part_id=part_id,
                quantity=quantity,
                unit_price=unit_price,
                total_price=total_price,
            )
            self.db.add(usage)

            job_card.total_cost = JobCard.total_cost + total_price
            job_card.updated_at = func.now()
            await self.db.flush()

        await self._invalidate_parts_cache()
        await self.db.refresh(usage)
        await self.db.refresh(job_card)
        logger.info(
            f"Part {part_id} x{quantity} (${total_price}) added to job card {job_card_id} by user {principal.id}"
        )
        return usage

    async def assign_mechanic(self, job_card_id: int, mechanic_id: Any) -> JobCard:
        """Reassign a job card; it goes (back) to in_progress."""
        mechanic_id = _parse_int(mechanic_id, "mechanic_id", "Valid mechanic ID is required")

        async with self._transaction("Assign mechanic", job_card_id):
            job_card = await self._lock_job_card(job_card_id)

            result = await self.db.execute(
                select(User.id).where(
                    User.id == mechanic_id,
                    User.role.in_([Role.MECHANIC.value, Role.ADMIN.value]),
                )
            )
            if result.scalar_one_or_none() is None:
                raise InvalidInputError("mechanic_id", "Invalid mechanic ID or user is not a mechanic")

            job_card.mechanic_id = mechanic_id
            job_card.status = "in_progress"
            job_card.started_at = func.now()
            job_card.updated_at = func.now()
            await self.db.flush()

        await self.db.refresh(job_card)
        logger.info(f"Job card {job_card_id} assigned to mechanic {mechanic_id}")
        return job_card

    async def update_status(self, principal: Principal, job_card_id: int, status: Any) -> JobCard:
        """
        Move a job card to a new status.

        ``completed`` stamps completed_at and triggers billing in the same
        transaction; ``in_progress`` stamps started_at.
        """
        async with self._transaction("Update status", job_card_id):
            job_card = await self._lock_job_card(job_card_id)

            if status not in JOB_CARD_STATUSES:
                raise InvalidInputError("status", "Invalid status")

            ensure_can_mutate(principal, job_card)

            if self.strict_transitions and status not in ALLOWED_TRANSITIONS.get(job_card.status, set()):
                raise BusinessRuleError(f"Cannot move job card from {job_card.status} to {status}")

            previous = job_card.status
            job_card.status = status
            job_card.updated_at = func.now()
            if status == "completed":
                job_card.completed_at = func.now()
            if status == "in_progress":
                job_card.started_at = func.now()
            await self.db.flush()

            if status == "completed":
                await self.db.refresh(job_card)
                await bill_completed_job_card(self.db, job_card)

        await self.db.refresh(job_card)
        logger.info(f"Job card {job_card_id} status {previous} -> {status} by user {principal.id}")
        return job_card

    async def update_progress(
        self,
        principal: Principal,
        job_card_id: int,
        percent_complete: Any,
        notes: Optional[str] = None,
    ) -> JobCard:
        """Set percent complete; notes are replaced only when given."""
        percent = _parse_int(percent_complete, "percent_complete", "Percent complete must be between 0 and 100")
        if not 0 <= percent <= 100:
            raise InvalidInputError("percent_complete", "Percent complete must be between 0 and 100")

        async with self._transaction("Update progress", job_card_id):
            job_card = await self._lock_job_card(job_card_id)
            ensure_can_mutate(principal, job_card)

            job_card.percent_complete = percent
            if notes is not None:
                job_card.notes = notes
            job_card.updated_at = func.now()
            await self.db.flush()

        await self.db.refresh(job_card)
        return job_card

    async def delete_job_card(self, job_card_id: int) -> JobCard:
        """
        Delete a job card with its tasks and spare-part usages.

        Stock is not returned to inventory.
        """
        async with self._transaction("Delete job card", job_card_id):
            result = await self.db.execute(select(JobCard).where(JobCard.id == job_card_id))
            job_card = result.scalar_one_or_none()

            await self.db.execute(
                delete(JobCardTask)
                .where(JobCardTask.jobcard_id == job_card_id)
                .execution_options(synchronize_session=False)
            )
            await self.db.execute(
                delete(JobCardSparePart)
                .where(JobCardSparePart.jobcard_id == job_card_id)
                .execution_options(synchronize_session=False)
            )
            deleted = await self.db.execute(
                delete(JobCard)
                .where(JobCard.id == job_card_id)
                .execution_options(synchronize_session=False)
            )
            if deleted.rowcount == 0 or job_card is None:
                raise NotFoundError("Job card", job_card_id)

        self.db.expunge(job_card)
        logger.info(f"Job card {job_card_id} deleted")
        return job_card

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _view_query(self):
        """Job cards with their vehicle, customer, mechanic and booking details."""
        customer = aliased(User, name="customer")
        mechanic = aliased(User, name="mechanic")
        return (
            select(
                JobCard,
                Vehicle.model.label("vehicle_model"),
                Vehicle.vin.label("vehicle_vin"),
                Vehicle.year.label("vehicle_year"),
                customer.name.label("customer_name"),
                customer.email.label("customer_email"),
                customer.phone.label("customer_phone"),
                mechanic.name.label("mechanic_name"),
                Booking.service_type.label("service_type"),
            )
            .outerjoin(Vehicle, JobCard.vehicle_id == Vehicle.id)
            .outerjoin(customer, JobCard.customer_id == customer.id)
            .outerjoin(mechanic, JobCard.mechanic_id == mechanic.id)
            .outerjoin(Booking, JobCard.booking_id == Booking.id)
        )

    async def _fetch_views(self, query) -> list[JobCard]:
        result = await self.db.execute(query)
        job_cards = []
        for row in result.all():
            job_card = row.JobCard
            for name in JOB_CARD_VIEW_FIELDS:
                setattr(job_card, name, getattr(row, name))
            job_cards.append(job_card)
        return job_cards

    async def get_job_card(self, job_card_id: int) -> JobCard:
        result = await self.db.execute(
            select(JobCard)
            .where(JobCard.id == job_card_id)
            .execution_options(populate_existing=True)
        )
        job_card = result.scalar_one_or_none()
        if job_card is None:
            raise NotFoundError("Job card", job_card_id)
        return job_card

    async def get_job_card_view(self, job_card_id: int) -> JobCard:
        """Single job card with joined vehicle, customer and mechanic details."""
        job_cards = await self._fetch_views(
            self._view_query()
            .where(JobCard.id == job_card_id)
            .execution_options(populate_existing=True)
        )
        if not job_cards:
            raise NotFoundError("Job card", job_card_id)
        return job_cards[0]

    async def list_tasks(self, job_card_ids: Sequence[int]) -> list[JobCardTask]:
        if not job_card_ids:
            return []
        result = await self.db.execute(
            select(JobCardTask)
            .where(JobCardTask.jobcard_id.in_(job_card_ids))
            .order_by(JobCardTask.id)
        )
        return list(result.scalars().all())

    async def list_spare_parts(self, job_card_ids: Sequence[int]) -> list[tuple[JobCardSparePart, Optional[Part]]]:
        """Usages with the part they drew from (None if the part is gone)."""
        if not job_card_ids:
            return []
        result = await self.db.execute(
            select(JobCardSparePart, Part)
            .outerjoin(Part, JobCardSparePart.part_id == Part.id)
            .where(JobCardSparePart.jobcard_id.in_(job_card_ids))
            .order_by(JobCardSparePart.id)
        )
        return [(usage, part) for usage, part in result.all()]

    async def list_job_cards(
        self,
        status: Optional[str] = None,
        mechanic_id: Optional[int] = None,
    ) -> list[JobCard]:
        query = self._view_query()
        if status:
            query = query.where(JobCard.status == status)
        if mechanic_id:
            query = query.where(JobCard.mechanic_id == mechanic_id)
        return await self._fetch_views(query.order_by(JobCard.created_at.desc(), JobCard.id.desc()))

    async def list_completed(self) -> list[JobCard]:
        return await self._fetch_views(
            self._view_query()
            .where(JobCard.status == "completed")
            .order_by(JobCard.completed_at.desc(), JobCard.id.desc())
        )

    async def get_by_booking(self, principal: Principal, booking_id: int) -> JobCard:
        """Mechanics only see job cards for the booking that are assigned to them."""
        query = self._view_query().where(JobCard.booking_id == booking_id)
        if principal.is_mechanic:
            query = query.where(JobCard.mechanic_id == principal.id)

        job_cards = await self._fetch_views(query.order_by(JobCard.id.desc()).limit(1))
        if not job_cards:
            if principal.is_mechanic:
                raise ForbiddenError("Access denied. You can only access job cards assigned to you.")
            raise NotFoundError("Job card for booking", booking_id)
        return job_cards[0]

    async def get_notes(self, job_card_id: int) -> dict:
        job_card = await self.get_job_card(job_card_id)
        return {
            "progress_notes": job_card.progress_notes,
            "created_at": job_card.created_at,
            "updated_at": job_card.updated_at,
        }
