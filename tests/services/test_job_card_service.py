"""
Tests for the job card service.

Covers creation validation, line items with their cost roll-up, stock
consumption, ownership checks, status changes with billing on completion,
progress updates and deletion.
"""

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import select, func, update, delete
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.exceptions import (
    InvalidInputError,
    NotFoundError,
    ForbiddenError,
    BusinessRuleError,
    InsufficientStockError,
    InternalError,
)
from app.models import Booking, Invoice, JobCard, JobCardTask, JobCardSparePart, Part, User, Vehicle
from app.security.rbac import Principal, Role
from app.services.cache_service import PARTS_VERSION_KEY
from app.services.job_card_service import JobCardService, ALLOWED_TRANSITIONS, is_foreign_key_violation

from tests.factories import JobCardPayloadFactory, MechanicFactory, PartFactory, UserFactory


async def count(db, model, **filters):
    query = select(func.count()).select_from(model)
    for name, value in filters.items():
        query = query.where(getattr(model, name) == value)
    return (await db.execute(query)).scalar()


class TestCreateJobCard:
    """Test job card creation."""

    @pytest.mark.asyncio
    async def test_creates_in_progress_card_owned_by_creator(self, service, mechanic, vehicle, customer_user, booking):
        payload = JobCardPayloadFactory(
            vehicle_id=vehicle.id,
            customer_id=customer_user.id,
            booking_id=booking.id,
            priority="high",
            estimated_hours="2.5",
        )
        job_card = await service.create_job_card(mechanic, payload)

        assert job_card.id is not None
        assert job_card.status == "in_progress"
        assert job_card.mechanic_id == mechanic.id
        assert job_card.priority == "high"
        assert job_card.estimated_hours == Decimal("2.5")
        assert job_card.labor_cost == Decimal("0")
        assert job_card.total_cost == Decimal("0")
        assert job_card.percent_complete == 0
        assert job_card.created_at is not None

    @pytest.mark.asyncio
    async def test_optional_fields_default(self, service, mechanic, vehicle):
        job_card = await service.create_job_card(mechanic, {"vehicle_id": vehicle.id})

        assert job_card.customer_id is None
        assert job_card.booking_id is None
        assert job_card.priority == "medium"
        assert job_card.estimated_hours is None
        assert job_card.notes == ""

    @pytest.mark.asyncio
    async def test_numeric_string_ids_are_accepted(self, service, mechanic, vehicle):
        job_card = await service.create_job_card(mechanic, {"vehicle_id": str(vehicle.id)})
        assert job_card.vehicle_id == vehicle.id

    @pytest.mark.asyncio
    @pytest.mark.parametrize("vehicle_id", [None, "", "   "])
    async def test_vehicle_required(self, service, mechanic, vehicle_id):
        with pytest.raises(InvalidInputError) as exc:
            await service.create_job_card(mechanic, {"vehicle_id": vehicle_id})
        assert exc.value.detail == "Vehicle ID is required"
        assert exc.value.field == "vehicle_id"

    @pytest.mark.asyncio
    async def test_vehicle_must_be_numeric(self, service, mechanic):
        with pytest.raises(InvalidInputError) as exc:
            await service.create_job_card(mechanic, {"vehicle_id": "abc"})
        assert exc.value.detail == "Vehicle ID must be a valid number"

    @pytest.mark.asyncio
    async def test_vehicle_must_exist(self, service, mechanic, test_db):
        with pytest.raises(InvalidInputError) as exc:
            await service.create_job_card(mechanic, {"vehicle_id": 9999})
        assert exc.value.detail == "Invalid vehicle ID"
        assert await count(test_db, JobCard) == 0

    @pytest.mark.asyncio
    async def test_customer_must_have_customer_role(self, service, mechanic, vehicle, other_mechanic):
        with pytest.raises(InvalidInputError) as exc:
            await service.create_job_card(mechanic, {"vehicle_id": vehicle.id, "customer_id": other_mechanic.id})
        assert exc.value.detail == "Invalid customer ID or user is not a customer"

    @pytest.mark.asyncio
    async def test_booking_must_exist(self, service, mechanic, vehicle):
        with pytest.raises(InvalidInputError) as exc:
            await service.create_job_card(mechanic, {"vehicle_id": vehicle.id, "booking_id": 424242})
        assert exc.value.detail == "Invalid booking ID"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("hours", ["abc", -1, "-0.5"])
    async def test_estimated_hours_must_be_positive_number(self, service, mechanic, vehicle, hours):
        with pytest.raises(InvalidInputError) as exc:
            await service.create_job_card(mechanic, {"vehicle_id": vehicle.id, "estimated_hours": hours})
        assert exc.value.detail == "Estimated hours must be a valid positive number"

    @pytest.mark.asyncio
    async def test_priority_must_be_known(self, service, mechanic, vehicle):
        with pytest.raises(InvalidInputError) as exc:
            await service.create_job_card(mechanic, {"vehicle_id": vehicle.id, "priority": "urgent"})
        assert exc.value.detail == "Priority must be one of: low, medium, high"

    @pytest.mark.asyncio
    async def test_first_failing_field_is_reported(self, service, mechanic):
        """Vehicle is checked before booking and priority."""
        with pytest.raises(InvalidInputError) as exc:
            await service.create_job_card(
                mechanic, {"vehicle_id": 9999, "booking_id": 9999, "priority": "urgent"}
            )
        assert exc.value.field == "vehicle_id"


class TestAddTask:
    """Test labor line items."""

    @pytest.mark.asyncio
    async def test_task_raises_labor_and_total_cost(self, service, mechanic, job_card):
        await service.add_task(mechanic, job_card.id, "Oil change", Decimal("50.00"))
        task = await service.add_task(mechanic, job_card.id, "Brake inspection", "25.50")

        assert task.id is not None
        assert task.task_name == "Brake inspection"
        refreshed = await service.get_job_card(job_card.id)
        assert refreshed.labor_cost == Decimal("75.50")
        assert refreshed.total_cost == Decimal("75.50")

    @pytest.mark.asyncio
    async def test_zero_cost_task_allowed(self, service, mechanic, job_card):
        task = await service.add_task(mechanic, job_card.id, "Courtesy check", 0)
        assert task.task_cost == Decimal("0")

    @pytest.mark.asyncio
    async def test_admin_can_add_to_any_card(self, service, admin, job_card):
        await service.add_task(admin, job_card.id, "Wheel alignment", 80)
        refreshed = await service.get_job_card(job_card.id)
        assert refreshed.labor_cost == Decimal("80.00")

    @pytest.mark.asyncio
    async def test_other_mechanic_is_forbidden(self, service, intruder, job_card, test_db):
        job_card_id = job_card.id
        with pytest.raises(ForbiddenError):
            await service.add_task(intruder, job_card_id, "Oil change", 50)

        assert await count(test_db, JobCardTask) == 0
        refreshed = await service.get_job_card(job_card_id)
        assert refreshed.labor_cost == Decimal("0")

    @pytest.mark.asyncio
    async def test_missing_job_card(self, service, mechanic):
        with pytest.raises(NotFoundError):
            await service.add_task(mechanic, 9999, "Oil change", 50)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name,cost", [("", 10), ("   ", 10), ("Oil change", -5), ("Oil change", "ten")])
    async def test_invalid_input_rejected(self, service, mechanic, job_card, name, cost):
        with pytest.raises(InvalidInputError):
            await service.add_task(mechanic, job_card.id, name, cost)


class TestAddSparePart:
    """Test spare-part consumption."""

    @pytest.mark.asyncio
    async def test_usage_decrements_stock_and_bills_current_price(self, service, mechanic, job_card, part, test_db):
        usage = await service.add_spare_part(mechanic, job_card.id, part.id, 2)

        assert usage.quantity == 2
        assert usage.unit_price == Decimal("10.00")
        assert usage.total_price == Decimal("20.00")

        await test_db.refresh(part)
        assert part.quantity == 3
        refreshed = await service.get_job_card(job_card.id)
        assert refreshed.total_cost == Decimal("20.00")
        assert refreshed.labor_cost == Decimal("0")

    @pytest.mark.asyncio
    async def test_price_is_snapshotted(self, service, mechanic, job_card, part, test_db):
        usage = await service.add_spare_part(mechanic, job_card.id, part.id, 1)

        part.price = Decimal("99.00")
        await test_db.commit()
        await test_db.refresh(usage)

        assert usage.unit_price == Decimal("10.00")

    @pytest.mark.asyncio
    async def test_insufficient_stock_changes_nothing(self, service, mechanic, job_card, part, test_db):
        job_card_id = job_card.id
        with pytest.raises(InsufficientStockError) as exc:
            await service.add_spare_part(mechanic, job_card_id, part.id, 6)
        assert exc.value.status_code == 400

        await test_db.refresh(part)
        assert part.quantity == 5
        assert await count(test_db, JobCardSparePart) == 0
        refreshed = await service.get_job_card(job_card_id)
        assert refreshed.total_cost == Decimal("0")

    @pytest.mark.asyncio
    async def test_second_draw_on_exhausted_stock_fails(self, service, mechanic, admin, job_card, part, test_db):
        """Once the stock is drawn down, the next draw fails."""
        await service.add_spare_part(mechanic, job_card.id, part.id, 5)
        with pytest.raises(InsufficientStockError):
            await service.add_spare_part(admin, job_card.id, part.id, 5)

        await test_db.refresh(part)
        assert part.quantity == 0
        assert await count(test_db, JobCardSparePart) == 1

    @pytest.mark.asyncio
    async def test_stale_part_in_session_is_reread(self, service, mechanic, job_card, part, test_db):
        await test_db.execute(
            update(Part).where(Part.id == part.id).values(quantity=1).execution_options(synchronize_session=False)
        )
        await test_db.commit()
        assert part.quantity == 5  # identity map still holds the old value

        with pytest.raises(InsufficientStockError):
            await service.add_spare_part(mechanic, job_card.id, part.id, 3)

    @pytest.mark.asyncio
    async def test_unknown_part_is_not_found(self, service, mechanic, job_card, test_db):
        job_card_id = job_card.id
        with pytest.raises(NotFoundError):
            await service.add_spare_part(mechanic, job_card_id, 9999, 1)

        assert await count(test_db, JobCardSparePart) == 0
        refreshed = await service.get_job_card(job_card_id)
        assert refreshed.total_cost == Decimal("0")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("quantity", [0, -1, "two"])
    async def test_invalid_quantity(self, service, mechanic, job_card, part, quantity):
        with pytest.raises(InvalidInputError):
            await service.add_spare_part(mechanic, job_card.id, part.id, quantity)

    @pytest.mark.asyncio
    async def test_other_mechanic_cannot_draw_stock(self, service, intruder, job_card, part, test_db):
        with pytest.raises(ForbiddenError):
            await service.add_spare_part(intruder, job_card.id, part.id, 1)
        await test_db.refresh(part)
        assert part.quantity == 5

    @pytest.mark.asyncio
    async def test_parts_cache_invalidated_after_commit(self, service, mechanic, job_card, part, parts_cache):
        await service.add_spare_part(mechanic, job_card.id, part.id, 1)

        assert parts_cache.store[PARTS_VERSION_KEY] == 1
        assert parts_cache.invalidated == [("parts:all:v0", "parts:low_stock:v0")]

    @pytest.mark.asyncio
    async def test_failed_draw_leaves_cache_alone(self, service, mechanic, job_card, part, parts_cache):
        with pytest.raises(InsufficientStockError):
            await service.add_spare_part(mechanic, job_card.id, part.id, 50)
        assert PARTS_VERSION_KEY not in parts_cache.store
        assert parts_cache.invalidated == []

    @pytest.mark.asyncio
    async def test_unreachable_cache_does_not_fail_the_draw(self, test_db, mechanic, job_card, part, parts_cache):
        async def unavailable(key):
            return None

        parts_cache.incr = unavailable
        service = JobCardService(test_db, cache=parts_cache, strict_transitions=False)

        usage = await service.add_spare_part(mechanic, job_card.id, part.id, 1)

        assert usage.quantity == 1
        assert parts_cache.invalidated == []


class TestAssignMechanic:
    """Test mechanic reassignment."""

    @pytest.mark.asyncio
    async def test_reassign_sets_in_progress(self, service, job_card, other_mechanic):
        job_card = await service.assign_mechanic(job_card.id, other_mechanic.id)

        assert job_card.mechanic_id == other_mechanic.id
        assert job_card.status == "in_progress"
        assert job_card.started_at is not None

    @pytest.mark.asyncio
    async def test_customer_cannot_be_assigned(self, service, job_card, customer_user):
        with pytest.raises(InvalidInputError):
            await service.assign_mechanic(job_card.id, customer_user.id)

    @pytest.mark.asyncio
    async def test_missing_job_card(self, service, other_mechanic):
        with pytest.raises(NotFoundError):
            await service.assign_mechanic(9999, other_mechanic.id)


class TestUpdateStatus:
    """Test status changes and billing on completion."""

    @pytest.mark.asyncio
    async def test_completion_creates_invoice_and_completes_booking(
        self, service, mechanic, job_card, part, booking, test_db
    ):
        await service.add_task(mechanic, job_card.id, "Oil change", Decimal("50.00"))
        await service.add_spare_part(mechanic, job_card.id, part.id, 2)

        job_card = await service.update_status(mechanic, job_card.id, "completed")

        assert job_card.status == "completed"
        assert job_card.completed_at is not None

        invoice = (await test_db.execute(select(Invoice).where(Invoice.jobcard_id == job_card.id))).scalar_one()
        assert invoice.parts_total == Decimal("20.00")
        assert invoice.labor_total == Decimal("50.00")
        assert invoice.grand_total == Decimal("70.00")
        assert invoice.status == "unpaid"
        assert invoice.customer_id == job_card.customer_id

        await test_db.refresh(booking)
        assert booking.status == "completed"

    @pytest.mark.asyncio
    async def test_completion_without_booking(self, service, mechanic, vehicle, test_db):
        job_card = await service.create_job_card(mechanic, {"vehicle_id": vehicle.id})
        await service.update_status(mechanic, job_card.id, "completed")

        assert await count(test_db, Invoice, jobcard_id=job_card.id) == 1

    @pytest.mark.asyncio
    async def test_billing_failure_does_not_block_completion(
        self, service, mechanic, job_card, booking, test_db, monkeypatch
    ):
        async def broken_sum(db, job_card_id):
            raise RuntimeError("ledger unavailable")

        monkeypatch.setattr("app.services.billing_service.sum_parts_total", broken_sum)

        job_card = await service.update_status(mechanic, job_card.id, "completed")

        assert job_card.status == "completed"
        assert await count(test_db, Invoice) == 0
        await test_db.refresh(booking)
        assert booking.status == "confirmed"

    @pytest.mark.asyncio
    async def test_completing_twice_bills_twice(self, service, mechanic, job_card, test_db):
        """No idempotence guard: each completion produces an invoice."""
        await service.update_status(mechanic, job_card.id, "completed")
        await service.update_status(mechanic, job_card.id, "completed")

        assert await count(test_db, Invoice, jobcard_id=job_card.id) == 2

    @pytest.mark.asyncio
    async def test_unknown_status_rejected(self, service, mechanic, job_card):
        with pytest.raises(InvalidInputError) as exc:
            await service.update_status(mechanic, job_card.id, "done")
        assert exc.value.detail == "Invalid status"

    @pytest.mark.asyncio
    async def test_missing_job_card_reported_before_status(self, service, mechanic):
        with pytest.raises(NotFoundError):
            await service.update_status(mechanic, 9999, "done")

    @pytest.mark.asyncio
    async def test_other_mechanic_is_forbidden(self, service, intruder, job_card, test_db):
        job_card_id = job_card.id
        with pytest.raises(ForbiddenError):
            await service.update_status(intruder, job_card_id, "completed")

        assert await count(test_db, Invoice) == 0
        refreshed = await service.get_job_card(job_card_id)
        assert refreshed.status == "in_progress"

    @pytest.mark.asyncio
    async def test_any_whitelisted_transition_allowed_by_default(self, service, mechanic, job_card):
        await service.update_status(mechanic, job_card.id, "completed")
        job_card = await service.update_status(mechanic, job_card.id, "pending")
        assert job_card.status == "pending"

    @pytest.mark.asyncio
    async def test_strict_transitions_reject_reopening(self, test_db, mechanic, job_card):
        strict = JobCardService(test_db, strict_transitions=True)
        await strict.update_status(mechanic, job_card.id, "completed")

        assert ALLOWED_TRANSITIONS["completed"] == set()
        with pytest.raises(BusinessRuleError):
            await strict.update_status(mechanic, job_card.id, "in_progress")

    @pytest.mark.asyncio
    async def test_in_progress_stamps_started_at(self, service, mechanic, job_card):
        await service.update_status(mechanic, job_card.id, "pending")
        job_card = await service.update_status(mechanic, job_card.id, "in_progress")
        assert job_card.started_at is not None


class TestUpdateProgress:
    """Test progress updates."""

    @pytest.mark.asyncio
    async def test_sets_percent_and_notes(self, service, mechanic, job_card):
        job_card = await service.update_progress(mechanic, job_card.id, 40, "Waiting on brake pads")
        assert job_card.percent_complete == 40
        assert job_card.notes == "Waiting on brake pads"

    @pytest.mark.asyncio
    async def test_notes_kept_when_omitted(self, service, mechanic, job_card):
        await service.update_progress(mechanic, job_card.id, 40, "Waiting on brake pads")
        job_card = await service.update_progress(mechanic, job_card.id, 60)
        assert job_card.percent_complete == 60
        assert job_card.notes == "Waiting on brake pads"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("percent", [-1, 101, "half"])
    async def test_out_of_range_rejected(self, service, mechanic, job_card, percent):
        with pytest.raises(InvalidInputError):
            await service.update_progress(mechanic, job_card.id, percent)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("percent", [0, 100])
    async def test_bounds_accepted(self, service, mechanic, job_card, percent):
        job_card = await service.update_progress(mechanic, job_card.id, percent)
        assert job_card.percent_complete == percent

    @pytest.mark.asyncio
    async def test_other_mechanic_is_forbidden(self, service, intruder, job_card):
        with pytest.raises(ForbiddenError):
            await service.update_progress(intruder, job_card.id, 50)


class TestDeleteJobCard:
    """Test job card deletion."""

    @pytest.mark.asyncio
    async def test_deletes_line_items_without_restoring_stock(self, service, mechanic, job_card, part, test_db):
        await service.add_task(mechanic, job_card.id, "Oil change", 50)
        await service.add_spare_part(mechanic, job_card.id, part.id, 2)

        deleted = await service.delete_job_card(job_card.id)

        assert deleted.id == job_card.id
        assert await count(test_db, JobCard) == 0
        assert await count(test_db, JobCardTask) == 0
        assert await count(test_db, JobCardSparePart) == 0
        await test_db.refresh(part)
        assert part.quantity == 3

    @pytest.mark.asyncio
    async def test_missing_job_card(self, service):
        with pytest.raises(NotFoundError):
            await service.delete_job_card(9999)


class TestReads:
    """Test job card queries."""

    @pytest.mark.asyncio
    async def test_list_filters_by_status_and_mechanic(self, service, mechanic, admin, job_card, vehicle):
        other = await service.create_job_card(admin, {"vehicle_id": vehicle.id})
        await service.update_status(admin, other.id, "pending")

        assert [j.id for j in await service.list_job_cards(status="pending")] == [other.id]
        assert [j.id for j in await service.list_job_cards(mechanic_id=mechanic.id)] == [job_card.id]
        assert len(await service.list_job_cards()) == 2

    @pytest.mark.asyncio
    async def test_list_completed(self, service, mechanic, job_card):
        assert await service.list_completed() == []
        await service.update_status(mechanic, job_card.id, "completed")
        assert [j.id for j in await service.list_completed()] == [job_card.id]

    @pytest.mark.asyncio
    async def test_spare_parts_joined_with_part(self, service, mechanic, job_card, part):
        await service.add_spare_part(mechanic, job_card.id, part.id, 1)
        [(usage, joined)] = await service.list_spare_parts([job_card.id])
        assert usage.part_id == part.id
        assert joined.part_number == part.part_number

    @pytest.mark.asyncio
    async def test_by_booking_for_owner(self, service, mechanic, job_card, booking):
        found = await service.get_by_booking(mechanic, booking.id)
        assert found.id == job_card.id

    @pytest.mark.asyncio
    async def test_by_booking_hidden_from_other_mechanic(self, service, intruder, job_card, booking):
        with pytest.raises(ForbiddenError):
            await service.get_by_booking(intruder, booking.id)

    @pytest.mark.asyncio
    async def test_by_booking_missing_for_admin(self, service, admin):
        with pytest.raises(NotFoundError):
            await service.get_by_booking(admin, 9999)

    @pytest.mark.asyncio
    async def test_notes(self, service, job_card):
        notes = await service.get_notes(job_card.id)
        assert set(notes) == {"progress_notes", "created_at", "updated_at"}
        assert notes["progress_notes"] is None

    @pytest.mark.asyncio
    async def test_views_carry_vehicle_customer_mechanic_and_booking(
        self, service, job_card, mechanic_user, customer_user, booking
    ):
        [view] = await service.list_job_cards()

        assert view.id == job_card.id
        assert view.vehicle_model == "Corolla"
        assert view.vehicle_vin == "JT2BF22K1W0123456"
        assert view.vehicle_year == 2018
        assert view.customer_name == customer_user.name
        assert view.customer_email == customer_user.email
        assert view.customer_phone == customer_user.phone
        assert view.mechanic_name == mechanic_user.name
        assert view.service_type == "general_service"

    @pytest.mark.asyncio
    async def test_view_without_customer_or_booking(self, service, mechanic, vehicle):
        created = await service.create_job_card(mechanic, {"vehicle_id": vehicle.id})

        view = await service.get_job_card_view(created.id)

        assert view.vehicle_model == "Corolla"
        assert view.customer_name is None
        assert view.service_type is None

    @pytest.mark.asyncio
    async def test_view_missing(self, service):
        with pytest.raises(NotFoundError):
            await service.get_job_card_view(9999)

    @pytest.mark.asyncio
    async def test_by_booking_and_completed_are_views(self, service, mechanic, job_card, booking, mechanic_user):
        found = await service.get_by_booking(mechanic, booking.id)
        assert found.mechanic_name == mechanic_user.name

        await service.update_status(mechanic, job_card.id, "completed")
        [completed] = await service.list_completed()
        assert completed.service_type == "general_service"


class TestCostRollup:
    """total_cost always equals labor plus parts."""

    @pytest.mark.asyncio
    async def test_total_cost_matches_line_items(self, service, mechanic, admin, job_card, part, test_db):
        job_card_id, part_id = job_card.id, part.id

        await service.add_task(mechanic, job_card_id, "Diagnostics", "35.00")
        await service.add_spare_part(mechanic, job_card_id, part_id, 2)
        await service.add_task(admin, job_card_id, "Brake pad fitting", "60.25")
        with pytest.raises(InsufficientStockError):
            await service.add_spare_part(mechanic, job_card_id, part_id, 10)
        await service.add_spare_part(admin, job_card_id, part_id, 1)

        task_sum = (
            await test_db.execute(
                select(func.sum(JobCardTask.task_cost)).where(JobCardTask.jobcard_id == job_card_id)
            )
        ).scalar()
        parts_sum = (
            await test_db.execute(
                select(func.sum(JobCardSparePart.total_price)).where(JobCardSparePart.jobcard_id == job_card_id)
            )
        ).scalar()

        refreshed = await service.get_job_card(job_card_id)
        assert refreshed.labor_cost == Decimal(task_sum) == Decimal("95.25")
        assert refreshed.total_cost == Decimal(task_sum) + Decimal(parts_sum) == Decimal("125.25")


class TestConcurrentStockDraws:
    """Separate sessions racing for the same stock."""

    @pytest.mark.asyncio
    async def test_exactly_one_of_two_concurrent_draws_wins(self, file_db_engine):
        sessions = async_sessionmaker(file_db_engine, class_=AsyncSession, expire_on_commit=False)

        async with sessions() as setup:
            mechanic_user = User(**MechanicFactory())
            owner = User(**UserFactory())
            setup.add_all([mechanic_user, owner])
            await setup.flush()
            vehicle = Vehicle(owner_id=owner.id, make="Honda", model="Civic", year=2020)
            part = Part(**PartFactory(quantity=5, price=Decimal("10.00")))
            setup.add_all([vehicle, part])
            await setup.flush()
            job_card = JobCard(vehicle_id=vehicle.id, mechanic_id=mechanic_user.id, status="in_progress")
            setup.add(job_card)
            await setup.commit()
            mechanic = Principal(id=mechanic_user.id, role=Role.MECHANIC)
            job_card_id, part_id = job_card.id, part.id

        async def draw_all_stock():
            async with sessions() as session:
                try:
                    await JobCardService(session).add_spare_part(mechanic, job_card_id, part_id, 5)
                    return "ok"
                except InsufficientStockError:
                    return "insufficient"

        results = await asyncio.gather(draw_all_stock(), draw_all_stock())

        assert sorted(results) == ["insufficient", "ok"]
        async with sessions() as check:
            assert (await check.get(Part, part_id)).quantity == 0
            assert await count(check, JobCardSparePart) == 1
            assert (await check.get(JobCard, job_card_id)).total_cost == Decimal("50.00")


class DriverError(Exception):
    """Stand-in for a DB-API exception carrying a SQLSTATE."""

    def __init__(self, message, sqlstate=None, pgcode=None):
        super().__init__(message)
        self.sqlstate = sqlstate
        self.pgcode = pgcode


def integrity_error(message, **codes) -> IntegrityError:
    return IntegrityError("INSERT INTO jobcard_spareparts", {}, DriverError(message, **codes))


class TestIsForeignKeyViolation:
    """Test foreign key detection across drivers."""

    @pytest.mark.parametrize(
        "error",
        [
            integrity_error("insert or update violates foreign key constraint", sqlstate="23503"),
            integrity_error("insert or update violates foreign key constraint", pgcode="23503"),
            integrity_error("FOREIGN KEY constraint failed"),
        ],
    )
    def test_detected(self, error):
        assert is_foreign_key_violation(error) is True

    @pytest.mark.parametrize(
        "error",
        [
            integrity_error("duplicate key value violates unique constraint", sqlstate="23505"),
            integrity_error("CHECK constraint failed: ck_parts_quantity_nonnegative"),
        ],
    )
    def test_other_violations(self, error):
        assert is_foreign_key_violation(error) is False


class TestTransactionErrors:
    """Database failures inside a mutation roll back and map to API errors."""

    @pytest.mark.asyncio
    async def test_job_card_deleted_after_lock_is_not_found(self, service, mechanic, job_card, test_db, monkeypatch):
        job_card_id = job_card.id
        lock = service._lock_job_card

        async def lock_then_vanish(locked_id):
            locked = await lock(locked_id)
            await test_db.execute(
                delete(JobCard).where(JobCard.id == locked_id).execution_options(synchronize_session=False)
            )
            return locked

        monkeypatch.setattr(service, "_lock_job_card", lock_then_vanish)

        with pytest.raises(NotFoundError):
            await service.add_task(mechanic, job_card_id, "Oil change", 50)

        assert await count(test_db, JobCardTask) == 0
        assert await count(test_db, JobCard, id=job_card_id) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error,expected",
        [
            (integrity_error("FOREIGN KEY constraint failed"), NotFoundError),
            (integrity_error("UNIQUE constraint failed: parts.part_number"), InternalError),
            (OperationalError("UPDATE parts", {}, DriverError("database is locked")), InternalError),
            (RuntimeError("connection reset"), InternalError),
        ],
    )
    async def test_failures_are_classified_and_rolled_back(
        self, service, mechanic, job_card, part, test_db, monkeypatch, error, expected
    ):
        job_card_id, part_id = job_card.id, part.id

        async def failing_reserve(db, reserve_part_id, quantity):
            raise error

        monkeypatch.setattr("app.services.job_card_service.reserve_stock", failing_reserve)

        with pytest.raises(expected):
            await service.add_spare_part(mechanic, job_card_id, part_id, 1)

        assert await count(test_db, JobCardSparePart) == 0
        refreshed = await service.get_job_card(job_card_id)
        assert refreshed.total_cost == Decimal("0")

    @pytest.mark.asyncio
    async def test_non_foreign_key_integrity_error_detail(self, service, mechanic, job_card, part, monkeypatch):
        job_card_id, part_id = job_card.id, part.id

        async def failing_reserve(db, reserve_part_id, quantity):
            raise integrity_error("UNIQUE constraint failed: parts.part_number")

        monkeypatch.setattr("app.services.job_card_service.reserve_stock", failing_reserve)

        with pytest.raises(InternalError) as exc:
            await service.add_spare_part(mechanic, job_card_id, part_id, 1)
        assert exc.value.status_code == 500
        assert exc.value.detail == "Database constraint violation"


class TestReferencedRowsDeleted:
    """Deleting a booking or mechanic detaches job cards instead of blocking."""

    @pytest.mark.asyncio
    async def test_booking_delete_clears_booking_id(self, service, job_card, booking, test_db):
        job_card_id = job_card.id
        await test_db.execute(delete(Booking).where(Booking.id == booking.id))
        await test_db.commit()

        refreshed = await service.get_job_card(job_card_id)
        assert refreshed.booking_id is None

    @pytest.mark.asyncio
    async def test_mechanic_delete_clears_mechanic_id(self, service, job_card, mechanic_user, test_db):
        job_card_id = job_card.id
        await test_db.execute(delete(User).where(User.id == mechanic_user.id))
        await test_db.commit()

        refreshed = await service.get_job_card(job_card_id)
        assert refreshed.mechanic_id is None
