from datetime import date
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app
from app.database import Base, get_db, configure_sqlite
from app.api.deps import create_access_token, get_parts_cache
from app.models import User, Vehicle, Booking, Part
from app.security.rbac import Principal, Role
from app.services.job_card_service import JobCardService

from tests.factories import UserFactory, MechanicFactory, AdminFactory, PartFactory

# Test database URL (in-memory SQLite shared across the session's connections)
TEST_DATABASE_URL = "sqlite+aiosqlite://"


class FakePartsCache:
    """In-memory stand-in for the Redis-backed parts cache."""

    def __init__(self):
        self.store = {}
        self.invalidated = []

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, ttl=60):
        self.store[key] = value
        return True

    async def delete(self, key):
        self.store.pop(key, None)
        return True

    async def incr(self, key):
        self.store[key] = self.store.get(key, 0) + 1
        return self.store[key]

    async def invalidate(self, *keys):
        self.invalidated.append(keys)
        for key in keys:
            self.store.pop(key, None)
        return len(keys)


@pytest_asyncio.fixture
async def db_engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    configure_sqlite(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def file_db_engine(tmp_path):
    """File-backed SQLite, so separate sessions get separate connections."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'shop.db'}")
    configure_sqlite(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def test_db(db_engine):
    """Create test database and tables."""
    async_session = async_sessionmaker(
        db_engine, class_=AsyncSession, expire_on_commit=False
    )

    async with async_session() as session:
        yield session


async def _add(db: AsyncSession, obj):
    db.add(obj)
    await db.commit()
    await db.refresh(obj)
    return obj


@pytest_asyncio.fixture
async def admin_user(test_db: AsyncSession):
    return await _add(test_db, User(**AdminFactory()))


@pytest_asyncio.fixture
async def mechanic_user(test_db: AsyncSession):
    return await _add(test_db, User(**MechanicFactory()))


@pytest_asyncio.fixture
async def other_mechanic(test_db: AsyncSession):
    return await _add(test_db, User(**MechanicFactory()))


@pytest_asyncio.fixture
async def customer_user(test_db: AsyncSession):
    return await _add(test_db, User(**UserFactory()))


@pytest_asyncio.fixture
async def vehicle(test_db: AsyncSession, customer_user: User):
    return await _add(
        test_db,
        Vehicle(owner_id=customer_user.id, make="Toyota", model="Corolla", year=2018, vin="JT2BF22K1W0123456"),
    )


@pytest_asyncio.fixture
async def booking(test_db: AsyncSession, customer_user: User, vehicle: Vehicle):
    return await _add(
        test_db,
        Booking(
            customer_id=customer_user.id,
            vehicle_id=vehicle.id,
            service_type="general_service",
            booking_date=date(2026, 3, 2),
            status="confirmed",
        ),
    )


@pytest_asyncio.fixture
async def part(test_db: AsyncSession):
    """Part with 5 units at 10.00 each."""
    return await _add(test_db, Part(**PartFactory(quantity=5, price=Decimal("10.00"), reorder_level=2)))


@pytest.fixture
def admin(admin_user: User) -> Principal:
    return Principal(id=admin_user.id, role=Role.ADMIN)


@pytest.fixture
def mechanic(mechanic_user: User) -> Principal:
    return Principal(id=mechanic_user.id, role=Role.MECHANIC)


@pytest.fixture
def intruder(other_mechanic: User) -> Principal:
    return Principal(id=other_mechanic.id, role=Role.MECHANIC)


@pytest.fixture
def parts_cache() -> FakePartsCache:
    return FakePartsCache()


@pytest.fixture
def service(test_db: AsyncSession, parts_cache: FakePartsCache) -> JobCardService:
    return JobCardService(test_db, cache=parts_cache, strict_transitions=False)


@pytest_asyncio.fixture
async def job_card(service: JobCardService, mechanic: Principal, vehicle: Vehicle, customer_user: User, booking: Booking):
    """Job card owned by ``mechanic``, linked to the booking."""
    return await service.create_job_card(
        mechanic,
        {"vehicle_id": vehicle.id, "customer_id": customer_user.id, "booking_id": booking.id},
    )


@pytest_asyncio.fixture
async def client(test_db: AsyncSession, parts_cache: FakePartsCache):
    """Create test client with overridden database and cache."""

    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_parts_cache] = lambda: parts_cache

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Build bearer headers for a user."""

    def _headers(user: User) -> dict:
        token = create_access_token({"sub": str(user.id)})
        return {"Authorization": f"Bearer {token}"}

    return _headers
