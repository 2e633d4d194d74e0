"""Shared test fixtures.

Each test gets its own SQLite file database under tmp_path, so engines,
pools and the availability locks never outlive the event loop that created
them.
"""

from datetime import UTC, datetime
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient

from staybook.core.config import Settings
from staybook.core.database import build_engine, build_session_factory, get_db
from staybook.main import create_app
from staybook.models import Base, ResourceType
from staybook.schemas import BookingCreate, PropertyTarget, ResourceCreate
from staybook.services import catalog, ledger
from staybook.services.availability import AvailabilityEngine


def day(n: int, month: int = 1) -> datetime:
    return datetime(2025, month, n, tzinfo=UTC)


def booking_in(
    check_in: datetime,
    check_out: datetime,
    status: str = "pending",
    amount: str = "0",
    user_id: str = "guest-1",
    **kwargs,
) -> BookingCreate:
    return BookingCreate(
        user_id=user_id,
        target=PropertyTarget(property_id="prop-1", room_type="deluxe"),
        check_in_date=check_in,
        check_out_date=check_out,
        status=status,
        total_amount=Decimal(amount),
        **kwargs,
    )


@pytest.fixture
async def session_factory(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'staybook.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def availability(session_factory):
    return AvailabilityEngine(session_factory, Settings(default_resource_capacity=1))


@pytest.fixture
def register(session_factory):
    """Add catalog entries and commit."""

    async def _register(resource_id: str, resource_type: ResourceType = ResourceType.ROOM, **fields):
        async with session_factory() as session:
            resource = await catalog.register_resource(
                session, ResourceCreate(resource_id=resource_id, resource_type=resource_type, **fields)
            )
            await session.commit()
            return resource

    return _register


@pytest.fixture
def make_booking(session_factory):
    """Create an unallocated booking, commit it and return its id."""

    async def _make(check_in: datetime, check_out: datetime, **kwargs) -> int:
        async with session_factory() as session:
            booking = await ledger.create_booking(session, booking_in(check_in, check_out, **kwargs))
            await session.commit()
            return booking.id

    return _make


@pytest.fixture
async def client(session_factory):
    app = create_app(session_factory)

    async def _get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
