"""
Shared test fixtures.

Uses an in-memory SQLite database (via aiosqlite) so tests run without
Docker / PostgreSQL / Redis.  PostGIS-specific features (Geometry columns)
are mocked by using plain String columns in the test models, and enums
are stored as their string values.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from src.domain.entities import Booking, Location
from src.domain.enums import FuelLevel
from src.infrastructure.repositories import (
    BookingRepository,
    DisputeRepository,
    HandoffSessionRepository,
    TripChargeRepository,
)


# ── Test DB (SQLite in-memory) ────────────────────────────────────────

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


class TestBase(DeclarativeBase):
    pass


# Mirror the production models but without PostGIS Geometry columns
# (SQLite doesn't support them).

class TestCarModel(TestBase):
    __tablename__ = "cars"
    id = Column(String(36), primary_key=True)
    make = Column(String(60), nullable=False)
    model = Column(String(60), nullable=False)
    year = Column(Integer, nullable=False)
    address = Column(String(255), nullable=True)
    city = Column(String(120), nullable=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    location = Column(String, nullable=True)  # stub for Geometry
    key_instructions = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class TestBookingModel(TestBase):
    __tablename__ = "rental_bookings"
    id = Column(String(36), primary_key=True)
    booking_code = Column(String(20), unique=True, nullable=False)
    car_id = Column(String(36), ForeignKey("cars.id"), nullable=False)
    guest_email = Column(String(255), nullable=True)
    host_email = Column(String(255), nullable=True)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    number_of_days = Column(Integer, nullable=False, default=1)
    is_instant_book = Column(Boolean, default=False, nullable=False)
    daily_rate = Column(Numeric(10, 2), nullable=False, default=0)
    subtotal = Column(Numeric(10, 2), nullable=True)
    delivery_fee = Column(Numeric(10, 2), default=0)
    insurance_fee = Column(Numeric(10, 2), default=0)
    service_fee = Column(Numeric(10, 2), default=0)
    enhancements_total = Column(Numeric(10, 2), default=0)
    taxes = Column(Numeric(10, 2), default=0)
    credits_applied = Column(Numeric(10, 2), default=0)
    bonus_applied = Column(Numeric(10, 2), default=0)
    total_amount = Column(Numeric(10, 2), nullable=False, default=0)
    charge_amount = Column(Numeric(10, 2), nullable=True)
    deposit_amount = Column(Numeric(10, 2), nullable=False, default=500)
    has_payment_method = Column(Boolean, default=False, nullable=False)
    trip_started_at = Column(DateTime, nullable=True)
    start_mileage = Column(Integer, nullable=True)
    fuel_level_start = Column(String(10), nullable=True)
    handoff_mode = Column(String(20), nullable=True)
    trip_ended_at = Column(DateTime, nullable=True)
    end_mileage = Column(Integer, nullable=True)
    fuel_level_end = Column(String(10), nullable=True)
    actual_end_time = Column(DateTime, nullable=True)
    damage_reported = Column(Boolean, default=False, nullable=False)
    damage_description = Column(Text, nullable=True)
    damage_photos = Column(Text, nullable=True)
    inspection_photos_end = Column(Text, nullable=True)
    charge_status = Column(String(20), nullable=True)
    pending_charges_amount = Column(Numeric(10, 2), nullable=True)
    statutory_notice = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now())


class TestHandoffSessionModel(TestBase):
    __tablename__ = "handoff_sessions"
    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(
        String(36), ForeignKey("rental_bookings.id"), unique=True, nullable=False
    )
    status = Column(String(20), default="LOCATING", nullable=False)
    guest_lat = Column(Float, nullable=True)
    guest_lng = Column(Float, nullable=True)
    guest_point = Column(String, nullable=True)  # stub for Geometry
    distance_meters = Column(Float, nullable=True)
    guest_live_distance = Column(Float, nullable=True)
    last_ping_at = Column(DateTime, nullable=True)
    arrival_message = Column(Text, nullable=True)
    is_instant_book = Column(Boolean, default=False, nullable=False)
    guest_verified_at = Column(DateTime, nullable=True)
    fallback_deadline = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    completion_mode = Column(String(20), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now())


class TestTripChargeModel(TestBase):
    __tablename__ = "trip_charges"
    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(
        String(36), ForeignKey("rental_bookings.id"), unique=True, nullable=False
    )
    mileage_charge = Column(Numeric(10, 2), default=0, nullable=False)
    fuel_charge = Column(Numeric(10, 2), default=0, nullable=False)
    late_charge = Column(Numeric(10, 2), default=0, nullable=False)
    damage_charge = Column(Numeric(10, 2), default=0, nullable=False)
    total_charges = Column(Numeric(10, 2), nullable=False)
    deposit_amount = Column(Numeric(10, 2), nullable=False)
    amount_to_release = Column(Numeric(10, 2), nullable=False)
    additional_charge_needed = Column(Numeric(10, 2), nullable=False)
    charge_details = Column(Text, nullable=False)
    charge_status = Column(String(20), nullable=False)
    requires_approval = Column(Boolean, default=False, nullable=False)
    hold_until = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class TestDisputeModel(TestBase):
    __tablename__ = "rental_disputes"
    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(String(36), ForeignKey("rental_bookings.id"), nullable=False)
    type = Column(String(20), nullable=False)
    description = Column(Text, nullable=False)
    status = Column(String(20), default="OPEN", nullable=False)
    created_at = Column(DateTime, server_default=func.now())


# ── Repositories bound to the test models ─────────────────────────────


class TestBookingRepository(BookingRepository):
    booking_model = TestBookingModel
    car_model = TestCarModel


class TestHandoffSessionRepository(HandoffSessionRepository):
    model = TestHandoffSessionModel

    def _point(self, lat: float, lng: float):
        return f"POINT({lng} {lat})"


class TestTripChargeRepository(TripChargeRepository):
    model = TestTripChargeModel


class TestDisputeRepository(DisputeRepository):
    model = TestDisputeModel


# ── Sample data ───────────────────────────────────────────────────────

# Downtown Phoenix parking spot used throughout the tests.
CAR_LAT, CAR_LNG = 33.4484, -112.0740

# 0.0004047 deg of latitude is ~45 m.
GUEST_NEAR = (CAR_LAT + 0.0004047, CAR_LNG)
GUEST_FAR = (CAR_LAT + 0.01, CAR_LNG)

TRIP_START = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)


def make_booking(**overrides) -> Booking:
    values = dict(
        id="bkg-1",
        booking_code="RB0001",
        number_of_days=3,
        daily_rate=Decimal("65.00"),
        subtotal=Decimal("195.00"),
        service_fee=Decimal("29.25"),
        taxes=Decimal("16.38"),
        total_amount=Decimal("240.63"),
        deposit_amount=Decimal("500"),
        start_mileage=1000,
        fuel_level_start=FuelLevel.FULL,
        start_date=TRIP_START,
        end_date=TRIP_START + timedelta(days=3),
        car_address="2 E Jefferson St, Phoenix, AZ 85004",
        car_city="Phoenix",
        car_location=Location(CAR_LAT, CAR_LNG),
        has_payment_method=True,
    )
    values.update(overrides)
    return Booking(**values)


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker, None]:
    """Create tables on a fresh engine, yield a session factory, then drop."""
    engine = create_async_engine(TEST_DB_URL, echo=False, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(TestBase.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(TestBase.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def booking() -> Booking:
    return make_booking()
