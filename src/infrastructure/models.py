"""
SQLAlchemy ORM models  (maps to PostgreSQL + PostGIS).

Tables
------
* ``cars``              -- vehicles with their registered parking spot
* ``rental_bookings``   -- reservations plus trip start/end data
* ``handoff_sessions``  -- one verification session per trip-start attempt
* ``trip_charges``      -- post-trip settlement rows (only when charged)
* ``rental_disputes``   -- guest disputes raised at trip end

Indexes
-------
* **GIST** on geometry columns (car location, last guest location).
* **B-Tree** on ``handoff_sessions.status`` and ``fallback_deadline`` /
  ``expires_at`` for the timer sweep, plus foreign keys.
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from geoalchemy2 import Geometry

from .database import Base
from src.domain.enums import (
    ChargeStatus,
    CompletionMode,
    DisputeType,
    FuelLevel,
    HandoffStatus,
)


def _values(enum_cls):
    return [member.value for member in enum_cls]


class CarModel(Base):
    __tablename__ = "cars"

    id = Column(String(36), primary_key=True)
    make = Column(String(60), nullable=False)
    model = Column(String(60), nullable=False)
    year = Column(Integer, nullable=False)
    address = Column(String(255), nullable=True)
    city = Column(String(120), nullable=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    location = Column(Geometry("POINT", srid=4326), nullable=True)
    key_instructions = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_cars_location", "location", postgresql_using="gist"),
    )


class BookingModel(Base):
    __tablename__ = "rental_bookings"

    id = Column(String(36), primary_key=True)
    booking_code = Column(String(20), unique=True, nullable=False)
    car_id = Column(String(36), ForeignKey("cars.id"), nullable=False)
    guest_email = Column(String(255), nullable=True)
    host_email = Column(String(255), nullable=True)

    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)
    number_of_days = Column(Integer, nullable=False, default=1)
    is_instant_book = Column(Boolean, default=False, nullable=False)

    # Pricing (as paid at reservation time)
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

    # Trip start
    trip_started_at = Column(DateTime(timezone=True), nullable=True)
    start_mileage = Column(Integer, nullable=True)
    fuel_level_start = Column(Enum(FuelLevel, values_callable=_values), nullable=True)
    handoff_mode = Column(Enum(CompletionMode), nullable=True)

    # Trip end
    trip_ended_at = Column(DateTime(timezone=True), nullable=True)
    end_mileage = Column(Integer, nullable=True)
    fuel_level_end = Column(Enum(FuelLevel, values_callable=_values), nullable=True)
    actual_end_time = Column(DateTime(timezone=True), nullable=True)
    damage_reported = Column(Boolean, default=False, nullable=False)
    damage_description = Column(Text, nullable=True)
    damage_photos = Column(Text, nullable=True)  # JSON list of URLs
    inspection_photos_end = Column(Text, nullable=True)  # JSON mapping
    charge_status = Column(Enum(ChargeStatus), nullable=True)
    pending_charges_amount = Column(Numeric(10, 2), nullable=True)
    statutory_notice = Column(Text, nullable=True)  # JSON

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_bookings_car", "car_id"),
        Index("idx_bookings_code", "booking_code"),
    )


class HandoffSessionModel(Base):
    __tablename__ = "handoff_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(
        String(36), ForeignKey("rental_bookings.id"), unique=True, nullable=False
    )
    status = Column(
        Enum(HandoffStatus), default=HandoffStatus.LOCATING, nullable=False
    )
    guest_lat = Column(Float, nullable=True)
    guest_lng = Column(Float, nullable=True)
    guest_point = Column(Geometry("POINT", srid=4326), nullable=True)
    distance_meters = Column(Float, nullable=True)
    guest_live_distance = Column(Float, nullable=True)
    last_ping_at = Column(DateTime(timezone=True), nullable=True)
    arrival_message = Column(Text, nullable=True)
    is_instant_book = Column(Boolean, default=False, nullable=False)
    guest_verified_at = Column(DateTime(timezone=True), nullable=True)
    fallback_deadline = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    completion_mode = Column(Enum(CompletionMode), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_handoff_guest_point", "guest_point", postgresql_using="gist"),
        Index("idx_handoff_status", "status"),
        Index("idx_handoff_expires", "expires_at"),
        Index("idx_handoff_fallback", "fallback_deadline"),
    )


class TripChargeModel(Base):
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
    charge_details = Column(Text, nullable=False)  # JSON line items
    charge_status = Column(Enum(ChargeStatus), nullable=False)
    requires_approval = Column(Boolean, default=False, nullable=False)
    hold_until = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("idx_trip_charges_status", "charge_status"),)


class DisputeModel(Base):
    __tablename__ = "rental_disputes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(String(36), ForeignKey("rental_bookings.id"), nullable=False)
    type = Column(Enum(DisputeType), nullable=False)
    description = Column(Text, nullable=False)
    status = Column(String(20), default="OPEN", nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("idx_disputes_booking", "booking_id"),)
