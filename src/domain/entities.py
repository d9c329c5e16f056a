"""
Domain entities consumed by the settlement engine and the lifecycle
controller.

- ``Booking`` is the read-only projection of a reservation this core
  consumes; the booking flow that creates it lives elsewhere.
- ``TripRecord`` accumulates odometer / fuel / return data across the
  trip.  Every field is optional so that missing input surfaces as a
  field-scoped ``ValidationError`` instead of a ``TypeError``.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Optional

from .enums import FuelLevel


# ── Value Object ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float

    @property
    def is_null_island(self) -> bool:
        """(0, 0) is what browsers hand back when no fix was captured."""
        return self.latitude == 0 and self.longitude == 0


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class Booking:
    id: str
    booking_code: str = ""
    number_of_days: int = 1
    daily_rate: Decimal = Decimal("0")
    subtotal: Optional[Decimal] = None
    delivery_fee: Decimal = Decimal("0")
    insurance_fee: Decimal = Decimal("0")
    service_fee: Decimal = Decimal("0")
    enhancements_total: Decimal = Decimal("0")
    taxes: Decimal = Decimal("0")
    credits_applied: Decimal = Decimal("0")
    bonus_applied: Decimal = Decimal("0")
    total_amount: Decimal = Decimal("0")
    charge_amount: Optional[Decimal] = None
    deposit_amount: Decimal = Decimal("500")
    start_mileage: Optional[int] = None
    fuel_level_start: Optional[FuelLevel] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    car_address: Optional[str] = None
    car_city: Optional[str] = None
    car_location: Optional[Location] = None
    is_instant_book: bool = False
    has_payment_method: bool = False
    trip_started_at: Optional[datetime] = None
    trip_ended_at: Optional[datetime] = None

    @property
    def tax_city(self) -> Optional[str]:
        return self.car_city or self.car_address


@dataclass(frozen=True)
class TripRecord:
    start_mileage: Optional[int] = None
    end_mileage: Optional[int] = None
    fuel_level_start: Optional[FuelLevel] = None
    fuel_level_end: Optional[FuelLevel] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    actual_return_timestamp: Optional[datetime] = None
    damage_reported: bool = False
    damage_photo_count: int = 0
    number_of_days: Optional[int] = None
    disputes: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_booking(cls, booking: Booking) -> "TripRecord":
        return cls(
            start_mileage=booking.start_mileage,
            fuel_level_start=booking.fuel_level_start,
            start_date=booking.start_date,
            end_date=booking.end_date,
            number_of_days=booking.number_of_days,
        )

    def with_changes(self, **changes) -> "TripRecord":
        return replace(self, **changes)
