"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.  Rows are mapped to and from the plain
domain entities in ``src.domain`` so the state machines never touch ORM
objects directly.
"""

from __future__ import annotations

import json
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    BookingModel,
    CarModel,
    DisputeModel,
    HandoffSessionModel,
    TripChargeModel,
)
from src.domain.entities import Booking, Location
from src.domain.enums import (
    ChargeStatus,
    CompletionMode,
    DisputeType,
    FuelLevel,
    HandoffStatus,
)
from src.domain.handoff import HandoffSession
from src.domain.settlement import DepositReconciliation, SettlementResult


def _dec(value) -> Decimal:
    return Decimal("0") if value is None else Decimal(str(value))


def _point(lat: float, lng: float):
    from geoalchemy2.functions import ST_MakePoint

    return ST_MakePoint(lng, lat)


class BookingRepository:
    booking_model = BookingModel
    car_model = CarModel

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, booking_id: str):
        return await self.session.get(self.booking_model, booking_id)

    async def get_car(self, car_id: str):
        return await self.session.get(self.car_model, car_id)

    @staticmethod
    def to_domain(row, car=None) -> Booking:
        fuel_start = row.fuel_level_start
        return Booking(
            id=row.id,
            booking_code=row.booking_code,
            number_of_days=row.number_of_days,
            daily_rate=_dec(row.daily_rate),
            subtotal=None if row.subtotal is None else _dec(row.subtotal),
            delivery_fee=_dec(row.delivery_fee),
            insurance_fee=_dec(row.insurance_fee),
            service_fee=_dec(row.service_fee),
            enhancements_total=_dec(row.enhancements_total),
            taxes=_dec(row.taxes),
            credits_applied=_dec(row.credits_applied),
            bonus_applied=_dec(row.bonus_applied),
            total_amount=_dec(row.total_amount),
            charge_amount=None if row.charge_amount is None else _dec(row.charge_amount),
            deposit_amount=_dec(row.deposit_amount),
            start_mileage=row.start_mileage,
            fuel_level_start=FuelLevel(fuel_start) if fuel_start else None,
            start_date=row.start_date,
            end_date=row.end_date,
            car_address=car.address if car else None,
            car_city=car.city if car else None,
            car_location=Location(car.latitude, car.longitude) if car else None,
            is_instant_book=bool(row.is_instant_book),
            has_payment_method=bool(row.has_payment_method),
            trip_started_at=row.trip_started_at,
            trip_ended_at=row.trip_ended_at,
        )

    async def mark_trip_started(
        self,
        row,
        *,
        started_at: datetime,
        start_mileage: int,
        fuel_level_start: FuelLevel,
        handoff_mode: CompletionMode,
    ) -> None:
        row.trip_started_at = started_at
        row.start_mileage = start_mileage
        row.fuel_level_start = fuel_level_start
        row.handoff_mode = handoff_mode
        await self.session.flush()

    async def mark_trip_ended(
        self,
        row,
        *,
        ended_at: datetime,
        end_mileage: int,
        fuel_level_end: FuelLevel,
        damage_reported: bool,
        damage_description: Optional[str],
        damage_photos: list[str],
        inspection_photos: dict[str, str],
        charge_status: ChargeStatus,
        pending_amount: Optional[Decimal],
        statutory_notice: dict,
    ) -> None:
        row.trip_ended_at = ended_at
        row.actual_end_time = ended_at
        row.end_mileage = end_mileage
        row.fuel_level_end = fuel_level_end
        row.damage_reported = damage_reported
        row.damage_description = damage_description
        row.damage_photos = json.dumps(damage_photos) if damage_photos else None
        row.inspection_photos_end = json.dumps(inspection_photos)
        row.charge_status = charge_status
        row.pending_charges_amount = pending_amount
        row.statutory_notice = json.dumps(statutory_notice)
        await self.session.flush()


class HandoffSessionRepository:
    model = HandoffSessionModel

    def __init__(self, session: AsyncSession):
        self.session = session

    def _point(self, lat: float, lng: float):
        return _point(lat, lng)

    async def get_by_booking(self, booking_id: str):
        result = await self.session.execute(
            select(self.model).where(self.model.booking_id == booking_id)
        )
        return result.scalar_one_or_none()

    async def get_or_create(self, booking_id: str, is_instant_book: bool):
        row = await self.get_by_booking(booking_id)
        if row is None:
            row = self.model(
                booking_id=booking_id,
                status=HandoffStatus.LOCATING,
                is_instant_book=is_instant_book,
            )
            self.session.add(row)
            await self.session.flush()
        return row

    @staticmethod
    def to_entity(row, key_instructions: Optional[str] = None) -> HandoffSession:
        guest = (
            Location(row.guest_lat, row.guest_lng)
            if row.guest_lat is not None and row.guest_lng is not None
            else None
        )
        return HandoffSession(
            booking_id=row.booking_id,
            status=HandoffStatus(row.status),
            guest_location=guest,
            distance_meters=row.distance_meters,
            guest_live_distance=row.guest_live_distance,
            last_ping_at=row.last_ping_at,
            arrival_message=row.arrival_message,
            is_instant_book=bool(row.is_instant_book),
            guest_verified_at=row.guest_verified_at,
            fallback_deadline=row.fallback_deadline,
            expires_at=row.expires_at,
            completion_mode=(
                CompletionMode(row.completion_mode) if row.completion_mode else None
            ),
            key_instructions=key_instructions,
        )

    async def save(self, row, entity: HandoffSession) -> None:
        row.status = entity.status
        if entity.guest_location is not None:
            lat, lng = entity.guest_location.latitude, entity.guest_location.longitude
            if (row.guest_lat, row.guest_lng) != (lat, lng):
                row.guest_lat = lat
                row.guest_lng = lng
                row.guest_point = self._point(lat, lng)
        row.distance_meters = entity.distance_meters
        row.guest_live_distance = entity.guest_live_distance
        row.last_ping_at = entity.last_ping_at
        row.arrival_message = entity.arrival_message
        row.guest_verified_at = entity.guest_verified_at
        row.fallback_deadline = entity.fallback_deadline
        row.expires_at = entity.expires_at
        row.completion_mode = entity.completion_mode
        await self.session.flush()

    async def get_due_for_update(self, now: datetime) -> list:
        """GUEST_VERIFIED sessions whose fallback or expiry time has passed."""
        result = await self.session.execute(
            select(self.model)
            .where(
                self.model.status == HandoffStatus.GUEST_VERIFIED,
                or_(
                    self.model.expires_at <= now,
                    (self.model.is_instant_book.is_(True))
                    & (self.model.fallback_deadline <= now),
                ),
            )
            .with_for_update()
        )
        return list(result.scalars().all())

    async def get_pending(self) -> list:
        result = await self.session.execute(
            select(self.model)
            .where(self.model.status == HandoffStatus.GUEST_VERIFIED)
            .order_by(self.model.guest_verified_at)
        )
        return list(result.scalars().all())


class TripChargeRepository:
    model = TripChargeModel

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        *,
        booking_id: str,
        settlement: SettlementResult,
        reconciliation: DepositReconciliation,
        charge_status: ChargeStatus,
        requires_approval: bool,
        hold_until: Optional[datetime],
    ):
        by_label = {"Mileage": Decimal("0"), "Fuel": Decimal("0"),
                    "Late": Decimal("0"), "Damage": Decimal("0")}
        for item in settlement.line_items:
            for prefix in by_label:
                if item.label.startswith(prefix):
                    by_label[prefix] += item.amount

        row = self.model(
            booking_id=booking_id,
            mileage_charge=by_label["Mileage"],
            fuel_charge=by_label["Fuel"],
            late_charge=by_label["Late"],
            damage_charge=by_label["Damage"],
            total_charges=settlement.total,
            deposit_amount=reconciliation.deposit_amount,
            amount_to_release=reconciliation.amount_to_release,
            additional_charge_needed=reconciliation.additional_charge_needed,
            charge_details=json.dumps(
                [{"label": i.label, "amount": str(i.amount)} for i in settlement.line_items]
            ),
            charge_status=charge_status,
            requires_approval=requires_approval,
            hold_until=hold_until,
        )
        self.session.add(row)
        await self.session.flush()
        return row


class DisputeRepository:
    model = DisputeModel

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_many(
        self, booking_id: str, disputes: list[tuple[DisputeType, str]]
    ) -> None:
        for dispute_type, description in disputes:
            self.session.add(
                self.model(
                    booking_id=booking_id,
                    type=dispute_type,
                    description=description,
                )
            )
        await self.session.flush()
