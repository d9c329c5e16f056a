"""
Trip endpoints
==============

POST /api/v1/trips/{booking_id}/start  -- record trip start (handoff must be done)
GET  /api/v1/trips/{booking_id}/end    -- can this trip be ended?
POST /api/v1/trips/{booking_id}/end    -- validate, settle and close the trip
POST /api/v1/settlement/preview        -- pure settlement computation

Trip-end validation failures return 422 with every field error; nothing
is persisted and no partial settlement is produced.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import get_clock, get_db, get_settlement_engine
from src.api.middleware import limiter
from src.api.schemas import (
    ChargeLineItemResponse,
    ReceiptResponse,
    ReconciliationResponse,
    SettlementPreviewRequest,
    SettlementPreviewResponse,
    SettlementResponse,
    TripEndCheckResponse,
    TripEndRequest,
    TripEndResponse,
    TripStartRequest,
    TripStartResponse,
    ValidationErrorResponse,
)
from src.config import settings
from src.domain.entities import TripRecord
from src.domain.enums import ChargeStatus, CompletionMode, FuelLevel, HandoffStatus
from src.domain.errors import ValidationError
from src.domain.lifecycle import STATUTORY_NOTICE
from src.domain.settlement import (
    DepositReconciliation,
    SettlementEngine,
    SettlementResult,
    classify_dispute,
    next_steps,
    outcome_message,
    route_charges,
)
from src.infrastructure.repositories import (
    BookingRepository,
    DisputeRepository,
    HandoffSessionRepository,
    TripChargeRepository,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["trips"])


def _validation_response(errors: list[ValidationError]) -> JSONResponse:
    body = ValidationErrorResponse(errors=[e.as_dict() for e in errors])
    return JSONResponse(status_code=422, content=body.model_dump(mode="json"))


def _settlement_response(result: SettlementResult) -> SettlementResponse:
    return SettlementResponse(
        line_items=[
            ChargeLineItemResponse(label=i.label, amount=i.amount)
            for i in result.line_items
        ],
        total=result.total,
        tax_city=result.tax.city if result.tax else None,
        tax_rate_display=result.tax.display if result.tax else None,
    )


def _reconciliation_response(rec: DepositReconciliation) -> ReconciliationResponse:
    return ReconciliationResponse(
        deposit_amount=rec.deposit_amount,
        total_charges=rec.total_charges,
        amount_to_release=rec.amount_to_release,
        additional_charge_needed=rec.additional_charge_needed,
    )


def _parse_fuel(value, field: str, errors: list[ValidationError]):
    if value is None:
        return None
    try:
        return FuelLevel.parse(value, field)
    except ValidationError as exc:
        errors.append(exc)
        return None


async def _load_booking(db: AsyncSession, booking_id: str):
    repo = BookingRepository(db)
    booking = await repo.get_by_id(booking_id)
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    return repo, booking


# ── Trip start ────────────────────────────────────────────────────────


@router.post(
    "/trips/{booking_id}/start",
    response_model=TripStartResponse,
    responses={409: {"description": "Handoff incomplete or trip already started"}},
    summary="Start the trip once the handoff is complete",
)
@limiter.limit(settings.rate_limit)
async def start_trip(
    request: Request,
    booking_id: str,
    body: TripStartRequest,
    db: AsyncSession = Depends(get_db),
    clock=Depends(get_clock),
):
    repo, booking = await _load_booking(db, booking_id)
    if booking.trip_started_at:
        raise HTTPException(status_code=409, detail="Trip has already been started")

    errors: list[ValidationError] = []
    fuel = _parse_fuel(body.fuel_level_start, "fuelLevelStart", errors)
    if errors:
        return _validation_response(errors)

    handoff_repo = HandoffSessionRepository(db)
    row = await handoff_repo.get_by_booking(booking.id)
    if row is None:
        raise HTTPException(status_code=409, detail="Handoff has not been completed")
    session = handoff_repo.to_entity(row)
    now = clock()
    if session.apply_timers(now):
        await handoff_repo.save(row, session)

    if session.status in (HandoffStatus.HANDOFF_COMPLETE, HandoffStatus.BYPASSED):
        mode = session.completion_mode or CompletionMode.HOST_CONFIRMED
    elif (
        session.status == HandoffStatus.EXPIRED
        and body.handoff_mode == CompletionMode.DEGRADED
    ):
        mode = CompletionMode.DEGRADED
    else:
        raise HTTPException(
            status_code=409,
            detail=f"Handoff has not been completed (status {session.status.value})",
        )

    await repo.mark_trip_started(
        booking,
        started_at=now,
        start_mileage=body.start_mileage,
        fuel_level_start=fuel,
        handoff_mode=mode,
    )
    logger.info("Trip started for booking %s (handoff=%s)", booking.id, mode.value)
    return TripStartResponse(
        booking_id=booking.id, trip_started_at=now, handoff_mode=mode
    )


# ── Trip end ──────────────────────────────────────────────────────────


@router.get(
    "/trips/{booking_id}/end",
    response_model=TripEndCheckResponse,
    summary="Check whether the trip can be ended",
)
@limiter.limit(settings.rate_limit)
async def check_trip_end(
    request: Request,
    booking_id: str,
    db: AsyncSession = Depends(get_db),
    clock=Depends(get_clock),
):
    repo, row = await _load_booking(db, booking_id)
    booking = repo.to_domain(row)
    end_date = booking.end_date
    now = clock()
    if end_date is not None and end_date.tzinfo is None:
        now = now.replace(tzinfo=None)
    return TripEndCheckResponse(
        can_end=bool(booking.trip_started_at and not booking.trip_ended_at),
        is_late=bool(end_date and now > end_date),
        trip_started_at=booking.trip_started_at,
        trip_ended_at=booking.trip_ended_at,
        start_mileage=booking.start_mileage,
        fuel_level_start=booking.fuel_level_start,
        has_payment_method=booking.has_payment_method,
    )


@router.post(
    "/trips/{booking_id}/end",
    response_model=TripEndResponse,
    responses={
        409: {"description": "Trip not started or already ended"},
        422: {"model": ValidationErrorResponse},
    },
    summary="End the trip and settle charges against the deposit",
)
@limiter.limit(settings.rate_limit)
async def end_trip(
    request: Request,
    booking_id: str,
    body: TripEndRequest,
    db: AsyncSession = Depends(get_db),
    clock=Depends(get_clock),
    engine: SettlementEngine = Depends(get_settlement_engine),
):
    repo, row = await _load_booking(db, booking_id)
    if not row.trip_started_at:
        raise HTTPException(status_code=409, detail="Trip has not been started")
    if row.trip_ended_at:
        raise HTTPException(status_code=409, detail="Trip has already ended")

    car = await repo.get_car(row.car_id)
    booking = repo.to_domain(row, car)
    now = clock()

    trip = TripRecord.from_booking(booking).with_changes(
        end_mileage=body.end_mileage,
        fuel_level_end=body.fuel_level_end,
        actual_return_timestamp=body.actual_return_timestamp or now,
        damage_reported=body.damage_reported,
        damage_photo_count=len(body.damage_photos),
        disputes=tuple(body.disputes),
    )
    errors = engine.validate(trip)
    if errors:
        logger.info(
            "Trip end rejected for %s: %s",
            booking.id, ", ".join(e.field for e in errors),
        )
        return _validation_response(errors)

    fuel_end = FuelLevel.parse(body.fuel_level_end, "fuelLevelEnd")
    settlement = engine.compute_charges(trip, booking.tax_city)
    reconciliation = engine.reconcile(booking.deposit_amount, settlement)
    receipt = engine.booking_receipt(booking, settlement)
    charge_status = route_charges(
        settlement.total,
        body.disputes,
        booking.has_payment_method,
        body.payment_choice,
    )
    requires_approval = engine.requires_approval(settlement.total)
    logger.info(
        "Trip end %s: total=%s status=%s",
        booking.id, settlement.total, charge_status.value,
    )

    notice = dict(STATUTORY_NOTICE)
    await repo.mark_trip_ended(
        row,
        ended_at=now,
        end_mileage=trip.end_mileage,
        fuel_level_end=fuel_end,
        damage_reported=body.damage_reported,
        damage_description=body.damage_description,
        damage_photos=body.damage_photos,
        inspection_photos=body.inspection_photos,
        charge_status=charge_status,
        pending_amount=(
            settlement.total if charge_status != ChargeStatus.NONE else None
        ),
        statutory_notice=notice,
    )
    if settlement.has_charges:
        await TripChargeRepository(db).create(
            booking_id=booking.id,
            settlement=settlement,
            reconciliation=reconciliation,
            charge_status=charge_status,
            requires_approval=requires_approval,
            hold_until=(
                now + timedelta(hours=24)
                if charge_status == ChargeStatus.PENDING
                else None
            ),
        )
    if body.disputes:
        await DisputeRepository(db).create_many(
            booking.id, [(classify_dispute(d), d) for d in body.disputes]
        )

    return TripEndResponse(
        booking_id=booking.id,
        settlement=_settlement_response(settlement),
        reconciliation=_reconciliation_response(reconciliation),
        receipt=ReceiptResponse(
            subtotal=receipt.subtotal,
            delivery_fee=receipt.delivery_fee,
            insurance_fee=receipt.insurance_fee,
            service_fee=receipt.service_fee,
            enhancements_total=receipt.enhancements_total,
            taxes=receipt.taxes,
            tax_rate_display=receipt.tax_rate_display,
            credits_applied=receipt.credits_applied,
            bonus_applied=receipt.bonus_applied,
            card_charge=receipt.card_charge,
            booking_total=receipt.booking_total,
            trip_total=receipt.trip_total,
        ),
        charge_status=charge_status,
        requires_approval=requires_approval,
        message=outcome_message(charge_status, settlement),
        next_steps=next_steps(charge_status),
        statutory_notice=notice,
    )


# ── Preview ───────────────────────────────────────────────────────────


@router.post(
    "/settlement/preview",
    response_model=SettlementPreviewResponse,
    responses={422: {"model": ValidationErrorResponse}},
    summary="Compute the settlement for trip inputs without persisting anything",
)
@limiter.limit(settings.rate_limit)
async def preview_settlement(
    request: Request,
    body: SettlementPreviewRequest,
    engine: SettlementEngine = Depends(get_settlement_engine),
):
    trip = TripRecord(
        start_mileage=body.start_mileage,
        end_mileage=body.end_mileage,
        fuel_level_start=body.fuel_level_start,
        fuel_level_end=body.fuel_level_end,
        end_date=body.end_date,
        actual_return_timestamp=body.actual_return_timestamp,
        damage_reported=body.damage_reported,
        damage_photo_count=body.damage_photo_count,
        number_of_days=body.number_of_days,
    )
    errors = engine.validate(trip)
    if errors:
        return _validation_response(errors)
    settlement = engine.compute_charges(trip, body.tax_city)
    return SettlementPreviewResponse(
        settlement=_settlement_response(settlement),
        reconciliation=_reconciliation_response(
            engine.reconcile(body.deposit_amount, settlement)
        ),
    )
