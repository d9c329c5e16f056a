"""
Handoff endpoints
=================

POST /api/v1/handoff/verify                    -- submit guest position, get verdict
POST /api/v1/handoff/{booking_id}/ping         -- record live distance before verifying
GET  /api/v1/handoff/{booking_id}/status       -- polled by both devices
POST /api/v1/handoff/{booking_id}/host-confirm -- host completes the handoff
POST /api/v1/handoff/{booking_id}/bypass       -- testing-only escape valve

Actions on a terminal session are idempotent: they return the current
projection with 200 instead of an error.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import get_clock, get_db
from src.api.middleware import limiter
from src.api.schemas import (
    GuestPingRequest,
    GuestPingResponse,
    HandoffBypassRequest,
    HandoffStatusResponse,
    HandoffVerifyRequest,
    ProximityVerdictResponse,
)
from src.config import settings
from src.domain.entities import Location
from src.domain.enums import HandoffStatus
from src.domain.handoff import HandoffProjection
from src.infrastructure.repositories import BookingRepository, HandoffSessionRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/handoff", tags=["handoff"])


async def _load_booking(db: AsyncSession, booking_id: str):
    repo = BookingRepository(db)
    booking = await repo.get_by_id(booking_id)
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    car = await repo.get_car(booking.car_id)
    if not car:
        raise HTTPException(status_code=404, detail="Vehicle not found")
    return booking, car


def _status_response(projection: HandoffProjection) -> HandoffStatusResponse:
    return HandoffStatusResponse(
        status=projection.status,
        auto_fallback_remaining_ms=projection.auto_fallback_remaining_ms,
        key_instructions=projection.key_instructions,
        distance=projection.distance,
        completion_mode=projection.completion_mode,
        is_instant_book=projection.is_instant_book,
        contact_host_remaining_ms=projection.contact_host_remaining_ms,
        contact_host_available=projection.contact_host_available,
        guest_live_distance=projection.guest_live_distance,
        arrival_message=projection.arrival_message,
    )


def _unusable_fix_response() -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={"errors": [{"field": "lat", "message": "Location unavailable, please retry"}]},
    )


@router.post(
    "/verify",
    response_model=ProximityVerdictResponse,
    summary="Verify the guest is within the handoff radius of the vehicle",
)
@limiter.limit(settings.rate_limit)
async def verify_handoff(
    request: Request,
    body: HandoffVerifyRequest,
    db: AsyncSession = Depends(get_db),
    clock=Depends(get_clock),
):
    booking, car = await _load_booking(db, body.booking_id)
    repo = HandoffSessionRepository(db)
    row = await repo.get_or_create(booking.id, bool(booking.is_instant_book))
    session = repo.to_entity(row, car.key_instructions)

    guest = Location(body.lat, body.lng)
    settled = session.is_terminal or session.status == HandoffStatus.GUEST_VERIFIED
    if guest.is_null_island and not settled:
        # A 0,0 fix is a failed GPS read, not a position.
        session.mark_error()
        await repo.save(row, session)
        logger.warning("Handoff verify %s: unusable guest fix", booking.id)
        return _unusable_fix_response()

    verdict = session.verify(
        guest,
        Location(car.latitude, car.longitude),
        settings.handoff_radius_meters,
        clock(),
        timedelta(seconds=settings.handoff_expiry_seconds),
        timedelta(seconds=settings.auto_fallback_seconds),
        message=body.message,
    )
    await repo.save(row, session)
    logger.info(
        "Handoff verify %s: distance=%.1fm verified=%s",
        booking.id,
        verdict.distance if verdict.distance is not None else -1,
        verdict.verified,
    )
    return ProximityVerdictResponse(
        verified=verdict.verified,
        distance=verdict.distance,
        is_instant_book=verdict.is_instant_book,
    )


@router.post(
    "/{booking_id}/ping",
    response_model=GuestPingResponse,
    summary="Record the guest's live distance without changing handoff status",
)
@limiter.limit(settings.rate_limit)
async def ping_handoff(
    request: Request,
    booking_id: str,
    body: GuestPingRequest,
    db: AsyncSession = Depends(get_db),
    clock=Depends(get_clock),
):
    booking, car = await _load_booking(db, booking_id)
    guest = Location(body.lat, body.lng)
    if guest.is_null_island:
        return _unusable_fix_response()

    repo = HandoffSessionRepository(db)
    row = await repo.get_or_create(booking.id, bool(booking.is_instant_book))
    session = repo.to_entity(row, car.key_instructions)
    ping = session.ping(
        guest,
        Location(car.latitude, car.longitude),
        settings.handoff_radius_meters,
        clock(),
    )
    await repo.save(row, session)
    return GuestPingResponse(distance=ping.distance, within_range=ping.within_range)


@router.get(
    "/{booking_id}/status",
    response_model=HandoffStatusResponse,
    summary="Current handoff status (polled by guest and host)",
)
@limiter.limit(settings.rate_limit)
async def get_handoff_status(
    request: Request,
    booking_id: str,
    db: AsyncSession = Depends(get_db),
    clock=Depends(get_clock),
):
    booking, car = await _load_booking(db, booking_id)
    repo = HandoffSessionRepository(db)
    row = await repo.get_or_create(booking.id, bool(booking.is_instant_book))
    session = repo.to_entity(row, car.key_instructions)

    now = clock()
    if session.apply_timers(now):
        await repo.save(row, session)
    return _status_response(session.project(now))


@router.post(
    "/{booking_id}/host-confirm",
    response_model=HandoffStatusResponse,
    summary="Host confirms the guest has the vehicle",
)
@limiter.limit(settings.rate_limit)
async def host_confirm_handoff(
    request: Request,
    booking_id: str,
    db: AsyncSession = Depends(get_db),
    clock=Depends(get_clock),
):
    booking, car = await _load_booking(db, booking_id)
    repo = HandoffSessionRepository(db)
    row = await repo.get_by_booking(booking.id)
    if not row:
        raise HTTPException(status_code=409, detail="Guest has not started the handoff")

    session = repo.to_entity(row, car.key_instructions)
    now = clock()
    session.apply_timers(now)
    if not session.is_terminal and session.status != HandoffStatus.GUEST_VERIFIED:
        raise HTTPException(
            status_code=409,
            detail=f"Cannot confirm handoff in status {session.status.value}",
        )
    session.host_confirm(now)
    await repo.save(row, session)
    return _status_response(session.project(now))


@router.post(
    "/{booking_id}/bypass",
    response_model=HandoffStatusResponse,
    summary="Skip proximity verification (non-production only)",
)
@limiter.limit(settings.rate_limit)
async def bypass_handoff(
    request: Request,
    booking_id: str,
    body: HandoffBypassRequest,
    db: AsyncSession = Depends(get_db),
    clock=Depends(get_clock),
):
    if not settings.handoff_bypass_enabled:
        raise HTTPException(status_code=403, detail="Handoff bypass is disabled")

    booking, car = await _load_booking(db, booking_id)
    repo = HandoffSessionRepository(db)
    row = await repo.get_or_create(booking.id, bool(booking.is_instant_book))
    session = repo.to_entity(row, car.key_instructions)

    location = (
        Location(body.lat, body.lng)
        if body.lat is not None and body.lng is not None
        else None
    )
    session.bypass(location)
    await repo.save(row, session)
    logger.warning("Handoff bypassed for booking %s", booking.id)
    return _status_response(session.project(clock()))
