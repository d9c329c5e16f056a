"""
Admin / observability endpoints
===============================

GET /api/v1/admin/pending-handoffs -- sessions waiting on the host or a timer
GET /api/v1/admin/health           -- simple health check
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import get_db
from src.api.middleware import limiter
from src.api.schemas import HealthResponse, PendingHandoffResponse
from src.config import settings
from src.domain.enums import HandoffStatus
from src.infrastructure.repositories import HandoffSessionRepository

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get(
    "/pending-handoffs",
    response_model=list[PendingHandoffResponse],
    summary="List handoffs where the guest is verified but the host has not confirmed",
)
@limiter.limit(settings.rate_limit)
async def get_pending_handoffs(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    rows = await HandoffSessionRepository(db).get_pending()
    return [
        PendingHandoffResponse(
            booking_id=r.booking_id,
            status=HandoffStatus(r.status),
            is_instant_book=bool(r.is_instant_book),
            distance=r.distance_meters,
            guest_verified_at=r.guest_verified_at,
            expires_at=r.expires_at,
            arrival_message=r.arrival_message,
        )
        for r in rows
    ]


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
