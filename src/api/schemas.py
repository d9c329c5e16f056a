"""
Pydantic request / response schemas for the REST API.

Wire format is camelCase; attributes stay snake_case.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.domain.enums import (
    ChargeStatus,
    CompletionMode,
    FuelLevel,
    HandoffStatus,
    PaymentChoice,
)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Requests ──────────────────────────────────────────────────────────


class HandoffVerifyRequest(CamelModel):
    booking_id: str
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    message: Optional[str] = Field(
        None, max_length=500, description="Arrival note shown to the host."
    )


class GuestPingRequest(CamelModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class HandoffBypassRequest(CamelModel):
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)


class TripStartRequest(CamelModel):
    start_mileage: int = Field(..., ge=0)
    fuel_level_start: str
    handoff_mode: Optional[CompletionMode] = Field(
        None,
        description="DEGRADED acknowledges continuing after an expired handoff.",
    )
    photos: dict[str, str] = {}


class TripEndRequest(CamelModel):
    # Optional so missing values come back as field errors, not 422 noise.
    end_mileage: Optional[int] = None
    fuel_level_end: Optional[str] = None
    inspection_photos: dict[str, str] = {}
    damage_reported: bool = False
    damage_description: Optional[str] = None
    damage_photos: list[str] = []
    disputes: list[str] = []
    payment_choice: Optional[PaymentChoice] = None
    actual_return_timestamp: Optional[datetime] = None
    statutory_notice: Optional[dict[str, Any]] = None


class SettlementPreviewRequest(CamelModel):
    start_mileage: Optional[int] = None
    end_mileage: Optional[int] = None
    fuel_level_start: Optional[str] = None
    fuel_level_end: Optional[str] = None
    end_date: Optional[datetime] = None
    actual_return_timestamp: Optional[datetime] = None
    damage_reported: bool = False
    damage_photo_count: int = 0
    number_of_days: Optional[int] = None
    deposit_amount: Decimal = Decimal("500")
    tax_city: Optional[str] = None


# ── Responses ─────────────────────────────────────────────────────────


class ProximityVerdictResponse(CamelModel):
    verified: bool
    distance: Optional[float] = None
    is_instant_book: bool


class HandoffStatusResponse(CamelModel):
    status: HandoffStatus
    auto_fallback_remaining_ms: Optional[int] = None
    key_instructions: Optional[str] = None
    distance: Optional[float] = None
    completion_mode: Optional[CompletionMode] = None
    is_instant_book: bool = False
    contact_host_remaining_ms: Optional[int] = None
    contact_host_available: bool = False
    guest_live_distance: Optional[float] = None
    arrival_message: Optional[str] = None


class GuestPingResponse(CamelModel):
    distance: float
    within_range: bool


class ChargeLineItemResponse(CamelModel):
    label: str
    amount: Decimal


class SettlementResponse(CamelModel):
    line_items: list[ChargeLineItemResponse]
    total: Decimal
    tax_city: Optional[str] = None
    tax_rate_display: Optional[str] = None


class ReconciliationResponse(CamelModel):
    deposit_amount: Decimal
    total_charges: Decimal
    amount_to_release: Decimal
    additional_charge_needed: Decimal


class SettlementPreviewResponse(CamelModel):
    settlement: SettlementResponse
    reconciliation: ReconciliationResponse


class ReceiptResponse(CamelModel):
    subtotal: Decimal
    delivery_fee: Decimal
    insurance_fee: Decimal
    service_fee: Decimal
    enhancements_total: Decimal
    taxes: Decimal
    tax_rate_display: str
    credits_applied: Decimal
    bonus_applied: Decimal
    card_charge: Decimal
    booking_total: Decimal
    trip_total: Decimal


class TripStartResponse(CamelModel):
    success: bool = True
    booking_id: str
    trip_started_at: datetime
    handoff_mode: CompletionMode


class TripEndResponse(CamelModel):
    success: bool = True
    booking_id: str
    settlement: SettlementResponse
    reconciliation: ReconciliationResponse
    receipt: ReceiptResponse
    charge_status: ChargeStatus
    requires_approval: bool
    message: str
    next_steps: str
    statutory_notice: dict[str, Any]


class TripEndCheckResponse(CamelModel):
    can_end: bool
    is_late: bool
    trip_started_at: Optional[datetime] = None
    trip_ended_at: Optional[datetime] = None
    start_mileage: Optional[int] = None
    fuel_level_start: Optional[FuelLevel] = None
    has_payment_method: bool


class PendingHandoffResponse(CamelModel):
    booking_id: str
    status: HandoffStatus
    is_instant_book: bool
    distance: Optional[float] = None
    guest_verified_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    arrival_message: Optional[str] = None


class FieldError(CamelModel):
    field: str
    message: str


class ValidationErrorResponse(CamelModel):
    errors: list[FieldError]


class HealthResponse(BaseModel):
    status: str = "ok"
