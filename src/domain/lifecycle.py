"""
Trip lifecycle sequencing.

The controller is the single owner of trip-start / trip-end ordering:

* trip start is accepted only after the handoff reached completion
  (verified, auto-fallback, bypass or degraded -- all unblock equally,
  the mode is kept as an audit flag);
* trip end is accepted only when the current ``TripRecord`` produces a
  settlement without validation errors and the guest accepted the terms.

UI steps talk to it exclusively through the command types below,
dispatched by ``TripLifecycleController.dispatch``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Protocol, Union

from .entities import Booking, TripRecord
from .enums import CompletionMode, FuelLevel, PaymentChoice
from .errors import TripSequenceError, ValidationError
from .settlement import DepositReconciliation, SettlementEngine, SettlementResult

logger = logging.getLogger(__name__)


# Static payload attached to every trip-end submission.
STATUTORY_NOTICE: dict[str, Any] = {
    "statutes": ["A.R.S. §33-1321"],
    "disputeStatute": "A.R.S. §33-1321(D)",
    "itemizedStatementRequired": True,
    "depositReleaseDays": {"min": 7, "max": 14},
    "itemizedStatementWithinDays": 14,
    "disputeWindowHours": 48,
    "guestRights": [
        "Normal wear exempt",
        "Email receipt",
        "Photo evidence",
    ],
}


# ── Commands ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class StartPhoto:
    category: str
    url: str
    phase: str = "end"


@dataclass(frozen=True)
class SetOdometer:
    value: int


@dataclass(frozen=True)
class SetFuel:
    level: Union[FuelLevel, str]


@dataclass(frozen=True)
class ReportDamage:
    reported: bool
    photo_urls: tuple[str, ...] = ()
    description: Optional[str] = None


@dataclass(frozen=True)
class SelectDisputes:
    disputes: tuple[str, ...] = ()


@dataclass(frozen=True)
class AcceptTerms:
    accepted: bool
    payment_choice: Optional[PaymentChoice] = None


TripCommand = Union[
    StartPhoto, SetOdometer, SetFuel, ReportDamage, SelectDisputes, AcceptTerms
]


# ── Collaborators ─────────────────────────────────────────────────────


class TripSubmitter(Protocol):
    async def submit_start(self, booking_id: str, payload: dict) -> dict: ...

    async def submit_end(self, booking_id: str, payload: dict) -> dict: ...


@dataclass
class TripEndDraft:
    """Inputs collected by the trip-end wizard."""

    end_mileage: Optional[int] = None
    fuel_level_end: Optional[Union[FuelLevel, str]] = None
    photos: dict[str, str] = field(default_factory=dict)
    damage_reported: bool = False
    damage_photos: tuple[str, ...] = ()
    damage_description: Optional[str] = None
    disputes: tuple[str, ...] = ()
    terms_accepted: bool = False
    payment_choice: Optional[PaymentChoice] = None


class TripLifecycleController:
    def __init__(
        self,
        booking: Booking,
        submitter: TripSubmitter,
        engine: Optional[SettlementEngine] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.booking = booking
        self.submitter = submitter
        self.engine = engine or SettlementEngine()
        self.clock = clock

        self.handoff_mode: Optional[CompletionMode] = None
        self.start_photos: dict[str, str] = {}
        self.draft = TripEndDraft()
        self.settlement: Optional[SettlementResult] = None
        self.errors: list[ValidationError] = []

        self._handlers: dict[type, Callable[[Any], None]] = {
            StartPhoto: self._on_photo,
            SetOdometer: self._on_odometer,
            SetFuel: self._on_fuel,
            ReportDamage: self._on_damage,
            SelectDisputes: self._on_disputes,
            AcceptTerms: self._on_terms,
        }

    # ── Handoff gate ──────────────────────────────────────────────────

    def on_handoff_complete(self, mode: CompletionMode) -> None:
        if self.handoff_mode is None:
            logger.info(
                "Handoff complete for booking %s (mode=%s)",
                self.booking.id, mode.value,
            )
            self.handoff_mode = mode

    @property
    def handoff_complete(self) -> bool:
        return self.handoff_mode is not None

    @property
    def trip_started(self) -> bool:
        return self.booking.trip_started_at is not None

    @property
    def trip_ended(self) -> bool:
        return self.booking.trip_ended_at is not None

    # ── Commands ──────────────────────────────────────────────────────

    def dispatch(self, command: TripCommand) -> Optional[SettlementResult]:
        """Apply *command* and return the recomputed settlement, if any."""
        handler = self._handlers.get(type(command))
        if handler is None:
            raise TypeError(f"Unsupported trip command: {type(command).__name__}")
        handler(command)
        return self.recompute()

    def _on_photo(self, command: StartPhoto) -> None:
        if command.phase == "start":
            self.start_photos[command.category] = command.url
        else:
            self.draft.photos[command.category] = command.url

    def _on_odometer(self, command: SetOdometer) -> None:
        self.draft.end_mileage = command.value

    def _on_fuel(self, command: SetFuel) -> None:
        self.draft.fuel_level_end = command.level

    def _on_damage(self, command: ReportDamage) -> None:
        self.draft.damage_reported = command.reported
        self.draft.damage_photos = tuple(command.photo_urls) if command.reported else ()
        self.draft.damage_description = command.description if command.reported else None

    def _on_disputes(self, command: SelectDisputes) -> None:
        self.draft.disputes = tuple(command.disputes)

    def _on_terms(self, command: AcceptTerms) -> None:
        self.draft.terms_accepted = command.accepted
        if command.payment_choice is not None:
            self.draft.payment_choice = command.payment_choice

    # ── Settlement ────────────────────────────────────────────────────

    def trip_record(self) -> TripRecord:
        return TripRecord.from_booking(self.booking).with_changes(
            end_mileage=self.draft.end_mileage,
            fuel_level_end=self.draft.fuel_level_end,
            actual_return_timestamp=self.clock(),
            damage_reported=self.draft.damage_reported,
            damage_photo_count=len(self.draft.damage_photos),
            disputes=self.draft.disputes,
        )

    def recompute(self) -> Optional[SettlementResult]:
        """Recompute the settlement; partial results are never kept."""
        trip = self.trip_record()
        self.errors = self.engine.validate(trip)
        if self.errors:
            self.settlement = None
            return None
        self.settlement = self.engine.compute_charges(trip, self.booking.tax_city)
        return self.settlement

    def reconciliation(self) -> Optional[DepositReconciliation]:
        if self.settlement is None:
            return None
        return self.engine.reconcile(self.booking.deposit_amount, self.settlement)

    # ── Submission ────────────────────────────────────────────────────

    async def submit_trip_start(
        self, start_mileage: int, fuel_level_start: Union[FuelLevel, str]
    ) -> dict:
        if not self.handoff_complete:
            raise TripSequenceError("Handoff must be complete before the trip can start")
        if self.trip_started:
            raise TripSequenceError("Trip has already been started")
        if start_mileage < 0:
            raise ValidationError("startMileage", "Odometer cannot be negative")
        level = FuelLevel.parse(fuel_level_start, "fuelLevelStart")

        payload = {
            "startMileage": start_mileage,
            "fuelLevelStart": level.value,
            "handoffMode": self.handoff_mode.value,
            "photos": dict(self.start_photos),
        }
        result = await self.submitter.submit_start(self.booking.id, payload)
        self.booking.start_mileage = start_mileage
        self.booking.fuel_level_start = level
        self.booking.trip_started_at = self.clock()
        return result

    async def submit_trip_end(self) -> dict:
        if not self.trip_started:
            raise TripSequenceError("Trip has not been started")
        if self.trip_ended:
            raise TripSequenceError("Trip has already ended")

        settlement = self.recompute()
        if settlement is None:
            raise self.errors[0]
        if not self.draft.terms_accepted:
            raise ValidationError("acceptTerms", "Terms must be accepted before submitting")

        draft = self.draft
        payload = {
            "endMileage": draft.end_mileage,
            "fuelLevelEnd": FuelLevel.parse(draft.fuel_level_end, "fuelLevelEnd").value,
            "inspectionPhotos": dict(draft.photos),
            "damageReported": draft.damage_reported,
            "damageDescription": draft.damage_description,
            "damagePhotos": list(draft.damage_photos),
            "disputes": list(draft.disputes),
            "paymentChoice": draft.payment_choice.value if draft.payment_choice else None,
            "statutoryNotice": STATUTORY_NOTICE,
        }
        result = await self.submitter.submit_end(self.booking.id, payload)
        self.booking.trip_ended_at = self.clock()
        return result
