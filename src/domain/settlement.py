"""
Trip Settlement Engine  (Facade over the charge rules)
======================================================

Pipeline
--------
1. ``validate``         -- collect every field-level problem in the trip.
2. ``compute_charges``  -- run the charge rules in canonical order
   (mileage, fuel, late return, damage) and sum to ``total``.
3. ``reconcile``        -- apply ``total`` against the held deposit:

   amount_to_release        = max(0, deposit - total)
   additional_charge_needed = max(0, total - deposit)

Charges exceeding the deposit are a normal outcome, never an error.
Taxes apply to the original booking subtotal only and are *not* part of
the settlement total; the jurisdiction is carried for display.

Everything here is pure: the same inputs always give an equal result, so
callers may recompute on every keystroke.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import Optional

from .charges import (
    ChargeLineItem,
    damage_surcharge,
    fuel_shortfall,
    late_return,
    mileage_overage,
    to_money,
)
from .entities import Booking, TripRecord
from .enums import ChargeStatus, DisputeType, FuelLevel, PaymentChoice
from .errors import ValidationError
from .taxes import TaxRate, TaxTable


@dataclass(frozen=True)
class ChargePolicy:
    daily_mile_allowance: int = 200
    per_mile_rate: Decimal = Decimal("0.45")
    fuel_refill_fee: Decimal = Decimal("75")
    late_fee_per_hour: Decimal = Decimal("25")
    late_grace: timedelta = timedelta(minutes=10)
    minimum_damage_photos: int = 2
    review_threshold: Decimal = Decimal("500")


@dataclass(frozen=True)
class SettlementResult:
    line_items: tuple[ChargeLineItem, ...]
    total: Decimal
    tax: Optional[TaxRate] = None

    @property
    def has_charges(self) -> bool:
        return self.total > 0


@dataclass(frozen=True)
class DepositReconciliation:
    deposit_amount: Decimal
    total_charges: Decimal
    amount_to_release: Decimal
    additional_charge_needed: Decimal


@dataclass(frozen=True)
class BookingReceipt:
    """What the guest already paid, plus the post-trip total."""

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
    line_items: list[ChargeLineItem] = field(default_factory=list)


_REQUIRED_FIELDS = (
    ("start_mileage", "startMileage"),
    ("end_mileage", "endMileage"),
    ("fuel_level_start", "fuelLevelStart"),
    ("fuel_level_end", "fuelLevelEnd"),
    ("end_date", "endDate"),
    ("actual_return_timestamp", "actualReturnTimestamp"),
    ("number_of_days", "numberOfDays"),
)


class SettlementEngine:
    """High-level API used by the trip routes and the lifecycle controller."""

    def __init__(
        self,
        policy: Optional[ChargePolicy] = None,
        tax_table: Optional[TaxTable] = None,
    ):
        self.policy = policy or ChargePolicy()
        self.tax_table = tax_table or TaxTable()

    def validate(self, trip: TripRecord) -> list[ValidationError]:
        """Return every problem with *trip*; empty means computable."""
        errors: list[ValidationError] = []
        for attr, wire_name in _REQUIRED_FIELDS:
            if getattr(trip, attr) is None:
                errors.append(ValidationError(wire_name, "This field is required"))

        for attr, wire_name in (
            ("fuel_level_start", "fuelLevelStart"),
            ("fuel_level_end", "fuelLevelEnd"),
        ):
            value = getattr(trip, attr)
            if value is not None and not isinstance(value, FuelLevel):
                try:
                    FuelLevel.parse(value, wire_name)
                except ValidationError as exc:
                    errors.append(exc)

        if trip.start_mileage is not None and trip.start_mileage < 0:
            errors.append(ValidationError("startMileage", "Odometer cannot be negative"))
        if trip.end_mileage is not None and trip.end_mileage < 0:
            errors.append(ValidationError("endMileage", "Odometer cannot be negative"))
        if (
            trip.start_mileage is not None
            and trip.end_mileage is not None
            and trip.end_mileage < trip.start_mileage
        ):
            errors.append(
                ValidationError(
                    "endMileage",
                    f"End odometer ({trip.end_mileage}) is below start "
                    f"odometer ({trip.start_mileage})",
                )
            )
        if trip.number_of_days is not None and trip.number_of_days < 1:
            errors.append(ValidationError("numberOfDays", "Trip must span at least one day"))

        try:
            damage_surcharge(
                trip.damage_reported,
                trip.damage_photo_count,
                self.policy.minimum_damage_photos,
            )
        except ValidationError as exc:
            errors.append(exc)
        return errors

    def compute_charges(
        self, trip: TripRecord, tax_city: Optional[str] = None
    ) -> SettlementResult:
        errors = self.validate(trip)
        if errors:
            raise errors[0]

        policy = self.policy
        items = [
            mileage_overage(
                trip.start_mileage,
                trip.end_mileage,
                trip.number_of_days,
                policy.daily_mile_allowance,
                policy.per_mile_rate,
            ),
            fuel_shortfall(
                FuelLevel.parse(trip.fuel_level_start, "fuelLevelStart"),
                FuelLevel.parse(trip.fuel_level_end, "fuelLevelEnd"),
                policy.fuel_refill_fee,
            ),
            late_return(
                trip.end_date,
                trip.actual_return_timestamp,
                policy.late_fee_per_hour,
                policy.late_grace,
            ),
            damage_surcharge(
                trip.damage_reported,
                trip.damage_photo_count,
                policy.minimum_damage_photos,
            ),
        ]
        line_items = tuple(item for item in items if item is not None)
        total = to_money(sum((item.amount for item in line_items), Decimal("0")))
        return SettlementResult(
            line_items=line_items,
            total=total,
            tax=self.tax_table.rate_for(tax_city),
        )

    @staticmethod
    def reconcile(
        deposit: Decimal, settlement: SettlementResult
    ) -> DepositReconciliation:
        deposit = to_money(deposit)
        charges = settlement.total
        return DepositReconciliation(
            deposit_amount=deposit,
            total_charges=charges,
            amount_to_release=max(Decimal("0.00"), deposit - charges),
            additional_charge_needed=max(Decimal("0.00"), charges - deposit),
        )

    # ── Trip-end glue ─────────────────────────────────────────────────

    def booking_receipt(
        self, booking: Booking, settlement: SettlementResult
    ) -> BookingReceipt:
        subtotal = booking.subtotal
        if subtotal is None:
            subtotal = booking.daily_rate * booking.number_of_days
        credits = booking.credits_applied or Decimal("0")
        bonus = booking.bonus_applied or Decimal("0")
        card_charge = booking.charge_amount
        if card_charge is None:
            card_charge = booking.total_amount - credits - bonus
        return BookingReceipt(
            subtotal=to_money(subtotal),
            delivery_fee=to_money(booking.delivery_fee),
            insurance_fee=to_money(booking.insurance_fee),
            service_fee=to_money(booking.service_fee),
            enhancements_total=to_money(booking.enhancements_total),
            taxes=to_money(booking.taxes),
            tax_rate_display=self.tax_table.rate_for(booking.tax_city).display,
            credits_applied=to_money(credits),
            bonus_applied=to_money(bonus),
            card_charge=to_money(card_charge),
            booking_total=to_money(booking.total_amount),
            trip_total=to_money(booking.total_amount + settlement.total),
            line_items=list(settlement.line_items),
        )

    def requires_approval(self, total: Decimal) -> bool:
        return total > self.policy.review_threshold


def route_charges(
    total: Decimal,
    disputes: list[str],
    has_payment_method: bool,
    payment_choice: Optional[PaymentChoice] = None,
) -> ChargeStatus:
    """Decide how post-trip charges are collected, in priority order."""
    if total <= 0:
        return ChargeStatus.NONE
    if disputes:
        return ChargeStatus.DISPUTED
    if not has_payment_method:
        return ChargeStatus.UNDER_REVIEW
    if payment_choice == PaymentChoice.REQUEST_REVIEW:
        return ChargeStatus.UNDER_REVIEW
    if payment_choice == PaymentChoice.PAY_NOW:
        return ChargeStatus.CAPTURE_REQUESTED
    return ChargeStatus.PENDING


_DISPUTE_KEYWORDS = (
    ("mileage", DisputeType.MILEAGE),
    ("fuel", DisputeType.FUEL),
    ("late", DisputeType.LATE_RETURN),
    ("damage", DisputeType.DAMAGE),
    ("cleaning", DisputeType.CLEANING),
)


def classify_dispute(reason: str) -> DisputeType:
    lowered = reason.lower()
    for keyword, dispute_type in _DISPUTE_KEYWORDS:
        if keyword in lowered:
            return dispute_type
    return DisputeType.OTHER


def outcome_message(status: ChargeStatus, settlement: SettlementResult) -> str:
    amount = f"${settlement.total:.2f}"
    if status == ChargeStatus.NONE:
        return "Trip ended successfully with no additional charges."
    if status == ChargeStatus.CAPTURE_REQUESTED:
        return f"Trip ended successfully. Additional charges of {amount} will be applied to your card."
    if status == ChargeStatus.DISPUTED:
        return f"Trip ended successfully. Disputed charges of {amount} are under review."
    if status == ChargeStatus.UNDER_REVIEW:
        return f"Trip ended successfully. Additional charges of {amount} have been submitted for review."
    return f"Trip ended successfully. Additional charges of {amount} are pending review."


def next_steps(status: ChargeStatus) -> str:
    if status in (ChargeStatus.NONE, ChargeStatus.CAPTURE_REQUESTED):
        return "You can now leave a review for your rental experience."
    if status == ChargeStatus.DISPUTED:
        return "Your disputes will be reviewed and you'll receive a response within 24 hours."
    if status == ChargeStatus.UNDER_REVIEW:
        return "Charges will be reviewed and processed within 2-4 hours."
    return "Charges will be reviewed and processed within 24 hours."
