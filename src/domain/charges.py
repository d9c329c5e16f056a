"""
Post-trip charge rules.

Each rule is a pure function returning a single ``ChargeLineItem`` or
``None``.  Malformed input is rejected with a field-scoped
``ValidationError``; nothing is clamped or coerced.

Money is ``Decimal`` rounded half-up to cents.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

from .enums import FuelLevel
from .errors import ValidationError

CENTS = Decimal("0.01")

Number = Union[int, float, Decimal, str]


def to_money(value: Number) -> Decimal:
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class ChargeLineItem:
    label: str
    amount: Decimal

    def __post_init__(self):
        if self.amount < 0:
            raise ValueError("Charge amounts must be non-negative")


def mileage_overage(
    start_mileage: int,
    end_mileage: int,
    number_of_days: int,
    daily_allowance: int = 200,
    per_mile_rate: Number = Decimal("0.45"),
) -> Optional[ChargeLineItem]:
    if end_mileage < start_mileage:
        raise ValidationError(
            "endMileage",
            f"End odometer ({end_mileage}) is below start odometer ({start_mileage})",
        )
    if number_of_days < 1:
        raise ValidationError("numberOfDays", "Trip must span at least one day")

    miles = end_mileage - start_mileage
    allowance = number_of_days * daily_allowance
    overage = max(0, miles - allowance)
    if overage <= 0:
        return None
    fee = to_money(Decimal(overage) * Decimal(str(per_mile_rate)))
    return ChargeLineItem(
        label=f"Mileage overage ({overage} mi @ ${Decimal(str(per_mile_rate))}/mi)",
        amount=fee,
    )


def fuel_shortfall(
    level_start: FuelLevel,
    level_end: FuelLevel,
    flat_fee: Number = Decimal("75"),
) -> Optional[ChargeLineItem]:
    # Flat refuelling-service fee, not prorated by how far below start.
    if level_end.ordinal >= level_start.ordinal:
        return None
    return ChargeLineItem(
        label=f"Fuel refill ({level_start.value} -> {level_end.value})",
        amount=to_money(flat_fee),
    )


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def late_return(
    scheduled_end: datetime,
    actual_return: datetime,
    per_hour_rate: Number,
    grace: timedelta = timedelta(minutes=10),
) -> Optional[ChargeLineItem]:
    delta = _as_utc(actual_return) - _as_utc(scheduled_end)
    if delta <= timedelta(0) or delta < grace:
        return None
    hours = math.ceil(delta.total_seconds() / 3600)
    return ChargeLineItem(
        label=f"Late return ({hours} h)",
        amount=to_money(Decimal(hours) * Decimal(str(per_hour_rate))),
    )


def damage_surcharge(
    damage_reported: bool,
    damage_photo_count: int,
    minimum_photos: int = 2,
) -> Optional[ChargeLineItem]:
    """
    Placeholder line for reported damage.

    The real repair cost is settled by the claims team, so the amount is
    always zero here; the line only flags the settlement as under review.
    """
    if not damage_reported:
        return None
    if damage_photo_count < minimum_photos:
        raise ValidationError(
            "damagePhotos",
            f"At least {minimum_photos} damage photos are required "
            f"({damage_photo_count} provided)",
        )
    return ChargeLineItem(label="Damage (under review)", amount=Decimal("0.00"))
