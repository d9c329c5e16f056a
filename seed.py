"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 6 sample cars (parked around the Phoenix metro area)
  - 6 sample bookings:
      * two ready for handoff (one Instant Book, one host-confirmed)
      * one with a guest already verified, waiting on the host
      * one trip in progress (handoff complete)
      * one trip in progress that is overdue
      * one finished trip with pending charges
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import text
from geoalchemy2.functions import ST_MakePoint

from src.infrastructure.database import async_session_factory, engine
from src.infrastructure.models import BookingModel, CarModel, HandoffSessionModel
from src.domain.enums import ChargeStatus, CompletionMode, FuelLevel, HandoffStatus
from src.domain.lifecycle import STATUTORY_NOTICE


CARS = [
    {"id": "car-0001", "make": "Toyota", "model": "Camry", "year": 2022,
     "address": "2 E Jefferson St, Phoenix, AZ 85004", "city": "Phoenix",
     "lat": 33.4463, "lng": -112.0730,
     "keys": "Lockbox on the driver-side mirror, code 4821."},
    {"id": "car-0002", "make": "Tesla", "model": "Model 3", "year": 2023,
     "address": "7014 E Camelback Rd, Scottsdale, AZ 85251", "city": "Scottsdale",
     "lat": 33.5019, "lng": -111.9290,
     "keys": "Phone key is shared through the app once the host confirms."},
    {"id": "car-0003", "make": "Jeep", "model": "Wrangler", "year": 2021,
     "address": "699 S Mill Ave, Tempe, AZ 85281", "city": "Tempe",
     "lat": 33.4227, "lng": -111.9400,
     "keys": "Keys in the glovebox; car is unlocked remotely."},
    {"id": "car-0004", "make": "Honda", "model": "CR-V", "year": 2020,
     "address": "1 E Main St, Mesa, AZ 85201", "city": "Mesa",
     "lat": 33.4152, "lng": -111.8315,
     "keys": "Meet the host at the garage entrance."},
    {"id": "car-0005", "make": "Ford", "model": "Bronco", "year": 2022,
     "address": "175 S Arizona Ave, Chandler, AZ 85225", "city": "Chandler",
     "lat": 33.3020, "lng": -111.8413,
     "keys": "Lockbox on the rear hitch, code 1177."},
    {"id": "car-0006", "make": "Mazda", "model": "CX-5", "year": 2021,
     "address": "5850 W Glendale Ave, Glendale, AZ 85301", "city": "Glendale",
     "lat": 33.5387, "lng": -112.1860,
     "keys": "Keys with the front desk, ask for the host by name."},
]


def _booking(code, car_id, start, days, daily_rate, *, instant=False, payment=True):
    subtotal = Decimal(daily_rate) * days
    service = (subtotal * Decimal("0.15")).quantize(Decimal("0.01"))
    taxes = (subtotal * Decimal("0.084")).quantize(Decimal("0.01"))
    total = subtotal + service + taxes
    return BookingModel(
        id=f"bkg-{code.lower()}",
        booking_code=code,
        car_id=car_id,
        guest_email=f"guest+{code.lower()}@example.com",
        host_email="host@example.com",
        start_date=start,
        end_date=start + timedelta(days=days),
        number_of_days=days,
        is_instant_book=instant,
        daily_rate=Decimal(daily_rate),
        subtotal=subtotal,
        service_fee=service,
        taxes=taxes,
        total_amount=total,
        charge_amount=total,
        deposit_amount=Decimal("500"),
        has_payment_method=payment,
    )


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM cars"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        now = datetime.now(timezone.utc).replace(minute=0, second=0, microsecond=0)

        # ── Cars ──────────────────────────────────────────────────────
        for c in CARS:
            session.add(
                CarModel(
                    id=c["id"],
                    make=c["make"],
                    model=c["model"],
                    year=c["year"],
                    address=c["address"],
                    city=c["city"],
                    latitude=c["lat"],
                    longitude=c["lng"],
                    location=ST_MakePoint(c["lng"], c["lat"]),
                    key_instructions=c["keys"],
                )
            )
        await session.flush()
        print(f"  Created {len(CARS)} cars")

        # ── Bookings ──────────────────────────────────────────────────
        ready_instant = _booking("RB1001", "car-0001", now, 3, "65", instant=True)
        ready_host = _booking("RB1002", "car-0002", now, 2, "120")
        waiting = _booking("RB1003", "car-0003", now, 4, "95")
        in_progress = _booking("RB1004", "car-0004", now - timedelta(days=1), 3, "55")
        overdue = _booking("RB1005", "car-0005", now - timedelta(days=3), 2, "110",
                           payment=False)
        finished = _booking("RB1006", "car-0006", now - timedelta(days=5), 2, "70")
        bookings = [ready_instant, ready_host, waiting, in_progress, overdue, finished]
        session.add_all(bookings)
        await session.flush()

        for b, mileage in ((in_progress, 18250), (overdue, 40210), (finished, 9100)):
            b.trip_started_at = b.start_date
            b.start_mileage = mileage
            b.fuel_level_start = FuelLevel.FULL
            b.handoff_mode = CompletionMode.HOST_CONFIRMED

        finished.trip_ended_at = finished.end_date + timedelta(minutes=40)
        finished.actual_end_time = finished.trip_ended_at
        finished.end_mileage = 9650
        finished.fuel_level_end = FuelLevel.HALF
        finished.charge_status = ChargeStatus.PENDING
        finished.pending_charges_amount = Decimal("117.50")
        finished.statutory_notice = json.dumps(STATUTORY_NOTICE)
        print(f"  Created {len(bookings)} bookings")

        # ── Handoff sessions ──────────────────────────────────────────
        session.add(
            HandoffSessionModel(
                booking_id=waiting.id,
                status=HandoffStatus.GUEST_VERIFIED,
                guest_lat=33.4229,
                guest_lng=-111.9402,
                guest_point=ST_MakePoint(-111.9402, 33.4229),
                distance_meters=28.6,
                guest_live_distance=28.6,
                arrival_message="Here, parked next to the silver Civic.",
                is_instant_book=False,
                guest_verified_at=now,
                fallback_deadline=now + timedelta(minutes=5),
                expires_at=now + timedelta(minutes=30),
            )
        )
        for b in (in_progress, overdue, finished):
            session.add(
                HandoffSessionModel(
                    booking_id=b.id,
                    status=HandoffStatus.HANDOFF_COMPLETE,
                    is_instant_book=False,
                    guest_verified_at=b.start_date,
                    expires_at=b.start_date + timedelta(minutes=30),
                    completion_mode=CompletionMode.HOST_CONFIRMED,
                )
            )
        await session.flush()
        print("  Created 4 handoff sessions")

        await session.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
