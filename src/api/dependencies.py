"""FastAPI dependency injection helpers."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.domain.settlement import ChargePolicy, SettlementEngine
from src.domain.taxes import TaxTable
from src.infrastructure.database import async_session_factory


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_settlement_engine() -> SettlementEngine:
    policy = ChargePolicy(
        daily_mile_allowance=settings.daily_mile_allowance,
        per_mile_rate=Decimal(str(settings.per_mile_rate)),
        fuel_refill_fee=Decimal(str(settings.fuel_refill_fee)),
        late_fee_per_hour=Decimal(str(settings.late_fee_per_hour)),
        late_grace=timedelta(minutes=settings.late_grace_minutes),
        minimum_damage_photos=settings.minimum_damage_photos,
        review_threshold=Decimal(str(settings.charge_review_threshold)),
    )
    return SettlementEngine(
        policy, TaxTable(default_rate=Decimal(str(settings.default_tax_rate)))
    )


def get_clock():
    """Current-time source; overridden in tests to move past deadlines."""
    return lambda: datetime.now(timezone.utc)
