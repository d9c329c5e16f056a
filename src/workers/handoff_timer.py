"""
Background Handoff Timer Worker
===============================

Runs every ``TIMER_SWEEP_INTERVAL_SECONDS`` (default 30 s).

Status reads already fire elapsed timers lazily, so a polling client
never sees a stale status.  This worker covers sessions nobody is
polling: a guest who closed the app must still have their Instant Book
session auto-complete, or their session expire, on time.

Concurrency safety
------------------
* **Redis distributed lock** ensures only one API process sweeps per
  cycle.
* **SELECT ... FOR UPDATE** on the due sessions keeps a concurrent host
  confirmation from interleaving with the sweep on the same row.

Per cycle
---------
1. Fetch GUEST_VERIFIED sessions whose fallback deadline or expiry passed.
2. Apply the timers through the domain entity (AUTO_FALLBACK -> complete,
   otherwise EXPIRED).
3. Persist and commit.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from src.config import settings
from src.infrastructure.database import async_session_factory
from src.infrastructure.locks import DistributedLock
from src.infrastructure.redis_client import get_redis
from src.infrastructure.repositories import HandoffSessionRepository

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_timer_loop() -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop())
    logger.info(
        "Handoff timer worker started (interval=%ds)",
        settings.timer_sweep_interval_seconds,
    )


async def stop_timer_loop() -> None:
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    logger.info("Handoff timer worker stopped")


async def sweep(
    repo: HandoffSessionRepository, now: Optional[datetime] = None
) -> int:
    """Apply due timers to every session the repository reports.  Returns count."""
    now = now or datetime.now(timezone.utc)
    changed = 0
    for row in await repo.get_due_for_update(now):
        entity = repo.to_entity(row)
        if entity.apply_timers(now):
            await repo.save(row, entity)
            changed += 1
            logger.info(
                "Handoff %s -> %s (%s)",
                entity.booking_id,
                entity.status.value,
                entity.completion_mode.value if entity.completion_mode else "timeout",
            )
    return changed


# ── Internals ─────────────────────────────────────────────────────────


async def _loop() -> None:
    """Periodic loop: sweep then sleep."""
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_timer_cycle()
        except Exception:
            logger.exception("Unhandled error in handoff timer cycle")
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.timer_sweep_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass  # next cycle


async def run_timer_cycle() -> int:
    """Execute one sweep under the distributed lock."""
    redis = await get_redis()
    lock = DistributedLock(redis, "handoff_timer", ttl_seconds=60)

    if not await lock.acquire():
        logger.debug("Lock held by another worker – skipping sweep")
        return 0

    changed = 0
    try:
        async with async_session_factory() as session:
            changed = await sweep(HandoffSessionRepository(session))
            await session.commit()
    except Exception:
        logger.exception("Error in handoff timer sweep")
    finally:
        await lock.release()

    return changed
