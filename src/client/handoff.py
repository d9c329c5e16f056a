"""
Per-device handoff state machine
================================

Each participant runs one ``HandoffStateMachine`` per trip-start
attempt.  Devices share nothing but the server-held session, which they
mutate through ``verify`` / ``ping`` and observe through ``status`` polls.

Transitions (guest perspective)
-------------------------------
  LOCATING       -> VERIFYING         geolocation acquired
  LOCATING       -> ERROR             both GPS attempts failed, no bypass
  LOCATING       -> HANDOFF_COMPLETE  both GPS attempts failed, bypass on
  VERIFYING      -> GUEST_VERIFIED    server verdict: within radius
  VERIFYING      -> TOO_FAR           server verdict: outside radius
  VERIFYING      -> ERROR             any failed verify request
  TOO_FAR, ERROR -> LOCATING          user retries
  GUEST_VERIFIED -> HANDOFF_COMPLETE  poll observes completion
  GUEST_VERIFIED -> EXPIRED           poll observes expiry
  EXPIRED        -> HANDOFF_COMPLETE  user continues anyway (degraded)

Polling runs as an ``asyncio.Task`` only while in GUEST_VERIFIED and is
cancelled by ``close()`` (or leaving the ``async with`` block).  A failed
poll is logged and the loop carries on at the same fixed interval.

Every countdown shown to the user (auto-fallback, contact-host) is read
from the server projection; the machine keeps no timers of its own.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from src.domain.entities import Location
from src.domain.enums import (
    CLIENT_TRANSITIONS,
    ClientHandoffState,
    CompletionMode,
    GeolocationStage,
    HandoffStatus,
)
from src.domain.errors import InvalidStateTransition, TransientError
from src.domain.handoff import GuestPing, HandoffProjection, ProximityVerdict

logger = logging.getLogger(__name__)


# ── Collaborators ─────────────────────────────────────────────────────


class GeolocationProvider(Protocol):
    async def get_current_position(
        self, high_accuracy: bool, timeout_ms: int
    ) -> Location:
        """Return a fix or raise ``TransientError``."""
        ...


class HandoffApi(Protocol):
    async def verify(
        self, booking_id: str, location: Location, message: Optional[str] = None
    ) -> ProximityVerdict: ...

    async def ping(self, booking_id: str, location: Location) -> GuestPing: ...

    async def status(self, booking_id: str) -> HandoffProjection: ...

    async def bypass(
        self, booking_id: str, location: Optional[Location]
    ) -> HandoffProjection: ...


# ── Geolocation: two-stage attempt ────────────────────────────────────


@dataclass
class GeolocationAttempt:
    high_accuracy_timeout_ms: int = 10_000
    low_accuracy_timeout_ms: int = 15_000
    stage: GeolocationStage = GeolocationStage.ATTEMPT_HIGH_ACCURACY

    async def run(self, provider: GeolocationProvider) -> Optional[Location]:
        """High accuracy first, then one low-accuracy attempt, then give up."""
        self.stage = GeolocationStage.ATTEMPT_HIGH_ACCURACY
        while self.stage in (
            GeolocationStage.ATTEMPT_HIGH_ACCURACY,
            GeolocationStage.ATTEMPT_LOW_ACCURACY,
        ):
            high = self.stage == GeolocationStage.ATTEMPT_HIGH_ACCURACY
            timeout_ms = (
                self.high_accuracy_timeout_ms if high else self.low_accuracy_timeout_ms
            )
            try:
                location = await asyncio.wait_for(
                    provider.get_current_position(high, timeout_ms),
                    timeout=timeout_ms / 1000,
                )
            except (TransientError, asyncio.TimeoutError) as exc:
                logger.info("Geolocation attempt failed (high_accuracy=%s): %s", high, exc)
                self.stage = (
                    GeolocationStage.ATTEMPT_LOW_ACCURACY
                    if high
                    else GeolocationStage.FAILED
                )
                continue
            self.stage = GeolocationStage.ACQUIRED
            return location
        return None


# ── State machine ─────────────────────────────────────────────────────


class HandoffStateMachine:
    def __init__(
        self,
        booking_id: str,
        api: HandoffApi,
        geolocation: GeolocationProvider,
        *,
        poll_interval: float = 5.0,
        radius_m: float = 100.0,
        bypass_allowed: bool = False,
        high_accuracy_timeout_ms: int = 10_000,
        low_accuracy_timeout_ms: int = 15_000,
        arrival_message: Optional[str] = None,
        on_complete: Optional[Callable[[CompletionMode], None]] = None,
    ):
        self.booking_id = booking_id
        self.api = api
        self.geolocation = geolocation
        self.poll_interval = poll_interval
        self.radius_m = radius_m
        self.bypass_allowed = bypass_allowed
        self.arrival_message = arrival_message
        self.on_complete = on_complete
        self.geo_attempt = GeolocationAttempt(
            high_accuracy_timeout_ms, low_accuracy_timeout_ms
        )

        self.state = ClientHandoffState.LOCATING
        self.location: Optional[Location] = None
        self.distance: Optional[float] = None
        self.nearby = False
        self.is_instant_book = False
        self.auto_fallback_remaining_ms: Optional[int] = None
        self.contact_host_remaining_ms: Optional[int] = None
        self.key_instructions: Optional[str] = None
        self.completion_mode: Optional[CompletionMode] = None
        self.contact_host_available = False
        self.error: Optional[str] = None

        self._poll_task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    # ── Lifecycle ─────────────────────────────────────────────────────

    async def __aenter__(self) -> "HandoffStateMachine":
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    async def close(self) -> None:
        """Teardown: cancel polling so no timer outlives the component."""
        await self._stop_polling()

    @property
    def is_polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    def _transition(self, new_state: ClientHandoffState) -> None:
        if new_state not in CLIENT_TRANSITIONS.get(self.state, set()):
            raise InvalidStateTransition(
                f"Cannot transition from {self.state.value} to {new_state.value}"
            )
        logger.debug("Handoff %s: %s -> %s", self.booking_id, self.state.value, new_state.value)
        self.state = new_state

    def _complete(self, mode: CompletionMode) -> None:
        self._transition(ClientHandoffState.HANDOFF_COMPLETE)
        self.completion_mode = mode
        if self.on_complete:
            self.on_complete(mode)

    def _observe(self, projection: HandoffProjection) -> None:
        self.is_instant_book = projection.is_instant_book
        self.auto_fallback_remaining_ms = projection.auto_fallback_remaining_ms
        self.contact_host_remaining_ms = projection.contact_host_remaining_ms
        self.contact_host_available = projection.contact_host_available

    # ── Entry ─────────────────────────────────────────────────────────

    async def start(self) -> ClientHandoffState:
        """Resume from the server status if possible, else locate."""
        try:
            live = await self.api.status(self.booking_id)
        except Exception:
            logger.warning(
                "Initial status check failed for %s; locating", self.booking_id, exc_info=True
            )
            live = None

        if live is not None:
            if live.status in (HandoffStatus.HANDOFF_COMPLETE, HandoffStatus.BYPASSED):
                self.state = ClientHandoffState.HANDOFF_COMPLETE
                self.key_instructions = live.key_instructions
                self.completion_mode = live.completion_mode or (
                    CompletionMode.BYPASSED
                    if live.status == HandoffStatus.BYPASSED
                    else CompletionMode.HOST_CONFIRMED
                )
                if self.on_complete:
                    self.on_complete(self.completion_mode)
                return self.state
            if live.status == HandoffStatus.GUEST_VERIFIED:
                self.state = ClientHandoffState.GUEST_VERIFIED
                self.distance = live.distance
                self._observe(live)
                self._enter_guest_verified()
                return self.state
            if live.status == HandoffStatus.EXPIRED:
                self.state = ClientHandoffState.EXPIRED
                return self.state
            if live.guest_live_distance is not None:
                self.distance = live.guest_live_distance
                self.nearby = live.guest_live_distance <= self.radius_m

        return await self.locate()

    async def locate(self) -> ClientHandoffState:
        if self.state != ClientHandoffState.LOCATING:
            raise InvalidStateTransition(
                f"Cannot locate from state {self.state.value}; use retry()"
            )
        self.error = None

        location = await self.geo_attempt.run(self.geolocation)
        if location is None:
            if self.bypass_allowed:
                return await self.bypass()
            self._transition(ClientHandoffState.ERROR)
            self.error = "Unable to determine your location"
            return self.state

        self.location = location
        self._transition(ClientHandoffState.VERIFYING)
        return await self._verify(location)

    async def _verify(self, location: Location) -> ClientHandoffState:
        try:
            verdict = await self.api.verify(
                self.booking_id, location, self.arrival_message
            )
        except TransientError as exc:
            logger.warning("Verify failed for %s: %s", self.booking_id, exc)
            self._transition(ClientHandoffState.ERROR)
            self.error = "Network error while verifying your location"
            return self.state
        except Exception as exc:
            logger.warning("Verify rejected for %s: %s", self.booking_id, exc)
            self._transition(ClientHandoffState.ERROR)
            self.error = f"Could not verify your location: {exc}"
            return self.state

        self.distance = verdict.distance
        self.is_instant_book = verdict.is_instant_book
        if verdict.verified:
            self._transition(ClientHandoffState.GUEST_VERIFIED)
            self._enter_guest_verified()
        else:
            self._transition(ClientHandoffState.TOO_FAR)
        return self.state

    # ── User actions ──────────────────────────────────────────────────

    async def ping(self) -> Optional[float]:
        """
        Report the current position so the host can watch the guest approach.

        Pinging never changes state; it only refreshes ``distance`` and
        ``nearby``.  Failures are logged and the last known values kept.
        """
        if self.state not in (
            ClientHandoffState.LOCATING,
            ClientHandoffState.TOO_FAR,
            ClientHandoffState.ERROR,
        ):
            return self.distance

        location = await self.geo_attempt.run(self.geolocation) or self.location
        if location is None:
            return self.distance
        self.location = location
        try:
            result = await self.api.ping(self.booking_id, location)
        except Exception:
            logger.info("Handoff ping failed for %s", self.booking_id, exc_info=True)
            return self.distance

        self.distance = result.distance
        self.nearby = result.within_range
        return self.distance

    async def retry(self) -> ClientHandoffState:
        self._transition(ClientHandoffState.LOCATING)
        return await self.locate()

    async def bypass(self) -> ClientHandoffState:
        """Non-production escape valve: complete without proximity proof."""
        if not self.bypass_allowed:
            raise InvalidStateTransition("Handoff bypass is disabled")
        if self.state != ClientHandoffState.LOCATING:
            raise InvalidStateTransition(
                f"Bypass is only possible while locating (state={self.state.value})"
            )
        self._complete(CompletionMode.BYPASSED)
        # Record-keeping only; completion does not depend on it.
        try:
            await self.api.bypass(self.booking_id, self.location)
        except Exception:
            logger.warning("Bypass record failed for %s", self.booking_id, exc_info=True)
        return self.state

    async def continue_anyway(self) -> ClientHandoffState:
        """Proceed after expiry; marked DEGRADED for audit."""
        if self.state != ClientHandoffState.EXPIRED:
            raise InvalidStateTransition(
                f"Can only continue after expiry (state={self.state.value})"
            )
        self._complete(CompletionMode.DEGRADED)
        return self.state

    # ── Polling ───────────────────────────────────────────────────────

    def _enter_guest_verified(self) -> None:
        self._stop_event = asyncio.Event()
        self._poll_task = asyncio.create_task(self._poll_loop(self._stop_event))

    async def _stop_polling(self) -> None:
        if self._stop_event:
            self._stop_event.set()
        task, self._poll_task = self._poll_task, None
        if task and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _poll_loop(self, stop: asyncio.Event) -> None:
        while not stop.is_set():
            if await self.poll_once():
                break
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.poll_interval)
                break
            except asyncio.TimeoutError:
                pass  # next poll

    async def poll_once(self) -> bool:
        """Issue one status request.  Returns True once a terminal status is seen."""
        if self.state != ClientHandoffState.GUEST_VERIFIED:
            return True
        try:
            result = await self.api.status(self.booking_id)
        except Exception:
            logger.warning("Handoff poll failed for %s", self.booking_id, exc_info=True)
            return False

        if result.status in (HandoffStatus.HANDOFF_COMPLETE, HandoffStatus.BYPASSED):
            self.key_instructions = result.key_instructions
            self._complete(result.completion_mode or CompletionMode.HOST_CONFIRMED)
            return True
        if result.status == HandoffStatus.EXPIRED:
            self._transition(ClientHandoffState.EXPIRED)
            return True

        self._observe(result)
        return False
