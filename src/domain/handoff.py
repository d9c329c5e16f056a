"""
Server-held handoff session (State Pattern).

One ``HandoffSession`` exists per trip-start attempt.  The guest client
moves it LOCATING -> VERIFYING -> GUEST_VERIFIED by submitting positions;
a host action or a server-owned timer finishes it.

Timers
------
Deadlines are stored as absolute timestamps when the guest is verified.
Every read computes the remaining time as ``deadline - now`` so that all
devices observe the same countdown regardless of their local clocks.

* Instant Book: at ``fallback_deadline`` the session completes itself
  (``CompletionMode.AUTO_FALLBACK``).
* Otherwise: ``fallback_deadline`` only unlocks the contact-host prompt;
  at ``expires_at`` the session expires.

Before verifying, the guest may ping its position.  Pings record the live
distance for the host (and for resuming a nearby guest) without changing
status.

Terminal statuses (HANDOFF_COMPLETE, BYPASSED, EXPIRED) accept no further
transition; repeated actions on them are idempotent re-reads.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from .distance import haversine_m, within_radius
from .entities import Location
from .enums import (
    HANDOFF_TRANSITIONS,
    TERMINAL_HANDOFF_STATUSES,
    CompletionMode,
    HandoffStatus,
)
from .errors import InvalidStateTransition


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite round-trips drop tzinfo; everything is stored as UTC.
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class ProximityVerdict:
    verified: bool
    distance: Optional[float]
    is_instant_book: bool


@dataclass(frozen=True)
class GuestPing:
    distance: float
    within_range: bool


@dataclass(frozen=True)
class HandoffProjection:
    status: HandoffStatus
    auto_fallback_remaining_ms: Optional[int]
    key_instructions: Optional[str]
    distance: Optional[float] = None
    completion_mode: Optional[CompletionMode] = None
    is_instant_book: bool = False
    contact_host_remaining_ms: Optional[int] = None
    contact_host_available: bool = False
    guest_live_distance: Optional[float] = None
    arrival_message: Optional[str] = None


@dataclass
class HandoffSession:
    booking_id: str
    status: HandoffStatus = HandoffStatus.LOCATING
    guest_location: Optional[Location] = None
    distance_meters: Optional[float] = None
    is_instant_book: bool = False
    guest_verified_at: Optional[datetime] = None
    fallback_deadline: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    completion_mode: Optional[CompletionMode] = None
    key_instructions: Optional[str] = None
    guest_live_distance: Optional[float] = None
    last_ping_at: Optional[datetime] = None
    arrival_message: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_HANDOFF_STATUSES

    def transition_to(self, new_status: HandoffStatus) -> None:
        """Move to *new_status* if the transition is legal, else raise."""
        allowed = HANDOFF_TRANSITIONS.get(self.status, set())
        if new_status not in allowed:
            raise InvalidStateTransition(
                f"Cannot transition handoff from {self.status.value} to {new_status.value}"
            )
        self.status = new_status

    # ── Guest actions ─────────────────────────────────────────────────

    def verify(
        self,
        guest: Location,
        vehicle: Location,
        radius_m: float,
        now: datetime,
        expiry_window: timedelta,
        fallback_window: timedelta,
        message: Optional[str] = None,
    ) -> ProximityVerdict:
        self.apply_timers(now)
        if self.is_terminal or self.status == HandoffStatus.GUEST_VERIFIED:
            return self.current_verdict()

        distance = round(
            haversine_m(guest.latitude, guest.longitude,
                        vehicle.latitude, vehicle.longitude),
            1,
        )
        self.guest_location = guest
        self.distance_meters = distance
        self.guest_live_distance = distance

        if not within_radius(distance, radius_m):
            self.transition_to(HandoffStatus.VERIFYING)
            return self.current_verdict()

        self.transition_to(HandoffStatus.GUEST_VERIFIED)
        self.guest_verified_at = now
        self.expires_at = now + expiry_window
        self.fallback_deadline = now + fallback_window
        if message and message.strip():
            self.arrival_message = message.strip()
        return self.current_verdict()

    def ping(
        self, guest: Location, vehicle: Location, radius_m: float, now: datetime
    ) -> GuestPing:
        """Record the guest's live distance; status is left untouched."""
        distance = round(
            haversine_m(guest.latitude, guest.longitude,
                        vehicle.latitude, vehicle.longitude),
            1,
        )
        if not self.is_terminal:
            self.guest_live_distance = distance
            self.last_ping_at = now
        return GuestPing(distance=distance, within_range=within_radius(distance, radius_m))

    def current_verdict(self) -> ProximityVerdict:
        verified = self.status in (
            HandoffStatus.GUEST_VERIFIED,
            HandoffStatus.HANDOFF_COMPLETE,
        ) and self.guest_verified_at is not None
        return ProximityVerdict(
            verified=verified,
            distance=self.distance_meters,
            is_instant_book=self.is_instant_book,
        )

    def mark_error(self) -> None:
        """The submitted fix was unusable; a later verify recovers from ERROR."""
        if not self.is_terminal and self.status != HandoffStatus.GUEST_VERIFIED:
            self.transition_to(HandoffStatus.ERROR)

    def bypass(self, guest: Optional[Location] = None) -> None:
        """Testing-only escape valve; records coordinates when provided."""
        if self.is_terminal:
            return
        if guest is not None and not guest.is_null_island:
            self.guest_location = guest
        if self.status == HandoffStatus.GUEST_VERIFIED:
            # Already verified: bypass is equivalent to completing now.
            self.transition_to(HandoffStatus.HANDOFF_COMPLETE)
        else:
            self.transition_to(HandoffStatus.BYPASSED)
        self.completion_mode = CompletionMode.BYPASSED

    # ── Host / server actions ─────────────────────────────────────────

    def host_confirm(self, now: datetime) -> None:
        self.apply_timers(now)
        if self.is_terminal:
            return
        self.transition_to(HandoffStatus.HANDOFF_COMPLETE)
        self.completion_mode = CompletionMode.HOST_CONFIRMED

    def apply_timers(self, now: datetime) -> bool:
        """Fire any elapsed server-owned timer.  Returns True on change."""
        if self.status != HandoffStatus.GUEST_VERIFIED:
            return False
        now = _as_utc(now)
        fallback = _as_utc(self.fallback_deadline)
        expires = _as_utc(self.expires_at)

        if self.is_instant_book and fallback is not None and now >= fallback:
            self.transition_to(HandoffStatus.HANDOFF_COMPLETE)
            self.completion_mode = CompletionMode.AUTO_FALLBACK
            return True
        if expires is not None and now >= expires:
            self.transition_to(HandoffStatus.EXPIRED)
            return True
        return False

    # ── Read model ────────────────────────────────────────────────────

    def auto_fallback_remaining_ms(self, now: datetime) -> Optional[int]:
        if (
            not self.is_instant_book
            or self.status != HandoffStatus.GUEST_VERIFIED
            or self.fallback_deadline is None
        ):
            return None
        remaining = _as_utc(self.fallback_deadline) - _as_utc(now)
        return max(0, int(remaining.total_seconds() * 1000))

    def contact_host_remaining_ms(self, now: datetime) -> Optional[int]:
        """Time until a non-instant guest may reach out to the host directly."""
        if (
            self.is_instant_book
            or self.status != HandoffStatus.GUEST_VERIFIED
            or self.fallback_deadline is None
        ):
            return None
        remaining = _as_utc(self.fallback_deadline) - _as_utc(now)
        return max(0, int(remaining.total_seconds() * 1000))

    def project(self, now: datetime) -> HandoffProjection:
        self.apply_timers(now)
        contact_remaining = self.contact_host_remaining_ms(now)
        return HandoffProjection(
            status=self.status,
            auto_fallback_remaining_ms=self.auto_fallback_remaining_ms(now),
            key_instructions=(
                self.key_instructions
                if self.status == HandoffStatus.HANDOFF_COMPLETE
                else None
            ),
            distance=self.distance_meters,
            completion_mode=self.completion_mode,
            is_instant_book=self.is_instant_book,
            contact_host_remaining_ms=contact_remaining,
            contact_host_available=contact_remaining == 0,
            guest_live_distance=self.guest_live_distance,
            arrival_message=self.arrival_message,
        )
