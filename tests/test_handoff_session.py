"""Unit tests for the server-held handoff session (State Pattern)."""

from datetime import datetime, timedelta, timezone

import pytest

from src.domain.distance import haversine_m, within_radius
from src.domain.entities import Location
from src.domain.enums import CompletionMode, HandoffStatus
from src.domain.errors import InvalidStateTransition
from src.domain.handoff import GuestPing, HandoffSession
from tests.conftest import CAR_LAT, CAR_LNG, GUEST_FAR, GUEST_NEAR

NOW = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)
CAR = Location(CAR_LAT, CAR_LNG)
EXPIRY = timedelta(minutes=30)
FALLBACK = timedelta(minutes=5)


def _verify(session: HandoffSession, guest=GUEST_NEAR, radius=50.0, now=NOW):
    return session.verify(Location(*guest), CAR, radius, now, EXPIRY, FALLBACK)


class TestDistance:
    def test_same_point_is_zero(self):
        assert haversine_m(CAR_LAT, CAR_LNG, CAR_LAT, CAR_LNG) == 0

    def test_guest_fixture_is_about_45m(self):
        assert haversine_m(CAR_LAT, CAR_LNG, *GUEST_NEAR) == pytest.approx(45, abs=0.5)

    def test_radius_is_inclusive(self):
        assert within_radius(50.0, 50.0)
        assert not within_radius(50.1, 50.0)


class TestVerify:
    def test_guest_within_radius_is_verified(self):
        session = HandoffSession(booking_id="b1")
        verdict = _verify(session)
        assert verdict.verified is True
        assert verdict.distance == pytest.approx(45, abs=0.5)
        assert session.status == HandoffStatus.GUEST_VERIFIED
        assert session.expires_at == NOW + EXPIRY
        assert session.fallback_deadline == NOW + FALLBACK

    def test_guest_too_far_stays_verifying(self):
        session = HandoffSession(booking_id="b1")
        verdict = _verify(session, guest=GUEST_FAR)
        assert verdict.verified is False
        assert verdict.distance > 1000
        assert session.status == HandoffStatus.VERIFYING

    def test_retry_after_too_far(self):
        session = HandoffSession(booking_id="b1")
        _verify(session, guest=GUEST_FAR)
        assert _verify(session).verified is True

    def test_instant_book_sets_fallback_deadline(self):
        session = HandoffSession(booking_id="b1", is_instant_book=True)
        verdict = _verify(session)
        assert verdict.is_instant_book is True
        assert session.fallback_deadline == NOW + FALLBACK

    def test_arrival_message_kept_for_host(self):
        session = HandoffSession(booking_id="b1")
        session.verify(
            Location(*GUEST_NEAR), CAR, 50.0, NOW, EXPIRY, FALLBACK, message=" Here! "
        )
        assert session.arrival_message == "Here!"
        assert session.project(NOW).arrival_message == "Here!"

    def test_blank_arrival_message_ignored(self):
        session = HandoffSession(booking_id="b1")
        session.verify(Location(*GUEST_NEAR), CAR, 50.0, NOW, EXPIRY, FALLBACK, message="   ")
        assert session.arrival_message is None

    def test_reverify_on_terminal_session_is_a_noop(self):
        session = HandoffSession(booking_id="b1")
        _verify(session)
        session.host_confirm(NOW)
        verdict = _verify(session, guest=GUEST_FAR)
        assert verdict.verified is True
        assert session.status == HandoffStatus.HANDOFF_COMPLETE


class TestTimers:
    def test_instant_book_auto_completes(self):
        session = HandoffSession(booking_id="b1", is_instant_book=True)
        _verify(session)
        assert session.apply_timers(NOW + FALLBACK) is True
        assert session.status == HandoffStatus.HANDOFF_COMPLETE
        assert session.completion_mode == CompletionMode.AUTO_FALLBACK

    def test_unconfirmed_session_expires(self):
        session = HandoffSession(booking_id="b1")
        _verify(session)
        assert session.apply_timers(NOW + FALLBACK) is False
        assert session.apply_timers(NOW + EXPIRY) is True
        assert session.status == HandoffStatus.EXPIRED

    def test_host_confirm_after_expiry_is_a_noop(self):
        session = HandoffSession(booking_id="b1")
        _verify(session)
        session.host_confirm(NOW + EXPIRY + timedelta(seconds=1))
        assert session.status == HandoffStatus.EXPIRED
        assert session.completion_mode is None

    def test_remaining_time_is_server_computed(self):
        session = HandoffSession(booking_id="b1", is_instant_book=True)
        _verify(session)
        later = NOW + timedelta(seconds=90)
        assert session.auto_fallback_remaining_ms(later) == 210_000

    def test_naive_deadlines_from_storage(self):
        session = HandoffSession(
            booking_id="b1",
            status=HandoffStatus.GUEST_VERIFIED,
            expires_at=(NOW + EXPIRY).replace(tzinfo=None),
        )
        assert session.apply_timers(NOW + EXPIRY) is True


class TestProjection:
    def test_key_instructions_only_after_completion(self):
        session = HandoffSession(booking_id="b1", key_instructions="Lockbox 1234")
        _verify(session)
        assert session.project(NOW).key_instructions is None
        session.host_confirm(NOW)
        projection = session.project(NOW)
        assert projection.status == HandoffStatus.HANDOFF_COMPLETE
        assert projection.key_instructions == "Lockbox 1234"
        assert projection.auto_fallback_remaining_ms is None

    def test_projection_fires_elapsed_timer(self):
        session = HandoffSession(booking_id="b1", is_instant_book=True)
        _verify(session)
        projection = session.project(NOW + timedelta(minutes=6))
        assert projection.status == HandoffStatus.HANDOFF_COMPLETE
        assert projection.completion_mode == CompletionMode.AUTO_FALLBACK


class TestBypassAndTransitions:
    def test_bypass_before_verification(self):
        session = HandoffSession(booking_id="b1")
        session.bypass(Location(0, 0))
        assert session.status == HandoffStatus.BYPASSED
        assert session.completion_mode == CompletionMode.BYPASSED
        assert session.guest_location is None  # null island is ignored

    def test_bypass_after_verification_completes(self):
        session = HandoffSession(booking_id="b1")
        _verify(session)
        session.bypass()
        assert session.status == HandoffStatus.HANDOFF_COMPLETE

    def test_terminal_statuses_reject_transitions(self):
        for status in (HandoffStatus.EXPIRED, HandoffStatus.BYPASSED):
            session = HandoffSession(booking_id="b1", status=status)
            with pytest.raises(InvalidStateTransition):
                session.transition_to(HandoffStatus.LOCATING)

    def test_locating_cannot_jump_to_complete(self):
        session = HandoffSession(booking_id="b1")
        with pytest.raises(InvalidStateTransition):
            session.transition_to(HandoffStatus.HANDOFF_COMPLETE)

    def test_error_then_retry(self):
        session = HandoffSession(booking_id="b1")
        session.mark_error()
        assert session.status == HandoffStatus.ERROR
        assert _verify(session).verified is True


class TestContactHost:
    def test_countdown_survives_reload(self):
        session = HandoffSession(booking_id="b1")
        _verify(session)
        # A fresh entity built from the stored row sees the same deadline.
        reloaded = HandoffSession(
            booking_id="b1",
            status=session.status,
            guest_verified_at=session.guest_verified_at,
            fallback_deadline=session.fallback_deadline.replace(tzinfo=None),
            expires_at=session.expires_at,
        )
        projection = reloaded.project(NOW + timedelta(minutes=4))
        assert projection.contact_host_remaining_ms == 60_000
        assert projection.contact_host_available is False
        assert reloaded.project(NOW + FALLBACK).contact_host_available is True

    def test_not_offered_for_instant_book(self):
        session = HandoffSession(booking_id="b1", is_instant_book=True)
        _verify(session)
        projection = session.project(NOW + timedelta(minutes=1))
        assert projection.contact_host_remaining_ms is None
        assert projection.contact_host_available is False
        assert projection.is_instant_book is True

    def test_contact_host_does_not_complete_the_handoff(self):
        session = HandoffSession(booking_id="b1")
        _verify(session)
        assert session.apply_timers(NOW + FALLBACK) is False
        assert session.status == HandoffStatus.GUEST_VERIFIED


class TestPing:
    def test_ping_records_distance_only(self):
        session = HandoffSession(booking_id="b1")
        result = session.ping(Location(*GUEST_NEAR), CAR, 50.0, NOW)
        assert isinstance(result, GuestPing)
        assert result.distance == pytest.approx(45, abs=0.5)
        assert result.within_range is True
        assert session.status == HandoffStatus.LOCATING
        assert session.guest_live_distance == result.distance
        assert session.last_ping_at == NOW
        assert session.project(NOW).guest_live_distance == result.distance

    def test_far_ping(self):
        session = HandoffSession(booking_id="b1")
        assert session.ping(Location(*GUEST_FAR), CAR, 50.0, NOW).within_range is False

    def test_ping_after_completion_is_not_recorded(self):
        session = HandoffSession(booking_id="b1")
        _verify(session)
        session.host_confirm(NOW)
        recorded = session.guest_live_distance
        session.ping(Location(*GUEST_FAR), CAR, 50.0, NOW)
        assert session.guest_live_distance == recorded
