"""Tests for trip start / trip end sequencing in the lifecycle controller."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from src.domain.enums import CompletionMode, FuelLevel, PaymentChoice
from src.domain.errors import TripSequenceError, ValidationError
from src.domain.lifecycle import (
    STATUTORY_NOTICE,
    AcceptTerms,
    ReportDamage,
    SelectDisputes,
    SetFuel,
    SetOdometer,
    StartPhoto,
    TripLifecycleController,
)
from tests.conftest import TRIP_START, make_booking


class RecordingSubmitter:
    def __init__(self):
        self.starts: list[tuple[str, dict]] = []
        self.ends: list[tuple[str, dict]] = []

    async def submit_start(self, booking_id: str, payload: dict) -> dict:
        self.starts.append((booking_id, payload))
        return {"success": True}

    async def submit_end(self, booking_id: str, payload: dict) -> dict:
        self.ends.append((booking_id, payload))
        return {"success": True}


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock(TRIP_START)


@pytest.fixture
def submitter():
    return RecordingSubmitter()


@pytest.fixture
def controller(submitter, clock):
    booking = make_booking(start_mileage=None, fuel_level_start=None)
    return TripLifecycleController(booking, submitter, clock=clock)


async def _start(controller: TripLifecycleController, mode=CompletionMode.HOST_CONFIRMED):
    controller.on_handoff_complete(mode)
    await controller.submit_trip_start(1000, "Full")


class TestTripStart:
    @pytest.mark.asyncio
    async def test_start_requires_completed_handoff(self, controller, submitter):
        with pytest.raises(TripSequenceError):
            await controller.submit_trip_start(1000, FuelLevel.FULL)
        assert submitter.starts == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("mode", list(CompletionMode))
    async def test_every_completion_mode_unblocks(self, controller, submitter, mode):
        await _start(controller, mode)
        _, payload = submitter.starts[0]
        assert payload["handoffMode"] == mode.value
        assert controller.trip_started

    @pytest.mark.asyncio
    async def test_start_payload(self, controller, submitter):
        controller.on_handoff_complete(CompletionMode.AUTO_FALLBACK)
        controller.dispatch(StartPhoto("front", "https://img/front.jpg", phase="start"))
        await controller.submit_trip_start(1000, "1/2")
        booking_id, payload = submitter.starts[0]
        assert booking_id == "bkg-1"
        assert payload["fuelLevelStart"] == "1/2"
        assert payload["photos"] == {"front": "https://img/front.jpg"}
        assert controller.booking.fuel_level_start == FuelLevel.HALF

    @pytest.mark.asyncio
    async def test_cannot_start_twice(self, controller):
        await _start(controller)
        with pytest.raises(TripSequenceError):
            await controller.submit_trip_start(1000, "Full")

    @pytest.mark.asyncio
    async def test_bad_fuel_level(self, controller):
        controller.on_handoff_complete(CompletionMode.HOST_CONFIRMED)
        with pytest.raises(ValidationError) as exc:
            await controller.submit_trip_start(1000, "mostly")
        assert exc.value.field == "fuelLevelStart"

    def test_first_completion_mode_wins(self, controller):
        controller.on_handoff_complete(CompletionMode.AUTO_FALLBACK)
        controller.on_handoff_complete(CompletionMode.HOST_CONFIRMED)
        assert controller.handoff_mode == CompletionMode.AUTO_FALLBACK


class TestDispatch:
    @pytest.mark.asyncio
    async def test_settlement_recomputed_on_every_command(self, controller, clock):
        await _start(controller)
        clock.now = TRIP_START + timedelta(days=3)

        assert controller.dispatch(SetOdometer(1700)) is None  # fuel still missing
        result = controller.dispatch(SetFuel("3/4"))
        assert result.total == Decimal("120.00")  # 45 mileage + 75 fuel
        result = controller.dispatch(SetOdometer(1500))
        assert result.total == Decimal("75.00")

    @pytest.mark.asyncio
    async def test_invalid_input_clears_settlement(self, controller, clock):
        await _start(controller)
        clock.now = TRIP_START + timedelta(days=3)
        controller.dispatch(SetOdometer(1500))
        controller.dispatch(SetFuel("Full"))
        assert controller.settlement is not None

        assert controller.dispatch(ReportDamage(True, ("https://img/1.jpg",))) is None
        assert controller.settlement is None
        assert [e.field for e in controller.errors] == ["damagePhotos"]

    def test_unknown_command(self, controller):
        with pytest.raises(TypeError):
            controller.dispatch(object())

    @pytest.mark.asyncio
    async def test_reconciliation(self, controller, clock):
        await _start(controller)
        clock.now = TRIP_START + timedelta(days=3)
        controller.dispatch(SetOdometer(1500))
        controller.dispatch(SetFuel("Empty"))
        rec = controller.reconciliation()
        assert rec.amount_to_release == Decimal("425.00")
        assert rec.additional_charge_needed == Decimal("0.00")


class TestTripEnd:
    @pytest.mark.asyncio
    async def test_end_before_start(self, controller):
        with pytest.raises(TripSequenceError):
            await controller.submit_trip_end()

    @pytest.mark.asyncio
    async def test_end_blocked_by_validation(self, controller, submitter, clock):
        await _start(controller)
        clock.now = TRIP_START + timedelta(days=3)
        controller.dispatch(SetFuel("Full"))
        with pytest.raises(ValidationError) as exc:
            await controller.submit_trip_end()
        assert exc.value.field == "endMileage"
        assert submitter.ends == []

    @pytest.mark.asyncio
    async def test_end_requires_terms(self, controller, submitter, clock):
        await _start(controller)
        clock.now = TRIP_START + timedelta(days=3)
        controller.dispatch(SetOdometer(1500))
        controller.dispatch(SetFuel("Full"))
        with pytest.raises(ValidationError) as exc:
            await controller.submit_trip_end()
        assert exc.value.field == "acceptTerms"
        assert submitter.ends == []

    @pytest.mark.asyncio
    async def test_end_payload_carries_statutory_notice(self, controller, submitter, clock):
        await _start(controller)
        clock.now = TRIP_START + timedelta(days=3, minutes=30)
        for command in (
            SetOdometer(1500),
            SetFuel("Full"),
            StartPhoto("odometer", "https://img/odo.jpg"),
            SelectDisputes(("Late fee is wrong",)),
            AcceptTerms(True, PaymentChoice.REQUEST_REVIEW),
        ):
            controller.dispatch(command)

        await controller.submit_trip_end()
        _, payload = submitter.ends[0]
        assert payload["statutoryNotice"] == STATUTORY_NOTICE
        assert payload["statutoryNotice"]["depositReleaseDays"] == {"min": 7, "max": 14}
        assert payload["inspectionPhotos"] == {"odometer": "https://img/odo.jpg"}
        assert payload["disputes"] == ["Late fee is wrong"]
        assert payload["paymentChoice"] == "request_review"
        assert controller.trip_ended

        with pytest.raises(TripSequenceError):
            await controller.submit_trip_end()
