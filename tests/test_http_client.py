"""Tests for the httpx adapters used by the client state machine."""

from __future__ import annotations

import json

import httpx
import pytest

from src.client.http import HttpHandoffApi, HttpTripApi
from src.domain.entities import Location
from src.domain.enums import CompletionMode, HandoffStatus
from src.domain.errors import (
    RequestRejected,
    TransientError,
    TripSequenceError,
    ValidationError,
)


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="http://test"
    )


@pytest.mark.asyncio
async def test_verify_sends_camel_case_body():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200, json={"verified": True, "distance": 45.0, "isInstantBook": True}
        )

    async with _client(handler) as client:
        verdict = await HttpHandoffApi(client).verify("bkg-1", Location(33.4, -112.0))

    assert seen["path"] == "/api/v1/handoff/verify"
    assert seen["body"] == {"bookingId": "bkg-1", "lat": 33.4, "lng": -112.0}
    assert verdict.verified and verdict.is_instant_book
    assert verdict.distance == 45.0


@pytest.mark.asyncio
async def test_status_projection():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "status": "HANDOFF_COMPLETE",
                "autoFallbackRemainingMs": None,
                "keyInstructions": "Lockbox 4821",
                "completionMode": "AUTO_FALLBACK",
            },
        )

    async with _client(handler) as client:
        projection = await HttpHandoffApi(client).status("bkg-1")

    assert projection.status == HandoffStatus.HANDOFF_COMPLETE
    assert projection.completion_mode == CompletionMode.AUTO_FALLBACK
    assert projection.key_instructions == "Lockbox 4821"


@pytest.mark.asyncio
async def test_server_error_is_transient():
    async with _client(lambda request: httpx.Response(503)) as client:
        with pytest.raises(TransientError):
            await HttpHandoffApi(client).status("bkg-1")


@pytest.mark.asyncio
async def test_network_error_is_transient():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    async with _client(handler) as client:
        with pytest.raises(TransientError):
            await HttpHandoffApi(client).verify("bkg-1", Location(1, 1))


@pytest.mark.asyncio
async def test_field_errors_are_validation_errors():
    body = {"errors": [{"field": "damagePhotos", "message": "At least 2 photos"}]}
    async with _client(lambda request: httpx.Response(422, json=body)) as client:
        with pytest.raises(ValidationError) as exc:
            await HttpTripApi(client).submit_end("bkg-1", {})
    assert exc.value.field == "damagePhotos"


@pytest.mark.asyncio
async def test_conflict_is_sequence_error():
    body = {"detail": "Trip has already been started"}
    async with _client(lambda request: httpx.Response(409, json=body)) as client:
        with pytest.raises(TripSequenceError):
            await HttpTripApi(client).submit_start("bkg-1", {"startMileage": 1})


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code", [408, 429])
async def test_throttling_is_transient(status_code):
    async with _client(lambda request: httpx.Response(status_code)) as client:
        with pytest.raises(TransientError):
            await HttpHandoffApi(client).verify("bkg-1", Location(33.4, -112.0))


@pytest.mark.asyncio
async def test_other_client_errors_are_rejections():
    body = {"detail": "Booking not found"}
    async with _client(lambda request: httpx.Response(404, json=body)) as client:
        with pytest.raises(RequestRejected) as exc:
            await HttpHandoffApi(client).status("nope")
    assert exc.value.status_code == 404
    assert exc.value.detail == "Booking not found"


@pytest.mark.asyncio
async def test_rejection_without_json_body():
    async with _client(lambda request: httpx.Response(403, text="nope")) as client:
        with pytest.raises(RequestRejected) as exc:
            await HttpHandoffApi(client).bypass("bkg-1", None)
    assert exc.value.status_code == 403


@pytest.mark.asyncio
async def test_verify_carries_arrival_message():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"verified": True, "distance": 10.0})

    async with _client(handler) as client:
        await HttpHandoffApi(client).verify("bkg-1", Location(33.4, -112.0), "At the curb")
    assert seen["body"]["message"] == "At the curb"


@pytest.mark.asyncio
async def test_ping():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"distance": 62.5, "withinRange": True})

    async with _client(handler) as client:
        result = await HttpHandoffApi(client).ping("bkg-1", Location(33.4, -112.0))

    assert seen["path"] == "/api/v1/handoff/bkg-1/ping"
    assert seen["body"] == {"lat": 33.4, "lng": -112.0}
    assert result.distance == 62.5
    assert result.within_range is True


@pytest.mark.asyncio
async def test_status_projection_contact_host_fields():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "status": "GUEST_VERIFIED",
                "isInstantBook": False,
                "contactHostRemainingMs": 0,
                "contactHostAvailable": True,
                "guestLiveDistance": 38.2,
                "arrivalMessage": "Blue door",
            },
        )

    async with _client(handler) as client:
        projection = await HttpHandoffApi(client).status("bkg-1")

    assert projection.contact_host_available is True
    assert projection.contact_host_remaining_ms == 0
    assert projection.guest_live_distance == 38.2
    assert projection.arrival_message == "Blue door"
