"""
httpx adapters for the handoff and trip endpoints.

Network failures, 5xx and 408/429 responses surface as ``TransientError``;
422 responses carrying field errors surface as ``ValidationError``; 409 as
``TripSequenceError``; any other 4xx as ``RequestRejected``.
"""

from __future__ import annotations

from typing import Optional

import httpx

from src.domain.entities import Location
from src.domain.enums import CompletionMode, HandoffStatus
from src.domain.errors import (
    RequestRejected,
    TransientError,
    TripSequenceError,
    ValidationError,
)
from src.domain.handoff import GuestPing, HandoffProjection, ProximityVerdict

_RETRYABLE_STATUSES = {408, 429}


def _detail(response: httpx.Response) -> str:
    try:
        return str(response.json().get("detail") or response.reason_phrase)
    except ValueError:
        return response.reason_phrase


class _ApiClient:
    def __init__(self, client: httpx.AsyncClient, prefix: str = "/api/v1"):
        self.client = client
        self.prefix = prefix

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            response = await self.client.request(method, f"{self.prefix}{path}", **kwargs)
        except httpx.HTTPError as exc:
            raise TransientError(f"{method} {path} failed: {exc}") from exc

        status = response.status_code
        if status >= 500 or status in _RETRYABLE_STATUSES:
            raise TransientError(f"{method} {path} returned {status}")
        if status == 422:
            errors = response.json().get("errors") or [{}]
            first = errors[0]
            raise ValidationError(first.get("field", "request"), first.get("message", "Invalid"))
        if status == 409:
            raise TripSequenceError(_detail(response))
        if status >= 400:
            raise RequestRejected(status, _detail(response))
        return response.json()


def _projection(data: dict) -> HandoffProjection:
    mode = data.get("completionMode")
    return HandoffProjection(
        status=HandoffStatus(data["status"]),
        auto_fallback_remaining_ms=data.get("autoFallbackRemainingMs"),
        key_instructions=data.get("keyInstructions"),
        distance=data.get("distance"),
        completion_mode=CompletionMode(mode) if mode else None,
        is_instant_book=data.get("isInstantBook", False),
        contact_host_remaining_ms=data.get("contactHostRemainingMs"),
        contact_host_available=data.get("contactHostAvailable", False),
        guest_live_distance=data.get("guestLiveDistance"),
        arrival_message=data.get("arrivalMessage"),
    )


class HttpHandoffApi(_ApiClient):
    async def verify(
        self, booking_id: str, location: Location, message: Optional[str] = None
    ) -> ProximityVerdict:
        body = {
            "bookingId": booking_id,
            "lat": location.latitude,
            "lng": location.longitude,
        }
        if message:
            body["message"] = message
        data = await self._request("POST", "/handoff/verify", json=body)
        return ProximityVerdict(
            verified=data["verified"],
            distance=data.get("distance"),
            is_instant_book=data.get("isInstantBook", False),
        )

    async def ping(self, booking_id: str, location: Location) -> GuestPing:
        data = await self._request(
            "POST",
            f"/handoff/{booking_id}/ping",
            json={"lat": location.latitude, "lng": location.longitude},
        )
        return GuestPing(distance=data["distance"], within_range=data["withinRange"])

    async def status(self, booking_id: str) -> HandoffProjection:
        return _projection(await self._request("GET", f"/handoff/{booking_id}/status"))

    async def bypass(
        self, booking_id: str, location: Optional[Location]
    ) -> HandoffProjection:
        body = (
            {"lat": location.latitude, "lng": location.longitude}
            if location is not None
            else {}
        )
        return _projection(
            await self._request("POST", f"/handoff/{booking_id}/bypass", json=body)
        )


class HttpTripApi(_ApiClient):
    async def submit_start(self, booking_id: str, payload: dict) -> dict:
        return await self._request("POST", f"/trips/{booking_id}/start", json=payload)

    async def submit_end(self, booking_id: str, payload: dict) -> dict:
        return await self._request("POST", f"/trips/{booking_id}/end", json=payload)
