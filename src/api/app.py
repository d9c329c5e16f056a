"""
FastAPI application factory.

* Registers routes for handoff, trips, settlement preview and admin.
* Starts / stops the handoff timer sweeper via lifespan events.
* Applies rate-limiting middleware.
* Maps domain ``ValidationError`` to a 422 field-error list.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from src.api.middleware import limiter
from src.api.routes import admin, handoff, trips
from src.domain.errors import InvalidStateTransition, ValidationError
from src.workers import handoff_timer as _timer

logging.basicConfig(level=logging.INFO)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the handoff timer sweeper on startup; stop on shutdown."""
    await _timer.start_timer_loop()
    yield
    await _timer.stop_timer_loop()


async def _validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=422, content={"errors": [exc.as_dict()]})


async def _invalid_transition_handler(request: Request, exc: InvalidStateTransition):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


def create_app() -> FastAPI:
    app = FastAPI(
        title="Vehicle Handoff & Trip Settlement API",
        description=(
            "Verifies guest/host proximity at vehicle handoff, gates trip "
            "start on a completed handoff, and settles post-trip charges "
            "(mileage, fuel, late return, damage) against the deposit."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Domain errors
    app.add_exception_handler(ValidationError, _validation_error_handler)
    app.add_exception_handler(InvalidStateTransition, _invalid_transition_handler)

    # Routers
    app.include_router(handoff.router, prefix="/api/v1")
    app.include_router(trips.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
