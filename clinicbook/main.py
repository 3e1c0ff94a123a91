import logging
import os
from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from clinicbook.api.routes import appointments, doctors, slots
from clinicbook.core.config import _ENV_FILE, settings
from clinicbook.services.context import utc_now
from clinicbook.store import RecordStore, build_store

if os.getenv("ENV") != "production":
    logging.basicConfig(level=logging.DEBUG)
else:
    logging.basicConfig(
        level=logging.INFO,
        format='{"time": "%(asctime)s", "level": "%(levelname)s", "message": "%(message)s"}',
    )
logger = logging.getLogger(__name__)

_CORS_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
_CORS_HEADERS = ["Authorization", "Content-Type", "X-User-Id", "X-User-Role"]


def _cors_headers(origin: str | None) -> dict[str, str]:
    """Add CORS headers to error responses so the browser doesn't block them."""
    headers = {
        "Access-Control-Allow-Credentials": "true",
        "Access-Control-Allow-Methods": ", ".join(_CORS_METHODS),
        "Access-Control-Allow-Headers": ", ".join(_CORS_HEADERS),
    }
    if origin and origin in settings.cors_origins_list:
        headers["Access-Control-Allow-Origin"] = origin
    elif settings.cors_origins_list:
        headers["Access-Control-Allow-Origin"] = settings.cors_origins_list[0]
    return headers


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Return actual error in JSON; include CORS so 500 responses are not blocked by browser."""
    origin = request.headers.get("origin")
    headers = _cors_headers(origin)
    if isinstance(exc, HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=headers,
        )
    logger.exception("Unhandled exception: %s", exc)
    detail = f"{type(exc).__name__}: {str(exc)}"
    return JSONResponse(
        status_code=500,
        content={"detail": detail},
        headers=headers,
    )


def create_app(store: RecordStore | None = None, clock: Callable | None = None) -> FastAPI:
    """Build the API. Tests pass their own store and clock; otherwise the store comes from settings."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Loading .env from: %s (exists: %s)", _ENV_FILE, _ENV_FILE.exists())
        owned = store is None
        app.state.store = store if store is not None else await build_store(settings)
        app.state.clock = clock or utc_now
        logger.info(
            "Scheduling: %d-minute slots, %d-day booking horizon, new bookings start %s",
            settings.slot_duration_minutes,
            settings.booking_horizon_days,
            settings.default_booking_status,
        )
        yield
        if owned:
            await app.state.store.close()

    app = FastAPI(
        title="ClinicBook API",
        description="Doctor availability and appointment booking",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=_CORS_METHODS,
        allow_headers=_CORS_HEADERS,
    )

    app.include_router(doctors.router, prefix="/api/v1")
    app.include_router(slots.router, prefix="/api/v1")
    app.include_router(appointments.router, prefix="/api/v1")
    app.add_exception_handler(Exception, global_exception_handler)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    return app


app = create_app()
