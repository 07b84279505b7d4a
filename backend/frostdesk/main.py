# backend/frostdesk/main.py
"""
FastAPI application for the booking lifecycle engine.

Mounts the v1 booking and audit routers, a health probe, and the Prometheus
scrape endpoint.
"""

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator, Dict

from fastapi import APIRouter, FastAPI, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy import text

from .core.config import is_running_tests, settings
from .core.exceptions import DomainException
from .database import SessionLocal
from .monitoring.prometheus_metrics import prometheus_metrics
from .routes.v1 import audit as audit_v1, bookings as bookings_v1

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)

API_TITLE = "FrostDesk Booking API"
API_VERSION = "1.0.0"


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup/shutdown without deprecated events."""
    logger.info(f"{API_TITLE} starting up...")
    logger.info(
        f"Environment: {settings.environment} (calendar_provider={settings.calendar_provider})"
    )
    if settings.calendar_provider == "google" and not settings.google_client_id:
        logger.warning("Google calendar provider selected without GOOGLE_CLIENT_ID")
    if is_running_tests():
        logger.info("Running under pytest (test mode active)")
    yield
    logger.info(f"{API_TITLE} shutting down...")


app = FastAPI(
    title=API_TITLE,
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=app_lifespan,
)


@app.exception_handler(DomainException)
async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
    """Render domain errors raised outside the routers' own handling."""
    http_exc = exc.to_http_exception()
    if http_exc.status_code >= 500:
        logger.error(
            "Unhandled domain error",
            extra={"path": request.url.path, "code": exc.code, "error": exc.message},
        )
    return JSONResponse(status_code=http_exc.status_code, content={"detail": http_exc.detail})


# Create API v1 router
api_v1 = APIRouter(prefix="/api/v1")
api_v1.include_router(bookings_v1.router, prefix="/bookings")
api_v1.include_router(audit_v1.router, prefix="/audit")
app.include_router(api_v1)


@app.get("/health")
def health_check() -> Dict[str, str]:
    """Liveness plus a database round trip."""
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        database = "ok"
    except Exception as exc:
        logger.warning("Health check database probe failed: %s", exc)
        database = "unavailable"
    finally:
        db.close()
    return {"status": "ok" if database == "ok" else "degraded", "database": database}


@app.get("/metrics", include_in_schema=False, response_class=Response, response_model=None)
def metrics() -> Response:
    return Response(
        content=prometheus_metrics.get_metrics(),
        media_type=prometheus_metrics.get_content_type(),
    )
