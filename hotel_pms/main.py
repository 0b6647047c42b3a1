"""Application factory: logging and the engine error to HTTP mapping."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from hotel_pms import __version__
from hotel_pms.core.config import settings
from hotel_pms.core.exceptions import (
    GenerationExhausted,
    IllegalTransition,
    InvalidHierarchy,
    InvalidInput,
    NotFound,
    PermissionDenied,
    ReservationEngineError,
    RoomNotAvailable,
    StoreUnavailable,
)
from hotel_pms.core.logging import configure_logging
from hotel_pms.db.session import SessionLocal

logger = logging.getLogger(__name__)

STATUS_BY_ERROR = {
    InvalidInput: 400,
    PermissionDenied: 403,
    NotFound: 404,
    RoomNotAvailable: 409,
    IllegalTransition: 409,
    InvalidHierarchy: 500,
    GenerationExhausted: 503,
    StoreUnavailable: 503,
}


def status_for(exc: ReservationEngineError) -> int:
    for error_type in type(exc).__mro__:
        if error_type in STATUS_BY_ERROR:
            return STATUS_BY_ERROR[error_type]
    return 500


async def engine_error_handler(request: Request, exc: ReservationEngineError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(status_code=status_code, content=exc.to_dict(), headers=headers)


def create_app() -> FastAPI:
    configure_logging()
    logger.info("Reservation engine %s using %s", __version__, settings.redacted_database_url)
    app = FastAPI(
        title="Hotel PMS Reservation Engine",
        version=__version__,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    app.add_exception_handler(ReservationEngineError, engine_error_handler)

    @app.get("/health")
    def health_check():
        """Basic liveness check endpoint."""
        return {"status": "healthy", "version": __version__}

    @app.get("/health/ready")
    def readiness_check():
        """Readiness probe with database connectivity check."""
        db = None
        try:
            db = SessionLocal()
            db.execute(text("SELECT 1"))
            database = "healthy"
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            database = "unhealthy"
        finally:
            if db:
                db.close()
        status_code = 200 if database == "healthy" else 503
        return JSONResponse(
            status_code=status_code,
            content={"status": "ready" if status_code == 200 else "not_ready", "checks": {"database": database}},
        )

    return app
