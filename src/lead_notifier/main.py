"""Operator console HTTP app.

Serves the v1 notification routes plus /health and /ready, and renders every
error in the envelope from ``lead_notifier.exceptions.error_body``.

For the Celery worker, use: celery -A lead_notifier.celery_app worker -Q notifications
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from lead_notifier.api.v1.router import router as v1_router
from lead_notifier.config import get_settings
from lead_notifier.database import check_connection, close_db
from lead_notifier.exceptions import APIException, error_body
from lead_notifier.utils.logging import get_logger, log_error, setup_logging

# Set up logging first
setup_logging()
logger = get_logger("main")

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Log startup and dispose of the database engine on shutdown."""
    logger.info("Starting lead notifier console...")
    if not settings.onesignal.enabled:
        logger.warning("OneSignal delivery is disabled - notifications will be skipped")
    elif not settings.onesignal.is_configured:
        logger.warning("OneSignal is enabled but not configured - notifications will be skipped")
    try:
        yield
    finally:
        logger.info("Shutting down lead notifier console...")
        await close_db()


app = FastAPI(
    title="Lead Notifier",
    description="Operator console for lead submission push notifications.",
    version="0.1.0",
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
    lifespan=lifespan,
)

app.include_router(v1_router)


def _request_context(request: Request, **extra) -> dict:
    return {"method": request.method, "path": request.url.path, **extra}


@app.exception_handler(APIException)
async def console_error_handler(request: Request, exc: APIException) -> JSONResponse:
    log_error(exc, context=_request_context(request, status_code=exc.status_code, code=exc.code))
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Wrap routing and auth errors (404, 401, 405) in the console envelope."""
    if exc.status_code == status.HTTP_404_NOT_FOUND:
        logger.warning(f"No route for {request.method} {request.url.path}")
    else:
        log_error(exc, context=_request_context(request, status_code=exc.status_code))
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(str(exc.detail), "HTTP_ERROR", exc.status_code),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    field_errors = [
        {
            "field": ".".join(str(part) for part in error.get("loc", [])),
            "message": error.get("msg"),
            "type": error.get("type"),
        }
        for error in exc.errors()
    ]
    logger.warning(
        f"Rejected {request.method} {request.url.path}: {len(field_errors)} invalid field(s)"
    )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=error_body(
            "Validation failed",
            "VALIDATION_ERROR",
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            {"validation_errors": field_errors},
        ),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort 500; exception text is only echoed outside production."""
    log_error(exc, context=_request_context(request, unhandled=True))
    if settings.is_production:
        message, details = "An internal server error occurred", {}
    else:
        message, details = str(exc), {"exception_type": type(exc).__name__}
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body(
            message, "INTERNAL_SERVER_ERROR", status.HTTP_500_INTERNAL_SERVER_ERROR, details
        ),
    )


@app.get("/health")
async def health_check():
    """Liveness check."""
    return {
        "status": "healthy",
        "service": settings.service_name,
        "environment": settings.environment,
    }


@app.get("/ready")
async def readiness_check():
    """Readiness check with database connectivity."""
    db_connected = await check_connection()
    if not db_connected:
        logger.warning("Readiness check failed: database not connected")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "not_ready",
                "service": settings.service_name,
                "database": "disconnected",
            },
        )
    return {
        "status": "ready",
        "service": settings.service_name,
        "database": "connected",
    }
