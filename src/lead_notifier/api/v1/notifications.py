"""Operator console endpoints for lead notifications."""

import logging
from datetime import date
from typing import Optional

import pydantic
from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from lead_notifier.auth.internal_service import InternalAuthDep
from lead_notifier.database.session import get_session
from lead_notifier.exceptions import ValidationError
from lead_notifier.models.console import (
    AnalyticsPeriod,
    AnalyticsResponse,
    HealthResponse,
    LogListQuery,
    ManualAttemptResponse,
    NotificationLogListResponse,
    NotificationLogResponse,
    NotificationStatusValue,
    SendTestNotificationRequest,
    StatusResponse,
)
from lead_notifier.services.console import NotificationConsoleService, get_console_service

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/notifications",
    tags=["notifications"],
    dependencies=[InternalAuthDep],
)


async def get_console(session: AsyncSession = Depends(get_session)) -> NotificationConsoleService:
    """Console service bound to the request's database session."""
    return get_console_service(session)


def _client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


@router.get(
    "/status",
    response_model=StatusResponse,
    summary="Notification subsystem status",
)
async def get_status(
    console: NotificationConsoleService = Depends(get_console),
) -> StatusResponse:
    """Service configuration, queue depth, last-24h summary and recent activity."""
    return await console.get_status()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Push provider health",
    responses={503: {"model": HealthResponse, "description": "Provider unreachable"}},
)
async def get_health(
    console: NotificationConsoleService = Depends(get_console),
) -> JSONResponse:
    """Test the provider connection. Returns 503 when it is not healthy."""
    health = await console.health()
    status_code = (
        status.HTTP_200_OK
        if health.overall_health == "healthy"
        else status.HTTP_503_SERVICE_UNAVAILABLE
    )
    return JSONResponse(status_code=status_code, content=health.model_dump(mode="json"))


@router.get(
    "/logs",
    response_model=NotificationLogListResponse,
    summary="List notification logs",
)
async def list_logs(
    page: int = Query(1, ge=1, description="Page number"),
    per_page: int = Query(20, ge=1, le=100, description="Records per page"),
    status_filter: Optional[NotificationStatusValue] = Query(
        None, alias="status", description="Filter by status"
    ),
    email: Optional[str] = Query(None, max_length=255, description="Email substring"),
    date_from: Optional[date] = Query(None, description="First day (inclusive)"),
    date_to: Optional[date] = Query(None, description="Last day (inclusive)"),
    search: Optional[str] = Query(None, max_length=255, description="Free-text search"),
    console: NotificationConsoleService = Depends(get_console),
) -> NotificationLogListResponse:
    """Paginated, filterable audit trail, newest attempt first."""
    try:
        query = LogListQuery(
            page=page,
            per_page=per_page,
            status=status_filter,
            email=email,
            date_from=date_from,
            date_to=date_to,
            search=search,
        )
    except pydantic.ValidationError as e:
        raise ValidationError(
            "Invalid log filters",
            errors={".".join(str(loc) for loc in err["loc"]) or "query": err["msg"] for err in e.errors()},
        ) from e
    return await console.list_logs(query)


@router.get(
    "/logs/{log_id}",
    response_model=NotificationLogResponse,
    summary="Get a notification log",
)
async def get_log(
    log_id: str,
    console: NotificationConsoleService = Depends(get_console),
) -> NotificationLogResponse:
    return await console.get_log(log_id)


@router.post(
    "/logs/{log_id}/retry",
    response_model=ManualAttemptResponse,
    summary="Retry a failed or skipped notification",
)
async def retry_notification(
    log_id: str,
    request: Request,
    console: NotificationConsoleService = Depends(get_console),
) -> ManualAttemptResponse:
    """
    Re-drive a notification as a new audit record.

    Only ``failed`` and ``skipped`` records can be retried (400 otherwise).
    A failed attempt responds with 502 and code ``RETRY_FAILED``.
    """
    return await console.retry_notification(
        log_id,
        user_agent=request.headers.get("user-agent"),
        ip_address=_client_ip(request),
    )


@router.post(
    "/test",
    response_model=ManualAttemptResponse,
    summary="Send a test notification",
)
async def send_test_notification(
    body: SendTestNotificationRequest,
    request: Request,
    console: NotificationConsoleService = Depends(get_console),
) -> ManualAttemptResponse:
    """Send an operator test notification. Failures respond with 502 and ``TEST_FAILED``."""
    return await console.send_test_notification(
        body,
        host=request.url.hostname or "localhost",
        user_agent=request.headers.get("user-agent"),
        ip_address=_client_ip(request),
    )


@router.get(
    "/analytics",
    response_model=AnalyticsResponse,
    summary="Notification analytics",
)
async def get_analytics(
    period: AnalyticsPeriod = Query("24h", description="24h, 7d, 30d or 90d"),
    console: NotificationConsoleService = Depends(get_console),
) -> AnalyticsResponse:
    return await console.analytics(period)
