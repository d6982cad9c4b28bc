"""Pydantic models for the operator console endpoints."""

from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator


NotificationStatusValue = Literal["pending", "sent", "failed", "skipped"]
AnalyticsPeriod = Literal["24h", "7d", "30d", "90d"]


class NotificationLogResponse(BaseModel):
    """Response model for a notification log record."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Log ID")
    lead_id: Optional[str] = Field(None, description="Lead ID (null for test sends)")
    lead_email: str = Field(..., description="Lead email")
    notification_type: str = Field(..., description="lead_submission or admin_test")
    title: str = Field(..., description="Notification title")
    message: str = Field(..., description="Notification message")
    additional_data: Optional[Dict[str, Any]] = Field(None, description="Payload data")
    status: NotificationStatusValue = Field(..., description="Delivery status")
    attempt_number: int = Field(..., description="Attempt number (1-based)")
    attempted_at: datetime = Field(..., description="Attempt timestamp")
    completed_at: Optional[datetime] = Field(None, description="Set once terminal")
    notification_id: Optional[str] = Field(None, description="Provider notification ID")
    recipients: Optional[Dict[str, Any]] = Field(None, description="Recipient breakdown")
    error_code: Optional[str] = Field(None, description="Error code")
    error_message: Optional[str] = Field(None, description="Error or skip reason")
    error_details: Optional[Dict[str, Any]] = Field(None, description="Error details")
    response_time_ms: Optional[float] = Field(None, description="Provider response time")
    processing_time_ms: Optional[float] = Field(None, description="Total processing time")
    user_agent: Optional[str] = Field(None, description="Requesting user agent")
    ip_address: Optional[str] = Field(None, description="Requesting IP")
    metadata: Optional[Dict[str, Any]] = Field(
        None,
        validation_alias=AliasChoices("metadata_json", "metadata"),
        description="Context and retry provenance",
    )
    created_at: datetime = Field(..., description="Created at timestamp")


class LogListQuery(BaseModel):
    """Filters for the log listing."""

    page: int = Field(default=1, ge=1, description="Page number")
    per_page: int = Field(default=20, ge=1, le=100, description="Records per page")
    status: Optional[NotificationStatusValue] = Field(None, description="Status filter")
    email: Optional[str] = Field(None, max_length=255, description="Email substring")
    date_from: Optional[date] = Field(None, description="First day (inclusive)")
    date_to: Optional[date] = Field(None, description="Last day (inclusive)")
    search: Optional[str] = Field(None, max_length=255, description="Free-text search")

    @model_validator(mode="after")
    def check_date_range(self) -> "LogListQuery":
        if self.date_from and self.date_to and self.date_to < self.date_from:
            raise ValueError("date_to must be on or after date_from")
        return self


class PaginationInfo(BaseModel):
    current_page: int
    per_page: int
    total: int
    last_page: int
    has_more: bool


class NotificationLogListResponse(BaseModel):
    """Paginated log listing."""

    logs: List[NotificationLogResponse]
    pagination: PaginationInfo


class SendTestNotificationRequest(BaseModel):
    """Request model for a manual test send."""

    title: str = Field(..., min_length=1, max_length=255, description="Notification title")
    message: str = Field(..., min_length=1, max_length=1000, description="Notification message")
    additional_data: Dict[str, Any] = Field(default_factory=dict, description="Extra payload data")


class ManualAttemptResponse(BaseModel):
    """Result of a successful manual retry or test send."""

    success: bool = True
    message: str
    log_id: str = Field(..., description="Audit record created for this attempt")
    original_log_id: Optional[str] = Field(None, description="Record that was retried")
    notification_id: Optional[str] = None
    recipients: Optional[Dict[str, Any]] = None
    response_time_ms: Optional[float] = None
    processing_time_ms: Optional[float] = None


class ServiceStatus(BaseModel):
    """Provider configuration (credentials masked)."""

    enabled: bool
    configured: bool
    app_id: Optional[str] = None
    has_api_key: bool = False
    timeout: Optional[float] = None


class ConnectionTestResult(BaseModel):
    success: bool
    message: str
    error_code: Optional[str] = None
    response_time_ms: Optional[float] = None


class HealthResponse(BaseModel):
    """Provider health check."""

    service: ServiceStatus
    connection_test: ConnectionTestResult
    overall_health: Literal["healthy", "unhealthy"]
    total_check_time_ms: float
    timestamp: datetime


class QueueStatus(BaseModel):
    queue: str
    pending: Optional[int] = Field(None, description="Messages waiting; null if the broker is unreachable")


class AnalyticsSummary(BaseModel):
    total_notifications: int = 0
    pending: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    success_rate_percentage: float = 0.0
    total_recipients: int = 0


class AnalyticsPerformance(BaseModel):
    avg_response_time_ms: Optional[float] = None
    avg_processing_time_ms: Optional[float] = None


class ErrorCodeCount(BaseModel):
    error_code: Optional[str]
    count: int


class HourlyBucket(BaseModel):
    hour: str
    total: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0


class AnalyticsResponse(BaseModel):
    """Delivery analytics for a period."""

    period: AnalyticsPeriod
    start_date: datetime
    end_date: datetime
    summary: AnalyticsSummary
    performance: AnalyticsPerformance
    top_error_codes: List[ErrorCodeCount] = Field(default_factory=list)
    hourly_breakdown: List[HourlyBucket] = Field(default_factory=list)


class StatusResponse(BaseModel):
    """Overview of the notification subsystem."""

    service_status: ServiceStatus
    queue_status: QueueStatus
    statistics: AnalyticsSummary
    recent_activity: List[NotificationLogResponse]
    timestamp: datetime
