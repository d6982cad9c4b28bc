"""Operator console: inspect, re-drive and test lead notifications."""

import asyncio
import logging
import math
import time
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from lead_notifier.config import Settings, get_settings
from lead_notifier.database.models import NotificationLog, NotificationStatus, utc_now
from lead_notifier.database.repositories import NotificationLogRepository
from lead_notifier.exceptions import DeliveryFailedError, InvalidStatusError, NotFoundError
from lead_notifier.models.console import (
    AnalyticsPerformance,
    AnalyticsResponse,
    AnalyticsSummary,
    ConnectionTestResult,
    ErrorCodeCount,
    HealthResponse,
    HourlyBucket,
    LogListQuery,
    ManualAttemptResponse,
    NotificationLogListResponse,
    NotificationLogResponse,
    PaginationInfo,
    QueueStatus,
    SendTestNotificationRequest,
    ServiceStatus,
    StatusResponse,
)
from lead_notifier.models.delivery import DeliveryRequest, DeliverySuccess
from lead_notifier.services.eligibility import check_eligibility
from lead_notifier.services.onesignal_client import OneSignalClient, get_onesignal_client
from lead_notifier.services.scheduler import attempt_delivery

logger = logging.getLogger(__name__)

ANALYTICS_PERIODS: Dict[str, timedelta] = {
    "24h": timedelta(days=1),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
}

HOURLY_BREAKDOWN_MAX_RANGE = timedelta(hours=24)


def success_rate(sent: int, total: int) -> float:
    """Percentage of sent records, 0 when there are none."""
    if total <= 0:
        return 0.0
    return round(sent / total * 100, 2)


class NotificationConsoleService:
    """Service behind the operator console API and CLI."""

    def __init__(
        self,
        session: AsyncSession,
        client: Optional[OneSignalClient] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.client = client or get_onesignal_client(self.settings.onesignal)
        self.repo = NotificationLogRepository(session)

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def service_status(self) -> ServiceStatus:
        config = self.client.get_configuration()
        return ServiceStatus(
            enabled=self.client.is_enabled(),
            configured=self.client.is_configured(),
            app_id=config.get("app_id"),
            has_api_key=config.get("has_api_key", False),
            timeout=config.get("timeout"),
        )

    def queue_status(self) -> QueueStatus:
        """Depth of the notifications queue as reported by the broker."""
        from lead_notifier.celery_app import app as celery_app

        queue = self.settings.notifications_queue
        try:
            with celery_app.connection_for_read() as connection:
                connection.ensure_connection(max_retries=1)
                declared = connection.default_channel.queue_declare(queue=queue, passive=True)
                return QueueStatus(queue=queue, pending=declared.message_count)
        except Exception as e:
            logger.warning(f"Could not read depth of queue '{queue}': {e}")
            return QueueStatus(queue=queue, pending=None)

    async def get_status(self) -> StatusResponse:
        """Service configuration, queue depth, 24h summary and recent activity."""
        end = utc_now()
        summary = await self._summary(end - ANALYTICS_PERIODS["24h"], end)
        recent = await self.repo.recent(limit=5)
        return StatusResponse(
            service_status=self.service_status(),
            queue_status=await asyncio.to_thread(self.queue_status),
            statistics=summary,
            recent_activity=[NotificationLogResponse.model_validate(log) for log in recent],
            timestamp=end,
        )

    async def health(self) -> HealthResponse:
        """Check provider configuration and reachability."""
        start = time.perf_counter()
        outcome = await self.client.test_connection()
        healthy = isinstance(outcome, DeliverySuccess)
        connection_test = ConnectionTestResult(
            success=healthy,
            message="Connection successful" if healthy else outcome.message,
            error_code=None if healthy else outcome.error_code,
            response_time_ms=outcome.response_time_ms,
        )
        if not healthy:
            logger.warning(f"OneSignal health check failed: {outcome.message}")
        return HealthResponse(
            service=self.service_status(),
            connection_test=connection_test,
            overall_health="healthy" if healthy else "unhealthy",
            total_check_time_ms=round((time.perf_counter() - start) * 1000, 2),
            timestamp=utc_now(),
        )

    async def list_logs(self, query: LogListQuery) -> NotificationLogListResponse:
        logs, total = await self.repo.list_logs(
            page=query.page,
            per_page=query.per_page,
            status=query.status,
            email=query.email,
            date_from=query.date_from,
            date_to=query.date_to,
            search=query.search,
        )
        last_page = max(math.ceil(total / query.per_page), 1)
        return NotificationLogListResponse(
            logs=[NotificationLogResponse.model_validate(log) for log in logs],
            pagination=PaginationInfo(
                current_page=query.page,
                per_page=query.per_page,
                total=total,
                last_page=last_page,
                has_more=query.page < last_page,
            ),
        )

    async def get_log(self, log_id: str) -> NotificationLogResponse:
        return NotificationLogResponse.model_validate(await self._get_or_404(log_id))

    async def analytics(
        self, period: str = "24h", now: Optional[datetime] = None
    ) -> AnalyticsResponse:
        """
        Delivery analytics over one of the supported periods.

        The hourly breakdown is only produced for ranges of at most 24 hours.
        """
        if period not in ANALYTICS_PERIODS:
            raise ValueError(f"Unsupported analytics period: {period}")
        end = now or utc_now()
        start = end - ANALYTICS_PERIODS[period]

        summary = await self._summary(start, end)
        avg_response, avg_processing = await self.repo.average_latencies(start, end)
        top_errors = await self.repo.top_error_codes(start, end, limit=5)
        hourly = []
        if end - start <= HOURLY_BREAKDOWN_MAX_RANGE:
            hourly = [HourlyBucket(**bucket) for bucket in await self.repo.hourly_breakdown(start, end)]

        return AnalyticsResponse(
            period=period,
            start_date=start,
            end_date=end,
            summary=summary,
            performance=AnalyticsPerformance(
                avg_response_time_ms=avg_response,
                avg_processing_time_ms=avg_processing,
            ),
            top_error_codes=[ErrorCodeCount(**row) for row in top_errors],
            hourly_breakdown=hourly,
        )

    # ------------------------------------------------------------------
    # Manual attempts
    # ------------------------------------------------------------------

    async def retry_notification(
        self,
        log_id: str,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> ManualAttemptResponse:
        """
        Re-drive a failed or skipped notification as a new audit record.

        Raises:
            NotFoundError: Unknown log ID
            InvalidStatusError: The record is pending or sent
            DeliveryFailedError: The new attempt failed or was skipped
        """
        original = await self._get_or_404(log_id)
        if original.status not in NotificationStatus.RETRYABLE_BY_OPERATOR:
            raise InvalidStatusError(
                details={"log_id": original.id, "status": original.status}
            )

        record = await self.repo.create_retry_attempt(
            original, user_agent=user_agent, ip_address=ip_address
        )
        request = DeliveryRequest(
            title=record.title,
            message=record.message,
            data=record.additional_data or {},
            lead_id=record.lead_id,
            email=record.lead_email,
            user_agent=record.user_agent,
            ip_address=record.ip_address,
        )
        logger.info(
            f"Admin retry of notification log {original.id} as {record.id} "
            f"for {record.lead_email}"
        )
        return await self._run_manual_attempt(
            record,
            request,
            failure_code="RETRY_FAILED",
            fallback_id_prefix="retry",
            label="Notification retry",
            original_log_id=original.id,
        )

    async def send_test_notification(
        self,
        request: SendTestNotificationRequest,
        host: str,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> ManualAttemptResponse:
        """
        Send an operator test notification, recorded as ``admin_test``.

        Raises:
            DeliveryFailedError: The attempt failed or was skipped
        """
        email = f"admin-test@{host}"
        data = {"type": "admin_test", **request.additional_data}
        record = await self.repo.create_attempt(
            lead_id=None,
            lead_email=email,
            title=request.title,
            message=request.message,
            additional_data=request.additional_data,
            metadata={
                "test_type": "admin_manual",
                "sent_by": "admin",
                "test_timestamp": utc_now().isoformat(),
            },
            notification_type="admin_test",
            user_agent=f"Admin-Test/{user_agent}" if user_agent else "Admin-Test",
            ip_address=ip_address,
        )
        delivery_request = DeliveryRequest(
            title=request.title,
            message=request.message,
            data=data,
            email=email,
            user_agent=record.user_agent,
            ip_address=ip_address,
        )
        return await self._run_manual_attempt(
            record,
            delivery_request,
            failure_code="TEST_FAILED",
            fallback_id_prefix="test",
            label="Test notification",
        )

    async def _run_manual_attempt(
        self,
        record: NotificationLog,
        request: DeliveryRequest,
        failure_code: str,
        fallback_id_prefix: str,
        label: str,
        original_log_id: Optional[str] = None,
    ) -> ManualAttemptResponse:
        # Operators may target test addresses; only the service state rules apply.
        eligibility = check_eligibility(
            record.lead_email, self.settings.onesignal, check_test_patterns=False
        )
        if not eligibility.eligible:
            extra = {**eligibility.skip_metadata(), "service_config": self.client.get_configuration()}
            await self.repo.mark_skipped(record, eligibility.reason, extra_metadata=extra)
            await self.session.commit()
            logger.warning(f"{label} {record.id} skipped: {eligibility.reason}")
            raise DeliveryFailedError(
                f"{label} skipped: {eligibility.reason}",
                code=failure_code,
                details=self._error_details(record, original_log_id, skip_reason=eligibility.skip_reason),
            )

        outcome, processing_time, _ = await attempt_delivery(
            self.client, request, self.settings.attempt_timeout_seconds
        )

        if isinstance(outcome, DeliverySuccess):
            notification_id = outcome.notification_id or f"{fallback_id_prefix}-{record.id}"
            recipients = outcome.recipients.model_dump() if outcome.recipients else None
            await self.repo.mark_sent(
                record,
                notification_id=notification_id,
                recipients=recipients,
                response_time=outcome.response_time_ms,
                processing_time=processing_time,
                raw_response=outcome.raw_response,
            )
            logger.info(f"{label} {record.id} sent (id={notification_id})")
            return ManualAttemptResponse(
                message=f"{label} sent successfully",
                log_id=record.id,
                original_log_id=original_log_id,
                notification_id=notification_id,
                recipients=recipients,
                response_time_ms=outcome.response_time_ms,
                processing_time_ms=processing_time,
            )

        await self.repo.mark_failed(
            record,
            error_code=outcome.error_code,
            error_message=outcome.message,
            error_details=outcome.error_details,
            response_time=outcome.response_time_ms,
            processing_time=processing_time,
            raw_response=outcome.raw_response,
        )
        # The failed record must survive the error response.
        await self.session.commit()
        logger.warning(f"{label} {record.id} failed: {outcome.error_code} {outcome.message}")
        raise DeliveryFailedError(
            f"{label} failed: {outcome.message}",
            code=failure_code,
            details=self._error_details(
                record,
                original_log_id,
                error_code=outcome.error_code,
                error_details=outcome.error_details,
            ),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _get_or_404(self, log_id: str) -> NotificationLog:
        record = await self.repo.get_by_id(log_id)
        if record is None:
            raise NotFoundError("Notification log", log_id)
        return record

    async def _summary(self, start: datetime, end: datetime) -> AnalyticsSummary:
        counts = await self.repo.status_counts(start, end)
        total = sum(counts.values())
        sent = counts[NotificationStatus.SENT]
        return AnalyticsSummary(
            total_notifications=total,
            pending=counts[NotificationStatus.PENDING],
            sent=sent,
            failed=counts[NotificationStatus.FAILED],
            skipped=counts[NotificationStatus.SKIPPED],
            success_rate_percentage=success_rate(sent, total),
            total_recipients=await self.repo.total_recipients(start, end),
        )

    @staticmethod
    def _error_details(
        record: NotificationLog, original_log_id: Optional[str], **extra: Any
    ) -> Dict[str, Any]:
        details: Dict[str, Any] = {"log_id": record.id}
        if original_log_id:
            details["original_log_id"] = original_log_id
        details.update({key: value for key, value in extra.items() if value is not None})
        return details


def get_console_service(session: AsyncSession) -> NotificationConsoleService:
    """Factory for NotificationConsoleService."""
    return NotificationConsoleService(session=session)
