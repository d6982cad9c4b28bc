"""Delivery attempt processing and retry decisions.

One call to ``DeliveryScheduler.process`` is one attempt of an automatic
delivery chain. It owns the chain's audit record and decides whether the
Celery task re-enqueues itself, but never sleeps or retries on its own.
"""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Sequence, Tuple

from celery.exceptions import SoftTimeLimitExceeded
from celery.utils.dispatch import Signal
from sqlalchemy.ext.asyncio import AsyncSession

from lead_notifier.config import Settings, get_settings
from lead_notifier.database.models import NotificationLog, NotificationStatus
from lead_notifier.database.repositories import NotificationLogRepository
from lead_notifier.models.delivery import (
    DeliveryFailure,
    DeliveryOutcome,
    DeliveryRequest,
    DeliverySuccess,
    LeadSubmitted,
)
from lead_notifier.services.classifier import is_retryable
from lead_notifier.services.eligibility import EligibilityDecision, check_eligibility
from lead_notifier.services.onesignal_client import OneSignalClient, get_onesignal_client

logger = logging.getLogger(__name__)

# Sent once per chain when the last attempt fails.
notification_permanently_failed = Signal(name="notification_permanently_failed")

FAULT_TIMEOUT = "timeout"
FAULT_EXCEPTION = "exception"


@dataclass(frozen=True)
class AttemptDecision:
    """What the task should do after an attempt."""

    status: str
    log_id: Optional[str]
    attempt_number: int
    retry_delay: Optional[int] = None
    error_code: Optional[str] = None

    @property
    def should_retry(self) -> bool:
        return self.retry_delay is not None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def backoff_for(attempt_number: int, schedule: Sequence[int]) -> int:
    """Delay before the attempt following ``attempt_number`` (1-based, clamped)."""
    if not schedule:
        return 0
    index = min(max(attempt_number, 1), len(schedule)) - 1
    return int(schedule[index])


async def attempt_delivery(
    client: OneSignalClient,
    request: DeliveryRequest,
    timeout_seconds: float,
) -> Tuple[DeliveryOutcome, float, bool]:
    """
    Run one provider send under the per-attempt ceiling.

    Returns:
        (outcome, processing time in ms, whether the attempt faulted)
    """
    start = time.perf_counter()
    try:
        outcome = await asyncio.wait_for(client.send(request), timeout=timeout_seconds)
        faulted = False
    except (asyncio.TimeoutError, SoftTimeLimitExceeded):
        logger.error(f"Delivery attempt for {request.email} exceeded {timeout_seconds}s")
        outcome = DeliveryFailure(
            message=f"Delivery attempt exceeded {timeout_seconds} seconds",
            error_code=FAULT_TIMEOUT,
            error_details={"timeout_seconds": timeout_seconds},
        )
        faulted = True
    except Exception as e:
        logger.error(f"Delivery attempt for {request.email} raised: {e}", exc_info=True)
        outcome = DeliveryFailure(
            message=str(e) or type(e).__name__,
            error_code=FAULT_EXCEPTION,
            error_details={"exception": str(e), "exception_class": type(e).__name__},
        )
        faulted = True
    processing_time = round((time.perf_counter() - start) * 1000, 2)
    return outcome, processing_time, faulted


class DeliveryScheduler:
    """Drives the automatic delivery chain for lead notifications."""

    def __init__(
        self,
        session: AsyncSession,
        client: OneSignalClient,
        settings: Optional[Settings] = None,
    ):
        self.session = session
        self.client = client
        self.settings = settings or get_settings()
        self.repo = NotificationLogRepository(session)

    @property
    def max_attempts(self) -> int:
        return max(self.settings.max_attempts, 1)

    async def process(
        self,
        event: LeadSubmitted,
        attempt_number: int = 1,
        log_id: Optional[str] = None,
    ) -> AttemptDecision:
        """
        Run one attempt for ``event``.

        Args:
            event: The submitted lead
            attempt_number: 1-based attempt number within the chain
            log_id: Audit record of the chain, None on the first attempt

        Returns:
            AttemptDecision
        """
        request = DeliveryRequest.for_lead(event)

        record = await self.open_record(event, attempt_number, log_id)
        if not record.is_pending:
            logger.info(
                f"Notification log {record.id} is already {record.status}; "
                f"skipping redelivered attempt {attempt_number}"
            )
            return AttemptDecision(
                status=record.status,
                log_id=record.id,
                attempt_number=record.attempt_number,
                error_code=record.error_code,
            )
        attempt_number = max(attempt_number, record.attempt_number)

        eligibility = check_eligibility(event.email, self.settings.onesignal)
        if not eligibility.eligible:
            return await self._skip(record, eligibility, attempt_number)

        logger.info(
            f"Delivering lead notification for {event.email} "
            f"(attempt {attempt_number}/{self.max_attempts}, log {record.id})"
        )
        outcome, processing_time, faulted = await attempt_delivery(
            self.client, request, self.settings.attempt_timeout_seconds
        )

        if isinstance(outcome, DeliverySuccess):
            return await self._succeed(record, outcome, processing_time, attempt_number)
        return await self._fail(record, outcome, processing_time, attempt_number, faulted)

    async def open_record(
        self,
        event: LeadSubmitted,
        attempt_number: int = 1,
        log_id: Optional[str] = None,
    ) -> NotificationLog:
        """Load the chain's audit record, creating and committing it when missing."""
        record = await self._load_record(log_id) if log_id else None
        if record is not None:
            return record

        request = DeliveryRequest.for_lead(event)
        record = await self.repo.create_attempt(
            lead_id=event.lead_id,
            lead_email=event.email,
            title=request.title,
            message=request.message,
            additional_data=request.data,
            metadata=event.event_metadata(),
            attempt_number=attempt_number,
            user_agent=event.user_agent,
            ip_address=event.ip_address,
        )
        await self.session.commit()
        return record

    async def _load_record(self, log_id: str) -> Optional[NotificationLog]:
        record = await self.repo.get_by_id(log_id)
        if record is None:
            logger.warning(f"Notification log {log_id} not found; starting a new record")
        return record

    async def _skip(
        self,
        record: NotificationLog,
        eligibility: EligibilityDecision,
        attempt_number: int,
    ) -> AttemptDecision:
        extra = eligibility.skip_metadata()
        if eligibility.skip_reason != "test_email_pattern":
            extra["service_config"] = self.client.get_configuration()
        await self.repo.mark_skipped(record, eligibility.reason, extra_metadata=extra)
        logger.info(
            f"Skipped lead notification for {record.lead_email}: {eligibility.reason}"
        )
        return AttemptDecision(
            status=NotificationStatus.SKIPPED,
            log_id=record.id,
            attempt_number=attempt_number,
        )

    async def _succeed(
        self,
        record: NotificationLog,
        outcome: DeliverySuccess,
        processing_time: float,
        attempt_number: int,
    ) -> AttemptDecision:
        await self.repo.mark_sent(
            record,
            notification_id=outcome.notification_id or "unknown",
            recipients=outcome.recipients.model_dump() if outcome.recipients else None,
            response_time=outcome.response_time_ms,
            processing_time=processing_time,
            raw_response=outcome.raw_response,
        )
        logger.info(
            f"Lead notification sent for {record.lead_email} "
            f"(id={record.notification_id}, attempt {attempt_number})"
        )
        return AttemptDecision(
            status=NotificationStatus.SENT,
            log_id=record.id,
            attempt_number=attempt_number,
        )

    async def _fail(
        self,
        record: NotificationLog,
        outcome: DeliveryFailure,
        processing_time: float,
        attempt_number: int,
        faulted: bool,
    ) -> AttemptDecision:
        retryable = faulted or is_retryable(outcome)
        exhausted = attempt_number >= self.max_attempts

        if retryable and not exhausted:
            delay = backoff_for(attempt_number, self.settings.retry_backoff_seconds)
            await self.repo.advance_attempt(
                record,
                attempt_number + 1,
                failure={
                    "error_code": outcome.error_code,
                    "error_message": outcome.message,
                    "response_time_ms": outcome.response_time_ms,
                    "processing_time_ms": processing_time,
                    "retry_delay": delay,
                },
            )
            logger.warning(
                f"Lead notification attempt {attempt_number} for {record.lead_email} "
                f"failed ({outcome.error_code}: {outcome.message}); retrying in {delay}s"
            )
            return AttemptDecision(
                status=NotificationStatus.PENDING,
                log_id=record.id,
                attempt_number=attempt_number,
                retry_delay=delay,
                error_code=outcome.error_code,
            )

        await self.repo.mark_failed(
            record,
            error_code=outcome.error_code,
            error_message=outcome.message,
            error_details=outcome.error_details,
            response_time=outcome.response_time_ms,
            processing_time=processing_time,
            raw_response=outcome.raw_response,
            extra_metadata={"final_attempt": attempt_number, "retryable": retryable},
        )

        if retryable:
            logger.critical(
                f"Lead notification permanently failed for {record.lead_email} after "
                f"{attempt_number} attempts (log {record.id}, {outcome.error_code}: "
                f"{outcome.message})"
            )
            notification_permanently_failed.send(
                sender=self.__class__,
                log_id=record.id,
                lead_email=record.lead_email,
                error_code=outcome.error_code,
                error_message=outcome.message,
                attempts=attempt_number,
            )
        else:
            logger.error(
                f"Lead notification failed for {record.lead_email} with non-retryable "
                f"error {outcome.error_code}: {outcome.message} (log {record.id})"
            )

        return AttemptDecision(
            status=NotificationStatus.FAILED,
            log_id=record.id,
            attempt_number=attempt_number,
            error_code=outcome.error_code,
        )


async def fail_faulted_chain(
    session: AsyncSession,
    log_id: Optional[str],
    error_code: str,
    error_message: str,
    attempts: int,
    lead_email: Optional[str] = None,
) -> bool:
    """
    Terminally fail a chain whose last attempt died outside the provider call.

    The permanent failure is reported even when the chain never got an audit
    record; a record that already reached a terminal status is left alone.

    Returns:
        True if a pending record was moved to ``failed``
    """
    repo = NotificationLogRepository(session)
    record = await repo.get_by_id(log_id) if log_id else None
    if record is not None and not record.is_pending:
        return False

    if record is not None:
        await repo.mark_failed(
            record,
            error_code=error_code,
            error_message=error_message,
            extra_metadata={"final_attempt": attempts, "retryable": True},
        )
        log_id = record.id
        lead_email = record.lead_email
    else:
        log_id = None

    logger.critical(
        f"Lead notification permanently failed for {lead_email} after "
        f"{attempts} attempts (log {log_id}, {error_code}: {error_message})"
    )
    notification_permanently_failed.send(
        sender=DeliveryScheduler,
        log_id=log_id,
        lead_email=lead_email,
        error_code=error_code,
        error_message=error_message,
        attempts=attempts,
    )
    return record is not None


async def open_delivery_record(
    event_payload: Dict[str, Any],
    attempt_number: int,
    log_id: Optional[str],
    session: AsyncSession,
    settings: Optional[Settings] = None,
) -> str:
    """Make sure a queued event has an audit record and return its id."""
    settings = settings or get_settings()
    event = LeadSubmitted.model_validate(event_payload)
    scheduler = DeliveryScheduler(session, get_onesignal_client(settings.onesignal), settings)
    record = await scheduler.open_record(event, attempt_number=attempt_number, log_id=log_id)
    return record.id


async def process_delivery_attempt(
    event_payload: Dict[str, Any],
    attempt_number: int,
    log_id: Optional[str],
    session: AsyncSession,
    client: Optional[OneSignalClient] = None,
    settings: Optional[Settings] = None,
) -> AttemptDecision:
    """Validate a queued event payload and run one attempt for it."""
    settings = settings or get_settings()
    client = client or get_onesignal_client(settings.onesignal)
    event = LeadSubmitted.model_validate(event_payload)
    scheduler = DeliveryScheduler(session, client, settings)
    return await scheduler.process(event, attempt_number=attempt_number, log_id=log_id)
