"""Lead notification delivery Celery tasks."""

import logging
from typing import Any, Dict, Optional

from celery import shared_task
from celery.exceptions import SoftTimeLimitExceeded

from lead_notifier.config import get_settings
from lead_notifier.database.session import get_worker_session
from lead_notifier.services.scheduler import (
    FAULT_EXCEPTION,
    FAULT_TIMEOUT,
    backoff_for,
    fail_faulted_chain,
    open_delivery_record,
    process_delivery_attempt,
)
from lead_notifier.utils.async_helpers import run_async

logger = logging.getLogger(__name__)

_settings = get_settings()


@shared_task(
    bind=True,
    name="lead_notifier.tasks.notification_delivery.deliver_lead_notification",
    max_retries=max(_settings.max_attempts - 1, 0),
    acks_late=True,
)
def deliver_lead_notification(
    self,
    event: Dict[str, Any],
    log_id: Optional[str] = None,
) -> dict:
    """
    Deliver the push notification for a submitted lead.

    Each run is one attempt. The chain's audit record is committed before the
    provider is called, and retries, including retries after a fault, re-enqueue
    this task with its ``log_id`` so every attempt updates the same record.

    Args:
        event: ``LeadSubmitted`` payload (JSON mode)
        log_id: Audit record of the chain, None on the first attempt

    Returns:
        dict with the attempt decision
    """
    attempt_number = self.request.retries + 1
    settings = get_settings()

    async def _open():
        async with get_worker_session() as session:
            return await open_delivery_record(
                event,
                attempt_number=attempt_number,
                log_id=log_id,
                session=session,
                settings=settings,
            )

    async def _process(chain_log_id: str):
        async with get_worker_session() as session:
            return await process_delivery_attempt(
                event,
                attempt_number=attempt_number,
                log_id=chain_log_id,
                session=session,
                settings=settings,
            )

    chain_log_id = log_id
    try:
        chain_log_id = run_async(_open())
        decision = run_async(_process(chain_log_id))
    except SoftTimeLimitExceeded as e:
        _handle_fault(self, event, chain_log_id, attempt_number, FAULT_TIMEOUT, e)
        raise
    except Exception as e:
        _handle_fault(self, event, chain_log_id, attempt_number, FAULT_EXCEPTION, e)
        raise

    if decision.should_retry:
        raise self.retry(
            countdown=decision.retry_delay,
            kwargs={"event": event, "log_id": decision.log_id},
        )

    return decision.to_dict()


def _handle_fault(
    task,
    event: Dict[str, Any],
    log_id: Optional[str],
    attempt_number: int,
    error_code: str,
    exc: BaseException,
) -> None:
    """Re-enqueue after a fault, or fail the chain when no attempts remain."""
    settings = get_settings()
    email = event.get("email")

    if task.request.retries < task.max_retries:
        countdown = backoff_for(attempt_number, settings.retry_backoff_seconds)
        logger.error(
            f"Lead notification attempt {attempt_number} for {email} faulted "
            f"({error_code}: {exc}); retrying in {countdown}s",
            exc_info=True,
        )
        raise task.retry(
            exc=exc,
            countdown=countdown,
            kwargs={"event": event, "log_id": log_id},
        )

    logger.error(
        f"Lead notification attempt {attempt_number} for {email} faulted "
        f"({error_code}: {exc}); no attempts remain",
        exc_info=True,
    )

    async def _finalize():
        async with get_worker_session() as session:
            return await fail_faulted_chain(
                session,
                log_id,
                error_code=error_code,
                error_message=str(exc) or type(exc).__name__,
                attempts=attempt_number,
                lead_email=email,
            )

    run_async(_finalize())
