"""Hand submitted leads over to the notification worker.

The lead-creation flow calls ``dispatch_lead_submitted`` after the lead row is
committed. Tasks are sent by name so callers never import the task module.
"""

import logging
from typing import Optional

from lead_notifier.celery_app import app as celery_app
from lead_notifier.config import get_settings
from lead_notifier.models.delivery import LeadSubmitted

logger = logging.getLogger(__name__)

DELIVER_TASK_NAME = "lead_notifier.tasks.notification_delivery.deliver_lead_notification"


def dispatch_lead_submitted(event: LeadSubmitted) -> Optional[str]:
    """
    Enqueue delivery of the lead notification.

    Broker errors are logged and swallowed; lead submission never fails
    because of the notification pipeline.

    Args:
        event: The submitted lead

    Returns:
        Task ID, or None when the task could not be enqueued
    """
    settings = get_settings()
    try:
        task = celery_app.send_task(
            DELIVER_TASK_NAME,
            kwargs={"event": event.model_dump(mode="json")},
            queue=settings.notifications_queue,
        )
    except Exception as e:
        logger.error(
            f"Failed to enqueue lead notification for {event.email}: {e}",
            exc_info=True,
        )
        return None

    logger.info(f"Queued lead notification for {event.email} (task {task.id})")
    return task.id
