"""Tests for handing submitted leads to the worker."""

import logging
from unittest.mock import MagicMock, patch

from kombu.exceptions import OperationalError

from lead_notifier.dispatch import DELIVER_TASK_NAME, dispatch_lead_submitted


@patch("lead_notifier.dispatch.celery_app.send_task")
def test_dispatch_sends_task_by_name(mock_send_task, lead_event):
    mock_send_task.return_value = MagicMock(id="task-123")

    task_id = dispatch_lead_submitted(lead_event)

    assert task_id == "task-123"
    args, kwargs = mock_send_task.call_args
    assert args == (DELIVER_TASK_NAME,)
    assert kwargs["queue"] == "notifications"
    event = kwargs["kwargs"]["event"]
    assert event["email"] == "jane.doe@acme-corp.com"
    assert event["lead_id"] == lead_event.lead_id
    assert isinstance(event["submitted_at"], str)


@patch("lead_notifier.dispatch.celery_app.send_task")
def test_dispatch_swallows_broker_errors(mock_send_task, lead_event, caplog):
    mock_send_task.side_effect = OperationalError("Error 111 connecting to localhost:6379")

    with caplog.at_level(logging.ERROR, logger="lead_notifier.dispatch"):
        task_id = dispatch_lead_submitted(lead_event)

    assert task_id is None
    assert "jane.doe@acme-corp.com" in caplog.text
