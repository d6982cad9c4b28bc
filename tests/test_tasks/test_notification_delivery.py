"""Tests for lead notification delivery tasks."""

import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from lead_notifier.database.models import Base, NotificationLog, NotificationStatus
from lead_notifier.database.repositories import NotificationLogRepository
from lead_notifier.services.onesignal_client import OneSignalClient
from lead_notifier.services.scheduler import AttemptDecision, notification_permanently_failed
from lead_notifier.tasks.notification_delivery import deliver_lead_notification


TASK_NAME = "lead_notifier.tasks.notification_delivery.deliver_lead_notification"
MODULE = "lead_notifier.tasks.notification_delivery"


@pytest.fixture
def event(lead_event):
    return lead_event.model_dump(mode="json")


@pytest.fixture
def task(celery_app):
    """Delivery task with eager retries running to the end of the chain."""
    # With propagation on, an eager Retry is re-raised and the chain stops at attempt 1
    previous = celery_app.conf.task_eager_propagates
    celery_app.conf.task_eager_propagates = False
    yield celery_app.tasks[TASK_NAME]
    celery_app.conf.task_eager_propagates = previous


@pytest.fixture
def worker_session():
    with patch(f"{MODULE}.get_worker_session") as mock_get_session:
        mock_get_session.return_value.__aenter__.return_value = AsyncMock()
        yield mock_get_session


@pytest.fixture
def open_record():
    with patch(f"{MODULE}.open_delivery_record", new=AsyncMock(return_value="log-1")) as mock_open:
        yield mock_open


@pytest.fixture
def permanent_failures():
    received = []

    def receiver(sender=None, **kwargs):
        kwargs.pop("signal", None)
        received.append(kwargs)

    notification_permanently_failed.connect(receiver, weak=False)
    yield received
    notification_permanently_failed.disconnect(receiver)


class TestDeliverLeadNotification:
    """Test suite for the delivery task."""

    def test_task_signature(self):
        assert deliver_lead_notification.name == TASK_NAME
        assert deliver_lead_notification.max_retries == 2
        assert deliver_lead_notification.acks_late is True

    def test_sent_on_first_attempt(self, worker_session, open_record, task, event):
        decision = AttemptDecision(status="sent", log_id="log-1", attempt_number=1)

        with patch(
            f"{MODULE}.process_delivery_attempt",
            new=AsyncMock(return_value=decision),
        ) as mock_process:
            result = task.apply(kwargs={"event": event})

        assert result.successful()
        assert result.get() == decision.to_dict()
        open_record.assert_awaited_once()
        assert open_record.await_args.kwargs["log_id"] is None
        mock_process.assert_awaited_once()
        assert mock_process.await_args.kwargs["attempt_number"] == 1
        assert mock_process.await_args.kwargs["log_id"] == "log-1"

    def test_retry_chain_carries_log_id(self, worker_session, open_record, task, event):
        decisions = [
            AttemptDecision(status="pending", log_id="log-1", attempt_number=1, retry_delay=30, error_code="500"),
            AttemptDecision(status="pending", log_id="log-1", attempt_number=2, retry_delay=60, error_code="500"),
            AttemptDecision(status="failed", log_id="log-1", attempt_number=3, error_code="500"),
        ]

        with patch(
            f"{MODULE}.process_delivery_attempt",
            new=AsyncMock(side_effect=decisions),
        ) as mock_process:
            result = task.apply(kwargs={"event": event})

        assert result.successful()
        assert result.get() == decisions[-1].to_dict()
        assert [c.kwargs["log_id"] for c in open_record.await_args_list] == [None, "log-1", "log-1"]
        calls = mock_process.await_args_list
        assert [c.kwargs["attempt_number"] for c in calls] == [1, 2, 3]
        assert [c.kwargs["log_id"] for c in calls] == ["log-1", "log-1", "log-1"]
        assert all(c.args[0] == event for c in calls)

    def test_recovers_after_retry(self, worker_session, open_record, task, event):
        decisions = [
            AttemptDecision(status="pending", log_id="log-1", attempt_number=1, retry_delay=30),
            AttemptDecision(status="sent", log_id="log-1", attempt_number=2),
        ]

        with patch(
            f"{MODULE}.process_delivery_attempt",
            new=AsyncMock(side_effect=decisions),
        ) as mock_process:
            result = task.apply(kwargs={"event": event})

        assert result.get()["status"] == "sent"
        assert mock_process.await_count == 2

    def test_faults_retry_then_fail_the_chain(self, worker_session, open_record, task, event):
        with patch(
            f"{MODULE}.process_delivery_attempt",
            new=AsyncMock(side_effect=RuntimeError("database went away")),
        ) as mock_process, patch(
            f"{MODULE}.fail_faulted_chain",
            new=AsyncMock(return_value=True),
        ) as mock_fail:
            result = task.apply(kwargs={"event": event})

        assert result.failed()
        assert isinstance(result.result, RuntimeError)
        assert mock_process.await_count == 3
        assert [c.kwargs["log_id"] for c in mock_process.await_args_list] == ["log-1"] * 3
        mock_fail.assert_awaited_once()
        assert mock_fail.await_args.args[1] == "log-1"
        assert mock_fail.await_args.kwargs["error_code"] == "exception"
        assert mock_fail.await_args.kwargs["attempts"] == 3

    def test_chain_without_record_still_fails_loudly(self, worker_session, task, event):
        with patch(
            f"{MODULE}.open_delivery_record",
            new=AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("connection refused"))),
        ), patch(f"{MODULE}.process_delivery_attempt", new=AsyncMock()) as mock_process, patch(
            f"{MODULE}.fail_faulted_chain",
            new=AsyncMock(return_value=False),
        ) as mock_fail:
            result = task.apply(kwargs={"event": event})

        assert result.failed()
        mock_process.assert_not_awaited()
        mock_fail.assert_awaited_once()
        assert mock_fail.await_args.args[1] is None
        assert mock_fail.await_args.kwargs["lead_email"] == event["email"]


class TestFaultedChainAgainstDatabase:
    """The delivery task end to end against a file-backed SQLite database."""

    @pytest.fixture
    def database_url(self, tmp_path):
        url = f"sqlite+aiosqlite:///{tmp_path / 'worker.db'}"

        async def _create_tables():
            engine = create_async_engine(url, poolclass=NullPool)
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            await engine.dispose()

        asyncio.run(_create_tables())
        with patch("lead_notifier.database.session.get_database_url", return_value=url):
            yield url

    @staticmethod
    def _load_logs(url):
        async def _load():
            engine = create_async_engine(url, poolclass=NullPool)
            factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            async with factory() as session:
                logs = list((await session.execute(select(NotificationLog))).scalars().all())
            await engine.dispose()
            return logs

        return asyncio.run(_load())

    def test_fault_on_first_attempt_keeps_one_record(
        self, database_url, task, event, settings, onesignal_settings, provider, permanent_failures
    ):
        stub = provider(httpx.Response(200, json={"id": "abc-1", "recipients": 1}))

        with patch(f"{MODULE}.get_settings", return_value=settings), patch(
            "lead_notifier.services.scheduler.get_onesignal_client",
            side_effect=lambda *args, **kwargs: OneSignalClient(onesignal_settings, transport=stub.transport),
        ), patch.object(
            NotificationLogRepository,
            "mark_sent",
            new=AsyncMock(side_effect=OperationalError("UPDATE", {}, Exception("database is locked"))),
        ):
            result = task.apply(kwargs={"event": event})

        assert result.failed()
        assert stub.calls == 3

        logs = self._load_logs(database_url)
        assert len(logs) == 1
        assert logs[0].status == NotificationStatus.FAILED
        assert logs[0].error_code == "exception"
        assert logs[0].metadata_json["final_attempt"] == 3

        assert len(permanent_failures) == 1
        assert permanent_failures[0]["log_id"] == logs[0].id
        assert permanent_failures[0]["attempts"] == 3
