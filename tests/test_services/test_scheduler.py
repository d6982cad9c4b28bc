"""Tests for delivery attempt processing and retry decisions."""

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from celery.exceptions import SoftTimeLimitExceeded
from sqlalchemy import func, select

from lead_notifier.database.models import NotificationLog, NotificationStatus
from lead_notifier.database.repositories import NotificationLogRepository
from lead_notifier.services.onesignal_client import OneSignalClient
from lead_notifier.services.scheduler import (
    AttemptDecision,
    DeliveryScheduler,
    backoff_for,
    fail_faulted_chain,
    notification_permanently_failed,
    open_delivery_record,
    process_delivery_attempt,
)


@pytest.fixture
def permanent_failures():
    """Collect notification_permanently_failed signals."""
    received = []

    def receiver(sender=None, **kwargs):
        kwargs.pop("signal", None)
        received.append(kwargs)

    notification_permanently_failed.connect(receiver, weak=False)
    yield received
    notification_permanently_failed.disconnect(receiver)


async def _count_logs(session) -> int:
    return (await session.execute(select(func.count()).select_from(NotificationLog))).scalar()


async def _run_chain(scheduler, event, max_attempts=3):
    """Drive attempts the way the Celery task re-enqueues them."""
    decisions = []
    log_id = None
    for attempt in range(1, max_attempts + 1):
        decision = await scheduler.process(event, attempt_number=attempt, log_id=log_id)
        decisions.append(decision)
        if not decision.should_retry:
            break
        log_id = decision.log_id
    return decisions


class TestBackoff:
    """Test suite for the backoff table."""

    @pytest.mark.parametrize(
        "attempt,delay",
        [(1, 30), (2, 60), (3, 120), (4, 120), (10, 120), (0, 30)],
    )
    def test_backoff_is_clamped(self, attempt, delay):
        assert backoff_for(attempt, [30, 60, 120]) == delay

    def test_empty_schedule(self):
        assert backoff_for(1, []) == 0


class TestDeliveryScheduler:
    """Test suite for DeliveryScheduler.process."""

    async def test_test_email_is_skipped_without_provider_call(
        self, session, settings, provider, make_client, lead_event
    ):
        stub = provider()
        scheduler = DeliveryScheduler(session, make_client(stub), settings)
        event = lead_event.model_copy(update={"email": "test@company.com"})

        decision = await scheduler.process(event)

        assert decision.status == NotificationStatus.SKIPPED
        assert stub.calls == 0
        record = await NotificationLogRepository(session).get_by_id(decision.log_id)
        assert record.status == NotificationStatus.SKIPPED
        assert record.error_message == "test email pattern"
        assert record.metadata_json["skip_reason"] == "test_email_pattern"
        assert "service_config" not in record.metadata_json
        assert record.completed_at is not None

    async def test_disabled_service_is_skipped(
        self, session, make_settings, onesignal_settings, provider, lead_event
    ):
        disabled = onesignal_settings.model_copy(update={"enabled": False})
        settings = make_settings(onesignal=disabled)
        stub = provider()
        scheduler = DeliveryScheduler(
            session, OneSignalClient(disabled, transport=stub.transport), settings
        )

        decision = await scheduler.process(lead_event)

        assert decision.status == NotificationStatus.SKIPPED
        assert stub.calls == 0
        record = await NotificationLogRepository(session).get_by_id(decision.log_id)
        assert record.error_message == "service disabled"
        assert record.metadata_json["skip_reason"] == "service_disabled"
        assert record.metadata_json["service_config"]["enabled"] is False

    async def test_success_marks_record_sent(
        self, session, settings, provider, make_client, lead_event
    ):
        stub = provider(httpx.Response(200, json={"id": "abc-1", "recipients": 5}))
        scheduler = DeliveryScheduler(session, make_client(stub), settings)

        decision = await scheduler.process(lead_event)

        assert decision == AttemptDecision(
            status=NotificationStatus.SENT, log_id=decision.log_id, attempt_number=1
        )
        record = await NotificationLogRepository(session).get_by_id(decision.log_id)
        assert record.status == NotificationStatus.SENT
        assert record.notification_id == "abc-1"
        assert record.recipients == {"total": 5, "successful": 5, "failed": 0}
        assert record.lead_id == lead_event.lead_id
        assert record.user_agent == "Mozilla/5.0"
        assert record.additional_data["lead_email"] == lead_event.email
        assert record.metadata_json["event_type"] == "lead_submitted"
        assert record.processing_time_ms is not None
        assert record.completed_at is not None

    async def test_success_without_provider_id(
        self, session, settings, provider, make_client, lead_event
    ):
        stub = provider(httpx.Response(200, json={"recipients": 0}))
        scheduler = DeliveryScheduler(session, make_client(stub), settings)

        decision = await scheduler.process(lead_event)

        record = await NotificationLogRepository(session).get_by_id(decision.log_id)
        assert record.notification_id == "unknown"

    async def test_retryable_failures_exhaust_into_one_failed_record(
        self, session, settings, provider, make_client, lead_event, permanent_failures, caplog
    ):
        stub = provider(httpx.Response(500, json={"errors": ["Internal Server Error"]}))
        scheduler = DeliveryScheduler(session, make_client(stub), settings)

        with caplog.at_level(logging.CRITICAL, logger="lead_notifier.services.scheduler"):
            decisions = await _run_chain(scheduler, lead_event)

        assert [d.status for d in decisions] == ["pending", "pending", "failed"]
        assert [d.retry_delay for d in decisions] == [30, 60, None]
        assert len({d.log_id for d in decisions}) == 1
        assert stub.calls == 3
        assert await _count_logs(session) == 1

        record = await NotificationLogRepository(session).get_by_id(decisions[0].log_id)
        assert record.status == NotificationStatus.FAILED
        assert record.error_code == "500"
        assert record.attempt_number == 3
        assert [h["error_code"] for h in record.metadata_json["retry_history"]] == ["500", "500"]
        assert record.metadata_json["final_attempt"] == 3

        assert len(permanent_failures) == 1
        assert permanent_failures[0]["log_id"] == record.id
        assert permanent_failures[0]["attempts"] == 3
        assert any(r.levelno == logging.CRITICAL for r in caplog.records)

    async def test_recovery_on_second_attempt(
        self, session, settings, provider, make_client, lead_event, permanent_failures
    ):
        stub = provider(
            httpx.Response(503, text="Service Unavailable"),
            httpx.Response(200, json={"id": "abc-2", "recipients": 2}),
        )
        scheduler = DeliveryScheduler(session, make_client(stub), settings)

        decisions = await _run_chain(scheduler, lead_event)

        assert [d.status for d in decisions] == ["pending", "sent"]
        record = await NotificationLogRepository(session).get_by_id(decisions[-1].log_id)
        assert record.notification_id == "abc-2"
        assert record.attempt_number == 2
        assert permanent_failures == []

    async def test_non_retryable_failure_is_terminal(
        self, session, settings, provider, make_client, lead_event, permanent_failures
    ):
        stub = provider(httpx.Response(400, json={"errors": ["Invalid app_id"]}))
        scheduler = DeliveryScheduler(session, make_client(stub), settings)

        decisions = await _run_chain(scheduler, lead_event)

        assert len(decisions) == 1
        assert decisions[0].status == NotificationStatus.FAILED
        assert decisions[0].error_code == "400"
        assert stub.calls == 1
        assert permanent_failures == []

    async def test_redelivered_terminal_record_is_noop(
        self, session, settings, provider, make_client, lead_event
    ):
        stub = provider(httpx.Response(200, json={"id": "abc-1", "recipients": 1}))
        scheduler = DeliveryScheduler(session, make_client(stub), settings)
        first = await scheduler.process(lead_event)

        again = await scheduler.process(lead_event, attempt_number=2, log_id=first.log_id)

        assert again.status == NotificationStatus.SENT
        assert again.log_id == first.log_id
        assert stub.calls == 1
        assert await _count_logs(session) == 1

    async def test_missing_record_starts_a_new_one(
        self, session, settings, provider, make_client, lead_event
    ):
        stub = provider(httpx.Response(200, json={"id": "abc-1", "recipients": 1}))
        scheduler = DeliveryScheduler(session, make_client(stub), settings)

        decision = await scheduler.process(lead_event, attempt_number=2, log_id="gone")

        assert decision.status == NotificationStatus.SENT
        assert decision.log_id != "gone"

    async def test_exception_in_client_is_a_retryable_fault(
        self, session, settings, lead_event
    ):
        client = MagicMock(spec=OneSignalClient)
        client.send = AsyncMock(side_effect=RuntimeError("socket closed"))
        scheduler = DeliveryScheduler(session, client, settings)

        decisions = await _run_chain(scheduler, lead_event)

        assert [d.error_code for d in decisions] == ["exception"] * 3
        assert decisions[-1].status == NotificationStatus.FAILED
        record = await NotificationLogRepository(session).get_by_id(decisions[-1].log_id)
        assert record.error_details["exception_class"] == "RuntimeError"

    async def test_attempt_ceiling_is_a_timeout_fault(self, session, make_settings, lead_event):
        settings = make_settings(attempt_timeout_seconds=0.05)

        async def slow_send(request):
            await asyncio.sleep(5)

        client = MagicMock(spec=OneSignalClient)
        client.send = slow_send
        scheduler = DeliveryScheduler(session, client, settings)

        decision = await scheduler.process(lead_event)

        assert decision.status == NotificationStatus.PENDING
        assert decision.error_code == "timeout"
        assert decision.retry_delay == 30

    async def test_soft_time_limit_is_a_timeout_fault(self, session, settings, lead_event):
        client = MagicMock(spec=OneSignalClient)
        client.send = AsyncMock(side_effect=SoftTimeLimitExceeded())
        scheduler = DeliveryScheduler(session, client, settings)

        decision = await scheduler.process(lead_event)

        assert decision.status == NotificationStatus.PENDING
        assert decision.error_code == "timeout"
        record = await NotificationLogRepository(session).get_by_id(decision.log_id)
        assert record.metadata_json["retry_history"][0]["error_code"] == "timeout"

    async def test_single_attempt_configuration(
        self, session, make_settings, provider, make_client, lead_event, permanent_failures
    ):
        settings = make_settings(max_attempts=1)
        stub = provider(httpx.Response(502, text="Bad Gateway"))
        scheduler = DeliveryScheduler(session, make_client(stub), settings)

        decision = await scheduler.process(lead_event)

        assert decision.status == NotificationStatus.FAILED
        assert len(permanent_failures) == 1


class TestHelpers:
    """Test suite for module-level entry points."""

    async def test_process_delivery_attempt_validates_payload(
        self, session, settings, provider, make_client, lead_event
    ):
        stub = provider(httpx.Response(200, json={"id": "abc-1", "recipients": 1}))

        decision = await process_delivery_attempt(
            lead_event.model_dump(mode="json"),
            attempt_number=1,
            log_id=None,
            session=session,
            client=make_client(stub),
            settings=settings,
        )

        assert decision.status == NotificationStatus.SENT
        assert decision.to_dict()["log_id"] == decision.log_id

    async def test_fail_faulted_chain(self, session, permanent_failures):
        repo = NotificationLogRepository(session)
        record = await repo.create_attempt(
            lead_id=None, lead_email="jane.doe@acme-corp.com", title="t", message="m"
        )

        assert await fail_faulted_chain(session, record.id, "timeout", "soft limit", 3) is True
        assert record.status == NotificationStatus.FAILED
        assert record.error_code == "timeout"
        assert record.metadata_json["final_attempt"] == 3
        assert len(permanent_failures) == 1
        assert permanent_failures[0]["log_id"] == record.id

        # Already terminal: no second signal
        assert await fail_faulted_chain(session, record.id, "timeout", "again", 3) is False
        assert len(permanent_failures) == 1

    async def test_fail_faulted_chain_without_record_still_signals(
        self, session, permanent_failures, caplog
    ):
        with caplog.at_level(logging.CRITICAL, logger="lead_notifier.services.scheduler"):
            failed = await fail_faulted_chain(
                session, None, "exception", "db down", 3, lead_email="jane.doe@acme-corp.com"
            )

        assert failed is False
        assert len(permanent_failures) == 1
        assert permanent_failures[0]["log_id"] is None
        assert permanent_failures[0]["lead_email"] == "jane.doe@acme-corp.com"
        assert permanent_failures[0]["attempts"] == 3
        assert any(r.levelno == logging.CRITICAL for r in caplog.records)

    async def test_open_delivery_record_is_idempotent_per_chain(self, session, settings, lead_event):
        payload = lead_event.model_dump(mode="json")

        log_id = await open_delivery_record(payload, 1, None, session, settings=settings)
        again = await open_delivery_record(payload, 2, log_id, session, settings=settings)

        assert again == log_id
        assert await _count_logs(session) == 1
        record = await NotificationLogRepository(session).get_by_id(log_id)
        assert record.status == NotificationStatus.PENDING
        assert record.lead_email == lead_event.email
