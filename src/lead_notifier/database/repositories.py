"""Notification log repository (the delivery audit trail)."""

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import Select, and_, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from lead_notifier.database.models import NotificationLog, NotificationStatus, utc_now
from lead_notifier.exceptions import DatabaseError
from lead_notifier.utils.errors import AuditStateError

logger = logging.getLogger(__name__)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything stored here is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _day_start(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


class NotificationLogRepository:
    """Repository for notification log records."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_attempt(
        self,
        lead_id: Optional[str],
        lead_email: str,
        title: str,
        message: str,
        additional_data: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        notification_type: str = "lead_submission",
        attempt_number: int = 1,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> NotificationLog:
        """Create a pending record for a new attempt."""
        metadata = dict(metadata or {})
        record = NotificationLog(
            lead_id=lead_id,
            lead_email=lead_email,
            notification_type=notification_type,
            title=title,
            message=message,
            additional_data=dict(additional_data or {}),
            status=NotificationStatus.PENDING,
            attempt_number=attempt_number,
            user_agent=user_agent or metadata.get("user_agent"),
            ip_address=ip_address or metadata.get("ip_address"),
            metadata_json=metadata,
            attempted_at=utc_now(),
        )
        return await self._add(record)

    async def create_retry_attempt(
        self,
        original: NotificationLog,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> NotificationLog:
        """Create the record for an operator re-drive of ``original``."""
        metadata = {
            **(original.metadata_json or {}),
            "retried_from_log_id": original.id,
            "retried_at": utc_now().isoformat(),
            "retried_by": "admin",
        }
        return await self.create_attempt(
            lead_id=original.lead_id,
            lead_email=original.lead_email,
            title=original.title,
            message=original.message,
            additional_data=original.additional_data,
            metadata=metadata,
            notification_type=original.notification_type,
            attempt_number=original.attempt_number + 1,
            user_agent=f"Admin-Retry/{user_agent}" if user_agent else "Admin-Retry",
            ip_address=ip_address,
        )

    async def advance_attempt(
        self,
        record: NotificationLog,
        attempt_number: int,
        failure: Optional[Dict[str, Any]] = None,
    ) -> NotificationLog:
        """
        Move a pending record to the next automatic attempt.

        The failed attempt is appended to ``metadata.retry_history``; the
        record itself stays pending.
        """
        self._require_pending(record, NotificationStatus.PENDING)
        metadata = dict(record.metadata_json or {})
        if failure:
            history = list(metadata.get("retry_history", []))
            history.append({"attempt": record.attempt_number, **failure})
            metadata["retry_history"] = history
        record.metadata_json = metadata
        record.attempt_number = attempt_number
        record.attempted_at = utc_now()
        return await self._save(record)

    async def mark_sent(
        self,
        record: NotificationLog,
        notification_id: str,
        recipients: Optional[Dict[str, Any]] = None,
        response_time: Optional[float] = None,
        processing_time: Optional[float] = None,
        raw_response: Optional[Dict[str, Any]] = None,
    ) -> NotificationLog:
        """Mark a pending record as delivered."""
        self._require_pending(record, NotificationStatus.SENT)
        if not notification_id:
            raise ValueError("A sent notification requires a notification_id")
        record.status = NotificationStatus.SENT
        record.notification_id = notification_id
        record.recipients = recipients
        record.response_time_ms = response_time
        record.processing_time_ms = processing_time
        record.raw_response = raw_response
        record.completed_at = utc_now()
        return await self._save(record)

    async def mark_failed(
        self,
        record: NotificationLog,
        error_code: str,
        error_message: str,
        error_details: Optional[Dict[str, Any]] = None,
        response_time: Optional[float] = None,
        processing_time: Optional[float] = None,
        raw_response: Optional[Dict[str, Any]] = None,
        extra_metadata: Optional[Dict[str, Any]] = None,
    ) -> NotificationLog:
        """Mark a pending record as terminally failed."""
        self._require_pending(record, NotificationStatus.FAILED)
        record.status = NotificationStatus.FAILED
        record.error_code = error_code
        record.error_message = error_message
        record.error_details = error_details
        record.response_time_ms = response_time
        record.processing_time_ms = processing_time
        record.raw_response = raw_response
        if extra_metadata:
            record.metadata_json = {**(record.metadata_json or {}), **extra_metadata}
        record.completed_at = utc_now()
        return await self._save(record)

    async def mark_skipped(
        self,
        record: NotificationLog,
        reason: str,
        extra_metadata: Optional[Dict[str, Any]] = None,
    ) -> NotificationLog:
        """Mark a pending record as skipped before any provider call."""
        self._require_pending(record, NotificationStatus.SKIPPED)
        record.status = NotificationStatus.SKIPPED
        record.error_message = reason
        record.metadata_json = {**(record.metadata_json or {}), **(extra_metadata or {})}
        record.completed_at = utc_now()
        return await self._save(record)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_by_id(self, log_id: str) -> Optional[NotificationLog]:
        """Get a record by ID."""
        try:
            result = await self.session.execute(
                select(NotificationLog).where(NotificationLog.id == log_id)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Error getting notification log {log_id}: {e}")
            raise DatabaseError("Failed to retrieve notification log") from e

    async def list_logs(
        self,
        page: int = 1,
        per_page: int = 20,
        status: Optional[str] = None,
        email: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        search: Optional[str] = None,
    ) -> Tuple[List[NotificationLog], int]:
        """
        Filtered, paginated listing ordered by ``attempted_at`` descending.

        Returns:
            (records for the page, total matching records)
        """
        conditions = []
        if status:
            conditions.append(NotificationLog.status == status)
        if email:
            conditions.append(NotificationLog.lead_email.ilike(f"%{email}%"))
        if date_from:
            conditions.append(NotificationLog.attempted_at >= _day_start(date_from))
        if date_to:
            conditions.append(
                NotificationLog.attempted_at < _day_start(date_to + timedelta(days=1))
            )
        if search:
            pattern = f"%{search}%"
            conditions.append(
                or_(
                    NotificationLog.lead_email.ilike(pattern),
                    NotificationLog.title.ilike(pattern),
                    NotificationLog.message.ilike(pattern),
                    NotificationLog.notification_id.ilike(pattern),
                )
            )
        where = and_(*conditions) if conditions else None

        try:
            count_query = select(func.count()).select_from(NotificationLog)
            query = select(NotificationLog).order_by(
                NotificationLog.attempted_at.desc(), NotificationLog.id.desc()
            )
            if where is not None:
                count_query = count_query.where(where)
                query = query.where(where)

            total = (await self.session.execute(count_query)).scalar() or 0
            query = query.offset((page - 1) * per_page).limit(per_page)
            result = await self.session.execute(query)
            return list(result.scalars().all()), total
        except SQLAlchemyError as e:
            logger.error(f"Error listing notification logs: {e}")
            raise DatabaseError("Failed to retrieve notification logs") from e

    async def recent(self, limit: int = 5) -> List[NotificationLog]:
        """Most recent attempts."""
        logs, _ = await self.list_logs(page=1, per_page=limit)
        return logs

    # ------------------------------------------------------------------
    # Aggregates (scan-based over a bounded window)
    # ------------------------------------------------------------------

    async def status_counts(self, start: datetime, end: datetime) -> Dict[str, int]:
        """Number of records per status attempted within the window."""
        query = (
            select(NotificationLog.status, func.count())
            .where(self._window(start, end))
            .group_by(NotificationLog.status)
        )
        rows = await self._rows(query, "count notification logs by status")
        counts = {status: 0 for status in NotificationStatus.ALL}
        for status, count in rows:
            counts[status] = int(count)
        return counts

    async def average_latencies(
        self, start: datetime, end: datetime
    ) -> Tuple[Optional[float], Optional[float]]:
        """Average provider response time and processing time of sent records."""
        query = select(
            func.avg(NotificationLog.response_time_ms),
            func.avg(NotificationLog.processing_time_ms),
        ).where(
            self._window(start, end),
            NotificationLog.status == NotificationStatus.SENT,
        )
        rows = await self._rows(query, "average notification latencies")
        avg_response, avg_processing = rows[0] if rows else (None, None)
        return (
            round(float(avg_response), 2) if avg_response is not None else None,
            round(float(avg_processing), 2) if avg_processing is not None else None,
        )

    async def top_error_codes(
        self, start: datetime, end: datetime, limit: int = 5
    ) -> List[Dict[str, Any]]:
        """Most frequent error codes among failed records."""
        count = func.count().label("count")
        query = (
            select(NotificationLog.error_code, count)
            .where(
                self._window(start, end),
                NotificationLog.status == NotificationStatus.FAILED,
            )
            .group_by(NotificationLog.error_code)
            .order_by(count.desc(), NotificationLog.error_code)
            .limit(limit)
        )
        rows = await self._rows(query, "aggregate notification error codes")
        return [{"error_code": code, "count": int(n)} for code, n in rows]

    async def total_recipients(self, start: datetime, end: datetime) -> int:
        """Sum of reported recipients over sent records."""
        query = select(NotificationLog.recipients).where(
            self._window(start, end),
            NotificationLog.status == NotificationStatus.SENT,
        )
        rows = await self._rows(query, "sum notification recipients")
        return sum(int((recipients or {}).get("total", 0)) for (recipients,) in rows)

    async def hourly_breakdown(self, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        """Per-hour status counts between ``start`` and ``end``."""
        start, end = as_utc(start), as_utc(end)
        query = select(NotificationLog.attempted_at, NotificationLog.status).where(
            self._window(start, end)
        )
        rows = await self._rows(query, "build hourly notification breakdown")

        buckets: Dict[datetime, Dict[str, Any]] = {}
        current = start.replace(minute=0, second=0, microsecond=0)
        while current <= end:
            buckets[current] = {
                "hour": current.strftime("%Y-%m-%d %H:00"),
                "total": 0,
                NotificationStatus.SENT: 0,
                NotificationStatus.FAILED: 0,
                NotificationStatus.SKIPPED: 0,
            }
            current += timedelta(hours=1)

        for attempted_at, status in rows:
            hour = as_utc(attempted_at).replace(minute=0, second=0, microsecond=0)
            bucket = buckets.get(hour)
            if bucket is None:
                continue
            bucket["total"] += 1
            if status in bucket:
                bucket[status] += 1

        return list(buckets.values())

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _window(start: datetime, end: datetime):
        return NotificationLog.attempted_at.between(start, end)

    @staticmethod
    def _require_pending(record: NotificationLog, target_status: str) -> None:
        if record.status != NotificationStatus.PENDING:
            raise AuditStateError(record.id, record.status, target_status)

    async def _rows(self, query: Select, action: str) -> Sequence[Any]:
        try:
            result = await self.session.execute(query)
            return result.all()
        except SQLAlchemyError as e:
            logger.error(f"Failed to {action}: {e}")
            raise DatabaseError(f"Failed to {action}") from e

    async def _add(self, record: NotificationLog) -> NotificationLog:
        try:
            self.session.add(record)
            await self.session.flush()
            await self.session.refresh(record)
            logger.debug(f"Created notification log {record.id}")
            return record
        except SQLAlchemyError as e:
            logger.error(f"Error creating notification log: {e}")
            await self.session.rollback()
            raise DatabaseError("Failed to create notification log") from e

    async def _save(self, record: NotificationLog) -> NotificationLog:
        try:
            await self.session.flush()
            await self.session.refresh(record)
            return record
        except SQLAlchemyError as e:
            logger.error(f"Error updating notification log {record.id}: {e}")
            await self.session.rollback()
            raise DatabaseError("Failed to update notification log") from e
