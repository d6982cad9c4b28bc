"""SQLAlchemy database models."""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import JSON, DateTime, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class NotificationStatus:
    """Audit record status values."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"

    ALL = (PENDING, SENT, FAILED, SKIPPED)
    TERMINAL = (SENT, FAILED, SKIPPED)
    RETRYABLE_BY_OPERATOR = (FAILED, SKIPPED)


class NotificationLog(Base):
    """One delivery attempt chain for a push notification."""

    __tablename__ = "notification_logs"

    # Primary key
    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        index=True,
    )

    # Lead reference (the lead row lives in the CRUD service; email is kept if it is deleted)
    lead_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    lead_email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    # Notification content
    notification_type: Mapped[str] = mapped_column(
        String(50), nullable=False, default="lead_submission"
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    additional_data: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)

    # Lifecycle
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=NotificationStatus.PENDING, index=True
    )
    attempt_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    attempted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, index=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Outcome
    notification_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    recipients: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    error_code: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_details: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    response_time_ms: Mapped[Optional[float]] = mapped_column(
        Numeric(10, 2, asdecimal=False), nullable=True
    )
    processing_time_ms: Mapped[Optional[float]] = mapped_column(
        Numeric(10, 2, asdecimal=False), nullable=True
    )
    raw_response: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)

    # Request context
    user_agent: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    metadata_json: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        "metadata", JSON, nullable=True
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        Index("ix_notification_logs_status_created_at", "status", "created_at"),
        Index("ix_notification_logs_type_created_at", "notification_type", "created_at"),
    )

    @property
    def is_pending(self) -> bool:
        return self.status == NotificationStatus.PENDING

    @property
    def is_terminal(self) -> bool:
        return self.status in NotificationStatus.TERMINAL

    @property
    def total_recipients(self) -> int:
        return int((self.recipients or {}).get("total", 0))

    @property
    def successful_recipients(self) -> int:
        return int((self.recipients or {}).get("successful", 0))

    @property
    def failed_recipients(self) -> int:
        return int((self.recipients or {}).get("failed", 0))

    def __repr__(self) -> str:
        return (
            f"<NotificationLog(id={self.id}, email={self.lead_email}, "
            f"status={self.status}, attempt={self.attempt_number})>"
        )
