"""Database models, sessions and repositories."""

from lead_notifier.database.models import Base, NotificationLog, NotificationStatus
from lead_notifier.database.repositories import NotificationLogRepository
from lead_notifier.database.session import (
    check_connection,
    close_db,
    get_session,
    get_session_context,
    get_session_factory,
    get_worker_session,
)

__all__ = [
    "Base",
    "NotificationLog",
    "NotificationStatus",
    "NotificationLogRepository",
    "check_connection",
    "close_db",
    "get_session",
    "get_session_context",
    "get_session_factory",
    "get_worker_session",
]
