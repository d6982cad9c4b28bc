"""Custom exceptions for the notification worker."""


class LeadNotifierError(Exception):
    """Base exception for lead notifier errors."""
    pass


class AuditStateError(LeadNotifierError):
    """Illegal status transition on a notification log record."""

    def __init__(self, log_id: str, current_status: str, target_status: str):
        self.log_id = log_id
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(
            f"Notification log {log_id} cannot move from "
            f"'{current_status}' to '{target_status}'"
        )
