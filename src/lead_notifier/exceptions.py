"""Errors returned by the operator console.

The API handlers and the CLI both render them with ``error_body`` so every
failure has the same JSON envelope.
"""

from typing import Any, Dict, Optional


def error_body(
    message: str,
    code: str,
    status_code: int,
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """The ``{"error": {...}}`` envelope shared by every console error."""
    return {
        "error": {
            "message": message,
            "code": code,
            "status_code": status_code,
            "details": details or {},
        }
    }


class APIException(Exception):
    """A console error carrying an HTTP status and a stable error code.

    Subclasses set ``status_code``, ``code`` and ``default_message`` as class
    attributes; the constructor arguments override them per instance.
    """

    status_code: int = 500
    code: Optional[str] = None
    default_message: str = "Console request failed"

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message or self.default_message
        self.status_code = status_code or type(self).status_code
        self.code = code or type(self).code or type(self).__name__
        self.details = dict(details or {})
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return error_body(self.message, self.code, self.status_code, self.details)


class ValidationError(APIException):
    """Query or body values the console cannot act on."""

    status_code = 422
    code = "VALIDATION_ERROR"
    default_message = "Validation failed"

    def __init__(
        self,
        message: Optional[str] = None,
        errors: Optional[Dict[str, Any]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = dict(details or {})
        if errors:
            details["validation_errors"] = errors
        super().__init__(message, details=details)


class NotFoundError(APIException):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(
        self,
        resource: str = "Resource",
        resource_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = {**(details or {}), "resource": resource}
        message = f"{resource} not found"
        if resource_id:
            message = f"{message} with id: {resource_id}"
            details["resource_id"] = resource_id
        super().__init__(message, details=details)


class InvalidStatusError(APIException):
    """The record's status does not allow an operator retry."""

    status_code = 400
    code = "INVALID_STATUS"
    default_message = "Only failed or skipped notifications can be retried"


class DatabaseError(APIException):
    status_code = 500
    code = "DATABASE_ERROR"
    default_message = "Database operation failed"


class DeliveryFailedError(APIException):
    """A manual attempt ended failed or skipped; its audit record is kept."""

    status_code = 502
    code = "DELIVERY_FAILED"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = {"service": "onesignal", **(details or {})}
        super().__init__(message, code=code, details=details)
