"""Retry classification for delivery outcomes."""

from typing import FrozenSet

from lead_notifier.models.delivery import DeliveryFailure, DeliveryOutcome

RETRYABLE_ERROR_CODES: FrozenSet[str] = frozenset(
    {
        "timeout",
        "network_error",
        "rate_limit",
        "server_error",
        "connection_error",
        "429",  # Too Many Requests
        "500",  # Internal Server Error
        "502",  # Bad Gateway
        "503",  # Service Unavailable
        "504",  # Gateway Timeout
    }
)


def is_retryable(outcome: DeliveryOutcome) -> bool:
    """Whether a failed outcome is transient. Successes never are."""
    if not isinstance(outcome, DeliveryFailure):
        return False
    return outcome.error_code in RETRYABLE_ERROR_CODES
