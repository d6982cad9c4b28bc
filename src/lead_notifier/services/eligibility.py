"""Pre-delivery eligibility checks."""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from lead_notifier.config import OneSignalSettings

TEST_EMAIL_PATTERNS: Tuple[str, ...] = (
    "test@",
    "demo@",
    "example@",
    "+test",
    "@test.",
)


@dataclass(frozen=True)
class EligibilityDecision:
    """Outcome of the eligibility gate."""

    eligible: bool
    reason: Optional[str] = None
    skip_reason: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def skip_metadata(self) -> Dict[str, Any]:
        """Metadata merged into a skipped audit record."""
        return {"skip_reason": self.skip_reason, **self.details}


ELIGIBLE = EligibilityDecision(eligible=True)


def matches_test_pattern(email: str) -> bool:
    lowered = email.lower()
    return any(pattern in lowered for pattern in TEST_EMAIL_PATTERNS)


def check_eligibility(
    email: str,
    settings: OneSignalSettings,
    *,
    check_test_patterns: bool = True,
) -> EligibilityDecision:
    """
    Decide whether a notification should be attempted at all.

    Rules are evaluated in order: test/demo email, provider disabled,
    provider missing credentials.

    Args:
        email: Lead email
        settings: Provider configuration
        check_test_patterns: Operators bypass the test-email rule

    Returns:
        EligibilityDecision
    """
    if check_test_patterns and matches_test_pattern(email):
        return EligibilityDecision(
            eligible=False,
            reason="test email pattern",
            skip_reason="test_email_pattern",
            details={"patterns_checked": list(TEST_EMAIL_PATTERNS)},
        )

    if not settings.enabled:
        return EligibilityDecision(
            eligible=False,
            reason="service disabled",
            skip_reason="service_disabled",
        )

    if not settings.is_configured:
        return EligibilityDecision(
            eligible=False,
            reason="not configured",
            skip_reason="not_configured",
            details={
                "has_app_id": bool(settings.app_id),
                "has_api_key": bool(settings.rest_api_key),
            },
        )

    return ELIGIBLE
