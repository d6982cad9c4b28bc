"""Pydantic models for the delivery pipeline."""

from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


LEAD_NOTIFICATION_TITLE = "New Lead Submitted"
LEAD_NOTIFICATION_MESSAGE = "A new user has submitted the registration form"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LeadSubmitted(BaseModel):
    """Fact handed over by the lead-creation flow once a lead is persisted."""

    lead_id: Optional[str] = Field(default=None, description="Lead ID in the CRUD layer")
    email: str = Field(..., description="Lead email")
    name: Optional[str] = Field(default=None, description="Lead name")
    platform: Optional[str] = Field(default=None, description="Platform slug")
    website_type: Optional[str] = Field(default=None, description="Website type")
    user_agent: Optional[str] = Field(default=None, description="Submitting client's user agent")
    ip_address: Optional[str] = Field(default=None, description="Submitting client's IP")
    submitted_at: datetime = Field(default_factory=_utc_now, description="Submission time")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Extra context")

    def event_metadata(self) -> Dict[str, Any]:
        """Context stored on the audit record."""
        return {
            "event_type": "lead_submitted",
            "timestamp": self.submitted_at.isoformat(),
            "lead_email": self.email,
            "platform": self.platform,
            "user_agent": self.user_agent,
            "ip_address": self.ip_address,
            **self.metadata,
        }

    def notification_data(self) -> Dict[str, Any]:
        """Payload attached to the push notification."""
        return {
            "type": "lead_submission",
            "lead_email": self.email,
            "lead_name": self.name,
            "platform": self.platform,
            "website_type": self.website_type,
            "timestamp": self.submitted_at.isoformat(),
            "metadata": self.metadata,
        }


class DeliveryRequest(BaseModel):
    """One provider send, built per attempt."""

    model_config = ConfigDict(frozen=True)

    title: str
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)
    lead_id: Optional[str] = None
    email: str
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    requested_at: datetime = Field(default_factory=_utc_now)

    @classmethod
    def for_lead(cls, event: LeadSubmitted) -> "DeliveryRequest":
        return cls(
            title=LEAD_NOTIFICATION_TITLE,
            message=LEAD_NOTIFICATION_MESSAGE,
            data=event.notification_data(),
            lead_id=event.lead_id,
            email=event.email,
            user_agent=event.user_agent,
            ip_address=event.ip_address,
            requested_at=event.submitted_at,
        )


class Recipients(BaseModel):
    """Recipient breakdown reported by the provider."""

    total: int = 0
    successful: int = 0
    failed: int = 0


class DeliverySuccess(BaseModel):
    """Provider accepted the notification."""

    model_config = ConfigDict(frozen=True)

    success: Literal[True] = True
    notification_id: Optional[str] = Field(default=None, description="Provider notification ID")
    recipients: Optional[Recipients] = None
    response_time_ms: Optional[float] = None
    raw_response: Optional[Dict[str, Any]] = None

    @property
    def message(self) -> str:
        if self.notification_id:
            return f"Notification sent successfully (ID: {self.notification_id})"
        return "Notification sent successfully"


class DeliveryFailure(BaseModel):
    """Provider call failed or never reached the provider."""

    model_config = ConfigDict(frozen=True)

    success: Literal[False] = False
    message: str
    error_code: str
    error_details: Optional[Dict[str, Any]] = None
    response_time_ms: Optional[float] = None
    raw_response: Optional[Dict[str, Any]] = None


DeliveryOutcome = Union[DeliverySuccess, DeliveryFailure]
