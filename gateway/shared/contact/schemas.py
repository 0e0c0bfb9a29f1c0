"""Pydantic schemas for the contact gateway."""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

from gateway.shared.contact.validation import sanitize_text


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a Z suffix."""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


class ContactSubmission(BaseModel):
    """Sanitized submission as forwarded to the webhook."""
    phone: str = Field(..., min_length=1)
    name: str = ""
    email: str = ""
    business: str = ""
    exampleInformation1: str = ""
    exampleInformation2: str = ""
    exampleInformation3: str = ""
    timestamp: str = Field(default_factory=utc_timestamp)
    ip: str = "unknown"

    @field_validator(
        'phone', 'name', 'email', 'business',
        'exampleInformation1', 'exampleInformation2', 'exampleInformation3',
        mode='before',
    )
    @classmethod
    def sanitize_field(cls, v):
        """Every forwarded field is trimmed and free of angle brackets."""
        return sanitize_text(v)


class WebhookErrorInfo(BaseModel):
    """Forwarding diagnostics echoed to callers outside production."""
    kind: str
    error: str
    details: Optional[str] = None
    status: Optional[int] = None


class ContactResponse(BaseModel):
    success: bool
    message: str
    data: Optional[Dict[str, Any]] = None
    webhookError: Optional[WebhookErrorInfo] = None

    def to_body(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    message: str
    retryAfter: Optional[int] = None


class HealthResponse(BaseModel):
    status: str = "ok"
    timestamp: str = Field(default_factory=utc_timestamp)
