"""Error taxonomy for the contact pipeline.

Every rejection the caller can see is a ContactGatewayError carrying its HTTP
status and the short/long messages for the JSON envelope. BotDetected is the
exception to that rule: the pipeline catches it and answers with a fabricated
success so automated senders cannot tell they were filtered.
"""

from typing import Any, Dict, Optional


class ContactGatewayError(Exception):
    """Base class for request rejections surfaced to the caller."""
    status_code = 500
    error = "Internal server error"

    def __init__(self, message: str, error: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if error is not None:
            self.error = error

    def to_body(self) -> Dict[str, Any]:
        return {"success": False, "error": self.error, "message": self.message}

    def headers(self) -> Dict[str, str]:
        return {}


class ClientError(ContactGatewayError):
    """Malformed, missing or invalid input."""
    status_code = 400
    error = "Bad request"


class PayloadTooLarge(ClientError):
    status_code = 413
    error = "Payload too large"


class MethodNotAllowed(ClientError):
    status_code = 405
    error = "Method not allowed"

    def headers(self) -> Dict[str, str]:
        return {"Allow": "POST"}


class AuthError(ContactGatewayError):
    status_code = 401
    error = "Unauthorized"


class RateLimited(ContactGatewayError):
    status_code = 429
    error = "Too many requests"

    def __init__(self, retry_after: int):
        super().__init__(f"Rate limit exceeded. Please try again in {retry_after} seconds.")
        self.retry_after = retry_after

    def to_body(self) -> Dict[str, Any]:
        body = super().to_body()
        body["retryAfter"] = self.retry_after
        return body

    def headers(self) -> Dict[str, str]:
        return {"Retry-After": str(self.retry_after)}


class BotDetected(Exception):
    """A honeypot field was filled in. Never surfaced as an error."""

    def __init__(self, field_name: str):
        super().__init__(field_name)
        self.field_name = field_name
