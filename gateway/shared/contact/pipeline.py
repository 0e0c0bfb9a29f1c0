"""
Request pipeline shared by the standalone server and the serverless handler.

gate (method, content type, size) -> rate limit -> honeypot -> API key
-> field validation -> sanitization -> forwarding -> response envelope.

Adapters translate their native request into an InboundRequest and render the
returned GatewayResponse; all decisions are made here.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from gateway.shared.contact.config import (
    DELIVERY_MODE_BACKGROUND,
    MAX_BODY_BYTES,
    ContactSettings,
)
from gateway.shared.contact.errors import (
    BotDetected,
    ClientError,
    ContactGatewayError,
    MethodNotAllowed,
    PayloadTooLarge,
    RateLimited,
)
from gateway.shared.contact.forwarder import ForwardResult, WebhookForwarder
from gateway.shared.contact.rate_limit import Admitter, RateLimiter
from gateway.shared.contact.schemas import ContactResponse, ContactSubmission
from gateway.shared.contact.validation import (
    check_api_key,
    check_honeypot,
    validate_email,
    validate_phone,
)


SUCCESS_MESSAGE = "Contact form submitted successfully"
HONEYPOT_MESSAGE = "Thank you for your submission"


@dataclass
class InboundRequest:
    """Transport-neutral view of an incoming request. Header names are lowercase."""
    method: str
    headers: Mapping[str, str] = field(default_factory=dict)
    query: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""
    peer: Optional[str] = None
    # Only the long-running server enforces the body size cap
    enforce_body_limit: bool = True

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())


@dataclass
class GatewayResponse:
    status_code: int
    body: Dict[str, Any]
    headers: Dict[str, str] = field(default_factory=dict)


def get_client_ip(request: InboundRequest) -> str:
    """Get client IP address for rate limiting and the forwarded payload."""
    # Check for forwarded IP (from proxy/load balancer)
    forwarded = request.header("X-Forwarded-For")
    if forwarded:
        # Take the first IP in the chain
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.header("X-Real-IP")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    # Fallback to direct connection
    return request.peer or "unknown"


def _is_json_content_type(value: Optional[str]) -> bool:
    if not value:
        return False
    media_type = value.split(";", 1)[0].strip().lower()
    return media_type == "application/json"


class ContactPipeline:
    """Validates, sanitizes and forwards one contact submission per call."""

    def __init__(
        self,
        settings: ContactSettings,
        limiter: Optional[Admitter] = None,
        forwarder: Optional[WebhookForwarder] = None,
    ):
        self.settings = settings
        self.limiter = limiter or RateLimiter()
        self.forwarder = forwarder or WebhookForwarder(
            settings.webhook_url,
            timeout=settings.webhook_timeout,
            retry_timeout=settings.retry_timeout,
        )

    async def handle(self, request: InboundRequest) -> GatewayResponse:
        try:
            return await self._process(request)
        except BotDetected as e:
            logging.warning(
                f"Honeypot triggered: {e.field_name} was filled. Likely a bot. IP: {get_client_ip(request)}"
            )
            # Don't let them know they were caught
            return GatewayResponse(200, {"success": True, "message": HONEYPOT_MESSAGE})
        except ContactGatewayError as e:
            return GatewayResponse(e.status_code, e.to_body(), e.headers())
        except Exception as e:
            logging.error(f"Error processing contact form: {str(e)}", exc_info=True)
            return GatewayResponse(
                500,
                {
                    "success": False,
                    "error": "Internal server error",
                    "message": "An unexpected error occurred. Please try again later.",
                },
            )

    async def _process(self, request: InboundRequest) -> GatewayResponse:
        self._check_gate(request)

        client_ip = get_client_ip(request)
        decision = self.limiter.check(client_ip)
        if not decision.allowed:
            logging.warning(f"Rate limit exceeded for IP: {client_ip}")
            raise RateLimited(decision.retry_after)

        body = self._parse_body(request)
        check_honeypot(body)

        try:
            check_api_key(self.settings.api_key, request.header("X-API-Key") or request.query.get("api_key"))
        except ContactGatewayError:
            logging.warning(f"Invalid API key attempt from IP: {client_ip}")
            raise

        try:
            phone = validate_phone(body.get("phone"))
        except ClientError as e:
            if e.message == "Invalid phone number format":
                logging.warning(f"Invalid phone format from IP: {client_ip}")
            raise
        email = validate_email(body.get("email"))

        submission = ContactSubmission(
            phone=phone,
            name=body.get("name"),
            email=email,
            business=body.get("business"),
            exampleInformation1=body.get("exampleInformation1"),
            exampleInformation2=body.get("exampleInformation2"),
            exampleInformation3=body.get("exampleInformation3"),
            ip=client_ip,
        )
        payload = submission.model_dump()
        logging.info(f"Contact form submission accepted from IP: {client_ip}")

        result = await self._forward(payload)
        return self._respond(payload, result)

    def _check_gate(self, request: InboundRequest) -> None:
        if request.method.upper() != "POST":
            raise MethodNotAllowed("Only POST is supported on this endpoint")

        if not _is_json_content_type(request.header("Content-Type")):
            raise ClientError("Content-Type must be application/json", error="Invalid Content-Type")

        if not request.enforce_body_limit:
            return
        declared = request.header("Content-Length")
        try:
            declared_size = int(declared) if declared else 0
        except ValueError:
            raise ClientError("Content-Length header is not a valid integer", error="Invalid Content-Length")
        if declared_size > MAX_BODY_BYTES or len(request.body) > MAX_BODY_BYTES:
            raise PayloadTooLarge(f"Request body exceeds maximum size of {MAX_BODY_BYTES // 1024}KB")

    def _parse_body(self, request: InboundRequest) -> Dict[str, Any]:
        try:
            body = json.loads(request.body or b"{}")
        except ValueError:
            raise ClientError("Request body must be valid JSON", error="Invalid JSON")
        if not isinstance(body, dict):
            raise ClientError("Request body must be a JSON object", error="Invalid JSON")
        return body

    async def _forward(self, payload: Dict[str, Any]) -> ForwardResult:
        if self.settings.delivery_mode == DELIVERY_MODE_BACKGROUND:
            return self.forwarder.forward_in_background(payload)
        return await self.forwarder.forward(payload)

    def _respond(self, payload: Dict[str, Any], result: ForwardResult) -> GatewayResponse:
        response = ContactResponse(success=True, message=SUCCESS_MESSAGE, data=payload)
        # Webhook diagnostics only outside production
        if not self.settings.is_production:
            response.webhookError = result.to_error_info()
        return GatewayResponse(200, response.to_body())
