"""
Serverless contact form handler.

One invocation per request, API-Gateway-style event in, {statusCode, headers,
body} out. The pipeline, and with it the rate limiter, is built once per warm
worker and reset whenever the platform starts a new one.

Each invocation runs on its own event loop, which closes when the handler
returns. Detached webhook work (background deliveries and retries) is given
up to the retry timeout to finish before the response is handed back;
whatever is still running after that is cancelled and logged.

Routes:
    POST /api/contact
"""

import asyncio
import base64
import json
import logging
from threading import Lock
from typing import Any, Dict, Optional

from gateway.shared.contact.config import ContactSettings, load_environment
from gateway.shared.contact.pipeline import ContactPipeline, GatewayResponse, InboundRequest

_pipeline: Optional[ContactPipeline] = None
_pipeline_lock = Lock()


def get_pipeline() -> ContactPipeline:
    global _pipeline
    with _pipeline_lock:
        if _pipeline is None:
            load_environment()
            _pipeline = ContactPipeline(ContactSettings.from_env())
        return _pipeline


def reset_pipeline(pipeline: Optional[ContactPipeline] = None) -> None:
    """Replace the worker's pipeline (None rebuilds it from the environment on next use)."""
    global _pipeline
    with _pipeline_lock:
        _pipeline = pipeline


def _event_method(event: Dict[str, Any]) -> str:
    method = event.get("httpMethod")
    if not method:
        method = (event.get("requestContext") or {}).get("http", {}).get("method")
    return (method or "GET").upper()


def _event_peer(event: Dict[str, Any]) -> Optional[str]:
    context = event.get("requestContext") or {}
    identity = context.get("identity") or {}
    return identity.get("sourceIp") or (context.get("http") or {}).get("sourceIp")


def _event_body(event: Dict[str, Any]) -> bytes:
    body_raw = event.get("body") or ""
    if event.get("isBase64Encoded") and body_raw:
        return base64.b64decode(body_raw)
    if isinstance(body_raw, (dict, list)):
        # Some local invokers hand over an already-parsed body
        return json.dumps(body_raw).encode("utf-8")
    return str(body_raw).encode("utf-8")


def to_inbound_request(event: Dict[str, Any]) -> InboundRequest:
    headers = event.get("headers") or {}
    return InboundRequest(
        method=_event_method(event),
        headers={str(key).lower(): value for key, value in headers.items()},
        query=dict(event.get("queryStringParameters") or {}),
        body=_event_body(event),
        peer=_event_peer(event),
        # The platform caps request size itself
        enforce_body_limit=False,
    )


def to_platform_response(result: GatewayResponse) -> Dict[str, Any]:
    headers = {"Content-Type": "application/json"}
    headers.update(result.headers)
    return {
        "statusCode": result.status_code,
        "headers": headers,
        "body": json.dumps(result.body),
    }


async def _run_invocation(pipeline: ContactPipeline, request: InboundRequest) -> GatewayResponse:
    result = await pipeline.handle(request)
    runner = pipeline.forwarder.runner
    if runner.pending:
        still_running = await runner.drain(pipeline.settings.retry_timeout)
        if still_running:
            logging.warning(
                f"{still_running} webhook task(s) still running after "
                f"{pipeline.settings.retry_timeout:g}s, cancelling with the invocation"
            )
    return result


def handle_event(event: Dict[str, Any], pipeline: ContactPipeline) -> Dict[str, Any]:
    """Run one event through the pipeline on a fresh event loop."""
    try:
        request = to_inbound_request(event)
    except (ValueError, TypeError) as e:
        logging.warning(f"Malformed invocation event: {str(e)}")
        return to_platform_response(
            GatewayResponse(400, {"success": False, "error": "Bad request", "message": "Malformed request"})
        )
    result = asyncio.run(_run_invocation(pipeline, request))
    return to_platform_response(result)


def handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """Platform entry point."""
    return handle_event(event, get_pipeline())
