"""Contact routes: form submission relay and health check."""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from gateway.shared.contact.pipeline import ContactPipeline, InboundRequest
from gateway.shared.contact.schemas import ContactResponse, ErrorResponse, HealthResponse

router = APIRouter(prefix="/api", tags=["contact"])

CONTACT_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def get_pipeline(request: Request) -> ContactPipeline:
    """The pipeline is built once in create_app and stored on app.state."""
    return request.app.state.contact_pipeline


async def to_inbound_request(request: Request) -> InboundRequest:
    return InboundRequest(
        method=request.method,
        headers={key.lower(): value for key, value in request.headers.items()},
        query=dict(request.query_params),
        body=await request.body(),
        peer=request.client.host if request.client else None,
        enforce_body_limit=True,
    )


@router.api_route(
    "/contact",
    methods=CONTACT_METHODS,
    response_model=ContactResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        405: {"model": ErrorResponse},
        413: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
async def submit_contact_form(request: Request):
    """
    Relay a contact form submission to the configured automation webhook.

    Features:
    - Per-IP rate limiting: max 5 submissions per 15 minutes
    - Honeypot bot detection (bots get a fake success)
    - Optional API key via X-API-Key header or api_key query parameter
    - Phone/email validation and angle-bracket sanitization
    - Submission is reported as accepted even when the webhook fails
    """
    pipeline = get_pipeline(request)
    result = await pipeline.handle(await to_inbound_request(request))
    return JSONResponse(status_code=result.status_code, content=result.body, headers=result.headers)


@router.get("/health", response_model=HealthResponse)
async def health():
    return HealthResponse()
