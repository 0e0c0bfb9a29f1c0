"""Contact Gateway - FastAPI server relaying contact form submissions to a webhook."""

import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from gateway.shared.contact.config import (
    RATE_LIMIT_MAX_REQUESTS,
    RATE_LIMIT_WINDOW_SECONDS,
    ContactSettings,
    load_environment,
)
from gateway.shared.contact.forwarder import WebhookForwarder
from gateway.shared.contact.pipeline import ContactPipeline
from gateway.shared.contact.rate_limit import Admitter
from gateway.shared.contact.routes import router as contact_router

# Configure logging
logging.basicConfig(level=logging.INFO)

AVAILABLE_ROUTES = ["POST /api/contact", "GET /api/health"]

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


def log_configuration(settings: ContactSettings) -> None:
    """Startup summary of what is and isn't configured. Never logs the API key itself."""
    if settings.webhook_url:
        logging.info(f"Webhook configured: {settings.webhook_url}")
    else:
        logging.warning("WEBHOOK_URL not configured. Submissions will be accepted but not forwarded.")
    logging.info(
        f"Rate limiting: {RATE_LIMIT_MAX_REQUESTS} requests per "
        f"{RATE_LIMIT_WINDOW_SECONDS // 60} minutes per IP"
    )
    if settings.cors_restricted:
        logging.info(f"CORS: restricted to {', '.join(settings.allowed_origins)}")
    else:
        logging.info("CORS: open (set ALLOWED_ORIGINS and ENVIRONMENT=production to restrict)")
    logging.info(f"API key: {'enabled' if settings.api_key else 'disabled (set API_KEY to enable)'}")
    logging.info(f"Webhook delivery mode: {settings.delivery_mode}")
    logging.info(f"Environment: {settings.environment}")


def _cors_headers(request: Request, settings: ContactSettings) -> Dict[str, str]:
    """CORS headers for error responses produced outside the CORS middleware."""
    origin = request.headers.get("origin")
    if not origin:
        return {}
    if settings.cors_restricted and origin not in settings.allowed_origins:
        return {}
    return {
        "Access-Control-Allow-Origin": origin,
        "Access-Control-Allow-Credentials": "true",
    }


def create_app(
    settings: Optional[ContactSettings] = None,
    limiter: Optional[Admitter] = None,
    forwarder: Optional[WebhookForwarder] = None,
) -> FastAPI:
    """
    Build the standalone server.

    The pipeline (and with it the rate limiter state) is constructed here once
    and shared by every request the process serves.
    """
    if settings is None:
        load_environment()
        settings = ContactSettings.from_env()
    pipeline = ContactPipeline(settings, limiter=limiter, forwarder=forwarder)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log_configuration(settings)
        yield
        pending = pipeline.forwarder.runner.pending
        if pending:
            logging.warning(f"Shutting down with {pending} background webhook task(s) still running")

    app = FastAPI(
        title="Contact Gateway",
        description="Rate-limited contact form relay to a workflow-automation webhook",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.contact_pipeline = pipeline

    app.include_router(contact_router)

    # In development (or without ALLOWED_ORIGINS) every origin is allowed
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins if settings.cors_restricted else ["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization", "X-API-Key"],
    )

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        logging.info(f"{request.method} {request.url.path}")
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers[name] = value
        return response

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Unknown routes get a JSON 404 listing what is available."""
        headers = _cors_headers(request, settings)
        if exc.status_code == 404:
            logging.warning(f"404 - Route not found: {request.method} {request.url.path}")
            return JSONResponse(
                status_code=404,
                content={
                    "success": False,
                    "error": "Route not found",
                    "method": request.method,
                    "path": request.url.path,
                    "availableRoutes": AVAILABLE_ROUTES,
                },
                headers=headers,
            )
        if exc.headers:
            headers.update(exc.headers)
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": str(exc.detail)},
            headers=headers,
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logging.error(f"Unhandled exception: {str(exc)}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Internal server error"},
            headers=_cors_headers(request, settings),
        )

    @app.get("/")
    async def root():
        return {
            "message": "Contact Gateway API is running",
            "status": "ok",
            "endpoints": {
                "POST /api/contact": "Submit contact form",
                "GET /api/health": "Health check",
            },
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=app.state.settings.host, port=app.state.settings.port)
