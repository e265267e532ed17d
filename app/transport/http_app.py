# app/transport/http_app.py
"""
HTTP application: Instagram webhook in, Telegram media out.

Routes:
1. Public pages: /, /privacy-policy (required by the Meta app review)
2. Probes: /health, /metrics
3. Webhook: GET/POST /instagram/webhook, POST /instagram/webhook/debug (opt-in)

Run with:
    uvicorn app.transport.http_app:app --host 0.0.0.0 --port 3000
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, HTMLResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import settings, warn_on_risky_config
from app.core.forwarder import MediaForwarder
from app.infra.background import BackgroundTaskRunner
from app.infra.logging_config import setup_logging, get_logger
from app.infra.metrics import get_metrics_collector
from app.transport.middleware import (
    BodySizeLimitMiddleware,
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    ErrorHandlingMiddleware,
)
from app.transport.security import SecurityHeaders, sanitize_error_message
from app.transport.instagram_webhook import (
    instagram_webhook_debug,
    instagram_webhook_handler,
    instagram_webhook_verify,
)
from app.transport.telegram_sender import get_uploader

# Initialize logging first
setup_logging(
    level=settings.log_level,
    use_json=settings.is_production
)

logger = get_logger(__name__)

PRIVACY_POLICY_HTML = (
    '<!DOCTYPE html><html><head><meta charset="utf-8"><title>Privacy Policy</title></head>'
    "<body><h1>Privacy Policy</h1><p>We do not collect or store your personal data. "
    "Incoming webhook data is used only to forward media to Telegram and is not retained.</p>"
    "</body></html>"
)


# ============================================================================
# MIDDLEWARE FOR SECURITY HEADERS
# ============================================================================

class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses"""
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        return SecurityHeaders.add_security_headers(response)


# ============================================================================
# LIFESPAN
# ============================================================================

@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    """Application lifecycle: startup and shutdown"""

    # STARTUP
    logger.info(
        f"Starting application: env={settings.app_env}, relay_mode={settings.instagram_relay_mode}"
    )

    for msg in warn_on_risky_config(settings):
        logger.warning(f"[config] {msg}")

    uploader = get_uploader()
    fastapi_app.state.uploader = uploader
    fastapi_app.state.forwarder = MediaForwarder(uploader)
    fastapi_app.state.task_runner = BackgroundTaskRunner()

    if settings.telegram_enabled:
        logger.info("Telegram destination configured")
    else:
        logger.warning("Telegram destination not configured: running in dry-run mode")

    logger.info("Application startup complete")

    yield

    # SHUTDOWN
    logger.info("Shutting down application")

    # Let in-flight forwarding finish before the sessions go away
    await fastapi_app.state.task_runner.drain(timeout=settings.shutdown_drain_seconds)

    # Close all shared HTTP sessions
    from app.infra.http_client import close_all_sessions
    await close_all_sessions()

    logger.info("Application shutdown complete")


# ============================================================================
# CREATE APP
# ============================================================================

app = FastAPI(
    title="Instagram to Telegram relay",
    description="Forwards webhook-delivered Instagram media to a Telegram chat",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
    openapi_url=None if settings.is_production else "/openapi.json",
)

# Add security headers middleware
app.add_middleware(SecurityHeadersMiddleware)

# Add custom middleware
app.add_middleware(ErrorHandlingMiddleware)
app.add_middleware(BodySizeLimitMiddleware, max_bytes=settings.max_request_body_bytes)
app.add_middleware(RequestLoggingMiddleware, enabled=settings.enable_request_logging)
app.add_middleware(RequestIDMiddleware)


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions with appropriate logging"""
    if exc.status_code >= 500:
        logger.error(f"Server error: {exc.detail}", extra={"status_code": exc.status_code})

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions"""
    logger.error(f"Unhandled exception: {exc.__class__.__name__}", exc_info=True)

    # Sanitize error message for production
    error_message = sanitize_error_message(exc, settings.is_production)

    return JSONResponse(
        status_code=500,
        content={"error": error_message},
    )


# ============================================================================
# PUBLIC ENDPOINTS
# ============================================================================

@app.get("/", include_in_schema=False)
def index():
    return HTMLResponse("hehe")


@app.get("/privacy-policy", include_in_schema=False)
def privacy_policy():
    return HTMLResponse(PRIVACY_POLICY_HTML)


@app.get("/health")
def health():
    """
    Basic health check.
    Used by load balancers, monitoring, etc.
    """
    return {"status": "ok"}


@app.get("/metrics")
def metrics(request: Request):
    """In-process counters and histograms, plus in-flight background tasks."""
    data = get_metrics_collector().get_metrics()
    runner = getattr(request.app.state, "task_runner", None)
    data["background_tasks_pending"] = runner.pending if runner else 0
    return data


# ============================================================================
# INSTAGRAM WEBHOOK
# ============================================================================

@app.get("/instagram/webhook")
async def webhook_instagram_verify(request: Request):
    """
    Meta webhook verification.

    Meta sends a GET request with hub.verify_token and hub.challenge
    when the webhook is configured in the App Dashboard.
    """
    return await instagram_webhook_verify(request)


@app.post("/instagram/webhook")
async def webhook_instagram(request: Request):
    """
    Instagram media notifications.

    Answers immediately; media is forwarded to Telegram in the background.
    """
    return await instagram_webhook_handler(request)


@app.post("/instagram/webhook/debug")
async def webhook_instagram_debug(request: Request):
    """Relay the raw request body to Telegram as text (enable_debug_endpoint only)."""
    return await instagram_webhook_debug(request)
