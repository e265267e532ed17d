# app/transport/instagram_webhook.py
"""
Instagram (Meta) webhook handler.

Handles:
- GET /instagram/webhook: verification handshake (hub.verify_token + hub.challenge)
- POST /instagram/webhook: media notifications, relayed to Telegram
- POST /instagram/webhook/debug: raw payload relay as text (opt-in)

The POST handler answers immediately and forwards in a background task:
downloads and uploads can take far longer than the sender is willing to
wait. Failures of that task are logged by the BackgroundTaskRunner.
"""
from __future__ import annotations

import hmac
import json
from typing import Any

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from app.config import settings
from app.core.payload import InboundPayload
from app.infra.logging_config import get_logger, LogContext
from app.infra.metrics import AppMetrics, inc_counter

logger = get_logger(__name__)


async def _read_body(request: Request) -> Any:
    """Decoded JSON body, the raw text if it isn't JSON, or None if empty."""
    raw = await request.body()
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        inc_counter("instagram_webhook_malformed_payload")
        return raw.decode("utf-8", errors="replace")


# -------------------------------------------------------------------------
# GET: Webhook Verification
# -------------------------------------------------------------------------

async def instagram_webhook_verify(request: Request) -> PlainTextResponse:
    """
    Handle Meta webhook verification (GET).

    Meta sends:
      hub.mode=subscribe
      hub.verify_token=<configured token>
      hub.challenge=<random string>

    If a verify token is configured it must match (403 otherwise). The
    challenge is echoed back as plain text; without one the request is a
    400.
    """
    mode = request.query_params.get("hub.mode")
    token = request.query_params.get("hub.verify_token") or ""
    challenge = request.query_params.get("hub.challenge")

    expected_token = settings.instagram_verify_token
    if expected_token and not hmac.compare_digest(token.encode(), expected_token.encode()):
        logger.warning(f"Instagram webhook verification failed: mode={mode}, token_match=False")
        inc_counter("instagram_webhook_verify_failed")
        raise HTTPException(status_code=403, detail="Forbidden")

    if challenge:
        logger.info("Instagram webhook verification successful")
        inc_counter("instagram_webhook_verified")
        return PlainTextResponse(content=challenge, status_code=200)

    raise HTTPException(status_code=400, detail="Bad Request")


# -------------------------------------------------------------------------
# POST: Media notifications
# -------------------------------------------------------------------------

async def instagram_webhook_handler(request: Request) -> JSONResponse:
    """
    Handle Instagram webhook deliveries (POST).

    Returns {"status": "forwarded"} as soon as the relay is scheduled.
    A body that is not a JSON object is treated as an empty payload in
    media mode; nothing is rejected for its shape.
    """
    request_id = getattr(request.state, "request_id", None)
    log_ctx = LogContext(logger, request_id=request_id)
    body = await _read_body(request)

    mode = settings.instagram_relay_mode
    runner = request.app.state.task_runner
    AppMetrics.webhook_received(mode)

    if mode == "text":
        uploader = request.app.state.uploader
        runner.spawn(
            uploader.send_payload_as_text(body if body is not None else {}),
            name=f"relay-text-{request_id}",
        )
        log_ctx.info("Instagram webhook received: relaying raw payload as text")
    else:
        payload = InboundPayload.from_raw(body)
        forwarder = request.app.state.forwarder
        runner.spawn(
            forwarder.forward(payload, request_id=request_id),
            name=f"forward-{request_id}",
        )
        log_ctx.info(
            f"Instagram webhook received: items={len(payload.items)}, "
            f"has_sender={payload.sender is not None}"
        )

    return JSONResponse({"status": "forwarded"}, status_code=200)


async def instagram_webhook_debug(request: Request) -> JSONResponse:
    """
    Send the received body to Telegram as a text message and wait for it.

    Used while wiring up a new integration to see exactly what it posts.
    Disabled unless ``enable_debug_endpoint`` is set.
    """
    if not settings.enable_debug_endpoint:
        raise HTTPException(status_code=404, detail="Not found")

    body = await _read_body(request)
    uploader = request.app.state.uploader

    try:
        result = await uploader.send_payload_as_text(body if body is not None else {})
    except Exception as exc:
        logger.error(f"Error sending debug payload: {exc.__class__.__name__}: {exc}", exc_info=True)
        return JSONResponse({"error": "Internal server error"}, status_code=500)

    return JSONResponse({"status": "sent_as_text", "delivery": result.status.value}, status_code=200)
