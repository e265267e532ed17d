# app/transport/telegram_sender.py
"""
Telegram Bot API outbound sender.

Uses the Bot API to:
- Upload a single photo or video (multipart, from a downloaded temp file)
- Upload several photos/videos as one media group (album)
- Send plain text (debug relay of raw webhook payloads)

Media is always downloaded first and uploaded as a file rather than passed
to Telegram by URL: Instagram CDN links are signed, short-lived and often
refused by Telegram's own fetcher.

Temp files:
- Every capability releases every artifact it fetched, on every exit path.

Unconfigured destination:
- Without a bot token AND chat id, every capability returns
  ``SendResult.skipped("unconfigured")`` and makes no network call.

Error classification (UploadError.retryable, informational only):
- Token invalid / bot blocked  → NOT retryable (needs human intervention)
- Bad request (chat not found, file too big, bad album) → NOT retryable
- Rate limiting (429)          → retryable
- Network / timeout            → retryable  (transient)
- Unknown server error         → retryable  (optimistic)

HTTP session lifecycle:
- Uses the shared sender session from app.infra.http_client.
- Call close_all_sessions() during application shutdown.
"""
from __future__ import annotations

import asyncio
import json
import os
from contextlib import ExitStack
from typing import Any, Callable, Sequence

import aiohttp

from app.config import settings
from app.core.domain import GroupMedia, MediaKind, SendResult
from app.infra.http_client import get_sender_session
from app.infra.logging_config import get_logger, short_url
from app.infra.media_fetchers import HttpMediaFetcher, MediaFetcher, TemporaryArtifact
from app.infra.metrics import AppMetrics, inc_counter

logger = get_logger(__name__)

MAX_MESSAGE_LENGTH = 4096
TRUNCATION_MARKER = "\n\n... (truncated)"
# Room kept for the marker when cutting long text
_TRUNCATION_RESERVE = 20


# ---------------------------------------------------------------------------
# Error type
# ---------------------------------------------------------------------------

class UploadError(Exception):
    """Error sending to the Telegram Bot API.

    Attributes:
        status:     HTTP status code (0 for connection-level errors).
        error_code: Telegram-specific error code from the response body.
        retryable:  Whether the failure looks transient. Nothing retries
                    automatically; this only drives log levels.
    """

    def __init__(
        self,
        status: int,
        error_code: int | None,
        message: str,
        *,
        retryable: bool = False,
    ):
        self.status = status
        self.error_code = error_code
        self.retryable = retryable
        super().__init__(f"Telegram API error {status} (code={error_code}): {message}")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def truncate_message(text: str, limit: int = MAX_MESSAGE_LENGTH) -> str:
    """Cut ``text`` to fit one Telegram message, keeping a trailing marker."""
    if len(text) <= limit:
        return text
    return f"{text[:limit - _TRUNCATION_RESERVE]}{TRUNCATION_MARKER}"


def payload_to_text(body: Any) -> str:
    """Render a webhook body for the debug relay."""
    if isinstance(body, str):
        return body
    return json.dumps(body, indent=2, ensure_ascii=False, default=str)


def build_media_group(
    items: Sequence[GroupMedia],
    caption: str | None = None,
) -> list[dict]:
    """
    Build the ``media`` JSON array for sendMediaGroup.

    File ``i`` is attached as multipart field ``file<i>``. Telegram shows
    the first entry's caption as the album caption, so it goes there only.
    """
    media: list[dict] = []
    for i, item in enumerate(items):
        entry = {
            "type": "video" if item.kind is MediaKind.VIDEO else "photo",
            "media": f"attach://file{i}",
        }
        if i == 0 and caption:
            entry["caption"] = caption
        media.append(entry)
    return media


def _mask_chat_id(chat_id: str) -> str:
    return chat_id[:4] + "***" if len(chat_id) > 4 else chat_id


def _message_ids(body: dict | None) -> list[int]:
    result = (body or {}).get("result")
    if isinstance(result, dict):
        result = [result]
    if not isinstance(result, list):
        return []
    return [m["message_id"] for m in result if isinstance(m, dict) and "message_id" in m]


async def _safe_response_json(resp: aiohttp.ClientResponse) -> dict | None:
    """Parse JSON from response, returning None if body is not valid JSON."""
    try:
        return await resp.json(content_type=None)
    except Exception:
        logger.warning(f"Telegram API returned non-JSON body: status={resp.status}")
        return None


# ---------------------------------------------------------------------------
# Uploader
# ---------------------------------------------------------------------------

class TelegramMediaUploader:
    """
    Forwards media to one Telegram chat.

    Args:
        token:   Bot token. ``None`` puts the uploader in dry-run mode.
        chat_id: Destination chat/channel ID. ``None`` → dry-run mode.
        fetcher: Downloads remote media to temp files.
        api_base: Bot API base URL.
        session_factory: Returns the aiohttp session used for uploads.
    """

    def __init__(
        self,
        token: str | None,
        chat_id: str | None,
        *,
        fetcher: MediaFetcher,
        api_base: str = "https://api.telegram.org",
        session_factory: Callable[[], aiohttp.ClientSession] = get_sender_session,
    ) -> None:
        self._token = token
        self._chat_id = chat_id
        self._fetcher = fetcher
        self._api_base = api_base.rstrip("/")
        self._session_factory = session_factory

    @property
    def is_configured(self) -> bool:
        return bool(self._token and self._chat_id)

    # -- Public API ---------------------------------------------------------

    async def send_text_message(self, text: str) -> SendResult:
        """Send a plain-text message (no parse mode)."""
        if not self.is_configured:
            return self._unconfigured("sendMessage")

        body = await self._send_request(
            "sendMessage",
            json_payload={"chat_id": self._chat_id, "text": text},
        )
        return SendResult.sent(_message_ids(body))

    async def send_payload_as_text(self, body: Any) -> SendResult:
        """Debug relay: dump a raw webhook body into one text message."""
        return await self.send_text_message(truncate_message(payload_to_text(body)))

    async def send_photo(self, url: str, caption: str | None = None) -> SendResult:
        return await self._send_single("sendPhoto", "photo", url, caption)

    async def send_video(self, url: str, caption: str | None = None) -> SendResult:
        return await self._send_single("sendVideo", "video", url, caption)

    async def send_media_group(
        self,
        items: Sequence[GroupMedia],
        caption: str | None = None,
    ) -> SendResult:
        """
        Upload several photos/videos as one album.

        Downloads run one after another. If any download fails the whole
        group is abandoned: a partial album would misrepresent the post.
        """
        if not self.is_configured:
            return self._unconfigured("sendMediaGroup")
        if not items:
            return SendResult.skipped("empty_group")

        artifacts: list[TemporaryArtifact] = []
        try:
            for item in items:
                artifacts.append(await self._fetcher.fetch(item.url))

            with ExitStack() as stack:
                form = aiohttp.FormData()
                form.add_field("chat_id", self._chat_id)
                form.add_field("media", json.dumps(build_media_group(items, caption)))
                for i, artifact in enumerate(artifacts):
                    fh = stack.enter_context(open(artifact.local_path, "rb"))
                    form.add_field(
                        f"file{i}",
                        fh,
                        filename=os.path.basename(artifact.local_path),
                        content_type=artifact.content_type or "application/octet-stream",
                    )

                with AppMetrics.track_upload_time("sendMediaGroup"):
                    body = await self._send_request("sendMediaGroup", form=form)
        finally:
            for artifact in artifacts:
                artifact.release()

        return SendResult.sent(_message_ids(body))

    # -- Internal -----------------------------------------------------------

    def _bot_url(self, method: str) -> str:
        return f"{self._api_base}/bot{self._token}/{method}"

    def _unconfigured(self, method: str) -> SendResult:
        logger.debug(f"Telegram destination not configured, skipping {method}")
        inc_counter("telegram_upload_skipped", method=method)
        return SendResult.skipped("unconfigured")

    async def _send_single(
        self,
        method: str,
        field_name: str,
        url: str,
        caption: str | None,
    ) -> SendResult:
        if not self.is_configured:
            return self._unconfigured(method)

        artifact: TemporaryArtifact | None = None
        try:
            artifact = await self._fetcher.fetch(url)
            with open(artifact.local_path, "rb") as fh:
                form = aiohttp.FormData()
                form.add_field("chat_id", self._chat_id)
                if caption:
                    form.add_field("caption", caption)
                form.add_field(
                    field_name,
                    fh,
                    filename=os.path.basename(artifact.local_path),
                    content_type=artifact.content_type or "application/octet-stream",
                )
                with AppMetrics.track_upload_time(method):
                    body = await self._send_request(method, form=form)
        finally:
            if artifact is not None:
                artifact.release()

        logger.debug(f"{method} done for {short_url(url)}")
        return SendResult.sent(_message_ids(body))

    async def _send_request(
        self,
        method: str,
        *,
        form: aiohttp.FormData | None = None,
        json_payload: dict | None = None,
    ) -> dict:
        """
        Execute a Telegram Bot API request with error handling.
        """
        url = self._bot_url(method)
        chat_id = self._chat_id or ""
        try:
            session = self._session_factory()
            async with session.post(url, data=form, json=json_payload) as resp:
                body = await _safe_response_json(resp)

                if resp.status == 200 and body and body.get("ok"):
                    ids = _message_ids(body)
                    logger.info(
                        f"Telegram {method} sent: to={_mask_chat_id(chat_id)}, msg_ids={ids}"
                    )
                    inc_counter("telegram_upload_sent", method=method)
                    return body

                # --- Error path ------------------------------------------------
                error_desc = (body or {}).get("description", "Unknown error")
                error_code = (body or {}).get("error_code")

                # -- Auth failure: token invalid --------
                if resp.status == 401 or error_code == 401:
                    logger.error(f"Telegram API auth error (token invalid): {error_desc}")
                    inc_counter("telegram_upload_failed", method=method, reason="auth")
                    raise UploadError(resp.status, error_code, error_desc, retryable=False)

                # -- Forbidden: bot removed from chat / not an admin of the channel --
                if resp.status == 403:
                    logger.warning(f"Telegram API forbidden: {error_desc}")
                    inc_counter("telegram_upload_failed", method=method, reason="forbidden")
                    raise UploadError(resp.status, error_code, error_desc, retryable=False)

                # -- Bad request: chat not found, file too big, invalid album --
                if resp.status in (400, 413):
                    logger.warning(f"Telegram API bad request ({method}): {error_desc}")
                    inc_counter("telegram_upload_failed", method=method, reason="bad_request")
                    raise UploadError(resp.status, error_code, error_desc, retryable=False)

                # -- Rate limit --------------
                if resp.status == 429:
                    retry_after = (body or {}).get("parameters", {}).get("retry_after")
                    logger.warning(f"Telegram API rate limit, retry_after={retry_after}s")
                    inc_counter("telegram_upload_failed", method=method, reason="rate_limited")
                    raise UploadError(resp.status, error_code, error_desc, retryable=True)

                # -- Anything else ----------------------------
                logger.error(
                    f"Telegram API error: method={method}, status={resp.status}, "
                    f"code={error_code}, msg={error_desc}"
                )
                inc_counter("telegram_upload_failed", method=method, reason="error")
                raise UploadError(resp.status, error_code, error_desc, retryable=True)

        except UploadError:
            raise
        except asyncio.TimeoutError as exc:
            logger.error(f"Telegram API timeout: method={method}")
            inc_counter("telegram_upload_failed", method=method, reason="timeout")
            raise UploadError(0, None, "request timed out", retryable=True) from exc
        except aiohttp.ClientError as exc:
            logger.error(f"Telegram API connection error: {exc}", exc_info=True)
            inc_counter("telegram_upload_failed", method=method, reason="connection")
            raise UploadError(0, None, str(exc), retryable=True) from exc


# ---------------------------------------------------------------------------
# Process-wide instance
# ---------------------------------------------------------------------------

_uploader: TelegramMediaUploader | None = None


def get_uploader() -> TelegramMediaUploader:
    """Uploader configured from settings (built once, on first use)."""
    global _uploader
    if _uploader is None:
        _uploader = TelegramMediaUploader(
            settings.telegram_bot_token,
            settings.telegram_chat_id,
            fetcher=HttpMediaFetcher(),
            api_base=settings.telegram_api_base,
        )
    return _uploader
