# app/infra/media_fetchers/http_fetcher.py
"""
Generic HTTP media fetcher.

Streams a remote resource straight to a unique file in the temp area.
Media can be large (reels, long videos) so the body is never buffered in
memory; chunks are written as they arrive and the file is fsync'ed before
the artifact is handed to the caller.
"""
from __future__ import annotations

import asyncio
import os
import re
import secrets
import tempfile
import time
from typing import Callable
from urllib.parse import unquote, urlparse

import aiohttp

from app.config import settings
from app.infra.http_client import get_fetcher_session
from app.infra.logging_config import get_logger, short_url
from app.infra.media_fetchers.base import FetchError, TemporaryArtifact
from app.infra.metrics import AppMetrics

logger = get_logger(__name__)

_EXTENSION_RE = re.compile(r"^\.[A-Za-z0-9]{1,10}$")
_CHUNK_SIZE = 64 * 1024


def extension_from_url(url: str) -> str:
    """Return the URL path's file extension (".jpg", ".mp4") or ""."""
    try:
        path = unquote(urlparse(url).path)
    except ValueError:
        return ""
    ext = os.path.splitext(path)[1]
    return ext if _EXTENSION_RE.match(ext) else ""


class HttpMediaFetcher:
    """
    Downloads media via plain HTTP(S) GET.

    Each call gets its own file: ``<prefix><time_ns>_<random><ext>``. The
    timestamp alone is not enough under concurrent webhook deliveries, so
    12 random hex chars are appended and the file is opened in exclusive
    mode.
    """

    def __init__(
        self,
        *,
        session_factory: Callable[[], aiohttp.ClientSession] = get_fetcher_session,
        temp_dir: str | None = None,
        prefix: str | None = None,
        max_bytes: int | None = None,
        chunk_size: int = _CHUNK_SIZE,
    ) -> None:
        self._session_factory = session_factory
        self._temp_dir = temp_dir or settings.media_temp_dir or tempfile.gettempdir()
        self._prefix = prefix if prefix is not None else settings.media_temp_prefix
        self._max_bytes = settings.fetch_max_bytes if max_bytes is None else max_bytes
        self._chunk_size = chunk_size

    def allocate_path(self, url: str) -> str:
        """Build a unique local path for ``url``."""
        file_name = (
            f"{self._prefix}{time.time_ns()}_{secrets.token_hex(6)}"
            f"{extension_from_url(url)}"
        )
        return os.path.join(self._temp_dir, file_name)

    async def fetch(self, url: str) -> TemporaryArtifact:
        try:
            parsed = urlparse(url)
        except ValueError as exc:
            raise FetchError(f"Invalid URL: {exc}", retryable=False) from exc
        if parsed.scheme not in ("https", "http"):
            raise FetchError(f"Invalid URL scheme: {parsed.scheme!r}", retryable=False)

        path = self.allocate_path(url)
        logger.info(f"Downloading media from: {short_url(url)}")

        try:
            artifact = await self._download(url, path)
        except FetchError:
            _discard(path)
            AppMetrics.media_fetch_failed()
            raise
        except asyncio.TimeoutError as exc:
            _discard(path)
            AppMetrics.media_fetch_failed()
            raise FetchError(f"Download timed out: {short_url(url)}") from exc
        except aiohttp.ClientError as exc:
            _discard(path)
            AppMetrics.media_fetch_failed()
            raise FetchError(f"Download failed: {exc.__class__.__name__}: {exc}") from exc
        except OSError as exc:
            _discard(path)
            AppMetrics.media_fetch_failed()
            raise FetchError(f"Cannot write temp file {path}: {exc}", retryable=False) from exc
        except asyncio.CancelledError:
            _discard(path)
            raise

        AppMetrics.media_fetched(artifact.size_bytes)
        logger.debug(
            f"Media downloaded: {short_url(url)} -> {artifact.local_path} "
            f"({artifact.size_bytes} bytes)"
        )
        return artifact

    async def _download(self, url: str, path: str) -> TemporaryArtifact:
        session = self._session_factory()
        async with session.get(url) as resp:
            if not 200 <= resp.status < 300:
                raise FetchError(
                    f"HTTP {resp.status} for {short_url(url)}",
                    retryable=resp.status == 429 or resp.status >= 500,
                )

            if self._max_bytes and resp.content_length and resp.content_length > self._max_bytes:
                raise FetchError(
                    f"Media too large: {resp.content_length} bytes (max {self._max_bytes})",
                    retryable=False,
                )

            written = 0
            with open(path, "xb") as fh:
                async for chunk in resp.content.iter_chunked(self._chunk_size):
                    written += len(chunk)
                    if self._max_bytes and written > self._max_bytes:
                        raise FetchError(
                            f"Media too large: over {self._max_bytes} bytes",
                            retryable=False,
                        )
                    fh.write(chunk)
                # fsync of a large file blocks for a while
                await asyncio.get_running_loop().run_in_executor(None, _sync_to_disk, fh)

            return TemporaryArtifact(
                local_path=path,
                source_url=url,
                size_bytes=written,
                content_type=resp.headers.get("Content-Type"),
            )


def _sync_to_disk(fh) -> None:
    fh.flush()
    os.fsync(fh.fileno())


def _discard(path: str) -> None:
    """Remove a partially written file, ignoring errors."""
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.debug(f"Partial download cleanup failed: {path}: {exc}")
