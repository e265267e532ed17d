# app/infra/http_client.py
"""
Shared HTTP client sessions for the application.

Provides named, lazy-initialized aiohttp.ClientSession singletons
to avoid per-request session creation overhead and TCP connection churn.

Session profiles
~~~~~~~~~~~~~~~~
- **sender**  – Telegram Bot API uploads (total=upload_timeout_seconds, connect=10 s, pool limit=20)
- **fetcher** – remote media downloads  (total=fetch_timeout_seconds,
  connect=fetch_connect_timeout_seconds, pool limit=10)

Timeouts come from settings; the defaults are generous because media files
may be large and are streamed in both directions.

Shutdown
~~~~~~~~
Call ``close_all_sessions()`` once during application shutdown.
"""
from __future__ import annotations

import aiohttp

from app.config import settings
from app.infra.logging_config import get_logger

logger = get_logger(__name__)

# ---------------------------------------------------------------------------
# Internal state
# ---------------------------------------------------------------------------

_sessions: dict[str, aiohttp.ClientSession] = {}


def _get_or_create(
    name: str,
    timeout: aiohttp.ClientTimeout,
    limit: int = 10,
) -> aiohttp.ClientSession:
    """Return an existing session or create a new one."""
    session = _sessions.get(name)
    if session is None or session.closed:
        session = aiohttp.ClientSession(
            timeout=timeout,
            connector=aiohttp.TCPConnector(
                keepalive_timeout=30,
                limit=limit,
                enable_cleanup_closed=True,
            ),
        )
        _sessions[name] = session
        logger.debug("HTTP session '%s' created (limit=%d)", name, limit)
    return session


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def get_sender_session() -> aiohttp.ClientSession:
    """Session for outbound Telegram Bot API calls."""
    return _get_or_create(
        "sender",
        aiohttp.ClientTimeout(total=settings.upload_timeout_seconds, connect=10),
        limit=20,
    )


def get_fetcher_session() -> aiohttp.ClientSession:
    """Session for remote media downloads."""
    return _get_or_create(
        "fetcher",
        aiohttp.ClientTimeout(
            total=settings.fetch_timeout_seconds,
            connect=settings.fetch_connect_timeout_seconds,
        ),
        limit=10,
    )


async def close_all_sessions() -> None:
    """Gracefully close every managed session.  Call during app shutdown."""
    for name in list(_sessions):
        session = _sessions.pop(name, None)
        if session is not None and not session.closed:
            await session.close()
            logger.debug("HTTP session '%s' closed", name)
