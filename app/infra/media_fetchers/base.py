# app/infra/media_fetchers/base.py
"""
Media fetcher abstraction layer.

Defines the protocol and shared types for media fetchers. A fetcher
downloads one remote resource into a local temporary file; the caller owns
that file until it calls ``TemporaryArtifact.release()``.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional, Protocol

from app.infra.logging_config import get_logger

logger = get_logger(__name__)


class FetchError(Exception):
    """
    Error for media fetch failures.

    Attributes:
        retryable: Whether the failure looks transient (informational only,
                   nothing retries automatically).
    """

    def __init__(self, message: str, retryable: bool = True):
        self.retryable = retryable
        super().__init__(message)


@dataclass
class TemporaryArtifact:
    """Local copy of a remote media resource."""

    local_path: str
    source_url: str = ""
    size_bytes: int = 0
    content_type: Optional[str] = None
    released: bool = False

    @property
    def exists(self) -> bool:
        return os.path.exists(self.local_path)

    def release(self) -> None:
        """Delete the local file. Safe to call more than once; never raises."""
        if self.released:
            return
        self.released = True
        try:
            os.unlink(self.local_path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.debug(f"Temp file cleanup failed: {self.local_path}: {exc}")


class MediaFetcher(Protocol):
    """Protocol for media fetchers."""

    async def fetch(self, url: str) -> TemporaryArtifact:
        """
        Download a remote resource to a unique local file.

        Args:
            url: Remote media URL.

        Returns:
            TemporaryArtifact owned by the caller.

        Raises:
            FetchError: If the request fails, times out, or the body cannot
                be written locally.
        """
        ...
