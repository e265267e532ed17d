# app/infra/media_fetchers/__init__.py
"""
Media fetchers.

A fetcher turns a remote URL into a caller-owned temporary file. The
generic HTTP fetcher is the only implementation; the protocol lets tests
and future sources plug in their own.
"""
from app.infra.media_fetchers.base import (
    FetchError,
    MediaFetcher,
    TemporaryArtifact,
)
from app.infra.media_fetchers.http_fetcher import HttpMediaFetcher, extension_from_url

__all__ = [
    "FetchError",
    "MediaFetcher",
    "TemporaryArtifact",
    "HttpMediaFetcher",
    "extension_from_url",
]
