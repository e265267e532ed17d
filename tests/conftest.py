# tests/conftest.py
"""Pytest configuration and fixtures"""
import os
import sys
from pathlib import Path

import pytest

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from app.infra.media_fetchers import FetchError, TemporaryArtifact  # noqa: E402


class FileWritingFetcher:
    """Test fetcher: writes a small real file per call into ``directory``."""

    def __init__(self, directory: Path, fail_on: set[str] | None = None):
        self.directory = directory
        self.fail_on = fail_on or set()
        self.calls: list[str] = []
        self.artifacts: list[TemporaryArtifact] = []

    async def fetch(self, url: str) -> TemporaryArtifact:
        self.calls.append(url)
        if url in self.fail_on:
            raise FetchError(f"HTTP 404 for {url}", retryable=False)
        path = self.directory / f"artifact_{len(self.calls)}.bin"
        path.write_bytes(b"media-bytes")
        artifact = TemporaryArtifact(local_path=str(path), source_url=url, size_bytes=11)
        self.artifacts.append(artifact)
        return artifact

    @property
    def leftover_files(self) -> list[str]:
        return sorted(os.listdir(self.directory))


@pytest.fixture
def file_fetcher(tmp_path):
    return FileWritingFetcher(tmp_path)


@pytest.fixture
def sample_payload():
    """Sample webhook body with one item of each kind"""
    return {
        "sender": "alice",
        "items": [
            {
                "type": "image",
                "caption": "sunset",
                "media": [{"type": "image", "url": "https://cdn.example.com/p/1.jpg"}],
            },
            {
                "type": "reel",
                "media": [{"url": "https://cdn.example.com/v/2.mp4"}],
            },
            {
                "type": "carousel",
                "caption": "trip",
                "media": [
                    {"type": "image", "url": "https://cdn.example.com/p/3a.jpg"},
                    {"type": "video", "url": "https://cdn.example.com/v/3b.mp4"},
                ],
            },
        ],
    }


@pytest.fixture
def make_fetcher(tmp_path):
    """Factory for FileWritingFetcher instances that fail on given urls."""
    def _make(fail_on=None):
        return FileWritingFetcher(tmp_path, fail_on=set(fail_on or ()))
    return _make
