# app/core/ports.py
from __future__ import annotations
from typing import Protocol, Sequence
from app.core.domain import GroupMedia, SendResult


class MediaUploader(Protocol):
    async def send_photo(self, url: str, caption: str | None = None) -> SendResult: ...
    async def send_video(self, url: str, caption: str | None = None) -> SendResult: ...

    async def send_media_group(
        self,
        items: Sequence[GroupMedia],
        caption: str | None = None,
    ) -> SendResult:
        """
        Upload all ``items`` as one grouped message, caption on the first.
        Empty ``items`` => SendResult.skipped, no outbound call.
        """
        ...
