# app/core/forwarder.py
"""
Forwarding of one inbound payload to the chat destination.

Items are handled strictly in order, one at a time, so messages appear in
the chat in the same order as in the source. Each item is its own failure
boundary: a failed download or upload is logged and recorded, and the
next item still goes out.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from app.core.classifier import classify, entry_matches, media_entry_kind
from app.core.domain import (
    ForwardReport,
    GroupMedia,
    ItemOutcome,
    MediaKind,
    SendResult,
    SendStatus,
)
from app.core.payload import InboundItem, InboundPayload, MediaRef
from app.core.ports import MediaUploader
from app.infra.logging_config import get_logger, LogContext, short_url
from app.infra.metrics import AppMetrics

logger = get_logger(__name__)

SENDER_PREFIX = "From Instagram @"

METHOD_PHOTO = "photo"
METHOD_VIDEO = "video"
METHOD_MEDIA_GROUP = "media_group"


def build_caption(sender: str | None, caption: str | None) -> str | None:
    """
    Compose the outbound caption.

    >>> build_caption("alice", "hello")
    'From Instagram @alice\\n\\nhello'
    >>> build_caption(None, None) is None
    True
    """
    parts: list[str] = []
    if sender:
        parts.append(f"{SENDER_PREFIX}{sender}")
    if caption:
        parts.append(caption)
    return "\n\n".join(parts) or None


@dataclass
class DispatchPlan:
    """Which uploader capability to call for an item, and with what."""
    method: str
    url: str | None = None
    group: list[GroupMedia] = field(default_factory=list)


def plan_dispatch(kind: MediaKind, usable: list[MediaRef]) -> DispatchPlan | None:
    """
    Choose the upload path for an item whose media entries all have a url.

    Returns None when nothing in ``usable`` can be sent for ``kind``.
    """
    if kind is MediaKind.CAROUSEL:
        if not usable:
            return None
        # A one-entry carousel is an ordinary post; albums need at least two.
        if len(usable) == 1:
            single = usable[0]
            if media_entry_kind(single.type) is MediaKind.VIDEO:
                return DispatchPlan(METHOD_VIDEO, url=single.url)
            return DispatchPlan(METHOD_PHOTO, url=single.url)
        return DispatchPlan(
            METHOD_MEDIA_GROUP,
            group=[GroupMedia(kind=media_entry_kind(ref.type), url=ref.url) for ref in usable],
        )

    for ref in usable:
        if entry_matches(ref.type, kind):
            method = METHOD_VIDEO if kind is MediaKind.VIDEO else METHOD_PHOTO
            return DispatchPlan(method, url=ref.url)
    return None


class MediaForwarder:
    """
    Application service: payload -> per-item uploads.

    Args:
        uploader: Destination capabilities (photo / video / media group).
    """

    def __init__(self, uploader: MediaUploader) -> None:
        self.uploader = uploader

    async def forward(
        self,
        payload: InboundPayload,
        *,
        request_id: str | None = None,
    ) -> ForwardReport:
        report = ForwardReport()

        for index, item in enumerate(payload.items):
            outcome = await self._forward_item(index, item, payload.sender, request_id)
            AppMetrics.item_forwarded(outcome.kind.value, outcome.status.value)
            report.outcomes.append(outcome)

        LogContext(logger, request_id=request_id).info(
            f"Payload forwarded: items={len(report.outcomes)}, sent={report.sent}, "
            f"skipped={report.skipped}, failed={report.failed}"
        )
        return report

    async def _forward_item(
        self,
        index: int,
        item: InboundItem,
        sender: str | None,
        request_id: str | None,
    ) -> ItemOutcome:
        kind = classify(item.type)
        log_ctx = LogContext(logger, request_id=request_id, item_index=index, media_kind=kind.value)

        if not item.media:
            log_ctx.info("Item skipped: no media")
            return ItemOutcome(index, kind, SendStatus.SKIPPED, reason="no_media")

        usable = [ref for ref in item.media if ref.usable]
        if not usable:
            log_ctx.info(f"Item skipped: none of {len(item.media)} media entries has a url")
            return ItemOutcome(index, kind, SendStatus.SKIPPED, reason="no_usable_media")

        plan = plan_dispatch(kind, usable)
        if plan is None:
            log_ctx.info(f"Item skipped: no media entry matches kind={kind.value}")
            return ItemOutcome(index, kind, SendStatus.SKIPPED, reason="no_matching_media")

        caption = build_caption(sender, item.caption)
        try:
            result = await self._send(plan, caption, log_ctx)
        except Exception as exc:
            log_ctx.error(
                f"Item forwarding failed: method={plan.method}, "
                f"error={exc.__class__.__name__}: {exc}",
                exc_info=True,
            )
            return ItemOutcome(
                index, kind, SendStatus.FAILED,
                method=plan.method, reason=f"{exc.__class__.__name__}: {exc}",
            )

        return ItemOutcome(index, kind, result.status, method=plan.method, reason=result.reason)

    async def _send(
        self,
        plan: DispatchPlan,
        caption: str | None,
        log_ctx: LogContext,
    ) -> SendResult:
        if plan.method == METHOD_MEDIA_GROUP:
            log_ctx.info(f"Sending media group: entries={len(plan.group)}")
            return await self.uploader.send_media_group(plan.group, caption)

        if plan.method == METHOD_VIDEO:
            log_ctx.info(f"Sending video: {short_url(plan.url)}")
            return await self.uploader.send_video(plan.url, caption)

        log_ctx.info(f"Sending photo: {short_url(plan.url)}")
        return await self.uploader.send_photo(plan.url, caption)
