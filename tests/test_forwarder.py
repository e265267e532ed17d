# tests/test_forwarder.py
"""Tests for per-item dispatch and captions in app/core/forwarder.py."""
from __future__ import annotations

from unittest.mock import AsyncMock, call

import pytest

from app.core.domain import GroupMedia, MediaKind, SendResult, SendStatus
from app.core.forwarder import MediaForwarder, build_caption, plan_dispatch
from app.core.payload import InboundPayload, MediaRef
from app.infra.media_fetchers import FetchError
from app.transport.telegram_sender import TelegramMediaUploader, UploadError, build_media_group


def _uploader() -> AsyncMock:
    uploader = AsyncMock()
    uploader.send_photo.return_value = SendResult.sent([1])
    uploader.send_video.return_value = SendResult.sent([2])
    uploader.send_media_group.return_value = SendResult.sent([3, 4])
    return uploader


def _payload(*items, sender=None) -> InboundPayload:
    return InboundPayload.from_raw({"items": list(items), "sender": sender})


# ============================================================================
# build_caption
# ============================================================================

class TestBuildCaption:
    def test_sender_and_caption(self):
        assert build_caption("alice", "hello") == "From Instagram @alice\n\nhello"

    def test_sender_only(self):
        assert build_caption("alice", None) == "From Instagram @alice"

    def test_caption_only(self):
        assert build_caption(None, "hello") == "hello"

    def test_neither_is_none_not_empty_string(self):
        assert build_caption(None, None) is None
        assert build_caption("", "") is None


# ============================================================================
# plan_dispatch
# ============================================================================

class TestPlanDispatch:
    def test_carousel_without_entries(self):
        assert plan_dispatch(MediaKind.CAROUSEL, []) is None

    def test_single_entry_carousel_untyped_is_photo(self):
        plan = plan_dispatch(MediaKind.CAROUSEL, [MediaRef(url="https://x/a")])
        assert plan.method == "photo"
        assert plan.url == "https://x/a"

    def test_group_entry_kinds(self):
        plan = plan_dispatch(MediaKind.CAROUSEL, [
            MediaRef(type="video", url="https://x/a.mp4"),
            MediaRef(type="image", url="https://x/b.jpg"),
            MediaRef(url="https://x/c"),
        ])
        assert plan.method == "media_group"
        assert [g.kind for g in plan.group] == [MediaKind.VIDEO, MediaKind.IMAGE, MediaKind.IMAGE]

    def test_image_skips_video_entries(self):
        plan = plan_dispatch(MediaKind.IMAGE, [
            MediaRef(type="video", url="https://x/a.mp4"),
            MediaRef(type="image", url="https://x/b.jpg"),
        ])
        assert plan.method == "photo"
        assert plan.url == "https://x/b.jpg"


# ============================================================================
# MediaForwarder.forward
# ============================================================================

class TestCarouselDispatch:
    @pytest.mark.asyncio
    async def test_single_video_entry_uses_video_path(self):
        uploader = _uploader()
        payload = _payload({
            "type": "carousel",
            "media": [{"type": "video", "url": "https://x/a.mp4"}],
        })

        report = await MediaForwarder(uploader).forward(payload)

        uploader.send_video.assert_awaited_once_with("https://x/a.mp4", None)
        uploader.send_media_group.assert_not_called()
        uploader.send_photo.assert_not_called()
        assert report.outcomes[0].method == "video"
        assert report.outcomes[0].status is SendStatus.SENT

    @pytest.mark.asyncio
    async def test_single_image_entry_uses_photo_path(self):
        uploader = _uploader()
        payload = _payload({"type": "album", "media": [{"type": "image", "url": "https://x/a.jpg"}]})

        await MediaForwarder(uploader).forward(payload)

        uploader.send_photo.assert_awaited_once_with("https://x/a.jpg", None)
        uploader.send_media_group.assert_not_called()

    @pytest.mark.asyncio
    async def test_multiple_entries_use_group_once(self):
        uploader = _uploader()
        payload = _payload(
            {
                "type": "carousel",
                "caption": "trip",
                "media": [
                    {"type": "image", "url": "https://x/a.jpg"},
                    {"type": "video", "url": "https://x/b.mp4"},
                ],
            },
            sender="alice",
        )

        report = await MediaForwarder(uploader).forward(payload)

        uploader.send_media_group.assert_awaited_once()
        group, caption = uploader.send_media_group.await_args.args
        assert group == [
            GroupMedia(kind=MediaKind.IMAGE, url="https://x/a.jpg"),
            GroupMedia(kind=MediaKind.VIDEO, url="https://x/b.mp4"),
        ]
        assert caption == "From Instagram @alice\n\ntrip"

        media = build_media_group(group, caption)
        assert media[0]["caption"] == caption
        assert all("caption" not in entry for entry in media[1:])
        assert report.outcomes[0].method == "media_group"

    @pytest.mark.asyncio
    async def test_entries_without_url_excluded_from_group(self):
        uploader = _uploader()
        payload = _payload({
            "type": "carousel",
            "media": [
                {"type": "image", "url": "https://x/a.jpg"},
                {"type": "image"},
                {"type": "video", "url": ""},
                {"type": "image", "url": "https://x/c.jpg"},
            ],
        })

        await MediaForwarder(uploader).forward(payload)

        group, _ = uploader.send_media_group.await_args.args
        assert [g.url for g in group] == ["https://x/a.jpg", "https://x/c.jpg"]

    @pytest.mark.asyncio
    async def test_filtering_down_to_one_degrades_to_single(self):
        uploader = _uploader()
        payload = _payload({
            "type": "carousel",
            "media": [{"type": "video"}, {"type": "video", "url": "https://x/b.mp4"}],
        })

        await MediaForwarder(uploader).forward(payload)

        uploader.send_video.assert_awaited_once_with("https://x/b.mp4", None)
        uploader.send_media_group.assert_not_called()


class TestSkips:
    @pytest.mark.asyncio
    async def test_every_entry_without_url_means_no_upload(self):
        uploader = _uploader()
        payload = _payload(
            {"type": "carousel", "media": [{"type": "image"}, {"type": "video"}]},
            {"type": "image", "media": [{"type": "image", "url": None}]},
            {"type": "video", "media": [{}]},
        )

        report = await MediaForwarder(uploader).forward(payload)

        uploader.send_photo.assert_not_called()
        uploader.send_video.assert_not_called()
        uploader.send_media_group.assert_not_called()
        assert [o.reason for o in report.outcomes] == ["no_usable_media"] * 3
        assert report.skipped == 3

    @pytest.mark.asyncio
    async def test_item_without_media(self):
        uploader = _uploader()
        report = await MediaForwarder(uploader).forward(_payload({"type": "carousel"}))
        assert report.outcomes[0].status is SendStatus.SKIPPED
        assert report.outcomes[0].reason == "no_media"

    @pytest.mark.asyncio
    async def test_image_item_with_only_video_entries(self):
        uploader = _uploader()
        report = await MediaForwarder(uploader).forward(
            _payload({"type": "image", "media": [{"type": "video", "url": "https://x/a.mp4"}]})
        )
        uploader.send_photo.assert_not_called()
        assert report.outcomes[0].reason == "no_matching_media"

    @pytest.mark.asyncio
    async def test_empty_payload(self):
        uploader = _uploader()
        report = await MediaForwarder(uploader).forward(InboundPayload.from_raw({}))
        assert report.outcomes == []
        assert uploader.mock_calls == []


class TestSingleDispatch:
    @pytest.mark.asyncio
    async def test_video_item_picks_first_video_or_untyped(self):
        uploader = _uploader()
        payload = _payload({
            "type": "video",
            "media": [
                {"type": "image", "url": "https://x/thumb.jpg"},
                {"type": "video", "url": "https://x/clip.mp4"},
                {"url": "https://x/other.mp4"},
            ],
        })

        await MediaForwarder(uploader).forward(payload)

        uploader.send_video.assert_awaited_once_with("https://x/clip.mp4", None)

    @pytest.mark.asyncio
    async def test_reel_goes_to_video(self):
        uploader = _uploader()
        await MediaForwarder(uploader).forward(
            _payload({"type": "REEL", "caption": "dance", "media": [{"url": "https://x/r.mp4"}]})
        )
        uploader.send_video.assert_awaited_once_with("https://x/r.mp4", "dance")

    @pytest.mark.asyncio
    async def test_unknown_type_is_photo(self):
        uploader = _uploader()
        await MediaForwarder(uploader).forward(
            _payload({"type": "story", "media": [{"url": "https://x/s.jpg"}]}, sender="bob")
        )
        uploader.send_photo.assert_awaited_once_with("https://x/s.jpg", "From Instagram @bob")


class TestOrderingAndFailures:
    @pytest.mark.asyncio
    async def test_items_sent_in_order(self, sample_payload):
        uploader = _uploader()

        report = await MediaForwarder(uploader).forward(InboundPayload.from_raw(sample_payload))

        names = [c[0] for c in uploader.mock_calls]
        assert names == ["send_photo", "send_video", "send_media_group"]
        assert [o.index for o in report.outcomes] == [0, 1, 2]
        assert report.sent == 3

    @pytest.mark.asyncio
    async def test_upload_failure_does_not_stop_next_item(self):
        uploader = _uploader()
        uploader.send_photo.side_effect = [
            UploadError(400, 400, "Bad Request: wrong file identifier"),
            SendResult.sent([9]),
        ]
        payload = _payload(
            {"media": [{"url": "https://x/1.jpg"}]},
            {"media": [{"url": "https://x/2.jpg"}]},
        )

        report = await MediaForwarder(uploader).forward(payload)

        assert uploader.send_photo.await_args_list == [
            call("https://x/1.jpg", None),
            call("https://x/2.jpg", None),
        ]
        assert [o.status for o in report.outcomes] == [SendStatus.FAILED, SendStatus.SENT]
        assert report.outcomes[0].method == "photo"
        assert "UploadError" in report.outcomes[0].reason

    @pytest.mark.asyncio
    async def test_fetch_and_unexpected_errors_are_contained(self):
        uploader = _uploader()
        uploader.send_video.side_effect = FetchError("Download timed out")
        uploader.send_media_group.side_effect = RuntimeError("boom")
        payload = _payload(
            {"type": "video", "media": [{"url": "https://x/1.mp4"}]},
            {"type": "carousel", "media": [{"url": "https://x/a.jpg"}, {"url": "https://x/b.jpg"}]},
            {"type": "image", "media": [{"url": "https://x/3.jpg"}]},
        )

        report = await MediaForwarder(uploader).forward(payload)

        assert [o.status for o in report.outcomes] == [
            SendStatus.FAILED, SendStatus.FAILED, SendStatus.SENT,
        ]
        assert report.failed == 2


class TestUnconfiguredDestination:
    @pytest.mark.asyncio
    async def test_every_item_skipped_without_outbound_calls(self, sample_payload):
        fetcher = AsyncMock()
        uploader = TelegramMediaUploader(None, None, fetcher=fetcher)

        report = await MediaForwarder(uploader).forward(InboundPayload.from_raw(sample_payload))

        fetcher.fetch.assert_not_called()
        assert [o.status for o in report.outcomes] == [SendStatus.SKIPPED] * 3
        assert {o.reason for o in report.outcomes} == {"unconfigured"}
