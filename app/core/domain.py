# app/core/domain.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


# ============================================================================
# MEDIA KINDS
# ============================================================================

class MediaKind(str, Enum):
    """Semantic kind of an inbound item (or of a single media entry)."""
    IMAGE = "image"
    VIDEO = "video"
    CAROUSEL = "carousel"


# ============================================================================
# OUTBOUND RESULTS
# ============================================================================

class SendStatus(str, Enum):
    SENT = "sent"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class SendResult:
    """
    Outcome of one outbound capability call.

    ``SKIPPED`` covers the silent-degrade cases (destination unconfigured,
    empty media group). Failures normally surface as exceptions from the
    sender; ``FAILED`` is what the forwarder records after catching one.
    """
    status: SendStatus
    reason: Optional[str] = None
    message_ids: list[int] = field(default_factory=list)

    @classmethod
    def sent(cls, message_ids: list[int] | None = None) -> "SendResult":
        return cls(SendStatus.SENT, message_ids=list(message_ids or []))

    @classmethod
    def skipped(cls, reason: str) -> "SendResult":
        return cls(SendStatus.SKIPPED, reason=reason)

    @classmethod
    def failed(cls, reason: str) -> "SendResult":
        return cls(SendStatus.FAILED, reason=reason)

    @property
    def is_sent(self) -> bool:
        return self.status is SendStatus.SENT


@dataclass(frozen=True)
class GroupMedia:
    """One entry of an outbound media group."""
    kind: MediaKind  # IMAGE or VIDEO
    url: str


# ============================================================================
# FORWARDING REPORT
# ============================================================================

@dataclass
class ItemOutcome:
    """What happened to one inbound item."""
    index: int
    kind: MediaKind
    status: SendStatus
    method: Optional[str] = None  # "photo", "video", "media_group"
    reason: Optional[str] = None


@dataclass
class ForwardReport:
    """Per-item outcomes of one payload, in input order.

    Delivery is not all-or-nothing: some items may be sent while others
    were skipped or failed.
    """
    outcomes: list[ItemOutcome] = field(default_factory=list)

    def count(self, status: SendStatus) -> int:
        return sum(1 for o in self.outcomes if o.status is status)

    @property
    def sent(self) -> int:
        return self.count(SendStatus.SENT)

    @property
    def skipped(self) -> int:
        return self.count(SendStatus.SKIPPED)

    @property
    def failed(self) -> int:
        return self.count(SendStatus.FAILED)
