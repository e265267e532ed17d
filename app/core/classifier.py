# app/core/classifier.py
"""
Normalization of loose Instagram type labels.

Integrations send whatever label their source uses ("reel", "Sidecar",
"GraphVideo", ...). Only a handful are recognized; everything else is
treated as a single image.
"""
from __future__ import annotations

from typing import Any

from app.core.domain import MediaKind

# Order matters: first match wins.
_ITEM_LABELS: tuple[tuple[frozenset[str], MediaKind], ...] = (
    (frozenset({"reel"}), MediaKind.VIDEO),
    (frozenset({"carousel", "album", "sidecar"}), MediaKind.CAROUSEL),
    (frozenset({"video"}), MediaKind.VIDEO),
)


def _normalize_label(label: Any) -> str:
    if label is None:
        return ""
    return str(label).strip().lower()


def classify(label: Any) -> MediaKind:
    """Map an item type label to a MediaKind. Unknown or missing → IMAGE."""
    normalized = _normalize_label(label)
    if not normalized:
        return MediaKind.IMAGE

    for labels, kind in _ITEM_LABELS:
        if normalized in labels:
            return kind
    return MediaKind.IMAGE


def media_entry_kind(label: Any) -> MediaKind:
    """Kind of a single media entry inside an item: VIDEO or IMAGE."""
    return MediaKind.VIDEO if _normalize_label(label) == "video" else MediaKind.IMAGE


def entry_matches(label: Any, kind: MediaKind) -> bool:
    """True if a media entry's own label is ``kind`` or absent."""
    normalized = _normalize_label(label)
    return not normalized or normalized == kind.value
