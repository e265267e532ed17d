# app/core/payload.py
"""
Inbound webhook payload.

Expected JSON body (any integration that can map into this shape works):

    {
      "items": [
        {
          "type": "image" | "video" | "reel" | "carousel",
          "caption": "optional caption",
          "media": [
            {"type": "image" | "video", "url": "https://..."}
          ]
        }
      ],
      "sender": "optional-username-or-id"
    }

Parsing is deliberately forgiving: wrong-typed containers become empty
lists, junk entries are dropped and scalar labels are coerced to strings.
A delivery is never rejected for its shape.
"""
from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from app.infra.logging_config import get_logger

logger = get_logger(__name__)


def _coerce_label(value: Any) -> Optional[str]:
    """Scalar → str; empty, whitespace-only, None or containers → None."""
    if value is None or isinstance(value, (dict, list, tuple, set)):
        return None
    text = value if isinstance(value, str) else str(value)
    return text if text.strip() else None


def _objects_only(value: Any) -> list[dict]:
    if not isinstance(value, list):
        return []
    return [entry for entry in value if isinstance(entry, dict)]


class MediaRef(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Optional[str] = None
    url: Optional[str] = None

    @field_validator("type", "url", mode="before")
    @classmethod
    def _coerce(cls, value: Any) -> Optional[str]:
        return _coerce_label(value)

    @property
    def usable(self) -> bool:
        return bool(self.url)


class InboundItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Optional[str] = None
    caption: Optional[str] = None
    media: list[MediaRef] = Field(default_factory=list)

    @field_validator("type", "caption", mode="before")
    @classmethod
    def _coerce(cls, value: Any) -> Optional[str]:
        return _coerce_label(value)

    @field_validator("media", mode="before")
    @classmethod
    def _media_list(cls, value: Any) -> list[dict]:
        return _objects_only(value)


class InboundPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    items: list[InboundItem] = Field(default_factory=list)
    sender: Optional[str] = None

    @field_validator("sender", mode="before")
    @classmethod
    def _coerce(cls, value: Any) -> Optional[str]:
        return _coerce_label(value)

    @field_validator("items", mode="before")
    @classmethod
    def _items_list(cls, value: Any) -> list[dict]:
        return _objects_only(value)

    @classmethod
    def from_raw(cls, raw: Any) -> "InboundPayload":
        """Build a payload from already-decoded JSON. Never raises."""
        if not isinstance(raw, dict):
            return cls()
        try:
            return cls.model_validate(raw)
        except ValidationError as exc:
            logger.warning(f"Inbound payload rejected by validation, treating as empty: {exc.error_count()} error(s)")
            return cls()
