"""Highlight payload schema and the markup helpers used to build it."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional


class ChatItemKind(str, Enum):
    TEXT = "text"
    PAID_MESSAGE = "paid-message"
    MEMBERSHIP = "membership"
    PAID_STICKER = "paid-sticker"

    @property
    def is_donation(self) -> bool:
        return self in (ChatItemKind.PAID_MESSAGE, ChatItemKind.PAID_STICKER)

    @property
    def is_sticker(self) -> bool:
        return self is ChatItemKind.PAID_STICKER


# ------------------------------------------------------------
# Markup helpers
# ------------------------------------------------------------

_TOOLTIP_RE = re.compile(r"<tp-yt-paper-tooltip[\s\S]*?</tp-yt-paper-tooltip>", re.IGNORECASE)
# Emoji images are followed by their :shortcode: alt text; keep the image only
_IMG_SHORTCODE_RE = re.compile(r"(<img[^>]+>)\s*:([\w-]+):", re.ASCII)
_SHORTCODE_RE = re.compile(r":([\w-]+):", re.ASCII)
_DIGITS_RE = re.compile(r"\d+")

AVATAR_SMALL_TOKEN = "s32-"
AVATAR_LARGE_TOKEN = "s128-"


def sanitize_message_html(markup: str) -> str:
    markup = _TOOLTIP_RE.sub("", markup or "")
    markup = _IMG_SHORTCODE_RE.sub(r"\1", markup)
    markup = _SHORTCODE_RE.sub("", markup)
    return markup.strip()


def normalize_avatar_url(url: str) -> str:
    url = url or ""
    if AVATAR_SMALL_TOKEN in url:
        return url.replace(AVATAR_SMALL_TOKEN, AVATAR_LARGE_TOKEN, 1)
    return url


def parse_css_color(value: Optional[str]) -> Optional[List[int]]:
    """Extract the numeric channels of an rgb()/rgba() string; None if fewer than three."""
    nums = [int(n) for n in _DIGITS_RE.findall(value or "")]
    return nums if len(nums) >= 3 else None


def rgb_to_hex(channels: List[int]) -> str:
    r, g, b = channels[:3]
    return "#" + "".join(f"{n & 0xFF:02x}" for n in (r, g, b))


def css_color_to_hex(value: Optional[str]) -> str:
    channels = parse_css_color(value)
    return rgb_to_hex(channels) if channels else ""


# ------------------------------------------------------------
# Payload
# ------------------------------------------------------------

@dataclass(frozen=True)
class HighlightPayload:
    """
    Snapshot of an activated chat item, sent to the overlay.

    Built once at the moment of local activation and never mutated; superseded
    by the next payload or by a clear message.
    """

    id: str
    author: str
    message: str
    message_html: str
    avatar: str
    is_donation: bool
    is_sticker: bool
    amount: Optional[str]
    background_color: str
    text_color: str

    @classmethod
    def from_snapshot(
        cls,
        item_id: str,
        kind: ChatItemKind,
        snapshot: Dict[str, Any],
    ) -> "HighlightPayload":
        amount = (snapshot.get("amount") or "").strip() or None

        return cls(
            id=item_id,
            author=(snapshot.get("author") or "").strip(),
            message=snapshot.get("message") or "",
            message_html=sanitize_message_html(snapshot.get("message_html") or ""),
            avatar=normalize_avatar_url(snapshot.get("avatar") or ""),
            is_donation=kind.is_donation,
            is_sticker=kind.is_sticker,
            amount=amount,
            background_color=css_color_to_hex(snapshot.get("background_color")),
            text_color=css_color_to_hex(snapshot.get("text_color")),
        )

    def to_message(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "author": self.author,
            "message": self.message,
            "messageHTML": self.message_html,
            "avatar": self.avatar,
            "isDonation": self.is_donation,
            "isSticker": self.is_sticker,
            "amount": self.amount,
            "backgroundColor": self.background_color,
            "textColor": self.text_color,
        }
