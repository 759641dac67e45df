from typing import Any, Dict, Optional

from shared.chat.highlight import ChatItemKind

# Live chat renderer tags (element tagName, upper-case as reported by the DOM)
RENDERER_KINDS: Dict[str, ChatItemKind] = {
    "YT-LIVE-CHAT-TEXT-MESSAGE-RENDERER": ChatItemKind.TEXT,
    "YT-LIVE-CHAT-PAID-MESSAGE-RENDERER": ChatItemKind.PAID_MESSAGE,
    "YT-LIVE-CHAT-MEMBERSHIP-ITEM-RENDERER": ChatItemKind.MEMBERSHIP,
    "YT-LIVE-CHAT-PAID-STICKER-RENDERER": ChatItemKind.PAID_STICKER,
}

SUPPORTED_TAGS = tuple(RENDERER_KINDS)

# CSS selector matching every supported renderer
ITEM_SELECTOR = ",".join(tag.lower() for tag in SUPPORTED_TAGS)


def classify(tag: Optional[str]) -> Optional[ChatItemKind]:
    if not tag:
        return None
    return RENDERER_KINDS.get(tag.upper())


def is_chat_item(node: Any) -> bool:
    """True when the node's tag is one of the recognized renderers."""
    return classify(getattr(node, "tag", None)) is not None
