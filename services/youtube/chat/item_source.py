"""
Hosting-context abstraction for chat DOM access.

The engine never touches the page directly. Every DOM query and UI effect
goes through an ItemSource (one implementation per hosting context) and the
ChatItem handles it hands out.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from shared.chat.highlight import ChatItemKind
from services.youtube.chat.classifier import classify


class ItemUnavailable(RuntimeError):
    """The chat item is no longer reachable in the page."""


@dataclass(frozen=True)
class DomNode:
    """An added element as reported by the mutation observer."""

    tag: str
    node_id: str = ""
    # Frame the observer reported from, when the source knows it
    frame: Any = field(default=None, compare=False, repr=False)


BatchHandler = Callable[[List[DomNode]], None]


class ChatItem(ABC):
    """Handle to one rendered chat item, addressed by its host-assigned id."""

    def __init__(self, item_id: str, tag: str):
        self.item_id = item_id
        self.tag = tag

    @property
    def kind(self) -> Optional[ChatItemKind]:
        return classify(self.tag)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(item_id={self.item_id!r}, tag={self.tag!r})"

    @abstractmethod
    async def has_affordance(self) -> bool:
        """Whether the toggle button is already attached."""

    @abstractmethod
    async def is_rendered(self) -> bool:
        """Whether the item sits inside the visible region of the list."""

    @abstractmethod
    async def attach_affordance(self) -> bool:
        """Attach the toggle button. Must be a no-op when one is present."""

    @abstractmethod
    async def set_indicator(self, active: bool) -> None:
        """Render (or remove) the active indicator."""

    @abstractmethod
    async def snapshot(self) -> Dict[str, Any]:
        """
        Read the item's current DOM state.

        Keys: author, message, message_html, avatar, amount,
        background_color, text_color. Raises ItemUnavailable if the item is gone.
        """


class Subscription(ABC):
    @abstractmethod
    async def disconnect(self) -> None:
        """Stop delivering batches. Safe to call more than once."""


class ItemSource(ABC):
    """
    Uniform DOM capability for one hosting context.

    find_container / observe / query_items / resolve are required; the UI
    side channels default to safe no-ops.
    """

    @abstractmethod
    async def find_container(self) -> Optional[Any]:
        """Return the chat list container, or None if it is not there yet."""

    @abstractmethod
    async def observe(self, container: Any, on_batch: BatchHandler) -> Subscription:
        """Deliver added nodes across the container subtree, one call per mutation batch."""

    @abstractmethod
    async def query_items(self) -> List[ChatItem]:
        """All chat items currently reachable in the document."""

    @abstractmethod
    def resolve(self, node: DomNode) -> ChatItem:
        """Turn an observed node into an item handle."""

    # ------------------------------------------------------------
    # Optional capabilities
    # ------------------------------------------------------------

    async def bind(
        self,
        on_toggle: Callable[[ChatItem], None],
        on_clear: Callable[[], None],
    ) -> None:
        """Route affordance and clear-anchor clicks to the given handlers."""

    async def query_pending_items(self) -> List[ChatItem]:
        """Items that are rendered but still lack an affordance."""
        pending = []
        for item in await self.query_items():
            if not await item.has_affordance() and await item.is_rendered():
                pending.append(item)
        return pending

    async def is_container_connected(self, container: Any) -> bool:
        return True

    async def find_anchor_host(self) -> bool:
        return False

    async def attach_clear_anchor(self, visible: bool) -> bool:
        return False

    async def set_clear_anchor_visible(self, visible: bool) -> None:
        return None

    async def set_auto_scroll_suppressed(self, suppressed: bool) -> None:
        return None
