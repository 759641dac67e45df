"""
Highlight state machine.

Owns the single "which item is highlighted" truth. States are idle and
active(id); the only way to change them is through the transitions below.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Optional

from services.overlay.messages import clear_message
from services.youtube.chat.item_source import ChatItem, ItemSource
from shared.chat.highlight import ChatItemKind, HighlightPayload
from shared.logging.logger import get_logger

log = get_logger("core.highlight")

Publisher = Callable[[Dict[str, Any]], Awaitable[Any]]


class HighlightStateMachine:
    """
    HARD RULES:
    - At most one item carries the active indicator
    - Activating an item first deactivates the previous one through the stored
      reference (never by re-querying the page)
    - Only local transitions publish; remote-set never echoes
    - Every indicator change also updates auto-scroll suppression and the
      clear anchor (best-effort)
    """

    def __init__(self, source: ItemSource, publish: Publisher):
        self._source = source
        self._publish = publish

        self._active_id: Optional[str] = None
        self._active_item: Optional[ChatItem] = None

    # ------------------------------------------------------------

    @property
    def active_id(self) -> Optional[str]:
        return self._active_id

    @property
    def is_active(self) -> bool:
        return self._active_id is not None

    def is_item_active(self, item: ChatItem) -> bool:
        return self._active_id is not None and item.item_id == self._active_id

    # ------------------------------------------------------------
    # TRANSITIONS
    # ------------------------------------------------------------

    async def toggle_local(self, item: ChatItem) -> None:
        if self.is_item_active(item):
            previous = self._active_item
            self._set_idle()

            if previous is not None and previous is not item:
                await previous.set_indicator(False)
            await item.set_indicator(False)

            log.info(f"Highlight cleared locally ({item.item_id})")
            await self._publish(clear_message())
            await self._apply_side_effects()
            return

        # Snapshot first: a vanished item must leave the state untouched
        payload = HighlightPayload.from_snapshot(
            item.item_id,
            item.kind or ChatItemKind.TEXT,
            await item.snapshot(),
        )

        previous = self._active_item
        if previous is not None and previous is not item:
            await previous.set_indicator(False)

        self._active_id = item.item_id
        self._active_item = item
        await item.set_indicator(True)

        log.info(f"Highlight set locally → {item.item_id} ({payload.author})")
        await self._publish(payload.to_message())
        await self._apply_side_effects()

    async def set_remote(self, item_id: Optional[str]) -> None:
        item_id = item_id or None
        log.info(f"Remote selection → {item_id}")

        self._active_id = item_id
        self._active_item = None

        for item in await self._source.query_items():
            match = item_id is not None and item.item_id == item_id
            await item.set_indicator(match)
            if match:
                self._active_item = item

        await self._apply_side_effects()

    async def clear_all(self) -> None:
        previous = self._active_item
        self._set_idle()

        if previous is not None:
            await previous.set_indicator(False)

        for item in await self._source.query_items():
            if item is not previous:
                await item.set_indicator(False)

        log.info("Highlight cleared (all items)")
        await self._publish(clear_message())
        await self._apply_side_effects()

    async def sync_item(self, item: ChatItem) -> None:
        """Reflect the current selection on an item whose affordance was just attached."""
        if not self.is_item_active(item):
            return

        await item.set_indicator(True)
        self._active_item = item

    # ------------------------------------------------------------

    def _set_idle(self) -> None:
        self._active_id = None
        self._active_item = None

    async def _apply_side_effects(self) -> None:
        active = self.is_active

        try:
            await self._source.set_auto_scroll_suppressed(active)
        except Exception as e:
            log.debug(f"Auto-scroll toggle skipped: {e}")

        try:
            await self._source.set_clear_anchor_visible(active)
        except Exception as e:
            log.debug(f"Clear anchor visibility skipped: {e}")
