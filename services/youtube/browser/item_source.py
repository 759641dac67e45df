"""
Playwright-backed item source for YouTube live chat.

Live chat renders inside iframe#chatframe on watch pages and in the top-level
document on the popout page. Every DOM operation runs as an injected script in
whichever frame currently hosts the chat; results come back either as the
script's return value or, for observer batches and button clicks, through
page bindings.

Items are pinned to their element with an ElementHandle when the affordance is
attached. Later indicator, state and snapshot calls run against that element,
so an item whose id is re-rendered or duplicated still updates the node that
was actually decorated. Lookup by id is only the fallback for unpinned items.
"""

import uuid
from collections import OrderedDict
from typing import Any, Callable, Dict, List, Optional

from playwright.async_api import ElementHandle, Error as PlaywrightError, Frame, Page

from services.youtube.chat.classifier import ITEM_SELECTOR, SUPPORTED_TAGS
from services.youtube.chat.item_source import (
    BatchHandler,
    ChatItem,
    DomNode,
    ItemSource,
    ItemUnavailable,
    Subscription,
)
from shared.logging.logger import get_logger

log = get_logger("youtube.item_source")

CHAT_FRAME_SELECTOR = "iframe#chatframe"
CONTAINER_SELECTORS = ["yt-live-chat-item-list-renderer", "#chat-container"]
SCROLLER_SELECTOR = "yt-live-chat-item-list-renderer"
DOCK_SELECTOR = "yt-live-chat-docked-message #container #docked-item"
CLEAR_ANCHOR_ID = "clear-highlighted-button"
AFFORDANCE_CLASS = "highlight-btn"

PAID_BACKGROUND_VAR = "--yt-live-chat-paid-message-background-color"
PAID_HEADER_VAR = "--yt-live-chat-paid-message-header-color"

# Decorated items kept pinned; the live chat list holds far fewer
PINNED_ITEM_LIMIT = 1000


# ----------------------------------------------------------------------
# INJECTED SCRIPTS
# ----------------------------------------------------------------------

OBSERVER_SCRIPT = r"""
({ bindingName, selectors, tags, itemSelector, token }) => {
    const root = selectors.map((s) => document.querySelector(s)).find(Boolean);
    if (!root) return 'NO_TARGET';

    const state = (window.__chatHighlighter = window.__chatHighlighter || {});
    if (state.observer) {
        try { state.observer.disconnect(); } catch (err) {}
    }

    const observer = new MutationObserver((mutations) => {
        // A wrapper and the item appended to it can both appear in one callback
        const seen = new Set();
        const nodes = [];
        const report = (node) => {
            if (seen.has(node)) return;
            seen.add(node);
            nodes.push({ tag: node.tagName, id: node.id || '' });
        };

        for (const m of mutations) {
            m.addedNodes.forEach((node) => {
                if (node.nodeType !== 1) return;
                if (tags.includes(node.tagName)) report(node);
                if (node.querySelectorAll) node.querySelectorAll(itemSelector).forEach(report);
            });
        }
        if (!nodes.length || !globalThis[bindingName]) return;
        try {
            globalThis[bindingName]({ token, nodes });
        } catch (err) {
            console.error('Chat highlighter dispatch failed', err);
        }
    });

    observer.observe(root, { childList: true, subtree: true });
    state.observer = observer;
    state.token = token;
    return 'BOUND';
}
"""

DISCONNECT_SCRIPT = r"""
(token) => {
    const state = window.__chatHighlighter;
    if (!state || !state.observer || state.token !== token) return false;
    state.observer.disconnect();
    state.observer = null;
    return true;
}
"""

QUERY_ITEMS_SCRIPT = r"""
({ itemSelector, affordanceClass, pendingOnly }) =>
    Array.from(document.querySelectorAll(itemSelector))
        .filter((el) => !pendingOnly || (
            !el.querySelector('.' + affordanceClass) && el.getBoundingClientRect().top > 0
        ))
        .map((el) => ({ tag: el.tagName, id: el.id || '', key: el.dataset.highlighterKey || '' }))
"""

# Prefers the undecorated element when an id is present more than once
PIN_SCRIPT = r"""
({ id, itemSelector, affordanceClass }) => {
    const matches = Array.from(document.querySelectorAll(itemSelector)).filter((el) => el.id === id);
    return matches.find((el) => !el.querySelector('.' + affordanceClass)) || matches[0] || null;
}
"""

# Item scripts take the element first; see by_id() for the unpinned form

ITEM_STATE_SCRIPT = r"""
(item, { affordanceClass }) => ({
    hasAffordance: !!item.querySelector('.' + affordanceClass),
    top: item.isConnected ? item.getBoundingClientRect().top : 0,
})
"""

ATTACH_AFFORDANCE_SCRIPT = r"""
(item, { key, bindingName, affordanceClass }) => {
    if (item.querySelector('.' + affordanceClass)) return 'EXISTS';

    const host = item.querySelector('#prepend-chat-badges');
    if (!host) return 'NO_HOST';

    const button = document.createElement('button');
    button.textContent = '★';
    button.className = affordanceClass;
    Object.assign(button.style, {
        fontSize: '16px',
        background: 'none',
        color: 'inherit',
        border: 'none',
        cursor: 'pointer',
        padding: '2px 6px',
        marginRight: '6px',
        zIndex: '10',
    });

    button.addEventListener('click', (e) => {
        e.preventDefault();
        e.stopPropagation();
        if (globalThis[bindingName]) globalThis[bindingName]({ id: item.id, tag: item.tagName, key });
    });

    item.dataset.highlighterKey = key;
    host.prepend(button);
    return 'ATTACHED';
}
"""

SET_INDICATOR_SCRIPT = r"""
(item, { active, affordanceClass }) => {
    item.style.paddingLeft = active ? '24px' : '';
    item.style.backgroundColor = active ? 'rgba(255, 234, 100, 0.15)' : '';
    item.style.borderLeft = active ? '4px solid #f1c40f' : '';

    const button = item.querySelector('.' + affordanceClass);
    if (!button) return false;
    button.dataset.active = active ? 'true' : 'false';
    button.style.color = active ? '#f1c40f' : 'inherit';
    return true;
}
"""

SNAPSHOT_SCRIPT = r"""
(item, { backgroundVar, headerVar }) => {
    if (!item.isConnected) return null;

    const text = (selector) => {
        const el = item.querySelector(selector);
        return el && el.textContent ? el.textContent.trim() : '';
    };
    const messageEl = item.querySelector('#message');
    const img = item.querySelector('#author-photo img');
    const style = getComputedStyle(item);

    return {
        author: text('#author-name'),
        message: messageEl ? (messageEl.innerText || '') : '',
        message_html: messageEl ? (messageEl.innerHTML || '') : '',
        avatar: img ? (img.src || '') : '',
        amount: text('#purchase-amount') || null,
        background_color: style.getPropertyValue(backgroundVar).trim(),
        text_color: style.getPropertyValue(headerVar).trim(),
    };
}
"""

AUTO_SCROLL_SCRIPT = r"""
({ selector, suppressed }) => {
    const scroller = document.querySelector(selector);
    if (!scroller) return false;
    scroller.disableAutoScroll = suppressed;
    return true;
}
"""

ATTACH_CLEAR_SCRIPT = r"""
({ dockSelector, anchorId, bindingName, visible }) => {
    const dock = document.querySelector(dockSelector);
    if (!dock) return 'NO_HOST';
    if (dock.querySelector('#' + anchorId)) return 'EXISTS';

    const button = document.createElement('button');
    button.textContent = 'Clear highlighted';
    button.className = 'clear-highlight-btn';
    button.id = anchorId;
    Object.assign(button.style, {
        fontSize: '14px',
        cursor: 'pointer',
        padding: '10px 15px',
        width: '100%',
        borderRadius: '10px',
        display: visible ? 'block' : 'none',
    });

    button.addEventListener('click', (e) => {
        e.preventDefault();
        e.stopPropagation();
        if (globalThis[bindingName]) globalThis[bindingName]({});
    });

    dock.prepend(button);
    return 'ATTACHED';
}
"""

CLEAR_VISIBILITY_SCRIPT = r"""
({ anchorId, visible }) => {
    const button = document.getElementById(anchorId);
    if (!button) return false;
    button.style.display = visible ? 'block' : 'none';
    return true;
}
"""


def by_id(script: str) -> str:
    """Wrap an (item, args) script so it runs against document.getElementById(id)."""
    return (
        "({ id, args }) => {\n"
        "    const item = document.getElementById(id);\n"
        "    return item ? (" + script.strip() + ")(item, args) : null;\n"
        "}"
    )


# ----------------------------------------------------------------------
# HANDLES
# ----------------------------------------------------------------------

class PlaywrightChatItem(ChatItem):
    """Chat item inside the frame that rendered it, pinned once decorated."""

    def __init__(
        self,
        frame: Frame,
        item_id: str,
        tag: str,
        toggle_binding: str,
        *,
        key: Optional[str] = None,
        on_attached: Optional[Callable[["PlaywrightChatItem"], None]] = None,
    ):
        super().__init__(item_id, tag)
        self.frame = frame
        self.key = key or uuid.uuid4().hex
        self._toggle_binding = toggle_binding
        self._on_attached = on_attached
        self._handle: Optional[ElementHandle] = None

    @property
    def handle(self) -> Optional[ElementHandle]:
        return self._handle

    async def pin(self) -> bool:
        """Capture the element this item refers to. False if the id is not in the document."""
        if self._handle is not None:
            return True

        try:
            js_handle = await self.frame.evaluate_handle(
                PIN_SCRIPT,
                {"id": self.item_id, "itemSelector": ITEM_SELECTOR, "affordanceClass": AFFORDANCE_CLASS},
            )
        except PlaywrightError as e:
            log.debug(f"Item pin failed ({self.item_id}): {e}")
            return False

        element = js_handle.as_element()
        if element is None:
            await js_handle.dispose()
            return False

        self._handle = element
        return True

    async def _run(self, script: str, args: Dict[str, Any]) -> Any:
        if self._handle is not None:
            try:
                return await self._handle.evaluate(script, args)
            except PlaywrightError as e:
                log.debug(f"Pinned element unusable ({self.item_id}): {e}; using id lookup")
                self._handle = None

        return await self.frame.evaluate(by_id(script), {"id": self.item_id, "args": args})

    async def _state(self) -> Optional[Dict[str, Any]]:
        try:
            return await self._run(ITEM_STATE_SCRIPT, {"affordanceClass": AFFORDANCE_CLASS})
        except PlaywrightError as e:
            log.debug(f"Item state read failed ({self.item_id}): {e}")
            return None

    async def has_affordance(self) -> bool:
        state = await self._state()
        return bool(state and state.get("hasAffordance"))

    async def is_rendered(self) -> bool:
        state = await self._state()
        return bool(state and (state.get("top") or 0) > 0)

    async def attach_affordance(self) -> bool:
        if not await self.pin():
            log.debug(f"Affordance not attached ({self.item_id}): not in document")
            return False

        try:
            result = await self._run(
                ATTACH_AFFORDANCE_SCRIPT,
                {
                    "key": self.key,
                    "bindingName": self._toggle_binding,
                    "affordanceClass": AFFORDANCE_CLASS,
                },
            )
        except PlaywrightError as e:
            log.debug(f"Affordance attach failed ({self.item_id}): {e}")
            return False

        if result != "ATTACHED":
            if result != "EXISTS":
                log.debug(f"Affordance not attached ({self.item_id}): {result}")
            return False

        if self._on_attached is not None:
            self._on_attached(self)
        return True

    async def set_indicator(self, active: bool) -> None:
        try:
            await self._run(SET_INDICATOR_SCRIPT, {"active": active, "affordanceClass": AFFORDANCE_CLASS})
        except PlaywrightError as e:
            # Items scrolled out of existence simply have nothing to render
            log.debug(f"Indicator update skipped ({self.item_id}): {e}")

    async def snapshot(self) -> Dict[str, Any]:
        try:
            snapshot = await self._run(
                SNAPSHOT_SCRIPT,
                {"backgroundVar": PAID_BACKGROUND_VAR, "headerVar": PAID_HEADER_VAR},
            )
        except PlaywrightError as e:
            raise ItemUnavailable(f"{self.item_id}: {e}") from e

        if snapshot is None:
            raise ItemUnavailable(f"{self.item_id}: not in document")
        return snapshot


class PlaywrightContainer:
    def __init__(self, frame: Frame, handle: ElementHandle):
        self.frame = frame
        self.handle = handle


class PlaywrightSubscription(Subscription):
    def __init__(self, source: "PlaywrightItemSource", frame: Frame, token: str):
        self._source = source
        self._frame = frame
        self.token = token
        self._active = True

    async def disconnect(self) -> None:
        if not self._active:
            return
        self._active = False
        self._source._handlers.pop(self.token, None)

        try:
            await self._frame.evaluate(DISCONNECT_SCRIPT, self.token)
        except PlaywrightError as e:
            log.debug(f"Observer disconnect skipped (frame gone?): {e}")


# ----------------------------------------------------------------------
# SOURCE
# ----------------------------------------------------------------------

class PlaywrightItemSource(ItemSource):
    """
    IN-PAGE OBSERVATION

    - Chat frame resolution prefers iframe#chatframe, falls back to the main frame
    - Bindings are exposed once per page and carry a unique suffix
    - Observer batches are routed by token so stale observers are ignored
    - Decorated items are remembered by key; clicks and queries return the
      pinned item rather than a fresh id lookup
    """

    def __init__(self, page: Page):
        self._page = page
        suffix = uuid.uuid4().hex
        self._mutation_binding = f"chatHighlighterMutations_{suffix}"
        self._toggle_binding = f"chatHighlighterToggle_{suffix}"
        self._clear_binding = f"chatHighlighterClear_{suffix}"

        self._handlers: Dict[str, BatchHandler] = {}
        self._pinned: "OrderedDict[str, PlaywrightChatItem]" = OrderedDict()
        self._frame: Optional[Frame] = None
        self._bound = False

    # ------------------------------------------------------------
    # FRAME RESOLUTION
    # ------------------------------------------------------------

    async def _resolve_frame(self) -> Frame:
        try:
            iframe = await self._page.query_selector(CHAT_FRAME_SELECTOR)
            if iframe:
                frame = await iframe.content_frame()
                if frame:
                    return frame
        except PlaywrightError as e:
            log.debug(f"Chat iframe lookup failed: {e}")
        return self._page.main_frame

    async def _chat_frame(self) -> Frame:
        if self._frame is None or self._frame.is_detached():
            self._frame = await self._resolve_frame()
        return self._frame

    # ------------------------------------------------------------
    # ITEM REGISTRY
    # ------------------------------------------------------------

    def _remember(self, item: PlaywrightChatItem) -> None:
        self._pinned[item.key] = item
        self._pinned.move_to_end(item.key)
        while len(self._pinned) > PINNED_ITEM_LIMIT:
            self._pinned.popitem(last=False)

    def _item(self, frame: Frame, item_id: str, tag: str, key: str = "") -> PlaywrightChatItem:
        known = self._pinned.get(key) if key else None
        if known is not None:
            return known

        return PlaywrightChatItem(
            frame,
            item_id,
            tag,
            self._toggle_binding,
            key=key or None,
            on_attached=self._remember,
        )

    # ------------------------------------------------------------
    # BINDINGS
    # ------------------------------------------------------------

    async def bind(
        self,
        on_toggle: Callable[[ChatItem], None],
        on_clear: Callable[[], None],
    ) -> None:
        if self._bound:
            return

        def _mutations(source: Dict[str, Any], payload: Any) -> None:
            if not isinstance(payload, dict):
                return
            handler = self._handlers.get(payload.get("token"))
            if handler is None:
                return
            frame = source.get("frame")
            nodes = [
                DomNode(tag=str(n.get("tag") or ""), node_id=str(n.get("id") or ""), frame=frame)
                for n in payload.get("nodes") or []
                if isinstance(n, dict)
            ]
            handler(nodes)

        def _toggle(source: Dict[str, Any], payload: Any) -> None:
            if not isinstance(payload, dict) or not payload.get("id"):
                return
            frame = source.get("frame") or self._page.main_frame
            on_toggle(
                self._item(
                    frame,
                    str(payload["id"]),
                    str(payload.get("tag") or ""),
                    key=str(payload.get("key") or ""),
                )
            )

        def _clear(source: Dict[str, Any], payload: Any = None) -> None:
            on_clear()

        await self._page.expose_binding(self._mutation_binding, _mutations)
        await self._page.expose_binding(self._toggle_binding, _toggle)
        await self._page.expose_binding(self._clear_binding, _clear)
        self._bound = True
        log.info("Chat highlighter bindings exposed")

    # ------------------------------------------------------------
    # ItemSource
    # ------------------------------------------------------------

    async def find_container(self) -> Optional[PlaywrightContainer]:
        frame = await self._resolve_frame()
        self._frame = frame

        for selector in CONTAINER_SELECTORS:
            try:
                handle = await frame.query_selector(selector)
            except PlaywrightError:
                return None
            if handle:
                return PlaywrightContainer(frame, handle)
        return None

    async def observe(self, container: PlaywrightContainer, on_batch: BatchHandler) -> Subscription:
        token = uuid.uuid4().hex
        self._handlers[token] = on_batch

        result = await container.frame.evaluate(
            OBSERVER_SCRIPT,
            {
                "bindingName": self._mutation_binding,
                "selectors": CONTAINER_SELECTORS,
                "tags": list(SUPPORTED_TAGS),
                "itemSelector": ITEM_SELECTOR,
                "token": token,
            },
        )

        if result != "BOUND":
            self._handlers.pop(token, None)
            raise RuntimeError(f"Chat observer failed to bind: {result}")

        log.info(f"Chat MutationObserver attached (token={token[:8]})")
        return PlaywrightSubscription(self, container.frame, token)

    def resolve(self, node: DomNode) -> PlaywrightChatItem:
        frame = node.frame or self._frame or self._page.main_frame
        return self._item(frame, node.node_id, node.tag)

    async def _query(self, pending_only: bool) -> List[ChatItem]:
        frame = await self._chat_frame()
        try:
            rows = await frame.evaluate(
                QUERY_ITEMS_SCRIPT,
                {
                    "itemSelector": ITEM_SELECTOR,
                    "affordanceClass": AFFORDANCE_CLASS,
                    "pendingOnly": pending_only,
                },
            )
        except PlaywrightError as e:
            log.debug(f"Item query failed: {e}")
            return []

        return [
            self._item(frame, row["id"], row["tag"], key=row.get("key") or "")
            for row in rows or []
            if row.get("id")
        ]

    async def query_items(self) -> List[ChatItem]:
        return await self._query(pending_only=False)

    async def query_pending_items(self) -> List[ChatItem]:
        return await self._query(pending_only=True)

    async def is_container_connected(self, container: PlaywrightContainer) -> bool:
        if container.frame.is_detached():
            return False
        try:
            return bool(await container.handle.evaluate("(el) => el.isConnected"))
        except PlaywrightError:
            return False

    # ------------------------------------------------------------
    # UI side channels (best-effort)
    # ------------------------------------------------------------

    async def find_anchor_host(self) -> bool:
        frame = await self._chat_frame()
        try:
            return await frame.query_selector(DOCK_SELECTOR) is not None
        except PlaywrightError:
            return False

    async def attach_clear_anchor(self, visible: bool) -> bool:
        frame = await self._chat_frame()
        try:
            result = await frame.evaluate(
                ATTACH_CLEAR_SCRIPT,
                {
                    "dockSelector": DOCK_SELECTOR,
                    "anchorId": CLEAR_ANCHOR_ID,
                    "bindingName": self._clear_binding,
                    "visible": visible,
                },
            )
        except PlaywrightError as e:
            log.debug(f"Clear anchor attach failed: {e}")
            return False

        if result == "ATTACHED":
            log.info("Clear highlighted button attached")
        return result == "ATTACHED"

    async def set_clear_anchor_visible(self, visible: bool) -> None:
        frame = await self._chat_frame()
        try:
            await frame.evaluate(CLEAR_VISIBILITY_SCRIPT, {"anchorId": CLEAR_ANCHOR_ID, "visible": visible})
        except PlaywrightError as e:
            log.debug(f"Clear anchor visibility skipped: {e}")

    async def set_auto_scroll_suppressed(self, suppressed: bool) -> None:
        frame = await self._chat_frame()
        try:
            await frame.evaluate(AUTO_SCROLL_SCRIPT, {"selector": SCROLLER_SELECTOR, "suppressed": suppressed})
        except PlaywrightError as e:
            log.debug(f"Auto-scroll toggle skipped: {e}")
