"""Shared fakes and fixtures for the highlighter tests."""

import asyncio
from collections import namedtuple
from typing import Any, Callable, Dict, List, Optional, Tuple

import aiohttp
import pytest

from services.youtube.chat.item_source import (
    BatchHandler,
    ChatItem,
    DomNode,
    ItemSource,
    ItemUnavailable,
    Subscription,
)
from shared.config.highlighter import HighlighterConfig
from shared.config.namespace_store import NamespaceStore

TEXT_TAG = "YT-LIVE-CHAT-TEXT-MESSAGE-RENDERER"
PAID_TAG = "YT-LIVE-CHAT-PAID-MESSAGE-RENDERER"
MEMBERSHIP_TAG = "YT-LIVE-CHAT-MEMBERSHIP-ITEM-RENDERER"
STICKER_TAG = "YT-LIVE-CHAT-PAID-STICKER-RENDERER"


# ----------------------------------------------------------------------
# DOM fakes
# ----------------------------------------------------------------------

class FakeChatItem(ChatItem):
    def __init__(
        self,
        item_id: str,
        tag: str = TEXT_TAG,
        *,
        author: str = "Alice",
        message: str = "hi",
        message_html: str = "hi",
        avatar: str = "",
        amount: Optional[str] = None,
        background_color: str = "",
        text_color: str = "",
        top: float = 100.0,
    ):
        super().__init__(item_id, tag)
        self.affordance = False
        self.active = False
        self.indicator_calls: List[bool] = []
        self.attach_calls = 0
        self.top = top
        self.present = True
        self.snapshot_data: Dict[str, Any] = {
            "author": author,
            "message": message,
            "message_html": message_html,
            "avatar": avatar,
            "amount": amount,
            "background_color": background_color,
            "text_color": text_color,
        }

    async def has_affordance(self) -> bool:
        return self.affordance

    async def is_rendered(self) -> bool:
        return self.top > 0

    async def attach_affordance(self) -> bool:
        self.attach_calls += 1
        if self.affordance:
            return False
        self.affordance = True
        return True

    async def set_indicator(self, active: bool) -> None:
        self.active = active
        self.indicator_calls.append(active)

    async def snapshot(self) -> Dict[str, Any]:
        if not self.present:
            raise ItemUnavailable(self.item_id)
        return dict(self.snapshot_data)


class FakeSubscription(Subscription):
    def __init__(self, container: Any, on_batch: BatchHandler):
        self.container = container
        self.on_batch = on_batch
        self.disconnected = False

    async def disconnect(self) -> None:
        self.disconnected = True


class FakeItemSource(ItemSource):
    def __init__(self, container: Any = "container", *, container_after: int = 0):
        self.items: Dict[str, FakeChatItem] = {}
        self.container = container
        self.container_after = container_after
        self.container_connected = True
        self.find_calls = 0
        self.subscriptions: List[FakeSubscription] = []

        self.anchor_host = False
        self.anchor_attach_calls: List[bool] = []
        self.anchor_visible: Optional[bool] = None
        self.scroll_suppressed: Optional[bool] = None

        self.on_toggle: Optional[Callable[[ChatItem], None]] = None
        self.on_clear: Optional[Callable[[], None]] = None

    def add(self, *items: FakeChatItem) -> None:
        for item in items:
            self.items[item.item_id] = item

    def push(self, *nodes: DomNode) -> None:
        """Deliver one mutation batch to every live subscription."""
        for sub in self.subscriptions:
            if not sub.disconnected:
                sub.on_batch(list(nodes))

    def click(self, item_id: str) -> None:
        self.on_toggle(self.items[item_id])

    def click_clear(self) -> None:
        self.on_clear()

    # ItemSource ------------------------------------------------------

    async def bind(self, on_toggle, on_clear) -> None:
        self.on_toggle = on_toggle
        self.on_clear = on_clear

    async def find_container(self) -> Any:
        self.find_calls += 1
        if self.find_calls > self.container_after:
            return self.container
        return None

    async def observe(self, container: Any, on_batch: BatchHandler) -> Subscription:
        sub = FakeSubscription(container, on_batch)
        self.subscriptions.append(sub)
        return sub

    async def query_items(self) -> List[ChatItem]:
        return list(self.items.values())

    def resolve(self, node: DomNode) -> ChatItem:
        item = self.items.get(node.node_id)
        if item is None:
            item = FakeChatItem(node.node_id, node.tag)
            self.items[node.node_id] = item
        return item

    async def is_container_connected(self, container: Any) -> bool:
        return self.container_connected

    async def find_anchor_host(self) -> bool:
        return self.anchor_host

    async def attach_clear_anchor(self, visible: bool) -> bool:
        self.anchor_attach_calls.append(visible)
        self.anchor_visible = visible
        return True

    async def set_clear_anchor_visible(self, visible: bool) -> None:
        self.anchor_visible = visible

    async def set_auto_scroll_suppressed(self, suppressed: bool) -> None:
        self.scroll_suppressed = suppressed


# ----------------------------------------------------------------------
# Socket fakes
# ----------------------------------------------------------------------

FakeMessage = namedtuple("FakeMessage", ["type", "data"])


class FakeWebSocket:
    def __init__(self, url: str):
        self.url = url
        self.sent: List[str] = []
        self.closed = False
        self.close_calls = 0
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send_str(self, data: str) -> None:
        if self.closed:
            raise ConnectionResetError("Cannot write to closing transport")
        self.sent.append(data)

    async def close(self) -> None:
        self.close_calls += 1
        self.closed = True
        self._inbox.put_nowait(None)

    def exception(self) -> Optional[BaseException]:
        return None

    def feed_text(self, data: str) -> None:
        self._inbox.put_nowait(FakeMessage(aiohttp.WSMsgType.TEXT, data))

    def feed_binary(self, data: bytes) -> None:
        self._inbox.put_nowait(FakeMessage(aiohttp.WSMsgType.BINARY, data))

    def drop(self) -> None:
        """Server-side close."""
        self.closed = True
        self._inbox.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        msg = await self._inbox.get()
        if msg is None:
            raise StopAsyncIteration
        return msg


class FakeConnector:
    def __init__(self, failures: int = 0, *, stall_on: Tuple[str, ...] = ()):
        self.failures = failures
        self.stall_on = stall_on
        self.urls: List[str] = []
        self.sockets: List[FakeWebSocket] = []
        self.cancelled: List[str] = []

    async def __call__(self, url: str) -> FakeWebSocket:
        self.urls.append(url)
        if any(marker in url for marker in self.stall_on):
            # Blackholed host: the handshake never completes
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                self.cancelled.append(url)
                raise
        if self.failures > 0:
            self.failures -= 1
            raise aiohttp.ClientConnectionError("connection refused")
        ws = FakeWebSocket(url)
        self.sockets.append(ws)
        return ws

    @property
    def last(self) -> FakeWebSocket:
        return self.sockets[-1]


async def settle(rounds: int = 20) -> None:
    """Let pending callbacks and reader tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# ----------------------------------------------------------------------
# Fixtures
# ----------------------------------------------------------------------

@pytest.fixture
def source():
    return FakeItemSource()


@pytest.fixture
def published():
    return []


@pytest.fixture
def publish(published):
    async def _publish(message):
        published.append(message)
        return True

    return _publish


@pytest.fixture
def config(tmp_path):
    return HighlighterConfig(
        ws_origin="wss://overlay.test",
        overlay_origin="https://overlay.test",
        namespace_path=str(tmp_path / "namespace.json"),
        sweep_interval_ms=50,
        namespace_poll_seconds=0.1,
    )


@pytest.fixture
def store(config):
    return NamespaceStore(config.namespace_path, default=config.default_namespace)
