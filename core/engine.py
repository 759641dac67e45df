"""
Highlight engine.

Wires the item source, tree watcher, sweep scheduler, highlight state machine
and overlay channel together. Every external callback (mutation batches,
button clicks, socket frames, namespace edits, sweep hits) becomes an event on
one queue, and a single dispatcher applies them in arrival order. Business
logic never runs inside a callback registration.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, List, Optional

from core.highlight import HighlightStateMachine
from core.sweep import SweepScheduler
from services.overlay.channel import Connector, ResilientChannel
from services.youtube.chat.item_source import ChatItem, ItemSource, ItemUnavailable
from services.youtube.chat.watcher import TreeWatcher
from shared.config.highlighter import HighlighterConfig
from shared.config.namespace_store import NamespaceStore
from shared.logging.logger import get_logger

log = get_logger("core.engine")


# ----------------------------------------------------------------------
# EVENTS
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class ItemDiscovered:
    item: ChatItem


@dataclass(frozen=True)
class ToggleRequested:
    item: ChatItem


@dataclass(frozen=True)
class ClearRequested:
    pass


@dataclass(frozen=True)
class RemoteSelection:
    item_id: Optional[str]


@dataclass(frozen=True)
class NamespaceChanged:
    namespace: str


@dataclass(frozen=True)
class AnchorHostReady:
    pass


# ----------------------------------------------------------------------
# ENGINE
# ----------------------------------------------------------------------

class HighlightEngine:
    def __init__(
        self,
        config: HighlighterConfig,
        source: ItemSource,
        store: NamespaceStore,
        *,
        connector: Optional[Connector] = None,
    ):
        self.config = config
        self._source = source
        self._store = store
        self._events: asyncio.Queue = asyncio.Queue()

        self.channel = ResilientChannel(
            config.ws_origin,
            store.get(),
            self._on_remote_selection,
            reconnect_min_ms=config.reconnect_min_ms,
            reconnect_max_ms=config.reconnect_max_ms,
            connector=connector,
        )
        self.state = HighlightStateMachine(source, self.channel.send)
        self.watcher = TreeWatcher(source, self._on_item_found)
        self.sweep = SweepScheduler(
            source,
            self._on_item_found,
            self._on_anchor_host,
            interval_seconds=config.sweep_interval_seconds,
        )

        store.on_change(self._on_namespace_changed)

        self._sweep_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------
    # CALLBACKS → EVENTS
    # ------------------------------------------------------------

    def submit(self, event: Any) -> None:
        self._events.put_nowait(event)

    def _on_item_found(self, item: ChatItem) -> None:
        self.submit(ItemDiscovered(item))

    def _on_toggle(self, item: ChatItem) -> None:
        self.submit(ToggleRequested(item))

    def _on_clear(self) -> None:
        self.submit(ClearRequested())

    def _on_remote_selection(self, item_id: Optional[str]) -> None:
        self.submit(RemoteSelection(item_id))

    def _on_namespace_changed(self, namespace: str) -> None:
        self.submit(NamespaceChanged(namespace))

    def _on_anchor_host(self) -> None:
        self.submit(AnchorHostReady())

    # ------------------------------------------------------------
    # DISPATCH
    # ------------------------------------------------------------

    async def attach_item(self, item: ChatItem) -> bool:
        """Idempotent: items that already carry an affordance are left alone."""
        if await item.has_affordance():
            return False
        if not await item.is_rendered():
            return False

        attached = await item.attach_affordance()
        if attached:
            await self.state.sync_item(item)
        return attached

    async def dispatch(self, event: Any) -> None:
        if isinstance(event, ItemDiscovered):
            await self.attach_item(event.item)
        elif isinstance(event, ToggleRequested):
            await self.state.toggle_local(event.item)
        elif isinstance(event, ClearRequested):
            await self.state.clear_all()
        elif isinstance(event, RemoteSelection):
            await self.state.set_remote(event.item_id)
        elif isinstance(event, NamespaceChanged):
            # The dispatcher never waits on the network
            await self.channel.set_namespace(event.namespace, wait=False)
        elif isinstance(event, AnchorHostReady):
            await self._source.attach_clear_anchor(self.state.is_active)
        else:
            log.warning(f"Unknown engine event ignored: {event!r}")

    async def _dispatch_safely(self, event: Any) -> None:
        try:
            await self.dispatch(event)
        except asyncio.CancelledError:
            raise
        except ItemUnavailable as e:
            log.info(f"{type(event).__name__} skipped; item gone: {e}")
        except Exception as e:
            log.warning(f"{type(event).__name__} failed: {e}")

    async def drain(self) -> int:
        """Process every queued event. Returns how many were handled."""
        handled = 0
        while not self._events.empty():
            await self._dispatch_safely(self._events.get_nowait())
            handled += 1
        return handled

    async def _dispatch_loop(self) -> None:
        while True:
            event = await self._events.get()
            await self._dispatch_safely(event)

    # ------------------------------------------------------------
    # CONTAINER SUPERVISION
    # ------------------------------------------------------------

    async def _track_container(self, stop_event: asyncio.Event) -> None:
        interval = self.config.sweep_interval_seconds

        while not stop_event.is_set():
            container = await self.watcher.wait_for_container(stop_event)
            if container is None:
                break

            try:
                await self.sweep.tick()
                await self.watcher.attach(container)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.warning(f"Chat observer attach failed: {e}; retrying")
                await asyncio.sleep(interval)
                continue

            if self._sweep_task is None:
                self._sweep_task = asyncio.create_task(self.sweep.run(stop_event))

            while not stop_event.is_set():
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=interval)
                except asyncio.TimeoutError:
                    pass

                if stop_event.is_set():
                    break

                if not await self._source.is_container_connected(container):
                    log.warning("Chat container replaced; rediscovering")
                    break

        await self.watcher.detach()

    # ------------------------------------------------------------
    # LIFECYCLE
    # ------------------------------------------------------------

    async def run(self, stop_event: asyncio.Event) -> None:
        log.info(f"Highlight engine starting (namespace={self.channel.namespace})")

        await self._source.bind(on_toggle=self._on_toggle, on_clear=self._on_clear)
        self.channel.start_connect()

        tasks: List[asyncio.Task] = [
            asyncio.create_task(self._dispatch_loop()),
            asyncio.create_task(self._track_container(stop_event)),
            asyncio.create_task(
                self._store.watch(stop_event, self.config.namespace_poll_seconds)
            ),
        ]

        try:
            await stop_event.wait()
        finally:
            log.info("Highlight engine stopping")

            if self._sweep_task is not None:
                tasks.append(self._sweep_task)
                self._sweep_task = None

            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

            await self.watcher.detach()
            await self.channel.close()
            log.info("Highlight engine stopped")
