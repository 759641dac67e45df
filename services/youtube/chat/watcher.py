import asyncio
from typing import Any, Callable, List, Optional

from services.youtube.chat.classifier import is_chat_item
from services.youtube.chat.item_source import ChatItem, DomNode, ItemSource, Subscription
from shared.logging.logger import get_logger

log = get_logger("youtube.chat.watcher")

# One poll per animation frame
FRAME_INTERVAL_SECONDS = 1 / 60


class TreeWatcher:
    """
    Finds the chat list container and reports newly inserted chat items.

    RULES:
    - Container discovery has no timeout; it ends only when stop_event is set
    - Observation covers the whole container subtree
    - Batches are handled in delivery order; every accepted node is emitted once
    - Re-attaching always disconnects the previous subscription first
    """

    def __init__(
        self,
        source: ItemSource,
        emit: Callable[[ChatItem], None],
        *,
        classifier: Callable[[Any], bool] = is_chat_item,
        frame_interval: float = FRAME_INTERVAL_SECONDS,
    ):
        self._source = source
        self._emit = emit
        self._classifier = classifier
        self._frame_interval = frame_interval

        self._container: Optional[Any] = None
        self._subscription: Optional[Subscription] = None
        self._generation = 0

    # ------------------------------------------------------------

    @property
    def container(self) -> Optional[Any]:
        return self._container

    @property
    def attached(self) -> bool:
        return self._subscription is not None

    # ------------------------------------------------------------

    async def wait_for_container(self, stop_event: Optional[asyncio.Event] = None) -> Optional[Any]:
        polls = 0
        while stop_event is None or not stop_event.is_set():
            container = await self._source.find_container()
            if container is not None:
                log.info(f"Chat container found after {polls} poll(s)")
                return container

            polls += 1
            await asyncio.sleep(self._frame_interval)

        return None

    async def attach(self, container: Any) -> None:
        await self.detach()

        self._generation += 1
        generation = self._generation

        def _on_batch(nodes: List[DomNode]) -> None:
            # Late batches from a torn-down subscription are dropped
            if generation != self._generation:
                return
            self._handle_batch(nodes)

        self._subscription = await self._source.observe(container, _on_batch)
        self._container = container
        log.info(f"Chat observer attached (generation={generation})")

    async def detach(self) -> None:
        subscription = self._subscription
        self._subscription = None
        self._container = None
        self._generation += 1

        if subscription is not None:
            await subscription.disconnect()
            log.info("Chat observer detached")

    # ------------------------------------------------------------

    def _handle_batch(self, nodes: List[DomNode]) -> None:
        for node in nodes:
            if not self._classifier(node):
                continue

            if not node.node_id:
                log.debug(f"Skipping {node.tag} without id")
                continue

            self._emit(self._source.resolve(node))
