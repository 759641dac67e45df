import asyncio
from typing import Callable

from services.youtube.chat.item_source import ChatItem, ItemSource
from shared.logging.logger import get_logger

log = get_logger("core.sweep")

DEFAULT_INTERVAL_SECONDS = 0.5


class SweepScheduler:
    """
    Low-frequency safety net next to the mutation observer.

    Each tick hands every rendered item without an affordance to on_candidate
    and, once the dock host exists, requests the clear anchor exactly once.
    """

    def __init__(
        self,
        source: ItemSource,
        on_candidate: Callable[[ChatItem], None],
        on_anchor_host: Callable[[], None],
        *,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
    ):
        self._source = source
        self._on_candidate = on_candidate
        self._on_anchor_host = on_anchor_host
        self.interval_seconds = max(0.05, float(interval_seconds or DEFAULT_INTERVAL_SECONDS))

        self._anchor_requested = False
        self._running = False

    @property
    def anchor_requested(self) -> bool:
        return self._anchor_requested

    # ------------------------------------------------------------

    async def tick(self) -> int:
        candidates = await self._source.query_pending_items()
        for item in candidates:
            self._on_candidate(item)

        if not self._anchor_requested and await self._source.find_anchor_host():
            self._anchor_requested = True
            log.info("Dock host found; requesting clear anchor")
            self._on_anchor_host()

        if candidates:
            log.debug(f"Sweep found {len(candidates)} item(s) without affordance")
        return len(candidates)

    async def run(self, stop_event: asyncio.Event) -> None:
        if self._running:
            log.warning("Sweep already running; ignoring duplicate start")
            return

        self._running = True
        log.info(f"Sweep started (every {self.interval_seconds:.2f}s)")

        try:
            while not stop_event.is_set():
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)
                except asyncio.TimeoutError:
                    pass

                if stop_event.is_set():
                    break

                try:
                    await self.tick()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    log.warning(f"Sweep tick failed: {e}")
        finally:
            self._running = False
            log.info("Sweep stopped")
