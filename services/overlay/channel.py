import asyncio
import random
from typing import Any, Awaitable, Callable, Dict, Optional

import aiohttp

from services.overlay.messages import MalformedMessage, decode_inbound, encode, endpoint_url
from shared.logging.logger import get_logger

log = get_logger("overlay.channel")

RECONNECT_MIN_MS = 1000
RECONNECT_MAX_MS = 10000
HEARTBEAT_SECONDS = 30.0
CONNECT_TIMEOUT_SECONDS = 10.0

SelectionHandler = Callable[[Optional[str]], None]
Connector = Callable[[str], Awaitable[Any]]


class ResilientChannel:
    """
    One logical WebSocket connection to <origin>/<namespace>/extension.

    HARD RULES:
    - At most ONE live connection: the previous socket is torn down before a new one
    - At most ONE connect attempt in flight: a new attempt cancels the old one
    - At most ONE pending reconnect timer: scheduling replaces the previous timer
    - Starting a connect cancels any pending reconnect
    - Sends are dropped (not queued) while the socket is not open
    - Inbound frames never touch connection state, even when malformed
    """

    def __init__(
        self,
        origin: str,
        namespace: str,
        on_selection: SelectionHandler,
        *,
        reconnect_min_ms: int = RECONNECT_MIN_MS,
        reconnect_max_ms: int = RECONNECT_MAX_MS,
        connector: Optional[Connector] = None,
        rng: Optional[random.Random] = None,
    ):
        if reconnect_min_ms > reconnect_max_ms:
            raise ValueError("reconnect_min_ms must not exceed reconnect_max_ms")

        self.origin = origin.rstrip("/")
        self._namespace = namespace
        self._on_selection = on_selection

        self.reconnect_min_ms = int(reconnect_min_ms)
        self.reconnect_max_ms = int(reconnect_max_ms)

        self._connector: Connector = connector or self._aiohttp_connect
        self._session: Optional[aiohttp.ClientSession] = None
        self._rng = rng or random.Random()

        self._ws: Optional[Any] = None
        self._reader: Optional[asyncio.Task] = None

        self._connect_task: Optional[asyncio.Task] = None
        self._reconnect_handle: Optional[asyncio.TimerHandle] = None
        self._last_reconnect_delay: Optional[float] = None

        self._closed = False

    # ------------------------------------------------------------

    @property
    def namespace(self) -> str:
        return self._namespace

    @property
    def url(self) -> str:
        return endpoint_url(self.origin, self._namespace)

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._ws.closed

    @property
    def connecting(self) -> bool:
        task = self._connect_task
        return task is not None and not task.done()

    @property
    def reconnect_pending(self) -> bool:
        handle = self._reconnect_handle
        return handle is not None and not handle.cancelled()

    @property
    def last_reconnect_delay(self) -> Optional[float]:
        return self._last_reconnect_delay

    # ------------------------------------------------------------
    # CONNECT / TEARDOWN
    # ------------------------------------------------------------

    async def _aiohttp_connect(self, url: str) -> aiohttp.ClientWebSocketResponse:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return await asyncio.wait_for(
            self._session.ws_connect(url, heartbeat=HEARTBEAT_SECONDS),
            timeout=CONNECT_TIMEOUT_SECONDS,
        )

    def start_connect(self) -> Optional[asyncio.Task]:
        """
        Begin a connect attempt in the background.

        An attempt still in flight is cancelled and replaced, and a pending
        reconnect timer is dropped. Returns None once the channel is closed.
        """
        if self._closed:
            return None

        self._cancel_reconnect()

        previous = self._connect_task
        if previous is not None and not previous.done():
            previous.cancel()
        else:
            previous = None

        task = asyncio.ensure_future(self._attempt(previous))
        self._connect_task = task
        return task

    async def connect(self) -> bool:
        """Connect now and wait for the outcome. False when it failed or was superseded."""
        task = self.start_connect()
        if task is None:
            return False

        await asyncio.wait({task})
        return not task.cancelled() and task.result()

    async def _attempt(self, previous: Optional[asyncio.Task]) -> bool:
        if previous is not None:
            await asyncio.gather(previous, return_exceptions=True)

        await self._teardown()

        url = self.url
        try:
            ws = await self._connector(url)
        except asyncio.CancelledError:
            log.info(f"WS connect superseded ({url})")
            raise
        except Exception as e:
            log.warning(f"WS create failed ({url}): {e}")
            self.schedule_reconnect()
            return False

        self._ws = ws
        self._cancel_reconnect()
        self._reader = asyncio.create_task(self._read_loop(ws))
        log.info(f"WS connected → {url}")
        return True

    async def _teardown(self) -> None:
        ws, reader = self._ws, self._reader
        # Detach first so the reader's exit path does not schedule a reconnect
        self._ws = None
        self._reader = None

        if reader is not None and not reader.done() and reader is not asyncio.current_task():
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)

        if ws is not None and not ws.closed:
            try:
                await ws.close()
            except Exception as e:
                log.debug(f"WS close ignored: {e}")

    async def reconnect(self, immediate: bool = False) -> bool:
        if immediate:
            return await self.connect()

        self.schedule_reconnect()
        return False

    async def set_namespace(self, namespace: str, *, wait: bool = True) -> bool:
        """
        Switch namespace; reconnects immediately when it differs, replacing any
        attempt still in flight. With wait=False the new attempt runs in the
        background.
        """
        if namespace == self._namespace:
            return False

        log.info(f"Namespace changed → {namespace}; reconnecting now")
        self._namespace = namespace

        if wait:
            await self.connect()
        else:
            self.start_connect()
        return True

    async def close(self) -> None:
        self._closed = True
        self._cancel_reconnect()

        task = self._connect_task
        self._connect_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        await self._teardown()

        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
        log.info("WS channel closed")

    # ------------------------------------------------------------
    # RECONNECT POLICY
    # ------------------------------------------------------------

    def next_reconnect_delay_ms(self) -> int:
        return self._rng.randint(self.reconnect_min_ms, self.reconnect_max_ms)

    def schedule_reconnect(self) -> Optional[float]:
        if self._closed:
            return None

        self._cancel_reconnect()

        delay = self.next_reconnect_delay_ms() / 1000.0
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(delay, self._fire_reconnect)
        self._last_reconnect_delay = delay

        log.info(f"WS reconnect in {delay:.1f}s → {self.url}")
        return delay

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
        self._reconnect_handle = None

    def _fire_reconnect(self) -> None:
        self._reconnect_handle = None
        if self._closed:
            return
        self.start_connect()

    # ------------------------------------------------------------
    # SEND / RECEIVE
    # ------------------------------------------------------------

    async def send(self, message: Dict[str, Any]) -> bool:
        ws = self._ws
        if ws is None or ws.closed:
            log.debug("WS not open; dropping outbound message")
            return False

        try:
            await ws.send_str(encode(message))
            return True
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as e:
            log.warning(f"WS send failed: {e}")
            return False

    def _handle_frame(self, data: Any) -> None:
        try:
            selection = decode_inbound(data)
        except MalformedMessage as e:
            log.error(f"Invalid message from overlay: {e}")
            return

        self._on_selection(selection.item_id)

    async def _read_loop(self, ws: Any) -> None:
        try:
            async for msg in ws:
                if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                    self._handle_frame(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    log.warning(f"WS error: {ws.exception()}")
                    break
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.warning(f"WS reader failed: {e}")

        if ws is not self._ws or self._closed:
            return

        log.warning("WS closed")
        self._ws = None
        self._reader = None
        if not ws.closed:
            try:
                await ws.close()
            except Exception as e:
                log.debug(f"WS close ignored: {e}")
        self.schedule_reconnect()
