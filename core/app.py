import asyncio
import signal
import sys

from dotenv import load_dotenv

from core.engine import HighlightEngine
from runtime.version import as_string
from services.youtube.browser.browser_client import YouTubeBrowserClient
from services.youtube.browser.item_source import PlaywrightItemSource
from shared.config.highlighter import load_highlighter_config
from shared.config.namespace_store import NamespaceStore
from shared.logging.logger import get_logger

log = get_logger("core.app")


async def main(stop_event: asyncio.Event):
    # --------------------------------------------------
    # ENV + CONFIG
    # --------------------------------------------------
    load_dotenv()
    log.info("Environment variables loaded")
    log.info(f"{as_string()} booting")

    config = load_highlighter_config()
    store = NamespaceStore(config.namespace_path, default=config.default_namespace)

    if not config.watch_url:
        log.error("No watch_url configured (highlighter.json or HIGHLIGHTER_WATCH_URL); nothing to do")
        return

    # --------------------------------------------------
    # BROWSER
    # --------------------------------------------------
    browser = YouTubeBrowserClient.instance(
        profile_dir=config.profile_dir,
        headless=config.headless,
    )

    try:
        await browser.start()
        await browser.open_watch(config.watch_url)

        # --------------------------------------------------
        # ENGINE (BLOCKS UNTIL SHUTDOWN SIGNAL)
        # --------------------------------------------------
        engine = HighlightEngine(config, PlaywrightItemSource(browser.page), store)
        await engine.run(stop_event)

    finally:
        # --------------------------------------------------
        # BROWSER CLEANUP
        # --------------------------------------------------
        try:
            await browser.shutdown()
            log.info("Browser shutdown complete")
        except Exception as e:
            log.warning(f"Browser shutdown error ignored: {e}")

    log.info("Chat highlighter stopped")


# ----------------------------------------------------------------------
# SIGNAL HANDLING (WINDOWS-SAFE)
# ----------------------------------------------------------------------

def _install_signal_handlers(
    loop: asyncio.AbstractEventLoop,
    stop_event: asyncio.Event,
):
    """
    Windows-safe Ctrl+C handler.
    Uses signal.signal + asyncio.Event to unwind cleanly.
    """

    def _handler(signum, frame):
        try:
            loop.call_soon_threadsafe(stop_event.set)
        except RuntimeError:
            stop_event.set()

    try:
        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
    except (ValueError, OSError) as e:
        log.debug(f"Signal handlers not installed: {e}")


# ----------------------------------------------------------------------
# ENTRYPOINT
# ----------------------------------------------------------------------

def run():
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    stop_event = asyncio.Event()
    _install_signal_handlers(loop, stop_event)

    try:
        loop.run_until_complete(main(stop_event))

    except KeyboardInterrupt:
        log.info("KeyboardInterrupt received; shutdown initiated")
        stop_event.set()

    finally:
        # --------------------------------------------------
        # CANCEL REMAINING TASKS (CLEANLY)
        # --------------------------------------------------
        pending = [t for t in asyncio.all_tasks(loop) if not t.done()]
        for task in pending:
            task.cancel()

        if pending:
            loop.run_until_complete(
                asyncio.gather(*pending, return_exceptions=True)
            )

        # --------------------------------------------------
        # FINAL LOOP CLEANUP
        # --------------------------------------------------
        loop.run_until_complete(loop.shutdown_asyncgens())

        asyncio.set_event_loop(None)
        loop.close()


if __name__ == "__main__":
    run()
    sys.exit(0)
