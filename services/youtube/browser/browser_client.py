import asyncio
from pathlib import Path
from typing import Optional

from playwright.async_api import (
    async_playwright,
    BrowserContext,
    Page,
)
from shared.logging.logger import get_logger

log = get_logger("youtube.browser")


class YouTubeBrowserClient:
    """
    PERSISTENT CHROMIUM CLIENT FOR THE LIVE CHAT PAGE

    HARD LAWS:
    - Persistent profile (the operator signs in once, cookies survive restarts)
    - ONE authoritative page
    - All chat DOM work goes through the page's frames; nothing is scraped over HTTP
    """

    _instance: Optional["YouTubeBrowserClient"] = None

    def __init__(self, profile_dir: str = ".browser/youtube", headless: bool = False):
        self._playwright = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None

        self._profile_dir = Path(profile_dir)
        self._profile_dir.mkdir(parents=True, exist_ok=True)
        self._headless = headless

        self._lock = asyncio.Lock()
        self._started = False
        self._shutting_down = False

    # ------------------------------------------------------------

    @property
    def started(self) -> bool:
        return self._started

    @property
    def page(self) -> Page:
        if not self._page:
            raise RuntimeError("Browser not started")
        return self._page

    # ------------------------------------------------------------

    @classmethod
    def instance(cls, **kwargs) -> "YouTubeBrowserClient":
        if not cls._instance:
            cls._instance = cls(**kwargs)
        return cls._instance

    # ------------------------------------------------------------

    async def start(self) -> None:
        async with self._lock:
            if self._started:
                return

            log.info(f"Starting persistent Chromium browser (headless={self._headless})")

            self._playwright = await async_playwright().start()

            self._context = await self._playwright.chromium.launch_persistent_context(
                user_data_dir=str(self._profile_dir),
                headless=self._headless,
                viewport={"width": 1280, "height": 800},
                args=[
                    "--disable-blink-features=AutomationControlled",
                    "--disable-session-crashed-bubble",
                    "--disable-restore-session-state",
                    "--no-first-run",
                    "--no-default-browser-check",
                ],
            )

            pages = self._context.pages

            if pages:
                self._page = pages[0]
                await self._page.goto("about:blank")
                for p in pages[1:]:
                    await p.close()
            else:
                self._page = await self._context.new_page()

            self._started = True
            self._shutting_down = False

    # ------------------------------------------------------------

    async def open_watch(self, url: str) -> None:
        if not self._page:
            raise RuntimeError("Browser not started")

        log.info(f"Navigating to live chat → {url}")
        await self._page.goto(url, wait_until="domcontentloaded")

    # ------------------------------------------------------------

    async def shutdown(self) -> None:
        async with self._lock:
            if self._shutting_down:
                return

            self._shutting_down = True
            log.info("Shutting down browser")

            try:
                if self._context:
                    try:
                        await self._context.close()
                    except Exception as e:
                        log.warning(f"Browser context close ignored: {e}")

                if self._playwright:
                    try:
                        await self._playwright.stop()
                    except Exception as e:
                        log.warning(f"Playwright stop ignored: {e}")
            finally:
                self._context = None
                self._page = None
                self._playwright = None
                self._started = False
                self._shutting_down = False
