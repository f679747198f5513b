"""Primary PDF engine: headless Chromium driven by Playwright.

One browser process is shared by every render. ``BrowserPool`` owns its
lifecycle: launched once on ``start()``, health-checked before each use,
relaunched after a crash and closed on shutdown. A semaphore bounds how
many pages render at the same time.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any

from playwright.async_api import Browser, Page, Playwright, async_playwright

from services.rendering.blocks import Block, blocks_to_html


logger = logging.getLogger(__name__)

_PAGE_OBJECT_RE = re.compile(rb"/Type\s*/Page(?![a-zA-Z])")

FOOTER_TEMPLATE = (
    '<div style="font-size:9px;width:100%;text-align:center;color:#555;">'
    'Page <span class="pageNumber"></span> of <span class="totalPages"></span>'
    "</div>"
)

LaunchFn = Callable[[], Awaitable[Any]]


def count_pdf_pages(data: bytes) -> int:
    """Count ``/Type /Page`` objects; at least 1 for any non-empty PDF."""
    return max(1, len(_PAGE_OBJECT_RE.findall(data)))


class BrowserPool:
    """Shared Chromium instance with bounded concurrent pages.

    ``launch`` may be supplied to construct the browser some other way
    (tests pass a fake); by default Playwright's bundled Chromium is used.
    """

    def __init__(self, size: int = 1, launch: LaunchFn | None = None) -> None:
        self._size = max(1, size)
        self._semaphore = asyncio.Semaphore(self._size)
        self._lock = asyncio.Lock()
        self._launch = launch or self._launch_chromium
        self._playwright: Playwright | None = None
        self._browser: Any | None = None
        self.launch_count = 0

    @property
    def size(self) -> int:
        return self._size

    async def _launch_chromium(self) -> Browser:
        if self._playwright is None:
            self._playwright = await async_playwright().start()
        return await self._playwright.chromium.launch(
            headless=True,
            args=["--no-sandbox", "--disable-dev-shm-usage", "--disable-gpu"],
        )

    def is_healthy(self) -> bool:
        return self._browser is not None and bool(self._browser.is_connected())

    async def start(self) -> None:
        async with self._lock:
            if self.is_healthy():
                return
            await self._relaunch()

    async def _relaunch(self) -> None:
        if self._browser is not None:
            logger.warning("Browser is disconnected; relaunching")
            try:
                await self._browser.close()
            except Exception as e:  # noqa: BLE001
                logger.warning("Closing dead browser failed: %s", e)
        self._browser = await self._launch()
        self.launch_count += 1
        logger.info("Launched render browser (launch #%d)", self.launch_count)

    async def _ensure_browser(self) -> Any:
        async with self._lock:
            if not self.is_healthy():
                await self._relaunch()
            return self._browser

    @asynccontextmanager
    async def page(self) -> AsyncIterator[Page]:
        """Borrow a fresh page in its own browser context."""
        async with self._semaphore:
            browser = await self._ensure_browser()
            context = await browser.new_context()
            try:
                yield await context.new_page()
            finally:
                await context.close()

    async def close(self) -> None:
        async with self._lock:
            if self._browser is not None:
                await self._browser.close()
                self._browser = None
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None
        logger.info("Render browser closed")


class BrowserEngine:
    def __init__(self, pool: BrowserPool) -> None:
        self._pool = pool

    async def render(self, blocks: list[Block], title: str) -> tuple[bytes, int]:
        markup = blocks_to_html(blocks, title)
        async with self._pool.page() as page:
            await page.set_content(markup, wait_until="load")
            data = await page.pdf(
                format="A4",
                print_background=True,
                display_header_footer=True,
                header_template="<span></span>",
                footer_template=FOOTER_TEMPLATE,
                margin={"top": "20mm", "bottom": "20mm", "left": "18mm", "right": "18mm"},
            )
        return data, count_pdf_pages(data)
