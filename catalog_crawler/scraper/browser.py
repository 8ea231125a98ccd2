"""Headless browser session shared by every subject pipeline of a run.

One :class:`BrowserSession` wraps a Playwright Chromium instance and a single
browser context configured to look like an ordinary desktop browser.  Subject
pipelines only ever call :meth:`BrowserSession.new_page`; each page belongs to
the caller that opened it and must be closed by that caller.

Playwright is imported lazily so the rest of the package (and the test suite)
can be imported without a browser install.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from catalog_crawler.scraper.retry import CatalogScrapeError

logger = logging.getLogger(__name__)

_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-blink-features=AutomationControlled",
]

# Removes the most common automation fingerprints before any page script runs.
_EVASION_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en'] });
Object.defineProperty(navigator, 'plugins', { get: () => [1, 2, 3, 4, 5] });
window.chrome = window.chrome || { runtime: {} };
"""


class LaunchFailure(CatalogScrapeError):
    """The browser session could not be started."""


class BrowserSession:
    """Owns the Playwright driver, the browser, and one shared context.

    Use as an async context manager, or call :meth:`start` / :meth:`close`
    explicitly.  :meth:`close` is idempotent: the underlying browser is shut
    down exactly once however many times it is called.
    """

    def __init__(self, *, headless: bool = True, user_agent: str = "") -> None:
        self.headless = headless
        self.user_agent = user_agent
        self._playwright: Optional[Any] = None
        self._browser: Optional[Any] = None
        self._context: Optional[Any] = None
        self._closed = False

    @property
    def is_open(self) -> bool:
        return self._context is not None and not self._closed

    async def start(self) -> "BrowserSession":
        """Launch Chromium with automation fingerprints masked.

        Raises:
            LaunchFailure: The driver or the browser failed to start.  Any
                part that did start is torn down before raising.
        """
        from playwright.async_api import async_playwright  # noqa: PLC0415

        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self.headless,
                args=_LAUNCH_ARGS,
            )
            context_kwargs: dict[str, Any] = {
                "locale": "en-US",
                "viewport": {"width": 1366, "height": 768},
            }
            if self.user_agent:
                context_kwargs["user_agent"] = self.user_agent
            self._context = await self._browser.new_context(**context_kwargs)
            await self._context.add_init_script(_EVASION_SCRIPT)
        except Exception as exc:
            await self.close()
            raise LaunchFailure(f"could not launch browser: {exc}") from exc

        logger.debug("[browser] Chromium launched (headless=%s)", self.headless)
        return self

    async def new_page(self) -> Any:
        """Open a fresh page in the shared context.  The caller must close it."""
        if not self.is_open:
            raise RuntimeError("browser session is not open")
        return await self._context.new_page()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        context, browser, driver = self._context, self._browser, self._playwright
        self._context = self._browser = self._playwright = None
        try:
            if context is not None:
                await context.close()
        finally:
            try:
                if browser is not None:
                    await browser.close()
            finally:
                if driver is not None:
                    await driver.stop()
        logger.debug("[browser] session closed")

    async def __aenter__(self) -> "BrowserSession":
        return await self.start()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
