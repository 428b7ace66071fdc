"""
Rendered fetch strategy using Playwright.

Pages are loaded in headless Chromium with JavaScript enabled, so product
markup injected client-side is visible to the classifier. Each fetch uses
an isolated browser context; a crashed browser is relaunched once before
the fetch is reported as a render failure.
"""
import asyncio
import logging
import random
import time
from typing import Optional

from playwright.async_api import Browser, Error as PlaywrightError, Playwright
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from prodcrawl.constants import (
    BROWSER_CRASH_MARKERS,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DESKTOP_VIEWPORT_HEIGHT,
    DESKTOP_VIEWPORT_WIDTH,
    RETRYABLE_CLIENT_STATUS_CODES,
)
from prodcrawl.document import HtmlDocument
from prodcrawl.fetchers.base import FetchStrategy, FetchTimeout, NetworkFailure, RenderFailure
from prodcrawl.fetchers.proxy_rotation import ProxyRotator

logger = logging.getLogger(__name__)


def is_browser_crash(error: Exception) -> bool:
    """True if the error means the browser/session is gone rather than the page failed."""
    message = str(error).lower()
    return any(marker in message for marker in BROWSER_CRASH_MARKERS)


class BrowserFetcher(FetchStrategy):
    """Playwright-based fetcher for JavaScript-rendered pages."""

    name = "rendered"

    DESKTOP_USER_AGENTS = [
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    ]

    def __init__(
        self,
        user_agent: Optional[str] = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        headless: bool = True,
        proxies: Optional[ProxyRotator] = None,
    ):
        """
        Initialize the browser fetcher.

        Args:
            user_agent: Custom user agent (random desktop UA per context if None)
            timeout: Navigation timeout in seconds
            headless: Run browser in headless mode
            proxies: Optional proxy rotation for the task's proxy pool
        """
        self.user_agent = user_agent
        self.timeout_ms = int(timeout * 1000)  # Playwright uses milliseconds
        self.headless = headless
        self.proxies = proxies or ProxyRotator()

        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._launch_lock = asyncio.Lock()
        self._generation = 0  # Bumped on every (re)launch

    async def start(self) -> None:
        logger.info(f"Launching chromium browser (headless={self.headless})")
        self._playwright = await async_playwright().start()
        await self._launch_browser()

    async def stop(self) -> None:
        if self._browser:
            try:
                await self._browser.close()
            except PlaywrightError as e:
                logger.debug(f"Browser close failed: {e}")
            self._browser = None

        if self._playwright:
            await self._playwright.stop()
            self._playwright = None

        logger.info("Browser closed")

    async def _launch_browser(self) -> None:
        self._browser = await self._playwright.chromium.launch(
            headless=self.headless,
            args=["--disable-blink-features=AutomationControlled"],
        )
        self._generation += 1
        logger.info("Browser launched successfully")

    async def _relaunch(self, seen_generation: int) -> None:
        """Relaunch the browser unless another worker already did."""
        async with self._launch_lock:
            if self._generation != seen_generation:
                return
            logger.warning("Browser session crashed, relaunching")
            if self._browser:
                try:
                    await self._browser.close()
                except PlaywrightError:
                    pass
            await self._launch_browser()

    async def fetch(self, url: str) -> HtmlDocument:
        if not self._playwright:
            raise RuntimeError(
                "Browser is not running. Use BrowserFetcher as an async context manager."
            )

        generation = self._generation
        try:
            return await self._render(url)
        except PlaywrightError as e:
            if not is_browser_crash(e):
                raise self._translate(url, e) from e

        await self._relaunch(generation)
        try:
            return await self._render(url)
        except PlaywrightError as e:
            raise self._translate(url, e) from e

    async def _render(self, url: str) -> HtmlDocument:
        proxy = self.proxies.next_proxy()
        context = await self._browser.new_context(
            viewport={"width": DESKTOP_VIEWPORT_WIDTH, "height": DESKTOP_VIEWPORT_HEIGHT},
            user_agent=self.user_agent or random.choice(self.DESKTOP_USER_AGENTS),
            locale="en-US",
            java_script_enabled=True,
            proxy=proxy.playwright_proxy if proxy else None,
        )
        start_time = time.time()
        try:
            page = await context.new_page()
            response = await page.goto(url, wait_until="domcontentloaded", timeout=self.timeout_ms)

            if response is not None and response.status >= 400:
                status = response.status
                raise NetworkFailure(
                    f"HTTP {status}",
                    url=url,
                    status_code=status,
                    retryable=status >= 500 or status in RETRYABLE_CLIENT_STATUS_CODES,
                )

            await self._wait_for_content(page)
            html = await page.content()
            final_url = page.url

            logger.debug(f"Rendered {url} (time={time.time() - start_time:.2f}s, bytes={len(html)})")
            return HtmlDocument(url, html, final_url=final_url, rendered=True)
        finally:
            # Always close context to ensure isolation
            try:
                await context.close()
            except PlaywrightError as e:
                logger.debug(f"Context close failed: {e}")

    async def _wait_for_content(self, page) -> None:
        """Give client-side rendering a chance to finish."""
        try:
            await page.wait_for_load_state("networkidle", timeout=min(self.timeout_ms, 15000))
        except PlaywrightTimeoutError:
            pass  # Long-polling pages never go idle

        # Scroll to trigger lazy loading
        await page.evaluate("""
            async () => {
                const scrollHeight = document.body ? document.body.scrollHeight : 0;
                const viewportHeight = window.innerHeight;

                for (let y = 0; y < scrollHeight; y += viewportHeight) {
                    window.scrollTo(0, y);
                    await new Promise(r => setTimeout(r, 100));
                }

                window.scrollTo(0, 0);
            }
        """)

    def _translate(self, url: str, error: PlaywrightError) -> Exception:
        if isinstance(error, PlaywrightTimeoutError):
            return FetchTimeout(f"Navigation timeout after {self.timeout_ms}ms", url=url)
        message = str(error)
        if "net::" in message:
            retryable = "err_name_not_resolved" not in message.lower()
            return NetworkFailure(f"Network error: {message}", url=url, retryable=retryable)
        return RenderFailure(f"Render failed: {message}", url=url)
