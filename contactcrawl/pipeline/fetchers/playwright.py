from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from playwright.async_api import Browser, BrowserContext, Page, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout

from ...config import FetchTier
from ...schemas import BrowserEngine
from ..patterns import extract_emails

logger = logging.getLogger(__name__)


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/96.0.4664.110 Safari/537.36"
)
DEFAULT_VIEWPORT = {"width": 1280, "height": 800}

# Resource types blocked per tier
_BLOCKED_RESOURCE_TYPES = {
    FetchTier.FULL: frozenset(["image", "media", "font"]),
    FetchTier.FAST: frozenset(["image", "media", "font", "stylesheet"]),
}

# Analytics/tracking requests are never needed to render contact details
_BLOCKED_URL_PATTERNS = [
    re.compile(r"google[-_]?analytics", re.IGNORECASE),
    re.compile(r"googletagmanager", re.IGNORECASE),
    re.compile(r"facebook\.net", re.IGNORECASE),
    re.compile(r"doubleclick\.net", re.IGNORECASE),
    re.compile(r"hotjar\.", re.IGNORECASE),
    re.compile(r"segment\.(com|io)", re.IGNORECASE),
    re.compile(r"mixpanel\.", re.IGNORECASE),
    re.compile(r"newrelic\.", re.IGNORECASE),
    re.compile(r"sentry\.io", re.IGNORECASE),
]

_CHROMIUM_ARGS = [
    '--disable-dev-shm-usage',
    '--disable-gpu',
    '--disable-extensions',
    '--disable-plugins',
    '--no-first-run',
    '--disable-default-apps',
]

MAX_ATTEMPTS = 2
NETWORK_IDLE_WAIT_MS = 5000

# Fast tier: one scroll to trigger lazy-loaded footers when few emails are visible
FAST_SCROLL_PX = 2000
FAST_SCROLL_WAIT_MS = 500
FAST_MIN_EMAILS = 2


class BrowserLaunchError(RuntimeError):
    """The browser engine could not be started. Fatal for every job using it."""


class FetchErrorKind(str, Enum):
    TIMEOUT = "timeout"
    NAVIGATION = "navigation"
    HTTP_ERROR = "http_error"
    NO_RESPONSE = "no_response"


@dataclass(frozen=True)
class PageFetchResult:
    url: str
    success: bool
    html: str | None = None
    final_url: str | None = None
    status_code: int = 0
    page_title: str | None = None
    error: str | None = None
    error_kind: FetchErrorKind | None = None
    attempts: int = 1


class BrowserHandle:
    """Shared browser process, launched on first use and reference-counted.

    Jobs ``acquire`` the browser to open their own context and ``release`` it
    when done. Only the owner calls ``close``.
    """

    def __init__(self, engine: BrowserEngine = BrowserEngine.CHROMIUM, *, headless: bool = True) -> None:
        self.engine = engine
        self.headless = headless
        self._playwright = None
        self._browser: Optional[Browser] = None
        self._refs = 0
        self._lock = asyncio.Lock()

    @property
    def ref_count(self) -> int:
        return self._refs

    @property
    def is_launched(self) -> bool:
        return self._browser is not None

    async def acquire(self) -> Browser:
        async with self._lock:
            if self._browser is None:
                await self._launch()
            self._refs += 1
            return self._browser

    async def release(self) -> None:
        async with self._lock:
            if self._refs > 0:
                self._refs -= 1

    async def _launch(self) -> None:
        try:
            self._playwright = await async_playwright().start()
            launcher = getattr(self._playwright, self.engine.value)
            kwargs = {"headless": self.headless}
            if self.engine is BrowserEngine.CHROMIUM:
                kwargs["args"] = _CHROMIUM_ARGS
            self._browser = await launcher.launch(**kwargs)
        except Exception as e:
            await self._stop_playwright()
            raise BrowserLaunchError(f"could not launch {self.engine.value}: {e}") from e
        logger.info("Launched %s browser (headless=%s)", self.engine.value, self.headless)

    async def _stop_playwright(self) -> None:
        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except PlaywrightError as e:
                logger.debug("playwright stop failed: %s", e)
            self._playwright = None

    async def close(self) -> None:
        async with self._lock:
            if self._refs:
                logger.warning("Closing %s browser with %d active users", self.engine.value, self._refs)
            if self._browser is not None:
                try:
                    await self._browser.close()
                except PlaywrightError as e:
                    logger.debug("browser close failed: %s", e)
                self._browser = None
            await self._stop_playwright()
            self._refs = 0

    async def __aenter__(self) -> "BrowserHandle":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


class PlaywrightFetcher:
    """Page fetcher for one crawl job: one isolated browsing context on a shared browser.

    - Blocks images, media, fonts (and stylesheets in the fast tier)
    - Blocks known analytics/tracking hosts
    - Retries navigation errors and timeouts with linear backoff
    - Soft wait for network quiescence in the full tier, never a failure
    """

    def __init__(
        self,
        handle: BrowserHandle,
        *,
        tier: FetchTier = FetchTier.FULL,
        user_agent: str = DEFAULT_USER_AGENT,
        max_attempts: int = MAX_ATTEMPTS,
        backoff_s: float = 1.0,
    ) -> None:
        self.handle = handle
        self.tier = tier
        self.user_agent = user_agent
        self.max_attempts = max_attempts
        self.backoff_s = backoff_s
        self._context: Optional[BrowserContext] = None
        self._acquired = False

    async def open(self) -> None:
        """Acquire the shared browser and open this job's context. Raises BrowserLaunchError."""
        browser = await self.handle.acquire()
        self._acquired = True
        try:
            self._context = await browser.new_context(
                user_agent=self.user_agent,
                viewport=DEFAULT_VIEWPORT,
                locale="en-US",
            )
            await self._context.route("**/*", self._route_handler)
        except PlaywrightError as e:
            await self.close()
            raise BrowserLaunchError(f"could not open browsing context: {e}") from e

    async def _route_handler(self, route) -> None:
        request = route.request
        if request.resource_type in _BLOCKED_RESOURCE_TYPES[self.tier]:
            await route.abort()
            return
        if any(p.search(request.url) for p in _BLOCKED_URL_PATTERNS):
            await route.abort()
            return
        await route.continue_()

    async def fetch(self, url: str, timeout_ms: int) -> PageFetchResult:
        """Navigate to ``url`` and return the rendered DOM."""
        if self._context is None:
            raise RuntimeError("fetcher is not open")
        wait_until = "domcontentloaded" if self.tier is FetchTier.FAST else "load"
        error: str | None = None
        kind: FetchErrorKind | None = None

        for attempt in range(1, self.max_attempts + 1):
            page = None
            try:
                page = await self._context.new_page()
                response = await page.goto(url, wait_until=wait_until, timeout=timeout_ms)
                if response is None:
                    return PageFetchResult(url=url, success=False, error="No response received",
                                           error_kind=FetchErrorKind.NO_RESPONSE, attempts=attempt)
                status = response.status
                if status >= 400:
                    return PageFetchResult(url=url, success=False, status_code=status,
                                           final_url=page.url, error=f"HTTP {status}",
                                           error_kind=FetchErrorKind.HTTP_ERROR, attempts=attempt)
                if self.tier is FetchTier.FULL:
                    await self._wait_for_network_idle(page, url)
                html = await page.content()
                if self.tier is FetchTier.FAST and len(extract_emails(html)) < FAST_MIN_EMAILS:
                    html = await self._scroll_for_more(page, url, html)
                title = await page.title()
                return PageFetchResult(
                    url=url,
                    success=True,
                    html=html,
                    final_url=page.url,
                    status_code=status,
                    page_title=title,
                    attempts=attempt,
                )
            except PlaywrightTimeout as e:
                error, kind = str(e), FetchErrorKind.TIMEOUT
            except PlaywrightError as e:
                error, kind = str(e), FetchErrorKind.NAVIGATION
            finally:
                await self._close_page(page)

            if attempt < self.max_attempts:
                logger.debug("Attempt %d for %s failed (%s), retrying", attempt, url, kind.value)
                await asyncio.sleep(self.backoff_s * attempt)

        return PageFetchResult(url=url, success=False, error=error, error_kind=kind,
                               attempts=self.max_attempts)

    async def _wait_for_network_idle(self, page: Page, url: str) -> None:
        try:
            await page.wait_for_load_state("networkidle", timeout=NETWORK_IDLE_WAIT_MS)
        except PlaywrightTimeout:
            logger.debug("Network never went idle on %s, using current DOM", url)

    async def _scroll_for_more(self, page: Page, url: str, html: str) -> str:
        try:
            await page.evaluate(f"window.scrollBy(0, {FAST_SCROLL_PX})")
            await page.wait_for_timeout(FAST_SCROLL_WAIT_MS)
            return await page.content()
        except PlaywrightError as e:
            logger.debug("Scroll on %s failed (%s), using first DOM", url, e)
            return html

    async def _close_page(self, page: Optional[Page]) -> None:
        if page is None:
            return
        try:
            await page.close()
        except PlaywrightError as e:
            logger.debug("page close failed: %s", e)

    async def close(self) -> None:
        if self._context is not None:
            try:
                await self._context.close()
            except PlaywrightError as e:
                logger.debug("context close failed: %s", e)
            self._context = None
        if self._acquired:
            self._acquired = False
            await self.handle.release()

    async def __aenter__(self) -> "PlaywrightFetcher":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
