"""Fallback fetch strategy: a stealth headless Chromium driven by Playwright."""

import asyncio
import random
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Sequence

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from listing_monitor.errors import BotChallengeError, ExtractionError, FetchError
from listing_monitor.fetcher.extraction import (
    EXTRACTION_SCRIPT,
    build_extracted_page,
    is_challenge_page,
    script_arguments,
)
from listing_monitor.fetcher.http_client import DEFAULT_USER_AGENT
from listing_monitor.models.data_models import FailureReason, Snapshot, utc_now
from listing_monitor.monitoring.logger import StructuredLogger


LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--disable-blink-features=AutomationControlled",
    "--disable-infobars",
    "--disable-extensions",
    "--no-first-run",
    "--no-default-browser-check",
    "--window-size=1920,1080",
]

EXTRA_HEADERS = {
    "Accept-Language": "ja-JP,ja;q=0.9,en-US;q=0.8,en;q=0.7",
    "Sec-Ch-Ua": '"Google Chrome";v="124", "Chromium";v="124", "Not-A.Brand";v="99"',
    "Sec-Ch-Ua-Mobile": "?0",
    "Sec-Ch-Ua-Platform": '"Windows"',
    "Upgrade-Insecure-Requests": "1",
}

VIEWPORT = {"width": 1920, "height": 1080}

SEARCH_REFERRER = "https://www.google.com/"

# Installed in every new document before page scripts run.
FINGERPRINT_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
Object.defineProperty(navigator, 'plugins', {
  get: () => [
    { name: 'Chrome PDF Plugin', filename: 'internal-pdf-viewer', description: 'Portable Document Format' },
    { name: 'Chromium PDF Plugin', filename: 'internal-pdf-viewer', description: 'Portable Document Format' },
  ],
});
Object.defineProperty(navigator, 'languages', { get: () => ['ja-JP', 'ja', 'en-US', 'en'] });
Object.defineProperty(navigator, 'platform', { get: () => 'Win32' });
Object.defineProperty(navigator, 'deviceMemory', { get: () => 8 });
Object.defineProperty(navigator, 'hardwareConcurrency', { get: () => 8 });
window.chrome = window.chrome || {};
window.chrome.runtime = window.chrome.runtime || { onConnect: undefined, onMessage: undefined };
if (navigator.permissions && navigator.permissions.query) {
  const originalQuery = navigator.permissions.query.bind(navigator.permissions);
  navigator.permissions.query = (parameters) => (
    parameters && parameters.name === 'notifications'
      ? Promise.resolve({ state: Notification.permission, name: parameters.name, onchange: null })
      : originalQuery(parameters)
  );
}
"""


class StealthBrowserFetcher:
    """
    Fetch a listing page through a fingerprint-spoofed headless browser.

    Every attempt gets its own browser and context, torn down on every exit
    path before the next attempt. The first attempt visits the warm-up pages
    so the target is reached with an organic referrer chain. Challenge pages
    are retried with a fresh context after ``backoff_base * 2 ** retry``
    seconds; once retries are exhausted the fetch fails with
    BotChallengeError.
    """

    name = "stealth_browser"

    def __init__(
        self,
        playwright_factory: Callable[[], Any] = async_playwright,
        headless: bool = True,
        max_retries: int = 2,
        backoff_base: float = 1.5,
        navigation_timeout: float = 60.0,
        warmup_urls: Sequence[str] = ("https://bot.sannysoft.com", "https://www.google.com"),
        max_listings: int = 3,
        timezone_id: str = "Asia/Tokyo",
        sleeper: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: Optional[StructuredLogger] = None
    ):
        self.playwright_factory = playwright_factory
        self.headless = headless
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.navigation_timeout = navigation_timeout
        self.warmup_urls = list(warmup_urls)
        self.max_listings = max_listings
        self.timezone_id = timezone_id
        self.sleeper = sleeper
        self.logger = logger or StructuredLogger()

    @property
    def _timeout_ms(self) -> float:
        return self.navigation_timeout * 1000

    async def fetch(self, url: str, hints: Sequence[str] = ()) -> Snapshot:
        """
        Fetch and extract one page, retrying with fresh contexts.

        Raises:
            BotChallengeError: Challenge page persisted through every retry
            ExtractionError: The page loaded but yielded no valid listings
            FetchError: Navigation timed out or the browser failed
        """
        start = time.perf_counter()
        self.logger.fetch_start(url, self.name)
        last_error: Optional[FetchError] = None

        async with self.playwright_factory() as playwright:
            for retry in range(self.max_retries + 1):
                if retry > 0:
                    await self.sleeper(self.backoff_base * (2 ** retry))

                try:
                    async with self._session(playwright) as page:
                        if retry == 0:
                            await self._warm_up(page)
                        snapshot = await self._load_and_extract(page, url, hints)
                except BotChallengeError as e:
                    last_error = e
                except ExtractionError as e:
                    last_error = e
                except PlaywrightTimeoutError as e:
                    last_error = FetchError(f"Browser navigation timed out: {e}", FailureReason.TIMEOUT)
                except PlaywrightError as e:
                    last_error = FetchError(f"Browser error: {e}", FailureReason.NETWORK)
                else:
                    elapsed_ms = (time.perf_counter() - start) * 1000
                    self.logger.fetch_success(url, self.name, len(snapshot.listings), elapsed_ms)
                    return snapshot

                self.logger.fetch_error(
                    url, self.name, last_error.reason.value, str(last_error), attempt=retry + 1
                )

        if isinstance(last_error, BotChallengeError):
            raise BotChallengeError(
                f"Verification page persisted after {self.max_retries + 1} attempts for {url}"
            ) from last_error
        raise last_error

    @asynccontextmanager
    async def _session(self, playwright: Any) -> AsyncIterator[Any]:
        """One browser + context + page, always closed on exit."""
        browser = await playwright.chromium.launch(headless=self.headless, args=LAUNCH_ARGS)
        try:
            context = await browser.new_context(
                user_agent=DEFAULT_USER_AGENT,
                locale="ja-JP",
                timezone_id=self.timezone_id,
                viewport=VIEWPORT,
                extra_http_headers=EXTRA_HEADERS,
            )
            try:
                await context.add_init_script(FINGERPRINT_SCRIPT)
                page = await context.new_page()
                page.set_default_timeout(self._timeout_ms)
                page.set_default_navigation_timeout(self._timeout_ms)
                yield page
            finally:
                await context.close()
        finally:
            await browser.close()

    async def _warm_up(self, page: Any) -> None:
        """Visit neutral pages before the target; failures are not fatal."""
        for warmup_url in self.warmup_urls:
            try:
                await page.context.clear_cookies()
                await page.goto(warmup_url, wait_until="domcontentloaded", timeout=self._timeout_ms)
                await self._behave_like_human(page, scroll_to=100)
            except PlaywrightError as e:
                self.logger.warning("warmup_failed", url=warmup_url, error=str(e))

    async def _load_and_extract(self, page: Any, url: str, hints: Sequence[str]) -> Snapshot:
        await page.goto(
            url,
            wait_until="domcontentloaded",
            timeout=self._timeout_ms,
            referer=SEARCH_REFERRER,
        )
        await self._behave_like_human(page, scroll_to=600, settle=3.0)

        title = await page.title()
        content = await page.content()
        if is_challenge_page(title, content):
            raise BotChallengeError(f"Verification page served for {url}")

        raw = await page.evaluate(EXTRACTION_SCRIPT, script_arguments(hints, self.max_listings))
        extracted = build_extracted_page(raw, max_listings=self.max_listings)
        return Snapshot(
            target_id="",
            fetched_at=utc_now(),
            content_hash=extracted.content_hash,
            listings=extracted.listings,
            strategy_used=self.name,
            matched_selector=extracted.matched_selector,
        )

    async def _behave_like_human(self, page: Any, scroll_to: int, settle: float = 1.2) -> None:
        await self._safe_mouse_move(page, random.randint(100, 600), random.randint(100, 400))
        await self.sleeper(random.uniform(0.3, 0.8))

        # Gradual scroll in a few steps
        steps = 3
        for step in range(1, steps + 1):
            await page.evaluate(f"window.scrollTo(0, {scroll_to * step // steps})")
            await self.sleeper(random.uniform(0.2, 0.5))

        await self._safe_mouse_move(page, random.randint(200, 900), random.randint(200, 700))
        await self.sleeper(settle)

    async def _safe_mouse_move(self, page: Any, x: int, y: int) -> None:
        """Pointer input can fail in headless sandboxes; never abort on it."""
        try:
            await page.mouse.move(x, y, steps=5)
        except PlaywrightError as e:
            self.logger.debug("mouse_move_skipped", x=x, y=y, error=str(e))
