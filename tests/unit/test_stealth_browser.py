"""Unit tests for the browser fetch strategy against a fake Playwright."""

from typing import List

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from listing_monitor.errors import BotChallengeError, ExtractionError, FetchError
from listing_monitor.fetcher.extraction import EXTRACTION_SCRIPT
from listing_monitor.fetcher.stealth_browser import (
    FINGERPRINT_SCRIPT,
    LAUNCH_ARGS,
    SEARCH_REFERRER,
    StealthBrowserFetcher,
)
from listing_monitor.models.data_models import FailureReason
from tests.fixtures.fakes import RecordingSleeper


URL = "https://www.listings.test/list"
WARMUP = ["https://warmup.test/one", "https://warmup.test/two"]

LISTING_RAW = {
    "selector": "athome-object-item",
    "texts": ["A 1000万円 広島市中区", "B 2000万円 広島市南区"],
    "items": [
        {"title": "A", "price": "1000万円", "location": "広島市中区", "text": ""},
        {"title": "B", "price": "2000万円", "location": "広島市南区", "text": ""},
    ],
}

CHALLENGE = ("認証にご協力ください", "<html><title>認証にご協力ください</title></html>")
LISTING = ("物件一覧", "<html><title>物件一覧</title></html>")


class FakeMouse:

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.moves = 0

    async def move(self, x, y, steps=1):
        self.moves += 1
        if self.fail:
            raise PlaywrightError("pointer unavailable")


class FakePage:

    def __init__(self, world: "FakeWorld", context: "FakeContext"):
        self.world = world
        self.context = context
        self.mouse = FakeMouse(fail=world.mouse_fails)
        self.default_timeout = None
        self.current_url = None

    def set_default_timeout(self, timeout):
        self.default_timeout = timeout

    def set_default_navigation_timeout(self, timeout):
        self.default_timeout = timeout

    async def goto(self, url, **kwargs):
        self.world.visits.append((url, kwargs.get("referer")))
        if url in self.world.failing_urls:
            raise PlaywrightError(f"net::ERR_CONNECTION_REFUSED at {url}")
        if url == URL and self.world.navigation_timeout:
            raise PlaywrightTimeoutError("Timeout 60000ms exceeded")
        self.current_url = url

    async def title(self):
        return self.world.current_page()[0]

    async def content(self):
        return self.world.current_page()[1]

    async def evaluate(self, script, arg=None):
        if script == EXTRACTION_SCRIPT:
            self.world.extraction_args.append(arg)
            return self.world.raw
        return None


class FakeContext:

    def __init__(self, world: "FakeWorld", options):
        self.world = world
        self.options = options
        self.closed = False
        self.init_scripts: List[str] = []

    async def add_init_script(self, script):
        self.init_scripts.append(script)

    async def new_page(self):
        return FakePage(self.world, self)

    async def clear_cookies(self):
        self.world.cookie_clears += 1

    async def close(self):
        self.closed = True


class FakeBrowser:

    def __init__(self, world: "FakeWorld"):
        self.world = world
        self.closed = False
        self.contexts: List[FakeContext] = []

    async def new_context(self, **options):
        context = FakeContext(self.world, options)
        self.contexts.append(context)
        return context

    async def close(self):
        self.closed = True


class FakeChromium:

    def __init__(self, world: "FakeWorld"):
        self.world = world

    async def launch(self, headless=True, args=None):
        self.world.launch_args.append((headless, args))
        browser = FakeBrowser(self.world)
        self.world.browsers.append(browser)
        return browser


class FakeWorld:
    """Scripted browser behaviour shared by every launched browser."""

    def __init__(self, pages, raw=None, mouse_fails=False, failing_urls=(), navigation_timeout=False):
        self.pages = list(pages)
        self.raw = raw if raw is not None else LISTING_RAW
        self.mouse_fails = mouse_fails
        self.failing_urls = set(failing_urls)
        self.navigation_timeout = navigation_timeout
        self.visits = []
        self.browsers: List[FakeBrowser] = []
        self.launch_args = []
        self.extraction_args = []
        self.cookie_clears = 0
        self.chromium = FakeChromium(self)
        self.entered = 0
        self.exited = 0

    def current_page(self):
        # one scripted (title, html) per browser launch; the last one repeats
        index = min(len(self.browsers) - 1, len(self.pages) - 1)
        return self.pages[index]

    def factory(self):
        world = self

        class _Manager:
            async def __aenter__(self):
                world.entered += 1
                return world

            async def __aexit__(self, *exc):
                world.exited += 1
                return False

        return _Manager()


def make_fetcher(world, sleeper=None, **kwargs):
    kwargs.setdefault("max_retries", 2)
    kwargs.setdefault("backoff_base", 10.0)
    return StealthBrowserFetcher(
        playwright_factory=world.factory,
        warmup_urls=WARMUP,
        sleeper=sleeper or RecordingSleeper(),
        **kwargs
    )


def all_closed(world):
    return all(b.closed and all(c.closed for c in b.contexts) for b in world.browsers)


class TestStealthBrowserFetcher:

    @pytest.mark.asyncio
    async def test_successful_fetch(self):
        world = FakeWorld([LISTING])

        snapshot = await make_fetcher(world).fetch(URL, hints=[".hinted"])

        assert snapshot.strategy_used == "stealth_browser"
        assert [s.key for s in snapshot.listings] == ["A:1000万円:広島市中区", "B:2000万円:広島市南区"]
        assert world.extraction_args[0]["selectors"][0] == ".hinted"
        assert len(world.browsers) == 1
        assert all_closed(world)
        assert world.exited == 1

    @pytest.mark.asyncio
    async def test_context_is_fingerprinted(self):
        world = FakeWorld([LISTING])

        await make_fetcher(world, headless=False).fetch(URL)

        context = world.browsers[0].contexts[0]
        assert context.init_scripts == [FINGERPRINT_SCRIPT]
        assert context.options["locale"] == "ja-JP"
        assert context.options["timezone_id"] == "Asia/Tokyo"
        assert world.launch_args == [(False, LAUNCH_ARGS)]

    @pytest.mark.asyncio
    async def test_warm_up_precedes_target_with_search_referrer(self):
        world = FakeWorld([LISTING])

        await make_fetcher(world).fetch(URL)

        assert [url for url, _ in world.visits] == WARMUP + [URL]
        assert world.visits[-1][1] == SEARCH_REFERRER
        assert world.cookie_clears == 2

    @pytest.mark.asyncio
    async def test_warm_up_failure_is_not_fatal(self):
        world = FakeWorld([LISTING], failing_urls=[WARMUP[0]])

        snapshot = await make_fetcher(world).fetch(URL)

        assert len(snapshot.listings) == 2
        assert [url for url, _ in world.visits] == WARMUP + [URL]

    @pytest.mark.asyncio
    async def test_pointer_failure_is_tolerated(self):
        world = FakeWorld([LISTING], mouse_fails=True)

        snapshot = await make_fetcher(world).fetch(URL)

        assert len(snapshot.listings) == 2

    @pytest.mark.asyncio
    async def test_challenge_retries_with_fresh_browser_and_backoff(self):
        sleeper = RecordingSleeper()
        world = FakeWorld([CHALLENGE, LISTING])

        snapshot = await make_fetcher(world, sleeper=sleeper).fetch(URL)

        assert len(snapshot.listings) == 2
        assert len(world.browsers) == 2
        assert all_closed(world)
        assert [d for d in sleeper.delays if d >= 10] == [20.0]
        # warm-up only on the first attempt
        assert [url for url, _ in world.visits] == WARMUP + [URL, URL]

    @pytest.mark.asyncio
    async def test_persistent_challenge_raises_after_retries(self):
        sleeper = RecordingSleeper()
        world = FakeWorld([CHALLENGE])

        with pytest.raises(BotChallengeError):
            await make_fetcher(world, sleeper=sleeper).fetch(URL)

        assert len(world.browsers) == 3
        assert all_closed(world)
        assert [d for d in sleeper.delays if d >= 10] == [20.0, 40.0]
        assert world.exited == 1

    @pytest.mark.asyncio
    async def test_navigation_timeout_maps_to_timeout_reason(self):
        world = FakeWorld([LISTING], navigation_timeout=True)

        with pytest.raises(FetchError) as exc_info:
            await make_fetcher(world, max_retries=0).fetch(URL)

        assert exc_info.value.reason == FailureReason.TIMEOUT
        assert all_closed(world)

    @pytest.mark.asyncio
    async def test_browser_error_maps_to_network_reason(self):
        world = FakeWorld([LISTING], failing_urls=[URL])

        with pytest.raises(FetchError) as exc_info:
            await make_fetcher(world, max_retries=1).fetch(URL)

        assert exc_info.value.reason == FailureReason.NETWORK
        assert len(world.browsers) == 2
        assert all_closed(world)

    @pytest.mark.asyncio
    async def test_no_listings_raises_extraction_error(self):
        world = FakeWorld([LISTING], raw={"selector": None, "texts": [], "items": []})

        with pytest.raises(ExtractionError):
            await make_fetcher(world, max_retries=0).fetch(URL)

        assert all_closed(world)
