"""Primary fetch strategy: plain HTTP GET plus HTML parsing."""

import asyncio
import random
import time
from typing import Awaitable, Callable, Optional, Sequence, Set, Tuple
from urllib.parse import urlsplit

import httpx

from listing_monitor.errors import FetchError
from listing_monitor.fetcher.extraction import check_html_for_challenge, extract_listings
from listing_monitor.fetcher.http_client import AsyncHTTPClient
from listing_monitor.fetcher.retry_handler import RetryPolicy
from listing_monitor.models.data_models import FailureReason, Snapshot, utc_now
from listing_monitor.monitoring.logger import StructuredLogger


RETRYABLE_STATUS_CODES: Set[int] = {429, 500, 502, 503, 504}
AUTH_STATUS_CODES: Set[int] = {401, 403}


class TransientStatusError(FetchError):
    """Retryable HTTP status (rate limit or server error)."""


def origin_of(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}/"


class LightweightFetcher:
    """
    Fetch a listing page with httpx and extract listings with BeautifulSoup.

    Network errors, timeouts and 429/5xx responses are retried through the
    retry policy. Challenge pages raise BotChallengeError immediately so the
    chain escalates instead of hammering the site.
    """

    name = "lightweight"

    def __init__(
        self,
        client: AsyncHTTPClient,
        retry_policy: Optional[RetryPolicy] = None,
        max_listings: int = 3,
        initial_delay: Tuple[float, float] = (2.0, 5.0),
        sleeper: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: Optional[StructuredLogger] = None
    ):
        self.client = client
        self.retry_policy = retry_policy or RetryPolicy(
            max_retries=3,
            retry_delay=2.0,
            backoff_multiplier=2.0,
            retry_on=(httpx.TransportError, TransientStatusError),
            sleeper=sleeper,
        )
        self.max_listings = max_listings
        self.initial_delay = initial_delay
        self.sleeper = sleeper
        self.logger = logger or StructuredLogger()

    async def fetch(self, url: str, hints: Sequence[str] = ()) -> Snapshot:
        """
        Fetch and extract one page.

        Raises:
            FetchError: network / timeout / auth / other HTTP failures
            BotChallengeError: A verification page was served
            ExtractionError: No selector matched or no listing was valid
        """
        start = time.perf_counter()
        self.logger.fetch_start(url, self.name)

        low, high = self.initial_delay
        if high > 0:
            await self.sleeper(random.uniform(low, high))

        response = await self._get_with_retry(url)
        html = response.text

        check_html_for_challenge(html, url)
        page = extract_listings(html, hints, max_listings=self.max_listings)

        elapsed_ms = (time.perf_counter() - start) * 1000
        self.logger.fetch_success(url, self.name, len(page.listings), elapsed_ms)
        return Snapshot(
            target_id="",
            fetched_at=utc_now(),
            content_hash=page.content_hash,
            listings=page.listings,
            strategy_used=self.name,
            matched_selector=page.matched_selector,
        )

    async def _get_with_retry(self, url: str) -> httpx.Response:
        headers = {"Referer": origin_of(url)}

        async def attempt() -> httpx.Response:
            response = await self.client.get(url, headers=headers)
            status = response.status_code
            if status in RETRYABLE_STATUS_CODES:
                raise TransientStatusError(f"HTTP {status} from {url}", status_code=status)
            if status in AUTH_STATUS_CODES:
                raise FetchError(f"HTTP {status} from {url}", FailureReason.AUTH, status)
            if status >= 400:
                raise FetchError(f"HTTP {status} from {url}", FailureReason.OTHER, status)
            return response

        def on_retry(attempt_number: int, error: BaseException) -> None:
            self.logger.fetch_error(url, self.name, "retry", str(error), attempt=attempt_number)

        try:
            return await self.retry_policy.execute(attempt, on_retry=on_retry)
        except httpx.TimeoutException as e:
            raise FetchError(f"Timed out fetching {url}: {e}", FailureReason.TIMEOUT) from e
        except httpx.TransportError as e:
            raise FetchError(f"Network error fetching {url}: {e}", FailureReason.NETWORK) from e
