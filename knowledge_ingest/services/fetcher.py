"""Rate-limited HTTP and headless-browser fetching.

Components:
- RateLimiter: minimum delay between outgoing requests of one scraper
- HttpFetcher: httpx GET with tenacity retry/backoff
- BrowserRenderer: lazily created undetected Chrome session for JS pages
- RobotsPolicy: per-origin robots.txt check

Robots policy is fail-open: if robots.txt cannot be fetched the URL is
treated as allowed.
"""

import asyncio
import os
import time
from typing import Any, Awaitable, Callable, Protocol, TypeVar
from urllib.parse import urlparse
from urllib.robotparser import RobotFileParser

import httpx
import logfire
from selenium.common.exceptions import WebDriverException
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from knowledge_ingest.constants import (
    BACKOFF_BASE_SECONDS,
    BACKOFF_MAX_SECONDS,
    BLOCKED_BROWSER_RESOURCE_PATTERNS,
    BROWSER_PAGE_LOAD_TIMEOUT_SECONDS,
    DEFAULT_HTTP_TIMEOUT_SECONDS,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_RATE_LIMIT_SECONDS,
    DEFAULT_USER_AGENT,
    MAX_SECONDARY_DOCUMENT_BYTES,
    RETRYABLE_CLIENT_STATUS_CODES,
)
from knowledge_ingest.errors import FetchError

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[Any]]


class PageFetcher(Protocol):
    """Protocol for fetching page HTML (plain HTTP or rendered)."""

    async def fetch_html(self, url: str) -> str:
        """Fetch HTML content from URL.

        Raises:
            FetchError: If the fetch fails after exhausting retries
        """
        ...


class RateLimiter:
    """Enforce a minimum interval between requests.

    Every request, including the first, goes through ``wait()``. Concurrent
    callers are serialized by a lock so the interval holds between any two
    consecutive requests of the owning scraper.
    """

    def __init__(
        self,
        min_interval_seconds: float = DEFAULT_RATE_LIMIT_SECONDS,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.min_interval_seconds = min_interval_seconds
        self._sleep = sleep
        self._clock = clock
        self._lock = asyncio.Lock()
        self._last_request_at: float | None = None

    async def wait(self) -> float:
        """Block until the next request may be sent.

        Returns:
            Seconds slept (0.0 when no delay was needed)
        """
        async with self._lock:
            delay = 0.0
            if self._last_request_at is not None:
                elapsed = self._clock() - self._last_request_at
                delay = max(0.0, self.min_interval_seconds - elapsed)
            if delay > 0:
                await self._sleep(delay)
            self._last_request_at = self._clock()
            return delay


def is_retryable(exc: BaseException) -> bool:
    """Retry transient failures only: network errors, 5xx and 429."""
    return isinstance(exc, FetchError) and exc.retryable


def backoff_delays(
    max_attempts: int,
    base_seconds: float = BACKOFF_BASE_SECONDS,
    max_seconds: float = BACKOFF_MAX_SECONDS,
) -> list[float]:
    """Waits applied between attempts by the fetch retry policy.

    Mirrors ``wait_exponential(multiplier=base_seconds, max=max_seconds)``:
    one entry per retry, each at least as long as the previous.
    """
    return [min(max_seconds, base_seconds * 2**i) for i in range(max_attempts - 1)]


async def run_with_retries(
    operation: Callable[[], Awaitable[T]],
    *,
    url: str,
    max_attempts: int,
    sleep: Sleep = asyncio.sleep,
    backoff_base_seconds: float = BACKOFF_BASE_SECONDS,
    backoff_max_seconds: float = BACKOFF_MAX_SECONDS,
) -> T:
    """Run ``operation`` with exponential backoff on retryable FetchErrors.

    Terminal errors propagate on the first occurrence. When the retry budget
    is spent the last error is re-raised as a non-retryable FetchError.

    Raises:
        FetchError: On terminal failure or after ``max_attempts`` attempts
    """

    def _log_retry(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logfire.warning(
            "Fetch attempt failed, retrying",
            url=url,
            attempt=retry_state.attempt_number,
            max_attempts=max_attempts,
            wait_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
            error=str(exc),
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=backoff_base_seconds, max=backoff_max_seconds),
        retry=retry_if_exception(is_retryable),
        sleep=sleep,
        before_sleep=_log_retry,
        reraise=True,
    )

    try:
        async for attempt in retrying:
            with attempt:
                return await operation()
    except FetchError as e:
        if not e.retryable:
            raise
        raise FetchError(
            f"Failed to fetch {url} after {max_attempts} attempts: {e}",
            url=url,
            status_code=e.status_code,
        ) from e


class HttpFetcher:
    """Fetch pages over HTTP with rate limiting and retry."""

    DEFAULT_HEADERS = {
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "en-SG,en;q=0.9",
    }

    def __init__(
        self,
        rate_limiter: RateLimiter | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        timeout: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
        user_agent: str = DEFAULT_USER_AGENT,
        sleep: Sleep = asyncio.sleep,
        backoff_base_seconds: float = BACKOFF_BASE_SECONDS,
        backoff_max_seconds: float = BACKOFF_MAX_SECONDS,
    ):
        """Initialize the fetcher.

        Args:
            rate_limiter: Limiter shared by every request of the owning scraper
            max_attempts: Total attempts per URL, first try included
            timeout: HTTP timeout in seconds
            user_agent: User-Agent header value
            sleep: Awaitable sleep used between retries (injectable for tests)
            backoff_base_seconds: First retry delay
            backoff_max_seconds: Upper bound for any retry delay
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.rate_limiter = rate_limiter or RateLimiter()
        self.max_attempts = max_attempts
        self.user_agent = user_agent
        self._timeout = timeout
        self._headers = {**self.DEFAULT_HEADERS, "User-Agent": user_agent}
        self._sleep = sleep
        self._backoff_base_seconds = backoff_base_seconds
        self._backoff_max_seconds = backoff_max_seconds

    async def fetch_html(self, url: str) -> str:
        """Fetch a page and return its decoded body.

        Raises:
            FetchError: On terminal HTTP status or after exhausting retries
        """
        response = await self._fetch(url)
        return response.text

    async def fetch_bytes(
        self, url: str, max_bytes: int = MAX_SECONDARY_DOCUMENT_BYTES
    ) -> bytes:
        """Fetch a binary document such as a PDF.

        Raises:
            FetchError: On fetch failure or when the body exceeds ``max_bytes``
        """
        response = await self._fetch(url)
        if len(response.content) > max_bytes:
            raise FetchError(
                f"Document at {url} is {len(response.content)} bytes (limit {max_bytes})",
                url=url,
                status_code=response.status_code,
            )
        return response.content

    async def _fetch(self, url: str) -> httpx.Response:
        return await run_with_retries(
            lambda: self._get_once(url),
            url=url,
            max_attempts=self.max_attempts,
            sleep=self._sleep,
            backoff_base_seconds=self._backoff_base_seconds,
            backoff_max_seconds=self._backoff_max_seconds,
        )

    async def _get_once(self, url: str) -> httpx.Response:
        await self.rate_limiter.wait()
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                follow_redirects=True,
                headers=self._headers,
            ) as client:
                response = await client.get(url)
        except httpx.TransportError as e:
            raise FetchError(
                f"Network error fetching {url}: {e}", url=url, retryable=True
            ) from e

        status = response.status_code
        if status >= 500 or status in RETRYABLE_CLIENT_STATUS_CODES:
            raise FetchError(
                f"HTTP {status} fetching {url}",
                url=url,
                status_code=status,
                retryable=True,
            )
        if status >= 400:
            raise FetchError(
                f"HTTP {status} fetching {url}", url=url, status_code=status
            )

        logfire.info(
            "Page fetched (httpx)",
            url=url,
            status_code=status,
            content_length=len(response.content),
        )
        return response


def _create_chrome_driver(page_load_timeout: float) -> Any:
    """Start a headless undetected Chrome that skips heavy resources.

    Set CHROME_VERSION_MAIN to your Chrome major version (e.g. 143) if you see
    "This version of ChromeDriver only supports Chrome version X".
    """
    import undetected_chromedriver as uc

    options = uc.ChromeOptions()
    kwargs: dict = {"options": options, "headless": True}
    version_main = os.environ.get("CHROME_VERSION_MAIN")
    if version_main is not None and version_main.isdigit():
        kwargs["version_main"] = int(version_main)

    driver = uc.Chrome(**kwargs)
    driver.set_page_load_timeout(page_load_timeout)
    driver.execute_cdp_cmd("Network.enable", {})
    driver.execute_cdp_cmd(
        "Network.setBlockedURLs", {"urls": list(BLOCKED_BROWSER_RESOURCE_PATTERNS)}
    )
    return driver


class BrowserRenderer:
    """Render JavaScript-heavy pages in a headless browser.

    The browser is created on the first ``fetch_html`` call and must be
    released with ``close()``; one renderer belongs to one scraper run.
    """

    def __init__(
        self,
        rate_limiter: RateLimiter | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        page_load_timeout: float = BROWSER_PAGE_LOAD_TIMEOUT_SECONDS,
        driver_factory: Callable[[float], Any] = _create_chrome_driver,
        sleep: Sleep = asyncio.sleep,
    ):
        self.rate_limiter = rate_limiter or RateLimiter()
        self.max_attempts = max_attempts
        self._page_load_timeout = page_load_timeout
        self._driver_factory = driver_factory
        self._sleep = sleep
        self._driver: Any = None

    @property
    def is_open(self) -> bool:
        return self._driver is not None

    async def fetch_html(self, url: str) -> str:
        """Navigate to ``url`` and return the rendered DOM.

        Raises:
            FetchError: If navigation keeps failing after retries
        """
        html = await run_with_retries(
            lambda: self._render_once(url),
            url=url,
            max_attempts=self.max_attempts,
            sleep=self._sleep,
        )
        logfire.info("Page fetched via browser", url=url, content_length=len(html))
        return html

    async def _render_once(self, url: str) -> str:
        await self.rate_limiter.wait()
        try:
            return await asyncio.to_thread(self._render_sync, url)
        except WebDriverException as e:
            raise FetchError(
                f"Browser failed to load {url}: {e.msg or e}", url=url, retryable=True
            ) from e

    def _render_sync(self, url: str) -> str:
        if self._driver is None:
            logfire.info("Starting headless browser")
            self._driver = self._driver_factory(self._page_load_timeout)
        self._driver.get(url)
        return self._driver.page_source

    async def close(self) -> None:
        """Quit the browser if one was started. Safe to call repeatedly."""
        driver, self._driver = self._driver, None
        if driver is None:
            return
        try:
            await asyncio.to_thread(driver.quit)
        except WebDriverException as e:
            logfire.warning("Browser did not quit cleanly", error=str(e))
        else:
            logfire.info("Headless browser closed")


class RobotsPolicy:
    """Cached robots.txt checks, one parser per origin."""

    def __init__(self, fetcher: HttpFetcher, user_agent: str, enabled: bool = True):
        self._fetcher = fetcher
        self._user_agent = user_agent
        self.enabled = enabled
        self._parsers: dict[str, RobotFileParser | None] = {}

    async def is_allowed(self, url: str) -> bool:
        """Return False only when a readable robots.txt disallows ``url``."""
        if not self.enabled:
            return True
        parsed = urlparse(url)
        origin = f"{parsed.scheme}://{parsed.netloc}"
        if origin not in self._parsers:
            self._parsers[origin] = await self._load(origin)
        parser = self._parsers[origin]
        if parser is None:
            return True
        return parser.can_fetch(self._user_agent, url)

    async def _load(self, origin: str) -> RobotFileParser | None:
        robots_url = f"{origin}/robots.txt"
        try:
            body = await self._fetcher.fetch_html(robots_url)
        except FetchError as e:
            logfire.info(
                "robots.txt unavailable, allowing fetches",
                robots_url=robots_url,
                status_code=e.status_code,
            )
            return None
        parser = RobotFileParser(robots_url)
        parser.parse(body.splitlines())
        return parser
