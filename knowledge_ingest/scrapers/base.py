"""Source scraper orchestration.

A SourceScraper composes the fetcher, extractor and content store for one
external source described by a SourceDefinition. Sources differ only in
their definition (URLs, selectors, fetch policy); there is no per-source
subclassing.

Per-URL failures are collected as error messages and never stop the run.
``run()`` itself never raises: anything escaping the per-URL boundary is
reported as ``ScrapeOutcome(success=False, count=0, ...)``.
"""

import asyncio
from dataclasses import dataclass
from typing import Callable

import logfire

from knowledge_ingest.config import Settings
from knowledge_ingest.db.content_store import ContentStore, write_batch
from knowledge_ingest.errors import StructuralError
from knowledge_ingest.models.content_models import ScrapedContentItem, SourceType
from knowledge_ingest.models.job_models import JobStatus, ScrapeOutcome
from knowledge_ingest.services.extractor import ExtractionProfile, HtmlExtractor
from knowledge_ingest.services.fetcher import (
    BrowserRenderer,
    HttpFetcher,
    PageFetcher,
    RateLimiter,
    RobotsPolicy,
    Sleep,
)


@dataclass(frozen=True)
class SourceDefinition:
    """Static description of one knowledge source."""

    name: str
    source_type: SourceType
    urls: tuple[str, ...]
    profile: ExtractionProfile
    rate_limit_seconds: float
    max_attempts: int
    render_javascript: bool = False


@dataclass
class UrlOutcome:
    """What happened to one source URL."""

    url: str
    item: ScrapedContentItem | None = None
    error: str | None = None
    rejection_reason: str | None = None


class SourceScraper:
    """Fetch, extract, normalize and persist every URL of one source."""

    def __init__(
        self,
        definition: SourceDefinition,
        store: ContentStore,
        settings: Settings,
        sleep: Sleep = asyncio.sleep,
        renderer_factory: Callable[[RateLimiter], BrowserRenderer] | None = None,
    ):
        """Initialize the scraper.

        Args:
            definition: Source URLs, selectors and fetch policy
            store: Content store shared with other scrapers
            settings: Application settings (timeouts, user agent, robots policy)
            sleep: Awaitable sleep for rate limiting and backoff
            renderer_factory: Builds the per-run browser renderer for
                JavaScript sources
        """
        self.definition = definition
        self.store = store
        self.settings = settings
        self.status = JobStatus.IDLE
        # One limiter per scraper instance: HTTP, robots and browser share it
        self.rate_limiter = RateLimiter(definition.rate_limit_seconds, sleep=sleep)
        self.http = HttpFetcher(
            rate_limiter=self.rate_limiter,
            max_attempts=definition.max_attempts,
            timeout=settings.scraper_timeout_seconds,
            user_agent=settings.scraper_user_agent,
            sleep=sleep,
        )
        self.extractor = HtmlExtractor(
            definition.profile, secondary_fetcher=self.http.fetch_bytes
        )
        self._sleep = sleep
        self._renderer_factory = renderer_factory or self._default_renderer

    @property
    def name(self) -> str:
        return self.definition.name

    def _default_renderer(self, rate_limiter: RateLimiter) -> BrowserRenderer:
        return BrowserRenderer(
            rate_limiter=rate_limiter,
            max_attempts=self.definition.max_attempts,
            page_load_timeout=self.settings.browser_page_load_timeout_seconds,
            sleep=self._sleep,
        )

    async def run(self) -> ScrapeOutcome:
        """Scrape every configured URL and persist the viable items.

        Returns:
            success, the number of items actually persisted, and one error
            message per failed URL or failed write
        """
        if self.status is JobStatus.RUNNING:
            logfire.warning("Scraper already running, rejecting run", scraper=self.name)
            return ScrapeOutcome(
                success=False, errors=[f"Scraper {self.name} is already running"]
            )

        self.status = JobStatus.RUNNING
        logfire.info(
            "Scraper run started", scraper=self.name, url_count=len(self.definition.urls)
        )
        renderer: BrowserRenderer | None = None
        try:
            try:
                if self.definition.render_javascript:
                    renderer = self._renderer_factory(self.rate_limiter)
                outcome = await self._scrape(renderer or self.http)
            finally:
                if renderer is not None:
                    await renderer.close()
        except asyncio.CancelledError:
            # A cancelled run leaves nothing in flight, so the next run may start
            self.status = JobStatus.IDLE
            logfire.warning("Scraper run cancelled", scraper=self.name)
            raise
        except Exception as e:
            logfire.error(
                "Scraper run failed",
                scraper=self.name,
                error=str(e),
                error_type=type(e).__name__,
            )
            structural = StructuralError(f"{self.name} scraper failed: {e}")
            outcome = ScrapeOutcome(success=False, count=0, errors=[str(structural)])

        self.status = JobStatus.IDLE if outcome.success else JobStatus.ERROR
        logfire.info(
            "Scraper run finished",
            scraper=self.name,
            success=outcome.success,
            count=outcome.count,
            error_count=len(outcome.errors),
        )
        return outcome

    async def _scrape(self, page_fetcher: PageFetcher) -> ScrapeOutcome:
        robots = RobotsPolicy(
            self.http,
            user_agent=self.settings.scraper_user_agent,
            enabled=self.settings.respect_robots_txt,
        )
        items: list[ScrapedContentItem] = []
        errors: list[str] = []

        # Declared order is the processing and write order
        for url in self.definition.urls:
            url_outcome = await self.process_url(url, page_fetcher, robots)
            if url_outcome.item is not None:
                items.append(url_outcome.item)
            if url_outcome.error is not None:
                errors.append(url_outcome.error)
            if url_outcome.rejection_reason is not None:
                logfire.info(
                    "Page rejected by extractor",
                    scraper=self.name,
                    url=url,
                    reason=url_outcome.rejection_reason,
                )

        written = await write_batch(self.store, items)
        errors.extend(written.errors)

        # Failure means nothing was persisted while something went wrong
        success = written.count > 0 or not errors
        return ScrapeOutcome(success=success, count=written.count, errors=errors)

    async def process_url(
        self, url: str, page_fetcher: PageFetcher, robots: RobotsPolicy
    ) -> UrlOutcome:
        """Robots check, fetch and extract one URL without raising."""
        try:
            if not await robots.is_allowed(url):
                logfire.warning("URL disallowed by robots.txt", scraper=self.name, url=url)
                return UrlOutcome(url=url, error=f"Skipped {url}: disallowed by robots.txt")

            html = await page_fetcher.fetch_html(url)
            extraction = await self.extractor.extract(html, url)
        except Exception as e:
            logfire.error(
                "Failed to process URL",
                scraper=self.name,
                url=url,
                error=str(e),
                error_type=type(e).__name__,
            )
            return UrlOutcome(url=url, error=f"Failed to process {url}: {e}")

        if extraction.item is None:
            return UrlOutcome(url=url, rejection_reason=extraction.rejection_reason)
        return UrlOutcome(url=url, item=extraction.item)
