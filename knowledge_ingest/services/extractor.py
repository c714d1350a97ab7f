"""Turn fetched HTML into normalized, classified content items.

Each source configures an ExtractionProfile: which selectors to try for the
title and body, whether to follow a linked PDF, and any extra metadata.
Extraction falls back through the configured strategies in order and
rejects pages whose normalized body is below the minimum viable length.
"""

import io
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable
from urllib.parse import urljoin

import logfire
from bs4 import BeautifulSoup
from pypdf import PdfReader
from pypdf.errors import PyPdfError

from knowledge_ingest.constants import BOILERPLATE_TAGS, MIN_CONTENT_LENGTH_CHARS
from knowledge_ingest.errors import ExtractionError, FetchError
from knowledge_ingest.models.content_models import (
    ExtractionOutcome,
    ScrapedContentItem,
    SourceType,
)
from knowledge_ingest.services.classifier import classify
from knowledge_ingest.services.normalizer import (
    content_hash,
    make_content_id,
    normalize,
    title_from_url,
    word_count,
)

# Extra metadata hook: (soup, url, normalized content) -> fields to merge
MetadataHook = Callable[[BeautifulSoup, str, str], dict[str, Any]]
SecondaryFetcher = Callable[[str], Awaitable[bytes]]

MAX_RECORDED_PDF_LINKS = 10

_LAST_UPDATED_META = (
    ("meta", {"property": "article:modified_time"}),
    ("meta", {"name": "last-modified"}),
    ("meta", {"property": "article:published_time"}),
)


@dataclass(frozen=True)
class ExtractionProfile:
    """Source-specific extraction settings."""

    source_type: SourceType
    category: str
    priority: int
    title_selectors: tuple[str, ...] = ("h1",)
    content_selectors: tuple[str, ...] = ()
    follow_pdf_links: bool = False
    min_content_length: int = MIN_CONTENT_LENGTH_CHARS
    metadata_hook: MetadataHook | None = field(default=None, compare=False)


def pdf_text(data: bytes) -> str:
    """Extract the text layer of a PDF document.

    Raises:
        ExtractionError: If the bytes are not a readable PDF
    """
    if data.lstrip()[:5] != b"%PDF-":
        raise ExtractionError("Not a PDF document")
    try:
        reader = PdfReader(io.BytesIO(data))
        return "\n".join(page.extract_text() or "" for page in reader.pages)
    except PyPdfError as e:
        raise ExtractionError(f"Unreadable PDF: {e}") from e


def claimed_last_updated(soup: BeautifulSoup) -> datetime | None:
    """Timestamp the page claims for itself, if it declares one."""
    candidates: list[str] = []
    for tag_name, attrs in _LAST_UPDATED_META:
        tag = soup.find(tag_name, attrs=attrs)
        if tag and tag.get("content"):
            candidates.append(tag["content"])
    time_tag = soup.find("time", attrs={"datetime": True})
    if time_tag:
        candidates.append(time_tag["datetime"])

    for value in candidates:
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            continue
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return None


class HtmlExtractor:
    """Extract ScrapedContentItems from HTML pages of one source."""

    def __init__(
        self,
        profile: ExtractionProfile,
        secondary_fetcher: SecondaryFetcher | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        """Initialize the extractor.

        Args:
            profile: Source-specific selectors and item defaults
            secondary_fetcher: Async callable returning the bytes of a linked
                document; required when ``profile.follow_pdf_links`` is set
            clock: Returns the scrape time
        """
        self.profile = profile
        self._secondary_fetcher = secondary_fetcher
        self._clock = clock

    def extract_title(self, soup: BeautifulSoup, url: str) -> str:
        """First non-empty of: configured headings, <title>, URL slug."""
        for selector in self.profile.title_selectors:
            element = soup.select_one(selector)
            if element:
                text = element.get_text(" ", strip=True)
                if text:
                    return text
        if soup.title and soup.title.string and soup.title.string.strip():
            return soup.title.string.strip()
        return title_from_url(url)

    def extract_body(self, soup: BeautifulSoup) -> str:
        """First non-empty content container, else every paragraph joined."""
        for selector in self.profile.content_selectors:
            element = soup.select_one(selector)
            if element:
                text = element.get_text("\n", strip=True)
                if text:
                    return text
        paragraphs = (p.get_text(" ", strip=True) for p in soup.find_all("p"))
        return "\n".join(p for p in paragraphs if p)

    @staticmethod
    def find_pdf_links(soup: BeautifulSoup, url: str) -> list[str]:
        links: list[str] = []
        for anchor in soup.select('a[href*=".pdf"]'):
            absolute = urljoin(url, anchor["href"])
            if absolute not in links:
                links.append(absolute)
        return links

    async def extract(self, html: str, url: str) -> ExtractionOutcome:
        """Extract one item from a fetched page.

        Args:
            html: Page HTML
            url: URL the page was fetched from

        Returns:
            Accepted outcome with the item, or a rejection when the
            normalized body is shorter than the minimum length
        """
        soup = BeautifulSoup(html, "html.parser")

        title = self.extract_title(soup, url)
        pdf_links = self.find_pdf_links(soup, url)
        has_video = bool(
            soup.select('video, iframe[src*="youtube"], iframe[src*="vimeo"]')
        )
        last_updated = claimed_last_updated(soup)

        for tag in soup(list(BOILERPLATE_TAGS)):
            tag.decompose()

        body = self.extract_body(soup)

        secondary = ""
        if self.profile.follow_pdf_links and pdf_links:
            secondary = await self._secondary_text(pdf_links[0], url)

        content = normalize(f"{body}\n\n{secondary}" if secondary else body)
        if len(content) < self.profile.min_content_length:
            logfire.info(
                "Extraction rejected: content too short",
                url=url,
                content_length=len(content),
                min_content_length=self.profile.min_content_length,
            )
            return ExtractionOutcome.rejected(
                f"Content too short at {url}: {len(content)} chars "
                f"(minimum {self.profile.min_content_length})"
            )

        scraped_at = self._clock()
        classification = classify(url, content)
        metadata: dict[str, Any] = {
            "scraped_at": scraped_at.isoformat(),
            "word_count": word_count(content),
            "has_video": has_video,
            "has_pdf": bool(pdf_links),
            "pdf_links": pdf_links[:MAX_RECORDED_PDF_LINKS],
            "secondary_document_chars": len(secondary),
        }
        if self.profile.metadata_hook is not None:
            metadata.update(self.profile.metadata_hook(soup, url, content))

        item = ScrapedContentItem(
            id=make_content_id(self.profile.source_type, url),
            source_type=self.profile.source_type,
            title=title,
            content=content,
            url=url,
            last_updated=last_updated or scraped_at,
            category=self.profile.category,
            priority=self.profile.priority,
            therapeutic_area=classification.therapeutic_area,
            practice_area=classification.practice_area,
            metadata=metadata,
            content_hash=content_hash(content),
        )
        logfire.info(
            "Content extracted",
            url=url,
            content_id=item.id,
            word_count=metadata["word_count"],
            therapeutic_area=item.therapeutic_area,
        )
        return ExtractionOutcome.accepted(item)

    async def _secondary_text(self, document_url: str, page_url: str) -> str:
        """Text of a linked document, or "" if it cannot be retrieved."""
        if self._secondary_fetcher is None:
            return ""
        try:
            data = await self._secondary_fetcher(document_url)
            return pdf_text(data)
        except (FetchError, ExtractionError) as e:
            logfire.warning(
                "Secondary document unavailable, using page text only",
                url=page_url,
                document_url=document_url,
                error=str(e),
                error_type=type(e).__name__,
            )
            return ""
