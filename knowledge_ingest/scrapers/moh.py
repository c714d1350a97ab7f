"""Ministry of Health clinical practice guidelines."""

from typing import Any

from bs4 import BeautifulSoup

from knowledge_ingest.config import Settings
from knowledge_ingest.constants import MOH_MAX_ATTEMPTS, MOH_RATE_LIMIT_SECONDS
from knowledge_ingest.db.content_store import ContentStore
from knowledge_ingest.models.content_models import SourceType
from knowledge_ingest.scrapers.base import SourceDefinition, SourceScraper
from knowledge_ingest.services.extractor import ExtractionProfile

MOH_BASE_URL = "https://www.moh.gov.sg"
MOH_GUIDELINES_URL = f"{MOH_BASE_URL}/hpp/doctors/guidelines/GuidelineDetails"

MOH_GUIDELINE_URLS = (
    f"{MOH_GUIDELINES_URL}/diabetes-mellitus",
    f"{MOH_GUIDELINES_URL}/hypertension",
    f"{MOH_GUIDELINES_URL}/antimicrobial-stewardship",
    f"{MOH_GUIDELINES_URL}/chronic-kidney-disease",
    f"{MOH_GUIDELINES_URL}/cardiac-rehabilitation",
)


def moh_metadata(soup: BeautifulSoup, url: str, content: str) -> dict[str, Any]:
    """Guideline pages list their section headings; keep them for navigation."""
    sections = [h.get_text(" ", strip=True) for h in soup.find_all(["h2", "h3"])]
    return {
        "publisher": "Ministry of Health Singapore",
        "sections": [s for s in sections if s][:20],
    }


MOH_PROFILE = ExtractionProfile(
    source_type=SourceType.MOH,
    category="Clinical Guidelines",
    priority=1,
    title_selectors=("h1", ".page-title"),
    content_selectors=(
        ".content-area",
        ".main-content",
        ".article-content",
        "#main-content",
        ".page-content",
    ),
    follow_pdf_links=True,
    metadata_hook=moh_metadata,
)

MOH_SOURCE = SourceDefinition(
    name="moh-guidelines",
    source_type=SourceType.MOH,
    urls=MOH_GUIDELINE_URLS,
    profile=MOH_PROFILE,
    rate_limit_seconds=MOH_RATE_LIMIT_SECONDS,
    max_attempts=MOH_MAX_ATTEMPTS,
)


def create_moh_scraper(
    store: ContentStore, settings: Settings, **kwargs: Any
) -> SourceScraper:
    return SourceScraper(MOH_SOURCE, store, settings, **kwargs)
