"""Health Sciences Authority safety alerts and adverse drug reaction bulletins.

HSA announcement pages build their body client-side, so they are rendered
in the headless browser.
"""

from typing import Any

from bs4 import BeautifulSoup

from knowledge_ingest.config import Settings
from knowledge_ingest.constants import DEFAULT_MAX_ATTEMPTS, DEFAULT_RATE_LIMIT_SECONDS
from knowledge_ingest.db.content_store import ContentStore
from knowledge_ingest.models.content_models import SourceType
from knowledge_ingest.scrapers.base import SourceDefinition, SourceScraper
from knowledge_ingest.services.extractor import ExtractionProfile

HSA_BASE_URL = "https://www.hsa.gov.sg"

HSA_ALERT_URLS = (
    f"{HSA_BASE_URL}/announcements/press-release/hsa-alert-nine-consumers-hospitalised-modafinil",
    f"{HSA_BASE_URL}/announcements/safety-alert/hsa-updates-on-products-found-overseas-that-contain-potent-ingredients-(april-2025)",
    "https://hpp.moh.gov.sg/news/hsa-adverse-drug-reaction-news-2025-may--vol-27-no-1",
)

# URL fragment -> alert type, first match wins
ALERT_TYPES = (
    ("adverse-drug-reaction", "adr_bulletin"),
    ("safety-alert", "safety_alert"),
    ("press-release", "press_release"),
    ("recall", "product_recall"),
)


def classify_alert_type(url: str) -> str:
    lowered = url.lower()
    for fragment, alert_type in ALERT_TYPES:
        if fragment in lowered:
            return alert_type
    return "announcement"


def hsa_metadata(soup: BeautifulSoup, url: str, content: str) -> dict[str, Any]:
    return {
        "publisher": "Health Sciences Authority",
        "alert_type": classify_alert_type(url),
    }


HSA_PROFILE = ExtractionProfile(
    source_type=SourceType.HSA,
    category="Safety Alerts",
    priority=1,
    title_selectors=("h1", ".announcement-title", ".page-title"),
    content_selectors=(
        ".announcement-content",
        ".article-content",
        ".rich-text",
        "main article",
        "#main-content",
    ),
    follow_pdf_links=True,
    metadata_hook=hsa_metadata,
)

HSA_SOURCE = SourceDefinition(
    name="hsa-alerts",
    source_type=SourceType.HSA,
    urls=HSA_ALERT_URLS,
    profile=HSA_PROFILE,
    rate_limit_seconds=DEFAULT_RATE_LIMIT_SECONDS,
    max_attempts=DEFAULT_MAX_ATTEMPTS,
    render_javascript=True,
)


def create_hsa_scraper(
    store: ContentStore, settings: Settings, **kwargs: Any
) -> SourceScraper:
    return SourceScraper(HSA_SOURCE, store, settings, **kwargs)
