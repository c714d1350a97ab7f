"""National Drug Formulary monographs."""

import re
from typing import Any

from bs4 import BeautifulSoup

from knowledge_ingest.config import Settings
from knowledge_ingest.constants import DEFAULT_MAX_ATTEMPTS, DEFAULT_RATE_LIMIT_SECONDS
from knowledge_ingest.db.content_store import ContentStore
from knowledge_ingest.models.content_models import SourceType
from knowledge_ingest.scrapers.base import SourceDefinition, SourceScraper
from knowledge_ingest.services.extractor import ExtractionProfile
from knowledge_ingest.services.normalizer import title_from_url

NDF_BASE_URL = "https://www.ndf.gov.sg"

NDF_MONOGRAPH_URLS = (
    f"{NDF_BASE_URL}/monographs/amlodipine",
    f"{NDF_BASE_URL}/monographs/metformin",
    f"{NDF_BASE_URL}/monographs/atorvastatin",
)

DEFAULT_NDF_VERSION = "2025.1"

_VERSION_PATTERN = re.compile(r"NDF\s+(?:version\s+)?(\d{4}\.\d+)", re.IGNORECASE)


def ndf_metadata(soup: BeautifulSoup, url: str, content: str) -> dict[str, Any]:
    """Drug name from the URL and formulary edition if the page states one."""
    version = _VERSION_PATTERN.search(content)
    return {
        "publisher": "National Drug Formulary",
        "drug_name": title_from_url(url),
        "ndf_version": version.group(1) if version else DEFAULT_NDF_VERSION,
    }


NDF_PROFILE = ExtractionProfile(
    source_type=SourceType.NDF,
    category="Drug Formulary",
    priority=2,
    title_selectors=("h1", ".drug-name", ".monograph-title"),
    content_selectors=(".monograph", ".drug-details", ".content-area", "main"),
    metadata_hook=ndf_metadata,
)

NDF_SOURCE = SourceDefinition(
    name="ndf-medications",
    source_type=SourceType.NDF,
    urls=NDF_MONOGRAPH_URLS,
    profile=NDF_PROFILE,
    rate_limit_seconds=DEFAULT_RATE_LIMIT_SECONDS,
    max_attempts=DEFAULT_MAX_ATTEMPTS,
)


def create_ndf_scraper(
    store: ContentStore, settings: Settings, **kwargs: Any
) -> SourceScraper:
    return SourceScraper(NDF_SOURCE, store, settings, **kwargs)
