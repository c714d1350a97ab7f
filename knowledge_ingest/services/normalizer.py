"""Text normalization, content hashing and stable id derivation.

The content hash is the only change-detection mechanism: two scrapes of the
same document produce the same hash exactly when their normalized text is
identical.
"""

import hashlib
import re
from urllib.parse import unquote, urlparse

from knowledge_ingest.models.content_models import SourceType

_NEWLINES = re.compile(r"\r\n?")
_HORIZONTAL_WHITESPACE = re.compile(r"[^\S\n]+")
_SPACE_AROUND_NEWLINE = re.compile(r" ?\n ?")
_BLANK_LINE_RUNS = re.compile(r"\n{3,}")
_SLUG_DISALLOWED = re.compile(r"[^a-z0-9-]")

URL_HASH_ID_LENGTH = 16
PAGE_EXTENSIONS = (".html", ".htm", ".aspx", ".php")


def normalize(text: str) -> str:
    """Clean whitespace in extracted text.

    Collapses runs of spaces/tabs to a single space, keeps at most one blank
    line between paragraphs and trims the result. Idempotent.

    Args:
        text: Raw extracted text

    Returns:
        Normalized text
    """
    if not text:
        return ""
    text = _NEWLINES.sub("\n", text)
    text = _HORIZONTAL_WHITESPACE.sub(" ", text)
    text = _SPACE_AROUND_NEWLINE.sub("\n", text)
    text = _BLANK_LINE_RUNS.sub("\n\n", text)
    return text.strip()


def content_hash(cleaned_text: str) -> str:
    """SHA-256 hex digest of normalized text."""
    return hashlib.sha256(cleaned_text.encode("utf-8")).hexdigest()


def word_count(text: str) -> int:
    return len(text.split())


def url_slug(url: str) -> str:
    """Last non-empty path segment of a URL, decoded, or "" if there is none."""
    segments = [s for s in urlparse(url).path.split("/") if s]
    if not segments:
        return ""
    return unquote(segments[-1])


def make_content_id(source_type: SourceType, url: str) -> str:
    """Derive the stable content id for a source document.

    The id is ``{source}-{slug}`` where the slug is the URL's last path
    segment, lowercased with anything outside ``[a-z0-9-]`` removed. URLs
    without a usable slug fall back to a truncated hash of the URL, so the
    same URL always maps to the same id.

    Args:
        source_type: Source the document belongs to
        url: Origin URL of the document

    Returns:
        Stable id string
    """
    raw_slug = url_slug(url).lower()
    # Page extensions are not part of the document identity
    if raw_slug.endswith(PAGE_EXTENSIONS):
        raw_slug = raw_slug.rsplit(".", 1)[0]
    slug = _SLUG_DISALLOWED.sub("", raw_slug)
    if not slug:
        slug = hashlib.sha256(url.encode("utf-8")).hexdigest()[:URL_HASH_ID_LENGTH]
    return f"{source_type.value}-{slug}"


def title_from_url(url: str) -> str:
    """Build a human title from the URL slug (``diabetes-mellitus`` -> ``Diabetes Mellitus``)."""
    slug = url_slug(url)
    if "." in slug:
        slug = slug.rsplit(".", 1)[0]
    words = re.split(r"[-_\s]+", slug)
    return " ".join(w.capitalize() for w in words if w)
