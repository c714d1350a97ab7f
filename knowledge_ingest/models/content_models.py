"""Models for ingested knowledge content."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class SourceType(str, Enum):
    """External knowledge sources."""

    MOH = "moh"
    HSA = "hsa"
    NDF = "ndf"
    SPC = "spc"


class ScrapedContentItem(BaseModel):
    """One ingested document, keyed by a stable id derived from its source URL."""

    id: str = Field(..., min_length=1, description="Stable id: {source}-{slug}")
    source_type: SourceType
    title: str
    content: str = Field(..., description="Normalized body text")
    url: str = Field(..., description="Origin URL")
    last_updated: datetime
    category: str
    priority: int = Field(..., ge=1, description="Display ordering, 1 first")
    therapeutic_area: str
    practice_area: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    content_hash: str = Field(..., min_length=1)

    def to_row(self) -> dict[str, Any]:
        """Serialize to a ``knowledge_source_content`` row."""
        return self.model_dump(mode="json")


class ExtractionOutcome(BaseModel):
    """Result of extracting one page: an item, or the reason it was rejected."""

    item: ScrapedContentItem | None = None
    rejection_reason: str | None = None

    @classmethod
    def accepted(cls, item: ScrapedContentItem) -> "ExtractionOutcome":
        return cls(item=item)

    @classmethod
    def rejected(cls, reason: str) -> "ExtractionOutcome":
        return cls(rejection_reason=reason)

    @property
    def ok(self) -> bool:
        return self.item is not None


class BatchWriteResult(BaseModel):
    """Outcome of writing a batch: successful writes plus per-item errors."""

    count: int = Field(default=0, ge=0)
    errors: list[str] = Field(default_factory=list)


class KnowledgeStats(BaseModel):
    """Aggregate view of the knowledge base over a recent window."""

    total_entries: int = 0
    sources: int = 0
    last_updated: datetime | None = None
