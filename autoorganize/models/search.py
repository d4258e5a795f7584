"""
Search request/response models.

Search results are never persisted; they are computed per query.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator

from autoorganize.models.document import DataSourceType
from autoorganize.models.entity import EntityType


class ResultKind(str, Enum):
    """Discriminator for search results."""

    DOCUMENT = "document"
    ENTITY = "entity"
    RELATIONSHIP = "relationship"


class SearchMode(str, Enum):
    """Term matching mode."""

    EXACT = "exact"
    FUZZY = "fuzzy"


class TimeRange(BaseModel):
    """Inclusive modification-time window."""

    start: datetime | None = None
    end: datetime | None = None

    @model_validator(mode="after")
    def _check_order(self) -> "TimeRange":
        if self.start and self.end and self.start > self.end:
            raise ValueError("time_range.start must not be after time_range.end")
        return self

    def contains(self, moment: datetime) -> bool:
        if self.start and moment < self.start:
            return False
        if self.end and moment > self.end:
            return False
        return True


class SearchFilter(BaseModel):
    """Optional filters applied to a query."""

    entity_types: list[EntityType] | None = None
    data_sources: list[DataSourceType] | None = None
    time_range: TimeRange | None = None
    content_types: list[str] | None = None
    kinds: list[ResultKind] = Field(
        default_factory=lambda: [ResultKind.DOCUMENT, ResultKind.ENTITY]
    )


class SourceDescriptor(BaseModel):
    """Where a result comes from."""

    type: str
    name: str = ""


class SearchResult(BaseModel):
    """Ranked view over a document, entity or relationship."""

    id: str
    kind: ResultKind
    title: str
    snippet: str = ""
    relevance_score: float = Field(default=0.0, ge=0.0)
    source: SourceDescriptor | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class Pagination(BaseModel):
    """Offset/limit pagination info."""

    offset: int
    limit: int
    total: int
    has_more: bool


class SearchResponse(BaseModel):
    """Result page for a query."""

    query: str
    results: list[SearchResult] = Field(default_factory=list)
    pagination: Pagination
    mode: SearchMode = SearchMode.EXACT
    degraded: bool = Field(default=False, description="True when served by the fallback scan")
    ignored_filters: list[str] = Field(
        default_factory=list, description="Filters the fallback scan could not apply"
    )
    took_ms: float = 0.0
