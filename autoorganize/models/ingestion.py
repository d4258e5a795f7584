"""
Ingestion result models.

Returned by the ingestion pipeline for a single document.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from autoorganize.models.document import StageStatus


class IngestionStatus(str, Enum):
    """Status of an ingestion operation."""

    COMPLETED = "completed"  # Stored and fully enriched
    PARTIAL = "partial"  # Stored, enrichment partially failed
    DUPLICATE = "duplicate"  # Content already stored for this path
    FAILED = "failed"  # Not stored


class IngestionResult(BaseModel):
    """
    Result of ingesting one document.

    ``success`` is true whenever the document is stored (including the
    duplicate and partial cases).
    """

    document_id: str = Field(default="", description="ID of the stored document")
    status: IngestionStatus = Field(..., description="Ingestion status")
    success: bool = Field(default=True)
    duplicate: bool = Field(default=False)

    stages: dict[str, StageStatus] = Field(default_factory=dict)
    entity_count: int = Field(default=0, ge=0)
    relationship_count: int = Field(default=0, ge=0)

    processing_time_ms: float = Field(default=0.0, ge=0)
    message: str | None = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.now)

    @property
    def failed_stages(self) -> list[str]:
        return [name for name, status in self.stages.items() if status == StageStatus.FAILED]
