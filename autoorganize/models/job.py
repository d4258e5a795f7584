"""
Job models for asynchronous ingestion work.

A job owns no content. It tracks an ordered list of targets and one
result record per target; document ids are filled in as items finish.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class JobKind(str, Enum):
    """Single-document or batch ingestion."""

    SINGLE = "single"
    BATCH = "batch"


class JobStatus(str, Enum):
    """Job lifecycle: queued -> running -> completed | failed | cancelled."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ItemStatus(str, Enum):
    """Outcome of one job item."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"  # Stored and fully enriched
    PARTIAL = "partial"  # Stored, some enrichment stage failed
    FAILED = "failed"  # Not stored
    SKIPPED = "skipped"  # Never dispatched (job cancelled)


TERMINAL_JOB_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


class JobItemResult(BaseModel):
    """Per-item outcome record."""

    index: int = Field(..., ge=0, description="Position in the job's target list")
    target: str = Field(default="", description="File path or title of the item")
    status: ItemStatus = Field(default=ItemStatus.PENDING)
    document_id: str | None = Field(default=None)
    duplicate: bool = Field(default=False)
    failed_stages: list[str] = Field(default_factory=list)
    error: str | None = Field(default=None)
    attempts: int = Field(default=0, ge=0)


class Job(BaseModel):
    """Tracked unit of asynchronous ingestion work."""

    id: str = Field(..., description="Unique job ID (job_xxx)")
    kind: JobKind = Field(default=JobKind.BATCH)
    status: JobStatus = Field(default=JobStatus.QUEUED)
    items: list[JobItemResult] = Field(default_factory=list)
    retry_count: int = Field(default=0, ge=0, description="Extra attempts across all items")
    failure_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    cancel_requested: bool = Field(default=False)
    error: str | None = Field(default=None)

    created_at: datetime = Field(default_factory=datetime.now)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES

    def count(self, status: ItemStatus) -> int:
        return sum(1 for item in self.items if item.status == status)

    @property
    def document_ids(self) -> list[str]:
        return [item.document_id for item in self.items if item.document_id]

    def failure_ratio(self) -> float:
        if not self.items:
            return 0.0
        return self.count(ItemStatus.FAILED) / len(self.items)
