"""
Transient notifications: file system events and pipeline lifecycle events.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from autoorganize.utils.id_generator import generate_event_id


class FileEventType(str, Enum):
    """File system change kinds."""

    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"


class FileEvent(BaseModel):
    """A change under a watched path."""

    id: str = Field(default_factory=generate_event_id)
    event_type: FileEventType
    file_path: str
    dest_path: str | None = Field(default=None, description="New path for renames")
    timestamp: datetime = Field(default_factory=datetime.now)
    metadata: dict[str, Any] = Field(default_factory=dict)


class SyncEventType(str, Enum):
    """Pipeline lifecycle event kinds."""

    FILE_CHANGED = "file_changed"
    DOCUMENT_INGESTED = "document_ingested"
    ENTITY_EXTRACTED = "entity_extracted"
    SYNC_COMPLETED = "sync_completed"


class SyncEvent(BaseModel):
    """A lifecycle notification published on the notification bus."""

    id: str = Field(default_factory=generate_event_id)
    event_type: SyncEventType
    timestamp: datetime = Field(default_factory=datetime.now)
    data: dict[str, Any] = Field(default_factory=dict)
