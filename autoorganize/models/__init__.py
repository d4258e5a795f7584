"""
Data models for AutoOrganize.

Core models:
- Document, DocumentInput: Ingested content and its submission form
- Entity, EntityMention: Recognized concepts and their positions
- GraphRelationship: Typed, weighted edges between entities
- SearchResult, SearchResponse: Per-query ranked views
- FileEvent, SyncEvent: Transient notifications
- Job, JobItemResult: Asynchronous ingestion tracking
- IngestionResult: Single-document ingestion outcome
- GraphNode: Entity or document node for graph browsing
"""

from autoorganize.models.document import (
    DataSourceType,
    Document,
    DocumentInput,
    DocumentListFilter,
    EncryptionInfo,
    PipelineStage,
    StageStatus,
    compute_content_hash,
    normalize_content,
)
from autoorganize.models.entity import (
    Entity,
    EntityMention,
    EntityType,
    canonical_url,
    entity_key_id,
    normalize_entity_name,
)
from autoorganize.models.events import FileEvent, FileEventType, SyncEvent, SyncEventType
from autoorganize.models.graph import GraphEdgeFilter, GraphNode, GraphNodeFilter, NodeKind
from autoorganize.models.ingestion import IngestionResult, IngestionStatus
from autoorganize.models.job import ItemStatus, Job, JobItemResult, JobKind, JobStatus
from autoorganize.models.relationships import (
    DEFAULT_RELATIONSHIP_TYPES,
    DeclaredRelationship,
    GraphRelationship,
    RelationshipBuildResult,
    RelationshipCandidate,
    RelationshipOrigin,
    RelationshipType,
)
from autoorganize.models.search import (
    Pagination,
    ResultKind,
    SearchFilter,
    SearchMode,
    SearchResponse,
    SearchResult,
    SourceDescriptor,
    TimeRange,
)

__all__ = [
    # Document models
    "DataSourceType",
    "Document",
    "DocumentInput",
    "DocumentListFilter",
    "EncryptionInfo",
    "PipelineStage",
    "StageStatus",
    "compute_content_hash",
    "normalize_content",
    # Entity models
    "Entity",
    "EntityMention",
    "EntityType",
    "canonical_url",
    "entity_key_id",
    "normalize_entity_name",
    # Event models
    "FileEvent",
    "FileEventType",
    "SyncEvent",
    "SyncEventType",
    # Graph view models
    "GraphEdgeFilter",
    "GraphNode",
    "GraphNodeFilter",
    "NodeKind",
    # Ingestion models
    "IngestionResult",
    "IngestionStatus",
    # Job models
    "ItemStatus",
    "Job",
    "JobItemResult",
    "JobKind",
    "JobStatus",
    # Relationship models
    "DEFAULT_RELATIONSHIP_TYPES",
    "DeclaredRelationship",
    "GraphRelationship",
    "RelationshipBuildResult",
    "RelationshipCandidate",
    "RelationshipOrigin",
    "RelationshipType",
    # Search models
    "Pagination",
    "ResultKind",
    "SearchFilter",
    "SearchMode",
    "SearchResponse",
    "SearchResult",
    "SourceDescriptor",
    "TimeRange",
]
