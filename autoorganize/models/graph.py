"""
Graph view models for node/edge browsing.

Nodes are a tagged variant: entities, plus the document node included
when browsing a single document's neighborhood.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from autoorganize.models.entity import EntityType


class NodeKind(str, Enum):
    ENTITY = "entity"
    DOCUMENT = "document"


class GraphNode(BaseModel):
    """A node returned by graph browsing."""

    id: str
    kind: NodeKind
    label: str = Field(..., description="Display name")
    type: str = Field(..., description="Entity type, or 'document'")
    properties: dict[str, Any] = Field(default_factory=dict)


class GraphNodeFilter(BaseModel):
    """Filter for graph.nodes."""

    entity_types: list[EntityType] | None = None
    name: str | None = Field(default=None, description="Case-insensitive name substring")
    document_id: str | None = Field(default=None, description="Entities mentioned by this document")
    limit: int = Field(default=100, ge=1, le=1000)


class GraphEdgeFilter(BaseModel):
    """Filter for graph.edges."""

    entity_id: str | None = None
    document_id: str | None = Field(
        default=None, description="Edges between entities of this document"
    )
    relationship_types: list[str] | None = None
    min_strength: float | None = Field(default=None, ge=0.0, le=1.0)
    limit: int = Field(default=100, ge=1, le=1000)
