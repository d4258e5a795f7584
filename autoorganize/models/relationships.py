"""
Relationship models for the entity graph.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class RelationshipType(str, Enum):
    """Built-in relationship labels. Declared relationships may use any label."""

    # Co-occurrence derived
    RELATES_TO = "relates_to"
    MENTIONS = "mentions"

    # Common declared labels
    WORKS_FOR = "works_for"
    LOCATED_IN = "located_in"
    KNOWS = "knows"
    OWNS = "owns"
    PART_OF = "part_of"
    REFERENCES = "references"


class RelationshipOrigin(str, Enum):
    """How a candidate edge was derived. Ranked by the precedence policy."""

    DECLARED = "declared"
    RELATES_TO = "relates_to"
    MENTIONS = "mentions"


DEFAULT_RELATIONSHIP_TYPES = frozenset({RelationshipType.RELATES_TO.value, RelationshipType.MENTIONS.value})


class GraphRelationship(BaseModel):
    """
    Directed, typed, weighted edge between two entity ids.

    One edge exists per (source, target, type) triple; re-derivation
    accumulates strength instead of duplicating the edge.
    """

    id: str = Field(..., description="Unique relationship ID (rel_xxx)")
    source_entity_id: str = Field(..., description="Source entity ID")
    target_entity_id: str = Field(..., description="Target entity ID")
    relationship_type: str = Field(..., description="Relationship label")
    strength: float = Field(default=0.5, ge=0.0, le=1.0, description="Accumulated strength")
    properties: dict[str, Any] = Field(default_factory=dict)
    evidence_count: int = Field(default=1, ge=0, description="Number of derivations")
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class DeclaredRelationship(BaseModel):
    """A relationship declared in document metadata (``metadata["relationships"]``)."""

    model_config = {"extra": "ignore"}

    source: str = Field(..., description="Source entity name")
    target: str = Field(..., description="Target entity name")
    type: str = Field(..., min_length=1, description="Relationship label")


class RelationshipCandidate(BaseModel):
    """Edge proposed by the relationship builder before precedence resolution."""

    source_entity_id: str
    target_entity_id: str
    relationship_type: str
    origin: RelationshipOrigin
    properties: dict[str, Any] = Field(default_factory=dict)


class RelationshipBuildResult(BaseModel):
    """Outcome of deriving edges for one document."""

    created: list[GraphRelationship] = Field(default_factory=list)
    strengthened: list[GraphRelationship] = Field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.created) + len(self.strengthened)
