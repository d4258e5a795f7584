"""
Entity and mention models.

Entities live in the graph store keyed by stable ids. Documents reference
them weakly through mentions.
"""

import hashlib
from datetime import datetime
from enum import Enum
from typing import Any
from urllib.parse import urlsplit, urlunsplit

from pydantic import BaseModel, Field


class EntityType(str, Enum):
    """Kinds of entities recognized in document text."""

    PERSON = "person"
    ORGANIZATION = "organization"
    LOCATION = "location"
    DATE = "date"
    FINANCIAL = "financial"
    TECHNICAL = "technical"
    PROJECT = "project"
    CUSTOM = "custom"

    # Pattern-derived kinds
    EMAIL = "email"
    URL = "url"
    PHONE = "phone"


class Entity(BaseModel):
    """
    A named real-world concept recognized in one or more documents.

    Deduplicated by (scope, type, normalized_name): every document that
    mentions the same concept points at the same entity id.
    """

    id: str = Field(..., description="Unique entity ID (ent_xxx)")
    type: EntityType = Field(..., description="Entity kind")
    name: str = Field(..., description="Canonical display name")
    normalized_name: str = Field(default="", description="Deduplication key within scope")
    scope: str = Field(default="global", description="Deduplication scope")
    properties: dict[str, Any] = Field(default_factory=dict, description="Free-form properties")
    confidence: float | None = Field(
        default=None, ge=0.0, le=1.0, description="Extraction confidence"
    )
    created_at: datetime = Field(default_factory=datetime.now, description="Creation timestamp")

    def model_post_init(self, __context: Any) -> None:
        if not self.normalized_name:
            self.normalized_name = normalize_entity_name(self.type, self.name)


class EntityMention(BaseModel):
    """One occurrence of an entity at a text position within one document."""

    entity_id: str = Field(..., description="Referenced entity ID")
    document_id: str = Field(default="", description="Owning document ID")
    start: int = Field(..., ge=0, description="Start offset (inclusive)")
    end: int = Field(..., ge=0, description="End offset (exclusive)")
    confidence: float = Field(default=1.0, ge=0.0, le=1.0, description="Mention confidence")
    text: str = Field(default="", description="Surface text of the mention")


def canonical_url(url: str) -> str:
    """Lower-case the scheme and host of a URL; path, query and fragment are case-sensitive."""
    parts = urlsplit(url.strip())
    return urlunsplit(
        (parts.scheme.lower(), parts.netloc.lower(), parts.path, parts.query, parts.fragment)
    )


def normalize_entity_name(entity_type: EntityType, name: str) -> str:
    """
    Compute the deduplication key for an entity name.

    Args:
        entity_type: Entity kind
        name: Surface or canonical name

    Returns:
        Normalized name (case-folded, whitespace collapsed; digits only for
        phones; URLs keep the case of everything after the host)
    """
    if entity_type == EntityType.PHONE:
        return "".join(ch for ch in name if ch.isdigit())
    if entity_type == EntityType.URL:
        return canonical_url(name)
    return " ".join(name.split()).casefold()


def entity_key_id(entity_type: EntityType, normalized_name: str, scope: str = "global") -> str:
    """
    Deterministic entity ID for a (scope, type, normalized name) triple.

    Used by the extractor for provisional ids so that extraction stays a
    pure function of its input.
    """
    digest = hashlib.sha1(f"{scope}|{entity_type.value}|{normalized_name}".encode()).hexdigest()
    return f"ent_{digest[:12]}"
