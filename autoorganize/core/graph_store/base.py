"""
Base interface for graph storage.

Entities form an arena keyed by stable ids; relationships are a separate
edge list referencing those ids. Mentions link entities to documents and
are owned by the document.
"""

from abc import ABC, abstractmethod

from autoorganize.models.entity import Entity, EntityMention, EntityType
from autoorganize.models.relationships import GraphRelationship


class GraphStore(ABC):
    """Abstract base class for graph storage implementations."""

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the graph store (create tables/schema)."""
        pass

    # ═══════════════════════════════════════════════════════════
    # ENTITY OPERATIONS
    # ═══════════════════════════════════════════════════════════

    @abstractmethod
    async def upsert_entity(self, entity: Entity) -> Entity:
        """
        Insert an entity or return the existing one with the same key.

        Deduplication is by (scope, type, normalized_name) and is atomic:
        concurrent callers with the same key receive the same stored entity.

        Args:
            entity: Entity to store

        Returns:
            The stored entity (existing id on collision)
        """
        pass

    @abstractmethod
    async def get_entity(self, entity_id: str) -> Entity | None:
        """
        Retrieve an entity by ID.

        Args:
            entity_id: Entity identifier

        Returns:
            Entity or None if not found
        """
        pass

    @abstractmethod
    async def find_entities_by_name(self, name: str, scope: str | None = None) -> list[Entity]:
        """
        Find entities whose normalized name equals the normalized ``name``.

        Args:
            name: Display or normalized name
            scope: Optional deduplication scope

        Returns:
            Matching entities of any type
        """
        pass

    @abstractmethod
    async def query_entities(
        self,
        entity_types: list[EntityType] | None = None,
        name_contains: str | None = None,
        document_id: str | None = None,
        limit: int = 100,
    ) -> list[Entity]:
        """
        Query entities with filters.

        Args:
            entity_types: Restrict to these types
            name_contains: Case-insensitive substring of the name
            document_id: Only entities mentioned in this document
            limit: Maximum results

        Returns:
            List of matching entities
        """
        pass

    @abstractmethod
    async def delete_entity(self, entity_id: str) -> bool:
        """
        Delete an entity with its mentions and edges. Documents are untouched.

        Args:
            entity_id: Entity identifier

        Returns:
            True if an entity was deleted
        """
        pass

    # ═══════════════════════════════════════════════════════════
    # MENTION OPERATIONS
    # ═══════════════════════════════════════════════════════════

    @abstractmethod
    async def add_mentions(self, mentions: list[EntityMention]) -> int:
        """
        Store mentions (idempotent per document, entity and span).

        Args:
            mentions: Mentions with document ids bound

        Returns:
            Number of new mentions
        """
        pass

    @abstractmethod
    async def get_mentions(
        self, document_id: str | None = None, entity_id: str | None = None
    ) -> list[EntityMention]:
        """
        Get mentions by document and/or entity.

        Args:
            document_id: Owning document
            entity_id: Referenced entity

        Returns:
            Mentions ordered by position
        """
        pass

    @abstractmethod
    async def delete_document_mentions(self, document_id: str) -> int:
        """
        Delete every mention owned by a document.

        Args:
            document_id: Owning document

        Returns:
            Number of deleted mentions
        """
        pass

    # ═══════════════════════════════════════════════════════════
    # RELATIONSHIP OPERATIONS
    # ═══════════════════════════════════════════════════════════

    @abstractmethod
    async def upsert_relationship(
        self,
        relationship: GraphRelationship,
        strength_increment: float,
    ) -> tuple[GraphRelationship, bool]:
        """
        Create an edge or strengthen the existing one.

        One edge exists per (source, target, type). On collision the stored
        strength becomes ``min(1.0, strength + strength_increment)`` in a
        single atomic read-modify-write.

        Args:
            relationship: Edge to create (its strength is the initial strength)
            strength_increment: Increment applied to an existing edge

        Returns:
            (stored edge, True if newly created)
        """
        pass

    @abstractmethod
    async def get_relationship(self, relationship_id: str) -> GraphRelationship | None:
        """
        Get edge by ID.

        Args:
            relationship_id: Edge identifier

        Returns:
            Edge or None
        """
        pass

    @abstractmethod
    async def query_relationships(
        self,
        entity_id: str | None = None,
        relationship_types: list[str] | None = None,
        min_strength: float | None = None,
        entity_ids: list[str] | None = None,
        limit: int = 100,
    ) -> list[GraphRelationship]:
        """
        Query edges with filters.

        Args:
            entity_id: Edges touching this entity (either end)
            relationship_types: Restrict to these labels
            min_strength: Minimum strength
            entity_ids: Edges with both ends in this set
            limit: Maximum results

        Returns:
            Edges ordered by strength descending
        """
        pass

    # ═══════════════════════════════════════════════════════════
    # GRAPH TRAVERSAL
    # ═══════════════════════════════════════════════════════════

    @abstractmethod
    async def get_neighbors(
        self,
        entity_id: str,
        relationship_types: list[str] | None = None,
        direction: str = "both",
        limit: int = 100,
    ) -> list[tuple[Entity, GraphRelationship]]:
        """
        Get neighboring entities.

        Args:
            entity_id: Entity identifier
            relationship_types: Filter by specific labels
            direction: "outgoing", "incoming", or "both"
            limit: Maximum results

        Returns:
            List of tuples with (neighbor Entity, connecting edge)
        """
        pass

    @abstractmethod
    async def find_path(self, start_id: str, end_id: str, max_depth: int = 5) -> list[str] | None:
        """
        Find shortest undirected path between two entities.

        Args:
            start_id: Start entity ID
            end_id: End entity ID
            max_depth: Maximum path depth

        Returns:
            List of entity IDs forming the path, or None
        """
        pass

    # ═══════════════════════════════════════════════════════════
    # UTILITY METHODS
    # ═══════════════════════════════════════════════════════════

    @abstractmethod
    async def count_entities(self, entity_type: EntityType | None = None) -> int:
        """Count entities, optionally of one type."""
        pass

    @abstractmethod
    async def count_relationships(self, relationship_type: str | None = None) -> int:
        """Count edges, optionally of one label."""
        pass

    @abstractmethod
    async def ping(self) -> bool:
        """True if the backend is reachable."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the connection to the graph store."""
        pass
