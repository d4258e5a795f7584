"""
Neo4j graph store implementation.

Production graph backend. Entities are (:Entity) nodes with a unique
``key`` (scope|type|normalized_name); edges are [:RELATED] relationships
carrying their label in a ``type`` property so arbitrary declared labels
need no dynamic Cypher. Mentions are (:Mention) nodes keyed by document,
entity and span.
"""

import json
from datetime import datetime
from typing import Any

from neo4j import AsyncDriver, AsyncGraphDatabase
from neo4j.exceptions import Neo4jError, ServiceUnavailable

from autoorganize.core.graph_store.base import GraphStore
from autoorganize.models.entity import Entity, EntityMention, EntityType, normalize_entity_name
from autoorganize.models.relationships import GraphRelationship
from autoorganize.utils.exceptions import GraphStoreError
from autoorganize.utils.logger import get_logger

logger = get_logger(__name__)


def _entity_key(entity: Entity) -> str:
    return f"{entity.scope}|{entity.type.value}|{entity.normalized_name}"


class Neo4jGraphStore(GraphStore):
    """
    Neo4j-based graph store for entities and relationships.

    Features:
    - Production-grade graph database
    - Native graph traversal
    - MERGE-based atomic upserts
    - Fast path finding
    """

    def __init__(
        self,
        uri: str = "bolt://localhost:7687",
        username: str = "neo4j",
        password: str = "password",
        database: str = "neo4j",
    ):
        """
        Initialize Neo4j graph store.

        Args:
            uri: Neo4j connection URI
            username: Username
            password: Password
            database: Database name
        """
        self.uri = uri
        self.username = username
        self.password = password
        self.database = database
        self.driver: AsyncDriver | None = None

    async def connect(self) -> None:
        """
        Establish connection to Neo4j.

        Raises:
            GraphStoreError: If connection fails
        """
        if self.driver is None:
            try:
                self.driver = AsyncGraphDatabase.driver(
                    self.uri,
                    auth=(self.username, self.password),
                )
            except (Neo4jError, ValueError) as e:
                logger.error(
                    f"Failed to connect to Neo4j: {e}",
                    extra={"uri": self.uri, "error": str(e)},
                )
                raise GraphStoreError(f"Failed to connect to Neo4j: {e}") from e

    async def initialize(self) -> None:
        """
        Create indexes and constraints.

        Raises:
            GraphStoreError: If initialization fails
        """
        statements = [
            "CREATE CONSTRAINT entity_id IF NOT EXISTS FOR (e:Entity) REQUIRE e.id IS UNIQUE",
            "CREATE CONSTRAINT entity_key IF NOT EXISTS FOR (e:Entity) REQUIRE e.key IS UNIQUE",
            "CREATE CONSTRAINT mention_key IF NOT EXISTS FOR (m:Mention) REQUIRE m.key IS UNIQUE",
            "CREATE INDEX entity_type IF NOT EXISTS FOR (e:Entity) ON (e.type)",
            "CREATE INDEX entity_name IF NOT EXISTS FOR (e:Entity) ON (e.normalized_name)",
            "CREATE INDEX mention_document IF NOT EXISTS FOR (m:Mention) ON (m.document_id)",
        ]
        for statement in statements:
            await self._run(statement)

    # ═══════════════════════════════════════════════════════════
    # ENTITY OPERATIONS
    # ═══════════════════════════════════════════════════════════

    async def upsert_entity(self, entity: Entity) -> Entity:
        """Insert an entity or return the existing one with the same key."""
        records = await self._run(
            """
            MERGE (e:Entity {key: $key})
            ON CREATE SET
                e.id = $id,
                e.type = $type,
                e.name = $name,
                e.normalized_name = $normalized_name,
                e.scope = $scope,
                e.properties = $properties,
                e.confidence = $confidence,
                e.created_at = $created_at
            ON MATCH SET
                e.confidence = CASE
                    WHEN coalesce(e.confidence, 0.0) >= coalesce($confidence, 0.0)
                    THEN e.confidence ELSE $confidence END
            RETURN e
            """,
            {
                "key": _entity_key(entity),
                "id": entity.id,
                "type": entity.type.value,
                "name": entity.name,
                "normalized_name": entity.normalized_name,
                "scope": entity.scope,
                "properties": json.dumps(entity.properties, default=str),
                "confidence": entity.confidence,
                "created_at": entity.created_at.isoformat(),
            },
        )
        return self._node_to_entity(records[0]["e"])

    async def get_entity(self, entity_id: str) -> Entity | None:
        """Retrieve an entity by ID."""
        records = await self._run("MATCH (e:Entity {id: $id}) RETURN e", {"id": entity_id})
        return self._node_to_entity(records[0]["e"]) if records else None

    async def find_entities_by_name(self, name: str, scope: str | None = None) -> list[Entity]:
        """Find entities whose normalized name matches."""
        keys = [normalize_entity_name(EntityType.CUSTOM, name)]
        digits = normalize_entity_name(EntityType.PHONE, name)
        if digits:
            keys.append(digits)
        records = await self._run(
            """
            MATCH (e:Entity)
            WHERE e.normalized_name IN $keys AND ($scope IS NULL OR e.scope = $scope)
            RETURN e ORDER BY e.created_at, e.id
            """,
            {"keys": keys, "scope": scope},
        )
        return [self._node_to_entity(r["e"]) for r in records]

    async def query_entities(
        self,
        entity_types: list[EntityType] | None = None,
        name_contains: str | None = None,
        document_id: str | None = None,
        limit: int = 100,
    ) -> list[Entity]:
        """Query entities with filters."""
        records = await self._run(
            """
            MATCH (e:Entity)
            WHERE ($types IS NULL OR e.type IN $types)
              AND ($name IS NULL OR e.normalized_name CONTAINS $name)
              AND ($document_id IS NULL OR EXISTS {
                    MATCH (m:Mention {document_id: $document_id, entity_id: e.id})
                  })
            RETURN e ORDER BY e.created_at, e.id LIMIT $limit
            """,
            {
                "types": [t.value for t in entity_types] if entity_types else None,
                "name": name_contains.casefold() if name_contains else None,
                "document_id": document_id,
                "limit": limit,
            },
        )
        return [self._node_to_entity(r["e"]) for r in records]

    async def delete_entity(self, entity_id: str) -> bool:
        """Delete an entity with its mentions and edges."""
        records = await self._run(
            """
            MATCH (e:Entity {id: $id})
            OPTIONAL MATCH (m:Mention {entity_id: $id})
            DETACH DELETE m, e
            RETURN count(DISTINCT e) AS deleted
            """,
            {"id": entity_id},
        )
        return bool(records and records[0]["deleted"])

    # ═══════════════════════════════════════════════════════════
    # MENTION OPERATIONS
    # ═══════════════════════════════════════════════════════════

    async def add_mentions(self, mentions: list[EntityMention]) -> int:
        """Store mentions, ignoring ones already present."""
        if not mentions:
            return 0
        records = await self._run(
            """
            UNWIND $rows AS row
            MERGE (m:Mention {key: row.key})
            ON CREATE SET
                m.document_id = row.document_id,
                m.entity_id = row.entity_id,
                m.start = row.start,
                m.end = row.end,
                m.confidence = row.confidence,
                m.text = row.text,
                m.created = true
            ON MATCH SET m.created = false
            WITH m, m.created AS created
            REMOVE m.created
            RETURN sum(CASE WHEN created THEN 1 ELSE 0 END) AS created
            """,
            {
                "rows": [
                    {
                        "key": f"{m.document_id}|{m.entity_id}|{m.start}|{m.end}",
                        "document_id": m.document_id,
                        "entity_id": m.entity_id,
                        "start": m.start,
                        "end": m.end,
                        "confidence": m.confidence,
                        "text": m.text,
                    }
                    for m in mentions
                ]
            },
        )
        return records[0]["created"] if records else 0

    async def get_mentions(
        self, document_id: str | None = None, entity_id: str | None = None
    ) -> list[EntityMention]:
        """Get mentions by document and/or entity."""
        records = await self._run(
            """
            MATCH (m:Mention)
            WHERE ($document_id IS NULL OR m.document_id = $document_id)
              AND ($entity_id IS NULL OR m.entity_id = $entity_id)
            RETURN m ORDER BY m.document_id, m.start, m.end
            """,
            {"document_id": document_id, "entity_id": entity_id},
        )
        return [
            EntityMention(
                entity_id=r["m"]["entity_id"],
                document_id=r["m"]["document_id"],
                start=r["m"]["start"],
                end=r["m"]["end"],
                confidence=r["m"].get("confidence", 1.0),
                text=r["m"].get("text", ""),
            )
            for r in records
        ]

    async def delete_document_mentions(self, document_id: str) -> int:
        """Delete every mention owned by a document."""
        records = await self._run(
            """
            MATCH (m:Mention {document_id: $document_id})
            WITH collect(m) AS mentions
            FOREACH (m IN mentions | DELETE m)
            RETURN size(mentions) AS deleted
            """,
            {"document_id": document_id},
        )
        return records[0]["deleted"] if records else 0

    # ═══════════════════════════════════════════════════════════
    # RELATIONSHIP OPERATIONS
    # ═══════════════════════════════════════════════════════════

    async def upsert_relationship(
        self,
        relationship: GraphRelationship,
        strength_increment: float,
    ) -> tuple[GraphRelationship, bool]:
        """Create an edge or atomically strengthen the existing one."""
        now = datetime.now().isoformat()
        records = await self._run(
            """
            MATCH (a:Entity {id: $source_id})
            MATCH (b:Entity {id: $target_id})
            MERGE (a)-[r:RELATED {type: $type}]->(b)
            ON CREATE SET
                r.id = $id,
                r.strength = $strength,
                r.properties = $properties,
                r.evidence_count = 1,
                r.created_at = $created_at,
                r.updated_at = $now
            ON MATCH SET
                r.strength = CASE WHEN r.strength + $increment > 1.0
                                  THEN 1.0 ELSE r.strength + $increment END,
                r.evidence_count = r.evidence_count + 1,
                r.updated_at = $now
            RETURN r, a.id AS source, b.id AS target
            """,
            {
                "source_id": relationship.source_entity_id,
                "target_id": relationship.target_entity_id,
                "type": relationship.relationship_type,
                "id": relationship.id,
                "strength": min(1.0, relationship.strength),
                "properties": json.dumps(relationship.properties, default=str),
                "created_at": relationship.created_at.isoformat(),
                "now": now,
                "increment": strength_increment,
            },
        )
        if not records:
            raise GraphStoreError(
                "Cannot create relationship: endpoint entity missing",
                {
                    "source_id": relationship.source_entity_id,
                    "target_id": relationship.target_entity_id,
                },
            )
        stored = self._record_to_relationship(records[0])
        return stored, stored.id == relationship.id

    async def get_relationship(self, relationship_id: str) -> GraphRelationship | None:
        """Get edge by ID."""
        records = await self._run(
            "MATCH (a)-[r:RELATED {id: $id}]->(b) RETURN r, a.id AS source, b.id AS target",
            {"id": relationship_id},
        )
        return self._record_to_relationship(records[0]) if records else None

    async def query_relationships(
        self,
        entity_id: str | None = None,
        relationship_types: list[str] | None = None,
        min_strength: float | None = None,
        entity_ids: list[str] | None = None,
        limit: int = 100,
    ) -> list[GraphRelationship]:
        """Query edges with filters."""
        if entity_ids is not None and not entity_ids:
            return []
        records = await self._run(
            """
            MATCH (a:Entity)-[r:RELATED]->(b:Entity)
            WHERE ($entity_id IS NULL OR a.id = $entity_id OR b.id = $entity_id)
              AND ($types IS NULL OR r.type IN $types)
              AND ($min_strength IS NULL OR r.strength >= $min_strength)
              AND ($ids IS NULL OR (a.id IN $ids AND b.id IN $ids))
            RETURN r, a.id AS source, b.id AS target
            ORDER BY r.strength DESC, r.id LIMIT $limit
            """,
            {
                "entity_id": entity_id,
                "types": relationship_types or None,
                "min_strength": min_strength,
                "ids": entity_ids,
                "limit": limit,
            },
        )
        return [self._record_to_relationship(r) for r in records]

    # ═══════════════════════════════════════════════════════════
    # GRAPH TRAVERSAL
    # ═══════════════════════════════════════════════════════════

    async def get_neighbors(
        self,
        entity_id: str,
        relationship_types: list[str] | None = None,
        direction: str = "both",
        limit: int = 100,
    ) -> list[tuple[Entity, GraphRelationship]]:
        """Get neighboring entities."""
        if direction == "outgoing":
            pattern = "(m:Entity {id: $id})-[r:RELATED]->(n:Entity)"
        elif direction == "incoming":
            pattern = "(m:Entity {id: $id})<-[r:RELATED]-(n:Entity)"
        else:  # both
            pattern = "(m:Entity {id: $id})-[r:RELATED]-(n:Entity)"

        records = await self._run(
            f"""
            MATCH {pattern}
            WHERE $types IS NULL OR r.type IN $types
            RETURN n, r, startNode(r).id AS source, endNode(r).id AS target
            ORDER BY r.strength DESC, r.id LIMIT $limit
            """,
            {"id": entity_id, "types": relationship_types or None, "limit": limit},
        )
        return [
            (self._node_to_entity(r["n"]), self._record_to_relationship(r)) for r in records
        ]

    async def find_path(self, start_id: str, end_id: str, max_depth: int = 5) -> list[str] | None:
        """Find shortest path between two entities."""
        if start_id == end_id:
            return [start_id]
        records = await self._run(
            f"""
            MATCH path = shortestPath(
                (start:Entity {{id: $start_id}})-[:RELATED*..{int(max_depth)}]-(end:Entity {{id: $end_id}})
            )
            RETURN [node in nodes(path) | node.id] as node_ids
            """,
            {"start_id": start_id, "end_id": end_id},
        )
        return records[0]["node_ids"] if records else None

    # ═══════════════════════════════════════════════════════════
    # UTILITY METHODS
    # ═══════════════════════════════════════════════════════════

    async def count_entities(self, entity_type: EntityType | None = None) -> int:
        """Count entities."""
        records = await self._run(
            "MATCH (e:Entity) WHERE $type IS NULL OR e.type = $type RETURN count(e) AS count",
            {"type": entity_type.value if entity_type else None},
        )
        return records[0]["count"] if records else 0

    async def count_relationships(self, relationship_type: str | None = None) -> int:
        """Count edges."""
        records = await self._run(
            "MATCH ()-[r:RELATED]->() WHERE $type IS NULL OR r.type = $type "
            "RETURN count(r) AS count",
            {"type": relationship_type},
        )
        return records[0]["count"] if records else 0

    async def ping(self) -> bool:
        try:
            await self.connect()
            await self.driver.verify_connectivity()
            return True
        except (Neo4jError, ServiceUnavailable, GraphStoreError, OSError):
            return False

    async def close(self) -> None:
        """Close the Neo4j driver."""
        if self.driver is not None:
            await self.driver.close()
            self.driver = None

    # ═══════════════════════════════════════════════════════════
    # HELPER METHODS
    # ═══════════════════════════════════════════════════════════

    async def _run(self, query: str, params: dict[str, Any] | None = None) -> list[Any]:
        """Run a query in a fresh session and collect its records."""
        await self.connect()
        try:
            async with self.driver.session(database=self.database) as session:
                result = await session.run(query, params or {})
                return [record async for record in result]
        except (Neo4jError, ServiceUnavailable, OSError) as e:
            logger.error(
                f"Neo4j query failed: {e}",
                extra={"error": str(e), "error_type": type(e).__name__},
            )
            raise GraphStoreError(f"Neo4j query failed: {e}") from e

    def _node_to_entity(self, node) -> Entity:
        """Convert Neo4j node to Entity object."""
        return Entity(
            id=node["id"],
            type=EntityType(node["type"]),
            name=node["name"],
            normalized_name=node["normalized_name"],
            scope=node.get("scope", "global"),
            properties=json.loads(node.get("properties") or "{}"),
            confidence=node.get("confidence"),
            created_at=datetime.fromisoformat(node["created_at"]),
        )

    def _record_to_relationship(self, record) -> GraphRelationship:
        """Convert a (r, source, target) record to GraphRelationship object."""
        rel = record["r"]
        return GraphRelationship(
            id=rel["id"],
            source_entity_id=record["source"],
            target_entity_id=record["target"],
            relationship_type=rel["type"],
            strength=rel["strength"],
            properties=json.loads(rel.get("properties") or "{}"),
            evidence_count=rel.get("evidence_count", 1),
            created_at=datetime.fromisoformat(rel["created_at"]),
            updated_at=datetime.fromisoformat(rel["updated_at"]),
        )
