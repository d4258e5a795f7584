"""
SQLite graph store implementation.

Entities, mentions and relationships in three tables; deduplication and
strength accumulation rely on unique constraints with ON CONFLICT upserts.
"""

import asyncio
import json
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite

from autoorganize.core.graph_store.base import GraphStore
from autoorganize.models.entity import Entity, EntityMention, EntityType, normalize_entity_name
from autoorganize.models.relationships import GraphRelationship
from autoorganize.utils.exceptions import GraphStoreError
from autoorganize.utils.logger import get_logger

logger = get_logger(__name__)

_ENTITY_COLUMNS = "id, type, name, normalized_name, scope, properties, confidence, created_at"
_RELATIONSHIP_COLUMNS = (
    "id, source_id, target_id, type, strength, properties, evidence_count, created_at, updated_at"
)


class SQLiteGraphStore(GraphStore):
    """
    SQLite-based graph store for entities and relationships.

    Features:
    - Fast local storage
    - JSON support for properties
    - Atomic upserts via unique constraints
    - Cascading deletes for mentions and edges
    """

    def __init__(self, db_path: str = "data/graph.db"):
        """
        Initialize SQLite graph store.

        Args:
            db_path: Path to SQLite database file or ':memory:'
        """
        self.db_path = db_path
        self.connection: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    async def connect(self) -> None:
        """Establish connection to SQLite."""
        if self.connection is None:
            try:
                self.connection = await aiosqlite.connect(self.db_path)
                # Enable foreign keys
                await self.connection.execute("PRAGMA foreign_keys = ON")
                await self.connection.execute("PRAGMA journal_mode = WAL")
                await self.connection.commit()
            except aiosqlite.Error as e:
                self.connection = None
                raise GraphStoreError(f"Failed to open graph store: {e}") from e

    async def initialize(self) -> None:
        """Initialize database schema."""
        await self.connect()

        # Create entities table
        await self.connection.execute(
            """
            CREATE TABLE IF NOT EXISTS entities (
                id TEXT PRIMARY KEY,
                type TEXT NOT NULL,
                name TEXT NOT NULL,
                normalized_name TEXT NOT NULL,
                scope TEXT NOT NULL DEFAULT 'global',
                properties TEXT DEFAULT '{}',
                confidence REAL,
                created_at TEXT NOT NULL,
                UNIQUE (scope, type, normalized_name)
            )
        """
        )

        # Create mentions table
        await self.connection.execute(
            """
            CREATE TABLE IF NOT EXISTS mentions (
                document_id TEXT NOT NULL,
                entity_id TEXT NOT NULL,
                start_pos INTEGER NOT NULL,
                end_pos INTEGER NOT NULL,
                confidence REAL DEFAULT 1.0,
                text TEXT DEFAULT '',
                PRIMARY KEY (document_id, entity_id, start_pos, end_pos),
                FOREIGN KEY (entity_id) REFERENCES entities(id) ON DELETE CASCADE
            )
        """
        )

        # Create relationships table
        await self.connection.execute(
            """
            CREATE TABLE IF NOT EXISTS relationships (
                id TEXT PRIMARY KEY,
                source_id TEXT NOT NULL,
                target_id TEXT NOT NULL,
                type TEXT NOT NULL,
                strength REAL NOT NULL,
                properties TEXT DEFAULT '{}',
                evidence_count INTEGER DEFAULT 1,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                UNIQUE (source_id, target_id, type),
                FOREIGN KEY (source_id) REFERENCES entities(id) ON DELETE CASCADE,
                FOREIGN KEY (target_id) REFERENCES entities(id) ON DELETE CASCADE
            )
        """
        )

        # Create indices
        await self.connection.execute(
            "CREATE INDEX IF NOT EXISTS idx_entities_type ON entities(type)"
        )
        await self.connection.execute(
            "CREATE INDEX IF NOT EXISTS idx_entities_name ON entities(normalized_name)"
        )
        await self.connection.execute(
            "CREATE INDEX IF NOT EXISTS idx_mentions_entity ON mentions(entity_id)"
        )
        await self.connection.execute(
            "CREATE INDEX IF NOT EXISTS idx_rel_source ON relationships(source_id)"
        )
        await self.connection.execute(
            "CREATE INDEX IF NOT EXISTS idx_rel_target ON relationships(target_id)"
        )
        await self.connection.execute("CREATE INDEX IF NOT EXISTS idx_rel_type ON relationships(type)")

        await self.connection.commit()

    # ═══════════════════════════════════════════════════════════
    # ENTITY OPERATIONS
    # ═══════════════════════════════════════════════════════════

    async def upsert_entity(self, entity: Entity) -> Entity:
        """Insert an entity or return the existing one with the same key."""
        await self.connect()

        async with self._write_lock:
            try:
                cursor = await self.connection.execute(
                    f"""
                    INSERT INTO entities ({_ENTITY_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT (scope, type, normalized_name) DO UPDATE SET
                        confidence = MAX(COALESCE(confidence, 0), COALESCE(excluded.confidence, 0))
                    RETURNING {_ENTITY_COLUMNS}
                    """,
                    (
                        entity.id,
                        entity.type.value,
                        entity.name,
                        entity.normalized_name,
                        entity.scope,
                        json.dumps(entity.properties, default=str),
                        entity.confidence,
                        entity.created_at.isoformat(),
                    ),
                )
                row = await cursor.fetchone()
                await self.connection.commit()
            except aiosqlite.Error as e:
                await self.connection.rollback()
                raise GraphStoreError(
                    f"Failed to upsert entity {entity.name}: {e}",
                    {"entity_id": entity.id, "type": entity.type.value},
                ) from e

        return self._row_to_entity(row)

    async def get_entity(self, entity_id: str) -> Entity | None:
        """Retrieve an entity by ID."""
        await self.connect()

        cursor = await self.connection.execute(
            f"SELECT {_ENTITY_COLUMNS} FROM entities WHERE id = ?", (entity_id,)
        )
        row = await cursor.fetchone()

        if not row:
            return None

        return self._row_to_entity(row)

    async def find_entities_by_name(self, name: str, scope: str | None = None) -> list[Entity]:
        """Find entities whose normalized name matches."""
        await self.connect()

        keys = {normalize_entity_name(EntityType.CUSTOM, name)}
        digits = normalize_entity_name(EntityType.PHONE, name)
        if digits:
            keys.add(digits)

        placeholders = ",".join("?" * len(keys))
        query = f"SELECT {_ENTITY_COLUMNS} FROM entities WHERE normalized_name IN ({placeholders})"
        params: list[Any] = list(keys)
        if scope is not None:
            query += " AND scope = ?"
            params.append(scope)
        query += " ORDER BY created_at, id"

        cursor = await self.connection.execute(query, params)
        rows = await cursor.fetchall()
        return [self._row_to_entity(row) for row in rows]

    async def query_entities(
        self,
        entity_types: list[EntityType] | None = None,
        name_contains: str | None = None,
        document_id: str | None = None,
        limit: int = 100,
    ) -> list[Entity]:
        """Query entities with filters."""
        await self.connect()

        query = f"SELECT {', '.join('e.' + c.strip() for c in _ENTITY_COLUMNS.split(','))} FROM entities e"
        params: list[Any] = []

        if document_id:
            query += " WHERE e.id IN (SELECT entity_id FROM mentions WHERE document_id = ?)"
            params.append(document_id)
        else:
            query += " WHERE 1=1"

        if entity_types:
            placeholders = ",".join("?" * len(entity_types))
            query += f" AND e.type IN ({placeholders})"
            params.extend(t.value for t in entity_types)

        if name_contains:
            query += " AND e.normalized_name LIKE ? ESCAPE '\\'"
            escaped = (
                name_contains.casefold()
                .replace("\\", "\\\\")
                .replace("%", "\\%")
                .replace("_", "\\_")
            )
            params.append(f"%{escaped}%")

        query += " ORDER BY e.created_at, e.id LIMIT ?"
        params.append(limit)

        cursor = await self.connection.execute(query, params)
        rows = await cursor.fetchall()

        return [self._row_to_entity(row) for row in rows]

    async def delete_entity(self, entity_id: str) -> bool:
        """Delete an entity with its mentions and edges (cascade)."""
        await self.connect()

        async with self._write_lock:
            cursor = await self.connection.execute("DELETE FROM entities WHERE id = ?", (entity_id,))
            await self.connection.commit()
        return cursor.rowcount > 0

    # ═══════════════════════════════════════════════════════════
    # MENTION OPERATIONS
    # ═══════════════════════════════════════════════════════════

    async def add_mentions(self, mentions: list[EntityMention]) -> int:
        """Store mentions, ignoring ones already present."""
        if not mentions:
            return 0
        await self.connect()

        async with self._write_lock:
            try:
                before = self.connection.total_changes
                await self.connection.executemany(
                    """
                    INSERT OR IGNORE INTO mentions
                        (document_id, entity_id, start_pos, end_pos, confidence, text)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (m.document_id, m.entity_id, m.start, m.end, m.confidence, m.text)
                        for m in mentions
                    ],
                )
                await self.connection.commit()
                return self.connection.total_changes - before
            except aiosqlite.Error as e:
                await self.connection.rollback()
                raise GraphStoreError(f"Failed to add mentions: {e}") from e

    async def get_mentions(
        self, document_id: str | None = None, entity_id: str | None = None
    ) -> list[EntityMention]:
        """Get mentions by document and/or entity."""
        await self.connect()

        query = (
            "SELECT entity_id, document_id, start_pos, end_pos, confidence, text "
            "FROM mentions WHERE 1=1"
        )
        params: list[Any] = []
        if document_id:
            query += " AND document_id = ?"
            params.append(document_id)
        if entity_id:
            query += " AND entity_id = ?"
            params.append(entity_id)
        query += " ORDER BY document_id, start_pos, end_pos"

        cursor = await self.connection.execute(query, params)
        rows = await cursor.fetchall()
        return [
            EntityMention(
                entity_id=row[0],
                document_id=row[1],
                start=row[2],
                end=row[3],
                confidence=row[4],
                text=row[5] or "",
            )
            for row in rows
        ]

    async def delete_document_mentions(self, document_id: str) -> int:
        """Delete every mention owned by a document."""
        await self.connect()

        async with self._write_lock:
            cursor = await self.connection.execute(
                "DELETE FROM mentions WHERE document_id = ?", (document_id,)
            )
            await self.connection.commit()
        return cursor.rowcount

    # ═══════════════════════════════════════════════════════════
    # RELATIONSHIP OPERATIONS
    # ═══════════════════════════════════════════════════════════

    async def upsert_relationship(
        self,
        relationship: GraphRelationship,
        strength_increment: float,
    ) -> tuple[GraphRelationship, bool]:
        """Create an edge or atomically strengthen the existing one."""
        await self.connect()
        now = datetime.now().isoformat()

        async with self._write_lock:
            try:
                cursor = await self.connection.execute(
                    f"""
                    INSERT INTO relationships ({_RELATIONSHIP_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, 1, ?, ?)
                    ON CONFLICT (source_id, target_id, type) DO UPDATE SET
                        strength = MIN(1.0, strength + ?),
                        evidence_count = evidence_count + 1,
                        updated_at = excluded.updated_at
                    RETURNING {_RELATIONSHIP_COLUMNS}
                    """,
                    (
                        relationship.id,
                        relationship.source_entity_id,
                        relationship.target_entity_id,
                        relationship.relationship_type,
                        min(1.0, relationship.strength),
                        json.dumps(relationship.properties, default=str),
                        relationship.created_at.isoformat(),
                        now,
                        strength_increment,
                    ),
                )
                row = await cursor.fetchone()
                await self.connection.commit()
            except aiosqlite.Error as e:
                await self.connection.rollback()
                raise GraphStoreError(
                    f"Failed to upsert relationship: {e}",
                    {
                        "source_id": relationship.source_entity_id,
                        "target_id": relationship.target_entity_id,
                        "type": relationship.relationship_type,
                    },
                ) from e

        stored = self._row_to_relationship(row)
        return stored, stored.id == relationship.id

    async def get_relationship(self, relationship_id: str) -> GraphRelationship | None:
        """Get edge by ID."""
        await self.connect()

        cursor = await self.connection.execute(
            f"SELECT {_RELATIONSHIP_COLUMNS} FROM relationships WHERE id = ?", (relationship_id,)
        )
        row = await cursor.fetchone()

        if not row:
            return None

        return self._row_to_relationship(row)

    async def query_relationships(
        self,
        entity_id: str | None = None,
        relationship_types: list[str] | None = None,
        min_strength: float | None = None,
        entity_ids: list[str] | None = None,
        limit: int = 100,
    ) -> list[GraphRelationship]:
        """Query edges with filters."""
        await self.connect()

        query = f"SELECT {_RELATIONSHIP_COLUMNS} FROM relationships WHERE 1=1"
        params: list[Any] = []

        if entity_id:
            query += " AND (source_id = ? OR target_id = ?)"
            params.extend([entity_id, entity_id])

        if relationship_types:
            placeholders = ",".join("?" * len(relationship_types))
            query += f" AND type IN ({placeholders})"
            params.extend(relationship_types)

        if min_strength is not None:
            query += " AND strength >= ?"
            params.append(min_strength)

        if entity_ids is not None:
            if not entity_ids:
                return []
            placeholders = ",".join("?" * len(entity_ids))
            query += f" AND source_id IN ({placeholders}) AND target_id IN ({placeholders})"
            params.extend(entity_ids)
            params.extend(entity_ids)

        query += " ORDER BY strength DESC, id LIMIT ?"
        params.append(limit)

        cursor = await self.connection.execute(query, params)
        rows = await cursor.fetchall()
        return [self._row_to_relationship(row) for row in rows]

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
        await self.connect()

        if direction == "outgoing":
            condition = "r.source_id = ?"
            neighbor = "r.target_id"
            params: list[Any] = [entity_id]
        elif direction == "incoming":
            condition = "r.target_id = ?"
            neighbor = "r.source_id"
            params = [entity_id]
        else:  # both
            condition = "(r.source_id = ? OR r.target_id = ?)"
            neighbor = "CASE WHEN r.source_id = ? THEN r.target_id ELSE r.source_id END"
            params = [entity_id, entity_id, entity_id]

        entity_cols = ", ".join("e." + c.strip() for c in _ENTITY_COLUMNS.split(","))
        rel_cols = ", ".join("r." + c.strip() for c in _RELATIONSHIP_COLUMNS.split(","))
        query = f"""
            SELECT {entity_cols}, {rel_cols}
            FROM relationships r
            JOIN entities e ON e.id = {neighbor}
            WHERE {condition}
        """

        if relationship_types:
            placeholders = ",".join("?" * len(relationship_types))
            query += f" AND r.type IN ({placeholders})"
            params.extend(relationship_types)

        query += " ORDER BY r.strength DESC, r.id LIMIT ?"
        params.append(limit)

        cursor = await self.connection.execute(query, params)
        rows = await cursor.fetchall()

        return [(self._row_to_entity(row[:8]), self._row_to_relationship(row[8:])) for row in rows]

    async def find_path(self, start_id: str, end_id: str, max_depth: int = 5) -> list[str] | None:
        """Find shortest undirected path between two entities (BFS)."""
        await self.connect()

        if start_id == end_id:
            return [start_id]

        visited = {start_id}
        queue = deque([(start_id, [start_id])])

        while queue:
            current_id, path = queue.popleft()

            if len(path) > max_depth:
                continue

            neighbors = await self.get_neighbors(current_id, direction="both", limit=500)

            for entity, _ in neighbors:
                if entity.id == end_id:
                    return path + [entity.id]

                if entity.id not in visited:
                    visited.add(entity.id)
                    queue.append((entity.id, path + [entity.id]))

        return None

    # ═══════════════════════════════════════════════════════════
    # UTILITY METHODS
    # ═══════════════════════════════════════════════════════════

    async def count_entities(self, entity_type: EntityType | None = None) -> int:
        """Count entities."""
        await self.connect()

        query = "SELECT COUNT(*) FROM entities"
        params: list[Any] = []

        if entity_type:
            query += " WHERE type = ?"
            params.append(entity_type.value)

        cursor = await self.connection.execute(query, params)
        row = await cursor.fetchone()

        return row[0] if row else 0

    async def count_relationships(self, relationship_type: str | None = None) -> int:
        """Count edges."""
        await self.connect()

        query = "SELECT COUNT(*) FROM relationships"
        params: list[Any] = []

        if relationship_type:
            query += " WHERE type = ?"
            params.append(relationship_type)

        cursor = await self.connection.execute(query, params)
        row = await cursor.fetchone()

        return row[0] if row else 0

    async def count_mentions(self) -> int:
        await self.connect()
        cursor = await self.connection.execute("SELECT COUNT(*) FROM mentions")
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def ping(self) -> bool:
        try:
            await self.connect()
            await self.connection.execute("SELECT 1")
            return True
        except (aiosqlite.Error, GraphStoreError, ValueError):
            return False

    async def close(self) -> None:
        """Close the connection."""
        if self.connection is not None:
            await self.connection.close()
            self.connection = None

    # ═══════════════════════════════════════════════════════════
    # HELPER METHODS
    # ═══════════════════════════════════════════════════════════

    def _row_to_entity(self, row: tuple) -> Entity:
        """Convert database row to Entity object."""
        return Entity(
            id=row[0],
            type=EntityType(row[1]),
            name=row[2],
            normalized_name=row[3],
            scope=row[4],
            properties=json.loads(row[5]) if row[5] else {},
            confidence=row[6],
            created_at=datetime.fromisoformat(row[7]),
        )

    def _row_to_relationship(self, row: tuple) -> GraphRelationship:
        """Convert database row to GraphRelationship object."""
        return GraphRelationship(
            id=row[0],
            source_entity_id=row[1],
            target_entity_id=row[2],
            relationship_type=row[3],
            strength=row[4],
            properties=json.loads(row[5]) if row[5] else {},
            evidence_count=row[6],
            created_at=datetime.fromisoformat(row[7]),
            updated_at=datetime.fromisoformat(row[8]),
        )
