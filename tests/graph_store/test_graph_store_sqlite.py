"""
Tests for SQLite graph store implementation.
"""

import asyncio
from datetime import datetime

import pytest

from autoorganize.core.graph_store import SQLiteGraphStore
from autoorganize.models.entity import Entity, EntityMention, EntityType
from autoorganize.models.relationships import GraphRelationship
from autoorganize.utils.exceptions import GraphStoreError


def make_relationship(
    rel_id: str, source: str, target: str, rel_type: str = "relates_to", strength: float = 0.3
) -> GraphRelationship:
    return GraphRelationship(
        id=rel_id,
        source_entity_id=source,
        target_entity_id=target,
        relationship_type=rel_type,
        strength=strength,
    )


@pytest.fixture
async def two_entities(graph_store: SQLiteGraphStore, person: Entity, organization: Entity):
    await graph_store.upsert_entity(person)
    await graph_store.upsert_entity(organization)
    return person, organization


class TestSQLiteGraphStoreInit:
    """Test SQLite graph store initialization."""

    async def test_initialize_creates_tables(self, graph_store: SQLiteGraphStore):
        cursor = await graph_store.connection.execute(
            "SELECT name FROM sqlite_master WHERE type='table'"
        )
        tables = {row[0] for row in await cursor.fetchall()}

        assert {"entities", "mentions", "relationships"} <= tables

    async def test_initialize_idempotent(self, graph_store: SQLiteGraphStore):
        await graph_store.initialize()
        assert await graph_store.ping() is True


class TestEntityOperations:
    """Test entity CRUD and deduplication."""

    async def test_upsert_and_get(self, graph_store: SQLiteGraphStore, person: Entity):
        stored = await graph_store.upsert_entity(person)
        fetched = await graph_store.get_entity(person.id)

        assert stored.id == person.id
        assert fetched.name == "Ada Lovelace"
        assert fetched.normalized_name == "ada lovelace"
        assert fetched.type == EntityType.PERSON

    async def test_upsert_dedupes_by_key(self, graph_store: SQLiteGraphStore, person: Entity):
        await graph_store.upsert_entity(person)
        duplicate = Entity(
            id="ent_other000001", type=EntityType.PERSON, name="ADA  lovelace", confidence=0.95
        )

        stored = await graph_store.upsert_entity(duplicate)

        assert stored.id == person.id
        assert stored.confidence == pytest.approx(0.95)
        assert await graph_store.count_entities() == 1

    async def test_same_name_different_type(self, graph_store: SQLiteGraphStore, person: Entity):
        await graph_store.upsert_entity(person)
        project = Entity(id="ent_proj0000001", type=EntityType.PROJECT, name="Ada Lovelace")

        stored = await graph_store.upsert_entity(project)

        assert stored.id == "ent_proj0000001"
        assert await graph_store.count_entities() == 2

    async def test_scope_separates_entities(self, graph_store: SQLiteGraphStore, person: Entity):
        await graph_store.upsert_entity(person)
        scoped = Entity(
            id="ent_scoped00001", type=EntityType.PERSON, name="Ada Lovelace", scope="email"
        )

        stored = await graph_store.upsert_entity(scoped)

        assert stored.id == "ent_scoped00001"
        assert len(await graph_store.find_entities_by_name("ada lovelace")) == 2
        assert len(await graph_store.find_entities_by_name("Ada Lovelace", scope="email")) == 1

    async def test_query_entities_filters(self, graph_store: SQLiteGraphStore, two_entities):
        people = await graph_store.query_entities(entity_types=[EntityType.PERSON])
        engines = await graph_store.query_entities(name_contains="Engines")

        assert [e.name for e in people] == ["Ada Lovelace"]
        assert [e.name for e in engines] == ["Analytical Engines Ltd"]

    async def test_query_entities_like_escaping(self, graph_store: SQLiteGraphStore, two_entities):
        assert await graph_store.query_entities(name_contains="%") == []

    async def test_delete_entity_cascades(self, graph_store: SQLiteGraphStore, two_entities):
        person, organization = two_entities
        await graph_store.add_mentions(
            [EntityMention(entity_id=person.id, document_id="doc_1", start=0, end=12)]
        )
        await graph_store.upsert_relationship(
            make_relationship("rel_1", person.id, organization.id), 0.1
        )

        assert await graph_store.delete_entity(person.id) is True
        assert await graph_store.get_mentions(entity_id=person.id) == []
        assert await graph_store.count_relationships() == 0
        assert await graph_store.delete_entity(person.id) is False


class TestMentions:
    async def test_add_and_filter(self, graph_store: SQLiteGraphStore, two_entities):
        person, organization = two_entities
        mentions = [
            EntityMention(entity_id=person.id, document_id="doc_1", start=0, end=12),
            EntityMention(entity_id=organization.id, document_id="doc_1", start=20, end=42),
            EntityMention(entity_id=person.id, document_id="doc_2", start=5, end=17),
        ]

        assert await graph_store.add_mentions(mentions) == 3
        assert await graph_store.add_mentions(mentions[:1]) == 0
        assert len(await graph_store.get_mentions(document_id="doc_1")) == 2
        assert len(await graph_store.get_mentions(entity_id=person.id)) == 2

        docs = await graph_store.query_entities(document_id="doc_2")
        assert [e.id for e in docs] == [person.id]

    async def test_delete_document_mentions(self, graph_store: SQLiteGraphStore, two_entities):
        person, _ = two_entities
        await graph_store.add_mentions(
            [EntityMention(entity_id=person.id, document_id="doc_1", start=0, end=12)]
        )

        assert await graph_store.delete_document_mentions("doc_1") == 1
        assert await graph_store.count_mentions() == 0
        # The entity itself survives
        assert await graph_store.get_entity(person.id) is not None


class TestRelationships:
    """Test edge upserts and strength accumulation."""

    async def test_create_then_strengthen(self, graph_store: SQLiteGraphStore, two_entities):
        person, organization = two_entities

        created, is_new = await graph_store.upsert_relationship(
            make_relationship("rel_1", person.id, organization.id), 0.1
        )
        again, is_new_again = await graph_store.upsert_relationship(
            make_relationship("rel_2", person.id, organization.id), 0.1
        )

        assert is_new is True
        assert is_new_again is False
        assert again.id == created.id == "rel_1"
        assert again.strength == pytest.approx(0.4)
        assert again.evidence_count == 2
        assert await graph_store.count_relationships() == 1

    async def test_concurrent_upserts_single_edge(
        self, graph_store: SQLiteGraphStore, two_entities
    ):
        person, organization = two_entities
        count = 8

        results = await asyncio.gather(
            *(
                graph_store.upsert_relationship(
                    make_relationship(f"rel_{index}", person.id, organization.id), 0.05
                )
                for index in range(count)
            )
        )

        assert sum(1 for _, is_new in results if is_new) == 1
        [edge] = await graph_store.query_relationships(entity_id=person.id)
        assert edge.evidence_count == count
        assert edge.strength == pytest.approx(min(1.0, 0.3 + (count - 1) * 0.05))
        assert await graph_store.count_relationships() == 1

    async def test_strength_capped(self, graph_store: SQLiteGraphStore, two_entities):
        person, organization = two_entities
        for index in range(15):
            stored, _ = await graph_store.upsert_relationship(
                make_relationship(f"rel_{index}", person.id, organization.id, strength=0.9), 0.2
            )

        assert stored.strength == pytest.approx(1.0)

    async def test_distinct_types_are_distinct_edges(
        self, graph_store: SQLiteGraphStore, two_entities
    ):
        person, organization = two_entities
        await graph_store.upsert_relationship(make_relationship("rel_1", person.id, organization.id), 0.1)
        await graph_store.upsert_relationship(
            make_relationship("rel_2", person.id, organization.id, "works_for"), 0.1
        )

        assert await graph_store.count_relationships() == 2
        assert await graph_store.count_relationships("works_for") == 1

    async def test_query_relationships(self, graph_store: SQLiteGraphStore, two_entities):
        person, organization = two_entities
        await graph_store.upsert_relationship(
            make_relationship("rel_1", person.id, organization.id, strength=0.8), 0.1
        )

        assert len(await graph_store.query_relationships(entity_id=person.id)) == 1
        assert await graph_store.query_relationships(min_strength=0.9) == []
        assert await graph_store.query_relationships(relationship_types=["knows"]) == []
        assert await graph_store.query_relationships(entity_ids=[]) == []
        assert len(await graph_store.query_relationships(entity_ids=[person.id, organization.id])) == 1

    async def test_dangling_edge_rejected(self, graph_store: SQLiteGraphStore, person: Entity):
        await graph_store.upsert_entity(person)
        with pytest.raises(GraphStoreError):
            await graph_store.upsert_relationship(
                make_relationship("rel_1", person.id, "ent_missing0000"), 0.1
            )


class TestTraversal:
    @pytest.fixture
    async def chain(self, graph_store: SQLiteGraphStore):
        ids = []
        for index, name in enumerate(["Alpha One", "Beta Two", "Gamma Three", "Delta Four"]):
            entity = Entity(id=f"ent_chain{index:07d}", type=EntityType.PERSON, name=name)
            await graph_store.upsert_entity(entity)
            ids.append(entity.id)
        for index in range(3):
            await graph_store.upsert_relationship(
                make_relationship(f"rel_{index}", ids[index], ids[index + 1]), 0.1
            )
        return ids

    async def test_neighbors_direction(self, graph_store: SQLiteGraphStore, chain):
        outgoing = await graph_store.get_neighbors(chain[1], direction="outgoing")
        incoming = await graph_store.get_neighbors(chain[1], direction="incoming")
        both = await graph_store.get_neighbors(chain[1])

        assert [e.id for e, _ in outgoing] == [chain[2]]
        assert [e.id for e, _ in incoming] == [chain[0]]
        assert {e.id for e, _ in both} == {chain[0], chain[2]}

    async def test_find_path(self, graph_store: SQLiteGraphStore, chain):
        assert await graph_store.find_path(chain[0], chain[3]) == chain
        assert await graph_store.find_path(chain[0], chain[0]) == [chain[0]]
        assert await graph_store.find_path(chain[0], chain[3], max_depth=2) is None


class TestPersistence:
    async def test_file_backed_reopen(self, tmp_path):
        path = str(tmp_path / "graph.db")
        store = SQLiteGraphStore(path)
        await store.initialize()
        await store.upsert_entity(
            Entity(id="ent_persist0001", type=EntityType.LOCATION, name="Main Street",
                   created_at=datetime(2024, 1, 1))
        )
        await store.close()

        reopened = SQLiteGraphStore(path)
        await reopened.initialize()
        try:
            entity = await reopened.get_entity("ent_persist0001")
            assert entity.name == "Main Street"
            assert entity.created_at == datetime(2024, 1, 1)
        finally:
            await reopened.close()
