"""
Tests for the Knowledge Engine facade.

Covers:
- Document retrieval with and without decryption
- Search including the degraded fallback
- Graph browsing
- File event routing
- Stats and health
"""

import base64

import pytest

from autoorganize.models.document import DataSourceType, DocumentInput, DocumentListFilter
from autoorganize.models.entity import EntityType
from autoorganize.models.events import FileEvent, FileEventType
from autoorganize.models.graph import GraphEdgeFilter, GraphNodeFilter, NodeKind
from autoorganize.models.job import JobStatus
from autoorganize.models.search import ResultKind, SearchFilter
from autoorganize.services.knowledge_engine import KnowledgeEngine
from autoorganize.utils.exceptions import (
    EncryptionKeyError,
    NotFoundError,
    SearchIndexError,
    ValidationError,
)
from tests.conftest import TEST_PASSWORD

MEETING = "Ada Lovelace met Charles Babbage at Analytical Engines Ltd on 2024-03-15."


class TestDocuments:
    async def test_get_document(self, engine: KnowledgeEngine):
        result = await engine.ingest(DocumentInput(title="Meeting", content=MEETING))

        document = await engine.get_document(result.document_id)

        assert document.content == MEETING
        assert document.content_encoding == "utf-8"
        assert {e.name for e in document.entities} >= {"Ada Lovelace", "Charles Babbage"}

    async def test_encrypted_document(self, engine: KnowledgeEngine):
        result = await engine.ingest(
            DocumentInput(title="Secret", content=MEETING, encrypted=True), password=TEST_PASSWORD
        )

        sealed = await engine.get_document(result.document_id)
        opened = await engine.get_document(result.document_id, decrypt=True, password=TEST_PASSWORD)

        assert sealed.content_encoding == "base64"
        assert MEETING.encode() not in base64.b64decode(sealed.content)
        assert opened.content == MEETING
        assert opened.content_encoding == "utf-8"

    async def test_wrong_password(self, engine: KnowledgeEngine):
        result = await engine.ingest(
            DocumentInput(content=MEETING, encrypted=True), password=TEST_PASSWORD
        )

        with pytest.raises(EncryptionKeyError):
            await engine.get_document(result.document_id, decrypt=True, password="not it")

    async def test_missing_document(self, engine: KnowledgeEngine):
        with pytest.raises(NotFoundError):
            await engine.get_document("doc_missing")

    async def test_delete(self, engine: KnowledgeEngine):
        result = await engine.ingest(DocumentInput(content=MEETING))

        await engine.delete_document(result.document_id)

        with pytest.raises(NotFoundError):
            await engine.get_document(result.document_id)
        with pytest.raises(NotFoundError):
            await engine.delete_document(result.document_id)

    async def test_list_has_more(self, engine: KnowledgeEngine):
        for index in range(3):
            await engine.ingest(DocumentInput(content=f"note {index}"))

        page = await engine.list_documents(DocumentListFilter(limit=2))
        rest = await engine.list_documents(DocumentListFilter(limit=2, offset=2))

        assert page["total"] == 3
        assert len(page["documents"]) == 2
        assert page["has_more"] is True
        assert rest["has_more"] is False


class TestSearch:
    async def test_ranked_search(self, engine: KnowledgeEngine):
        result = await engine.ingest(DocumentInput(title="Meeting", content=MEETING))

        response = await engine.search("babbage")

        assert response.degraded is False
        assert result.document_id in {r.id for r in response.results}
        assert any(r.kind == ResultKind.ENTITY for r in response.results)

    async def test_fallback_mode(self, engine: KnowledgeEngine):
        result = await engine.ingest(DocumentInput(title="Meeting", content=MEETING))

        response = await engine.search("charles babbage", fallback_mode=True)

        assert response.degraded is True
        assert [r.id for r in response.results] == [result.document_id]

    async def test_falls_back_when_index_unavailable(self, engine: KnowledgeEngine, monkeypatch):
        result = await engine.ingest(DocumentInput(title="Meeting", content=MEETING))

        async def broken(*args, **kwargs):
            raise SearchIndexError("index corrupted")

        monkeypatch.setattr(engine.search_index, "query", broken)

        response = await engine.search("babbage")

        assert response.degraded is True
        assert [r.id for r in response.results] == [result.document_id]

    async def test_fallback_skips_encrypted(self, engine: KnowledgeEngine):
        await engine.ingest(
            DocumentInput(title="Vault", content="swordfish", encrypted=True), password=TEST_PASSWORD
        )

        assert (await engine.search("swordfish", fallback_mode=True)).results == []

    async def test_fallback_respects_filters(self, engine: KnowledgeEngine):
        await engine.ingest(DocumentInput(content="tide tables"))

        response = await engine.search(
            "tide", SearchFilter(data_sources=[DataSourceType.EMAIL]), fallback_mode=True
        )

        assert response.results == []

    async def test_fallback_reports_ignored_entity_filter(self, engine: KnowledgeEngine):
        result = await engine.ingest(DocumentInput(content=MEETING))

        response = await engine.search(
            "babbage", SearchFilter(entity_types=[EntityType.PERSON]), fallback_mode=True
        )
        plain = await engine.search("babbage", fallback_mode=True)

        assert [r.id for r in response.results] == [result.document_id]
        assert response.ignored_filters == ["entity_types"]
        assert plain.ignored_filters == []

    async def test_blank_query(self, engine: KnowledgeEngine):
        with pytest.raises(ValidationError):
            await engine.search("  ")

    async def test_confidential_body_not_searchable(self, engine: KnowledgeEngine):
        await engine.ingest(
            DocumentInput(title="Payroll", content="salary bands", encrypted=True),
            password=TEST_PASSWORD,
        )

        assert (await engine.search("bands")).results == []

    async def test_suggest(self, engine: KnowledgeEngine):
        await engine.ingest(DocumentInput(content=MEETING))

        assert "Ada Lovelace" in await engine.suggest("ada")
        assert await engine.suggest("tid", history=["tide tables"]) == ["tide tables"]


class TestGraph:
    async def test_nodes_for_document(self, engine: KnowledgeEngine):
        result = await engine.ingest(DocumentInput(title="Meeting", content=MEETING))

        nodes = await engine.graph_nodes(GraphNodeFilter(document_id=result.document_id))

        assert nodes[0].kind == NodeKind.DOCUMENT
        assert nodes[0].id == result.document_id
        assert nodes[0].label == "Meeting"
        assert {n.label for n in nodes[1:]} == {
            "Ada Lovelace",
            "Charles Babbage",
            "Analytical Engines Ltd",
            "2024-03-15",
        }

    async def test_nodes_unknown_document(self, engine: KnowledgeEngine):
        with pytest.raises(NotFoundError):
            await engine.graph_nodes(GraphNodeFilter(document_id="doc_missing"))

    async def test_edges_for_document(self, engine: KnowledgeEngine):
        first = await engine.ingest(DocumentInput(content=MEETING))
        await engine.ingest(DocumentInput(content="Grace Hopper joined Compilers Inc"))

        edges = await engine.graph_edges(GraphEdgeFilter(document_id=first.document_id))
        everything = await engine.graph_edges()

        assert len(edges) == first.relationship_count
        assert len(everything) > len(edges)

    async def test_edges_for_document_without_entities(self, engine: KnowledgeEngine):
        result = await engine.ingest(DocumentInput(content="nothing notable here"))
        assert await engine.graph_edges(GraphEdgeFilter(document_id=result.document_id)) == []

    async def test_neighbors(self, engine: KnowledgeEngine):
        result = await engine.ingest(DocumentInput(content=MEETING))
        people = [
            n
            for n in await engine.graph_nodes(GraphNodeFilter(document_id=result.document_id))
            if n.label == "Ada Lovelace"
        ]

        neighbors = await engine.neighbors(people[0].id)

        assert {n["node"].label for n in neighbors} >= {"Charles Babbage", "Analytical Engines Ltd"}

    async def test_neighbors_errors(self, engine: KnowledgeEngine):
        with pytest.raises(ValidationError):
            await engine.neighbors("ent_x", direction="sideways")
        with pytest.raises(NotFoundError):
            await engine.neighbors("ent_missing")


class TestFileEvents:
    async def test_created_file_ingested(self, engine: KnowledgeEngine, tmp_path):
        path = tmp_path / "note.md"
        path.write_text(MEETING)

        await engine.handle_file_event(FileEvent(event_type=FileEventType.CREATED, file_path=str(path)))
        job = engine.list_jobs()[0]
        finished = await engine.jobs.wait(job.id, timeout=5)

        assert finished.status == JobStatus.COMPLETED
        stored = await engine.content_store.find_by_path(str(path))
        assert stored[0].source == "watcher"

    async def test_unsupported_file_ignored(self, engine: KnowledgeEngine, tmp_path):
        path = tmp_path / "image.png"
        path.write_bytes(b"\x89PNG")

        await engine.handle_file_event(FileEvent(event_type=FileEventType.CREATED, file_path=str(path)))

        assert engine.list_jobs() == []

    async def test_deleted_file_removed(self, engine: KnowledgeEngine, tmp_path):
        path = tmp_path / "note.md"
        path.write_text(MEETING)
        result = await engine.ingest(DocumentInput(file_path=str(path)))

        await engine.handle_file_event(FileEvent(event_type=FileEventType.DELETED, file_path=str(path)))

        with pytest.raises(NotFoundError):
            await engine.get_document(result.document_id)
        assert engine.list_jobs() == []

    async def test_rename_moves_document(self, engine: KnowledgeEngine, tmp_path):
        old = tmp_path / "old.md"
        new = tmp_path / "new.md"
        old.write_text(MEETING)
        result = await engine.ingest(DocumentInput(file_path=str(old)))
        old.rename(new)

        await engine.handle_file_event(
            FileEvent(event_type=FileEventType.RENAMED, file_path=str(old), dest_path=str(new))
        )
        await engine.jobs.wait(engine.list_jobs()[0].id, timeout=5)

        assert await engine.content_store.get_document(result.document_id) is None
        assert len(await engine.content_store.find_by_path(str(new))) == 1


class TestStatus:
    async def test_stats(self, engine: KnowledgeEngine):
        await engine.ingest(DocumentInput(content=MEETING))

        stats = await engine.stats()

        assert stats["documents"] == 1
        assert stats["indexed_documents"] == 1
        assert stats["entities"] == 4
        assert stats["jobs"]["completed"] == 0
        assert stats["watched_paths"] == []

    async def test_health(self, engine: KnowledgeEngine):
        health = await engine.health()
        assert health["status"] == "healthy"
        assert set(health["services"]) == {"database", "cache", "graph"}

    async def test_degraded_health(self, engine: KnowledgeEngine, monkeypatch):
        async def down() -> bool:
            return False

        monkeypatch.setattr(engine.graph_store, "ping", down)

        health = await engine.health()

        assert health["status"] == "degraded"
        assert health["services"]["graph"] == "unavailable"

    async def test_notifications(self, engine: KnowledgeEngine):
        await engine.ingest(DocumentInput(content=MEETING))
        assert engine.notifications(limit=1)[0].event_type.value == "document_ingested"
