"""
Tests for the SQLite search index.
"""

from datetime import datetime, timedelta

import pytest

from autoorganize.config import SearchConfig
from autoorganize.core.graph_store import SQLiteGraphStore
from autoorganize.core.search import SearchIndex
from autoorganize.models.document import DataSourceType, Document, compute_content_hash
from autoorganize.models.entity import Entity, EntityType
from autoorganize.models.relationships import GraphRelationship
from autoorganize.models.search import ResultKind, SearchFilter, SearchMode, TimeRange
from autoorganize.utils.exceptions import SearchIndexError, ValidationError


def make_document(
    doc_id: str,
    title: str,
    body: str,
    source_type: DataSourceType = DataSourceType.FILE_SYSTEM,
    content_type: str = "text/plain",
    modified_at: datetime | None = None,
) -> tuple[Document, str]:
    document = Document(
        id=doc_id,
        title=title,
        content_hash=compute_content_hash(body),
        source_type=source_type,
        content_type=content_type,
        file_path=f"/notes/{doc_id}.txt",
        modified_at=modified_at or datetime.now(),
    )
    return document, body


class TestIndexing:
    async def test_index_and_query(self, search_index: SearchIndex):
        document, body = make_document("doc_a", "Budget review", "The quarterly budget was approved")
        terms = await search_index.index_document(document, body)

        response = await search_index.query("budget")

        assert terms == 4  # budget, review, quarterly, approved
        assert [r.id for r in response.results] == ["doc_a"]
        top = response.results[0]
        assert top.kind == ResultKind.DOCUMENT
        assert top.relevance_score == pytest.approx(1.0)
        assert "budget" in top.snippet
        assert top.source.name == "/notes/doc_a.txt"

    async def test_reindex_replaces_terms(self, search_index: SearchIndex):
        document, _ = make_document("doc_a", "Notes", "")
        await search_index.index_document(document, "alpha topic")
        await search_index.index_document(document, "beta topic")

        assert (await search_index.query("alpha")).results == []
        assert [r.id for r in (await search_index.query("beta")).results] == ["doc_a"]
        assert await search_index.count_documents() == 1

    async def test_title_only_when_body_withheld(self, search_index: SearchIndex):
        document, _ = make_document("doc_secret", "Salary letter", "")
        await search_index.index_document(document, None)

        assert [r.id for r in (await search_index.query("salary")).results] == ["doc_secret"]
        assert (await search_index.query("confidential")).results == []

    async def test_remove_document(self, search_index: SearchIndex):
        document, body = make_document("doc_a", "Budget", "budget numbers")
        await search_index.index_document(document, body)

        await search_index.remove_document("doc_a")

        assert (await search_index.query("budget")).results == []
        assert await search_index.count_documents() == 0

    async def test_remove_errors_wrapped(self, search_index: SearchIndex):
        await search_index.connection.execute("DROP TABLE postings")
        await search_index.connection.execute("DROP TABLE search_entities")

        with pytest.raises(SearchIndexError):
            await search_index.remove_document("doc_a")
        with pytest.raises(SearchIndexError):
            await search_index.remove_entity("ent_a")


class TestRanking:
    async def test_higher_term_frequency_ranks_first(self, search_index: SearchIndex):
        once, body_once = make_document("doc_once", "Log", "budget mentioned once among other words")
        many, body_many = make_document("doc_many", "Log", "budget budget budget everywhere")
        await search_index.index_document(once, body_once)
        await search_index.index_document(many, body_many)

        response = await search_index.query("budget")

        assert [r.id for r in response.results] == ["doc_many", "doc_once"]
        assert response.results[0].relevance_score == pytest.approx(1.0)
        assert response.results[1].relevance_score < 1.0


class TestPagination:
    @pytest.fixture
    async def fifty(self, search_index: SearchIndex) -> SearchIndex:
        for index in range(50):
            document, body = make_document(f"doc_{index:03d}", f"Report {index}", "quarterly report")
            await search_index.index_document(document, body)
        return search_index

    async def test_pages_are_disjoint(self, fifty: SearchIndex):
        first = await fifty.query("quarterly", offset=0, limit=10)
        second = await fifty.query("quarterly", offset=10, limit=10)

        assert first.pagination.total == 50
        assert first.pagination.has_more is True
        assert len(first.results) == 10
        assert not {r.id for r in first.results} & {r.id for r in second.results}

    async def test_last_page(self, fifty: SearchIndex):
        last = await fifty.query("quarterly", offset=40, limit=10)
        assert len(last.results) == 10
        assert last.pagination.has_more is False

    async def test_limit_capped(self, fifty: SearchIndex):
        response = await fifty.query("quarterly", limit=500)
        assert response.pagination.limit == 100
        assert len(response.results) == 50

    @pytest.mark.parametrize(
        "query,offset,limit",
        [("", 0, 10), ("   ", 0, 10), ("report", -1, 10), ("report", 0, 0)],
    )
    async def test_invalid_requests(self, search_index: SearchIndex, query, offset, limit):
        with pytest.raises(ValidationError):
            await search_index.query(query, offset=offset, limit=limit)


class TestFilters:
    @pytest.fixture
    async def mixed(self, search_index: SearchIndex) -> SearchIndex:
        old = datetime.now() - timedelta(days=30)
        docs = [
            make_document("doc_file", "Plan", "project plan draft"),
            make_document(
                "doc_mail", "Plan mail", "project plan by email", source_type=DataSourceType.EMAIL
            ),
            make_document("doc_md", "Plan md", "project plan markdown", content_type="text/markdown"),
            make_document("doc_old", "Old plan", "project plan archive", modified_at=old),
        ]
        for document, body in docs:
            await search_index.index_document(document, body)

        ada = Entity(id="ent_person00001", type=EntityType.PERSON, name="Ada Lovelace")
        await search_index.index_document(docs[0][0], docs[0][1], [ada])
        return search_index

    async def test_data_source_filter(self, mixed: SearchIndex):
        response = await mixed.query(
            "plan", SearchFilter(data_sources=[DataSourceType.EMAIL], kinds=[ResultKind.DOCUMENT])
        )
        assert [r.id for r in response.results] == ["doc_mail"]

    async def test_content_type_filter(self, mixed: SearchIndex):
        response = await mixed.query(
            "plan", SearchFilter(content_types=["text/markdown"], kinds=[ResultKind.DOCUMENT])
        )
        assert [r.id for r in response.results] == ["doc_md"]

    async def test_time_range_filter(self, mixed: SearchIndex):
        window = TimeRange(start=datetime.now() - timedelta(days=1))
        response = await mixed.query(
            "plan", SearchFilter(time_range=window, kinds=[ResultKind.DOCUMENT])
        )
        assert "doc_old" not in {r.id for r in response.results}
        assert len(response.results) == 3

    async def test_entity_type_filter(self, mixed: SearchIndex):
        response = await mixed.query(
            "plan", SearchFilter(entity_types=[EntityType.PERSON], kinds=[ResultKind.DOCUMENT])
        )
        assert [r.id for r in response.results] == ["doc_file"]


class TestEntitiesAndRelationships:
    @pytest.fixture
    async def with_entities(self, search_index: SearchIndex, graph_store: SQLiteGraphStore):
        ada = Entity(id="ent_person00001", type=EntityType.PERSON, name="Ada Lovelace")
        org = Entity(id="ent_org0000001", type=EntityType.ORGANIZATION, name="Analytical Engines Ltd")
        await graph_store.upsert_entity(ada)
        await graph_store.upsert_entity(org)
        await graph_store.upsert_relationship(
            GraphRelationship(
                id="rel_1",
                source_entity_id=ada.id,
                target_entity_id=org.id,
                relationship_type="works_for",
                strength=0.5,
            ),
            0.1,
        )
        document, body = make_document("doc_a", "Letter", "Ada Lovelace joined Analytical Engines Ltd")
        await search_index.index_document(document, body, [ada, org])
        return search_index

    async def test_entity_exact_match(self, with_entities: SearchIndex):
        response = await with_entities.query(
            "ada lovelace", SearchFilter(kinds=[ResultKind.ENTITY])
        )
        assert response.results[0].id == "ent_person00001"
        assert response.results[0].relevance_score == pytest.approx(1.0)

    async def test_relationship_results(self, with_entities: SearchIndex):
        response = await with_entities.query(
            "Ada Lovelace", SearchFilter(kinds=[ResultKind.RELATIONSHIP])
        )

        assert [r.kind for r in response.results] == [ResultKind.RELATIONSHIP]
        assert response.results[0].title == "Ada Lovelace works_for Analytical Engines Ltd"
        assert response.results[0].relevance_score == pytest.approx(0.5)

    async def test_entity_filtered_by_document_source(self, with_entities: SearchIndex):
        response = await with_entities.query(
            "ada", SearchFilter(data_sources=[DataSourceType.EMAIL], kinds=[ResultKind.ENTITY])
        )
        assert response.results == []


class TestFuzzy:
    async def test_typo_matches_in_fuzzy_mode(self, search_index: SearchIndex):
        document, body = make_document("doc_a", "Meeting", "discussion about the reorganization")
        await search_index.index_document(document, body)

        exact = await search_index.query("reorganizaton")
        fuzzy = await search_index.query("reorganizaton", mode=SearchMode.FUZZY)

        assert exact.results == []
        assert [r.id for r in fuzzy.results] == ["doc_a"]
        assert fuzzy.mode == SearchMode.FUZZY

    async def test_threshold_respected(self, graph_store):
        index = SearchIndex(":memory:", SearchConfig(fuzzy_threshold=99), graph_store)
        await index.initialize()
        try:
            document, body = make_document("doc_a", "Meeting", "reorganization")
            await index.index_document(document, body)
            response = await index.query("reorganizaton", mode=SearchMode.FUZZY)
            assert response.results == []
        finally:
            await index.close()


class TestSuggest:
    async def test_history_then_entities(self, search_index: SearchIndex):
        ada = Entity(id="ent_person00001", type=EntityType.PERSON, name="Ada Lovelace")
        document, body = make_document("doc_a", "Letter", "adaptive plans")
        await search_index.index_document(document, body, [ada])
        await search_index.query("adaptive plans")

        suggestions = await search_index.suggest("AD", history=["Adam notes", "budget"])

        assert suggestions == ["Adam notes", "adaptive plans", "Ada Lovelace"]

    async def test_case_insensitive_dedup(self, search_index: SearchIndex):
        document, body = make_document("doc_a", "Budget", "budget")
        await search_index.index_document(document, body)
        await search_index.query("Budget")

        assert await search_index.suggest("bud", history=["budget"]) == ["budget"]

    async def test_blank_prefix(self, search_index: SearchIndex):
        assert await search_index.suggest("  ") == []

    async def test_limit(self, search_index: SearchIndex):
        history = [f"term {i}" for i in range(30)]
        assert len(await search_index.suggest("term", history=history)) == 10
        assert len(await search_index.suggest("term", history=history, limit=3)) == 3

    async def test_like_wildcards_escaped(self, search_index: SearchIndex):
        document, body = make_document("doc_a", "Budget", "budget")
        await search_index.index_document(document, body)
        await search_index.query("budget")

        assert await search_index.suggest("%") == []
