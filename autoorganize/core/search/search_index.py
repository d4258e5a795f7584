"""
SQLite search index.

Inverted index of document terms (postings keyed by term and document id)
scored with BM25, plus an entity-name table for entity results and a
bounded query history for suggestions.
"""

import asyncio
import math
import time
from collections import defaultdict
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite
from rapidfuzz import fuzz, process

from autoorganize.config import SearchConfig
from autoorganize.core.graph_store.base import GraphStore
from autoorganize.core.search.ranking import make_snippet, query_terms, rank_results, tokenize
from autoorganize.models.document import Document
from autoorganize.models.entity import Entity, EntityType
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
from autoorganize.utils.exceptions import SearchIndexError, StoreError, ValidationError
from autoorganize.utils.logger import get_logger

logger = get_logger(__name__)


def _naive(moment: datetime) -> datetime:
    """Compare timestamps in local naive time, matching stored values."""
    if moment.tzinfo is not None:
        return moment.astimezone().replace(tzinfo=None)
    return moment


class SearchIndex:
    """
    Ranked index over document text and entity names.

    Features:
    - BM25 document scoring over a postings table
    - Fuzzy mode: query terms expanded against the vocabulary with rapidfuzz
    - Entity results by name match, relationship results on request
    - Case-insensitive prefix suggestions from query history and entity names
    """

    def __init__(
        self,
        db_path: str = "data/search.db",
        config: SearchConfig | None = None,
        graph_store: GraphStore | None = None,
    ):
        """
        Initialize search index.

        Args:
            db_path: Path to SQLite database file or ':memory:'
            config: Search configuration
            graph_store: Optional graph store used for relationship results
        """
        self.db_path = db_path
        self.config = config or SearchConfig()
        self.graph_store = graph_store
        self.connection: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    async def connect(self) -> None:
        """Establish connection to SQLite."""
        if self.connection is None:
            try:
                self.connection = await aiosqlite.connect(self.db_path)
                await self.connection.execute("PRAGMA journal_mode = WAL")
                await self.connection.commit()
            except aiosqlite.Error as e:
                self.connection = None
                raise SearchIndexError(f"Failed to open search index: {e}") from e

    async def initialize(self) -> None:
        """Initialize database schema."""
        await self.connect()

        await self.connection.execute(
            """
            CREATE TABLE IF NOT EXISTS search_docs (
                document_id TEXT PRIMARY KEY,
                title TEXT NOT NULL DEFAULT '',
                body TEXT NOT NULL DEFAULT '',
                source TEXT,
                source_type TEXT NOT NULL,
                content_type TEXT NOT NULL,
                file_path TEXT NOT NULL DEFAULT '',
                encrypted INTEGER NOT NULL DEFAULT 0,
                length INTEGER NOT NULL DEFAULT 0,
                modified_at TEXT NOT NULL
            )
        """
        )
        await self.connection.execute(
            """
            CREATE TABLE IF NOT EXISTS postings (
                term TEXT NOT NULL,
                document_id TEXT NOT NULL,
                tf INTEGER NOT NULL,
                PRIMARY KEY (term, document_id)
            )
        """
        )
        await self.connection.execute(
            """
            CREATE TABLE IF NOT EXISTS search_entities (
                entity_id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                normalized_name TEXT NOT NULL,
                type TEXT NOT NULL
            )
        """
        )
        await self.connection.execute(
            """
            CREATE TABLE IF NOT EXISTS entity_documents (
                entity_id TEXT NOT NULL,
                document_id TEXT NOT NULL,
                PRIMARY KEY (entity_id, document_id)
            )
        """
        )
        await self.connection.execute(
            """
            CREATE TABLE IF NOT EXISTS query_history (
                query TEXT PRIMARY KEY,
                uses INTEGER NOT NULL DEFAULT 1,
                last_used TEXT NOT NULL
            )
        """
        )
        await self.connection.execute(
            "CREATE INDEX IF NOT EXISTS idx_postings_doc ON postings(document_id)"
        )
        await self.connection.execute(
            "CREATE INDEX IF NOT EXISTS idx_entity_documents_doc ON entity_documents(document_id)"
        )
        await self.connection.commit()

    # ═══════════════════════════════════════════════════════════
    # INDEX MAINTENANCE
    # ═══════════════════════════════════════════════════════════

    async def index_document(
        self, document: Document, text: str | None, entities: list[Entity] | None = None
    ) -> int:
        """
        Add or replace a document in the index.

        Args:
            document: Document record
            text: Plaintext body, or None to index the title (and entities) only
            entities: Entities mentioned by the document

        Returns:
            Number of distinct terms indexed
        """
        await self.connect()
        body = text or ""
        counts: dict[str, int] = defaultdict(int)
        for term in tokenize(f"{document.title}\n{body}"):
            counts[term] += 1
        length = sum(counts.values())
        entities = entities or []

        async with self._write_lock:
            try:
                await self.connection.execute(
                    "DELETE FROM postings WHERE document_id = ?", (document.id,)
                )
                await self.connection.execute(
                    "DELETE FROM entity_documents WHERE document_id = ?", (document.id,)
                )
                await self.connection.execute(
                    """
                    INSERT OR REPLACE INTO search_docs
                        (document_id, title, body, source, source_type, content_type,
                         file_path, encrypted, length, modified_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        document.id,
                        document.title,
                        body,
                        document.source,
                        document.source_type.value,
                        document.content_type,
                        document.file_path,
                        1 if document.encrypted else 0,
                        length,
                        _naive(document.modified_at).isoformat(),
                    ),
                )
                await self.connection.executemany(
                    "INSERT INTO postings (term, document_id, tf) VALUES (?, ?, ?)",
                    [(term, document.id, tf) for term, tf in counts.items()],
                )
                await self.connection.executemany(
                    """
                    INSERT INTO search_entities (entity_id, name, normalized_name, type)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT (entity_id) DO NOTHING
                    """,
                    [(e.id, e.name, e.normalized_name, e.type.value) for e in entities],
                )
                await self.connection.executemany(
                    "INSERT OR IGNORE INTO entity_documents (entity_id, document_id) VALUES (?, ?)",
                    [(e.id, document.id) for e in entities],
                )
                await self.connection.commit()
            except aiosqlite.Error as e:
                await self.connection.rollback()
                raise SearchIndexError(
                    f"Failed to index document {document.id}: {e}", {"document_id": document.id}
                ) from e

        logger.debug(
            f"Indexed document {document.id}",
            extra={"document_id": document.id, "terms": len(counts), "entities": len(entities)},
        )
        return len(counts)

    async def remove_document(self, document_id: str) -> None:
        """Remove a document's postings and entity links."""
        await self.connect()
        async with self._write_lock:
            try:
                await self.connection.execute(
                    "DELETE FROM postings WHERE document_id = ?", (document_id,)
                )
                await self.connection.execute(
                    "DELETE FROM entity_documents WHERE document_id = ?", (document_id,)
                )
                await self.connection.execute(
                    "DELETE FROM search_docs WHERE document_id = ?", (document_id,)
                )
                await self.connection.commit()
            except aiosqlite.Error as e:
                await self.connection.rollback()
                raise SearchIndexError(
                    f"Failed to remove document {document_id}: {e}", {"document_id": document_id}
                ) from e

    async def remove_entity(self, entity_id: str) -> None:
        await self.connect()
        async with self._write_lock:
            try:
                await self.connection.execute(
                    "DELETE FROM search_entities WHERE entity_id = ?", (entity_id,)
                )
                await self.connection.execute(
                    "DELETE FROM entity_documents WHERE entity_id = ?", (entity_id,)
                )
                await self.connection.commit()
            except aiosqlite.Error as e:
                await self.connection.rollback()
                raise SearchIndexError(
                    f"Failed to remove entity {entity_id}: {e}", {"entity_id": entity_id}
                ) from e

    # ═══════════════════════════════════════════════════════════
    # QUERY
    # ═══════════════════════════════════════════════════════════

    async def query(
        self,
        query: str,
        filters: SearchFilter | None = None,
        mode: SearchMode = SearchMode.EXACT,
        offset: int = 0,
        limit: int | None = None,
    ) -> SearchResponse:
        """
        Run a ranked query.

        Args:
            query: Query text
            filters: Optional filters
            mode: Exact or fuzzy term matching
            offset: Page offset
            limit: Page size (default from config, capped at ``max_limit``)

        Returns:
            SearchResponse with a page of ranked results

        Raises:
            ValidationError: For blank queries or bad pagination
            SearchIndexError: If the index cannot be read
        """
        started = time.perf_counter()
        offset, limit = self.validate_page(query, offset, limit)
        filters = filters or SearchFilter()
        await self.connect()

        try:
            results: list[SearchResult] = []
            kinds = set(filters.kinds)
            if ResultKind.DOCUMENT in kinds:
                results.extend(await self._document_results(query, filters, mode))
            entity_results: list[SearchResult] = []
            if kinds & {ResultKind.ENTITY, ResultKind.RELATIONSHIP}:
                entity_results = await self._entity_results(query, filters, mode)
            if ResultKind.ENTITY in kinds:
                results.extend(entity_results)
            if ResultKind.RELATIONSHIP in kinds:
                results.extend(await self._relationship_results(entity_results))
            await self.record_query(query)
        except aiosqlite.Error as e:
            raise SearchIndexError(f"Search query failed: {e}", {"query": query}) from e

        response = paginate(rank_results(results, query), query, offset, limit)
        response.mode = mode
        response.took_ms = (time.perf_counter() - started) * 1000
        return response

    async def _document_results(
        self, query: str, filters: SearchFilter, mode: SearchMode
    ) -> list[SearchResult]:
        terms = query_terms(query)
        if not terms:
            return []

        weights = await self._expand_terms(terms, mode)
        if not weights:
            return []

        stats = await self._collection_stats()
        total_docs, average_length = stats
        placeholders = ",".join("?" * len(weights))
        cursor = await self.connection.execute(
            f"""
            SELECT p.term, p.document_id, p.tf, d.length,
                   (SELECT COUNT(*) FROM postings p2 WHERE p2.term = p.term) AS df
            FROM postings p JOIN search_docs d ON d.document_id = p.document_id
            WHERE p.term IN ({placeholders})
            """,
            list(weights),
        )
        rows = await cursor.fetchall()

        k1, b = self.config.bm25_k1, self.config.bm25_b
        scores: dict[str, float] = defaultdict(float)
        for term, document_id, tf, length, df in rows:
            idf = math.log(1 + (total_docs - df + 0.5) / (df + 0.5))
            norm = tf + k1 * (1 - b + b * (length / average_length if average_length else 0))
            scores[document_id] += weights[term] * idf * (tf * (k1 + 1)) / norm

        if not scores:
            return []

        documents = await self._filtered_documents(list(scores), filters)
        if not documents:
            return []
        best = max(scores[doc_id] for doc_id in documents) or 1.0

        results = []
        for doc_id, row in documents.items():
            results.append(
                SearchResult(
                    id=doc_id,
                    kind=ResultKind.DOCUMENT,
                    title=row["title"],
                    snippet=make_snippet(row["body"], query, self.config.snippet_length),
                    relevance_score=round(scores[doc_id] / best, 6),
                    source=SourceDescriptor(type=row["source_type"], name=row["file_path"]),
                    metadata={
                        "content_type": row["content_type"],
                        "modified_at": row["modified_at"],
                        "source": row["source"],
                        "encrypted": bool(row["encrypted"]),
                    },
                )
            )
        return results

    async def _expand_terms(self, terms: list[str], mode: SearchMode) -> dict[str, float]:
        """Map each index term to its query weight (1.0 exact, ratio for fuzzy expansions)."""
        weights = {term: 1.0 for term in terms}
        if mode != SearchMode.FUZZY:
            return weights

        for term in terms:
            cursor = await self.connection.execute(
                "SELECT DISTINCT term FROM postings WHERE length(term) BETWEEN ? AND ?",
                (max(1, len(term) - 3), len(term) + 3),
            )
            vocabulary = [row[0] for row in await cursor.fetchall()]
            for candidate, score, _ in process.extract(
                term,
                vocabulary,
                scorer=fuzz.ratio,
                score_cutoff=self.config.fuzzy_threshold,
                limit=5,
            ):
                weights[candidate] = max(weights.get(candidate, 0.0), score / 100)
        return weights

    async def _filtered_documents(
        self, document_ids: list[str], filters: SearchFilter
    ) -> dict[str, dict[str, Any]]:
        where, params = self._document_filter_sql(filters)
        placeholders = ",".join("?" * len(document_ids))
        cursor = await self.connection.execute(
            f"""
            SELECT document_id, title, body, source, source_type, content_type, file_path,
                   encrypted, modified_at
            FROM search_docs d
            WHERE document_id IN ({placeholders}){where}
            """,
            [*document_ids, *params],
        )
        columns = [c[0] for c in cursor.description]
        return {row[0]: dict(zip(columns, row)) for row in await cursor.fetchall()}

    def _document_filter_sql(self, filters: SearchFilter) -> tuple[str, list[Any]]:
        where = ""
        params: list[Any] = []
        if filters.data_sources:
            where += f" AND d.source_type IN ({','.join('?' * len(filters.data_sources))})"
            params.extend(s.value for s in filters.data_sources)
        if filters.content_types:
            where += f" AND d.content_type IN ({','.join('?' * len(filters.content_types))})"
            params.extend(filters.content_types)
        if filters.time_range:
            where, params = self._time_filter(where, params, filters.time_range)
        if filters.entity_types:
            where += (
                " AND d.document_id IN (SELECT ed.document_id FROM entity_documents ed "
                "JOIN search_entities se ON se.entity_id = ed.entity_id "
                f"WHERE se.type IN ({','.join('?' * len(filters.entity_types))}))"
            )
            params.extend(t.value for t in filters.entity_types)
        return where, params

    @staticmethod
    def _time_filter(where: str, params: list[Any], time_range: TimeRange) -> tuple[str, list[Any]]:
        if time_range.start:
            where += " AND d.modified_at >= ?"
            params.append(_naive(time_range.start).isoformat())
        if time_range.end:
            where += " AND d.modified_at <= ?"
            params.append(_naive(time_range.end).isoformat())
        return where, params

    async def _entity_results(
        self, query: str, filters: SearchFilter, mode: SearchMode
    ) -> list[SearchResult]:
        needle = " ".join(query.split()).casefold()
        terms = set(query_terms(query))

        sql = "SELECT e.entity_id, e.name, e.normalized_name, e.type FROM search_entities e WHERE 1=1"
        params: list[Any] = []
        if filters.entity_types:
            sql += f" AND e.type IN ({','.join('?' * len(filters.entity_types))})"
            params.extend(t.value for t in filters.entity_types)

        document_filters = SearchFilter(
            data_sources=filters.data_sources,
            content_types=filters.content_types,
            time_range=filters.time_range,
        )
        doc_where, doc_params = self._document_filter_sql(document_filters)
        if doc_where:
            sql += (
                " AND e.entity_id IN (SELECT ed.entity_id FROM entity_documents ed "
                f"JOIN search_docs d ON d.document_id = ed.document_id WHERE 1=1{doc_where})"
            )
            params.extend(doc_params)

        cursor = await self.connection.execute(sql, params)
        rows = await cursor.fetchall()

        results = []
        for entity_id, name, normalized, entity_type in rows:
            score = _entity_score(needle, terms, normalized)
            if mode == SearchMode.FUZZY and score < 0.8:
                ratio = fuzz.ratio(needle, normalized)
                if ratio >= self.config.fuzzy_threshold:
                    score = max(score, ratio / 100 * 0.8)
            if score <= 0:
                continue
            results.append(
                SearchResult(
                    id=entity_id,
                    kind=ResultKind.ENTITY,
                    title=name,
                    snippet=f"{EntityType(entity_type).value}: {name}",
                    relevance_score=round(score, 6),
                    source=SourceDescriptor(type="entity", name=entity_type),
                    metadata={"entity_type": entity_type},
                )
            )
        return results

    async def _relationship_results(self, entity_results: list[SearchResult]) -> list[SearchResult]:
        if self.graph_store is None or not entity_results:
            return []
        results: dict[str, SearchResult] = {}
        names = {r.id: r.title for r in entity_results}
        scores = {r.id: r.relevance_score for r in entity_results}
        try:
            for entity_id in list(names)[:20]:
                for neighbor, rel in await self.graph_store.get_neighbors(entity_id, limit=20):
                    if rel.id in results:
                        continue
                    names.setdefault(neighbor.id, neighbor.name)
                    source = names.get(rel.source_entity_id, rel.source_entity_id)
                    target = names.get(rel.target_entity_id, rel.target_entity_id)
                    results[rel.id] = SearchResult(
                        id=rel.id,
                        kind=ResultKind.RELATIONSHIP,
                        title=f"{source} {rel.relationship_type} {target}",
                        snippet=f"strength {rel.strength:.2f}",
                        relevance_score=round(scores[entity_id] * rel.strength, 6),
                        source=SourceDescriptor(type="relationship", name=rel.relationship_type),
                        metadata={
                            "source_entity_id": rel.source_entity_id,
                            "target_entity_id": rel.target_entity_id,
                            "strength": rel.strength,
                        },
                    )
        except StoreError as e:
            # Relationship enrichment is optional
            logger.warning(f"Relationship results unavailable: {e}", extra={"error": str(e)})
            return []
        return list(results.values())

    # ═══════════════════════════════════════════════════════════
    # SUGGESTIONS
    # ═══════════════════════════════════════════════════════════

    async def record_query(self, query: str) -> None:
        """Add a query to the bounded suggestion history."""
        text = " ".join(query.split())
        if not text:
            return
        async with self._write_lock:
            await self.connection.execute(
                """
                INSERT INTO query_history (query, uses, last_used) VALUES (?, 1, ?)
                ON CONFLICT (query) DO UPDATE SET uses = uses + 1, last_used = excluded.last_used
                """,
                (text, datetime.now().isoformat()),
            )
            await self.connection.execute(
                """
                DELETE FROM query_history WHERE query NOT IN (
                    SELECT query FROM query_history ORDER BY last_used DESC LIMIT ?
                )
                """,
                (self.config.history_size,),
            )
            await self.connection.commit()

    async def suggest(
        self, prefix: str, history: list[str] | None = None, limit: int | None = None
    ) -> list[str]:
        """
        Case-insensitive prefix suggestions.

        Caller-supplied history comes first, then recorded queries (most
        used first), then entity names.

        Args:
            prefix: Prefix to complete
            history: Client-side query history passed with the request
            limit: Maximum suggestions (capped at ``max_suggestions``)

        Returns:
            Distinct suggestions
        """
        limit = min(limit or self.config.max_suggestions, self.config.max_suggestions)
        needle = prefix.strip().casefold()
        if not needle:
            return []
        await self.connect()

        candidates: list[str] = [h for h in history or [] if h.casefold().startswith(needle)]

        pattern = needle.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "%"
        cursor = await self.connection.execute(
            "SELECT query FROM query_history WHERE lower(query) LIKE ? ESCAPE '\\' "
            "ORDER BY uses DESC, last_used DESC LIMIT ?",
            (pattern, limit * 2),
        )
        candidates.extend(row[0] for row in await cursor.fetchall())

        cursor = await self.connection.execute(
            "SELECT name FROM search_entities WHERE normalized_name LIKE ? ESCAPE '\\' "
            "ORDER BY length(name), name LIMIT ?",
            (pattern, limit * 2),
        )
        candidates.extend(row[0] for row in await cursor.fetchall())

        seen: set[str] = set()
        suggestions: list[str] = []
        for candidate in candidates:
            key = candidate.casefold()
            # SQLite lower() only folds ASCII
            if key in seen or not key.startswith(needle):
                continue
            seen.add(key)
            suggestions.append(candidate)
            if len(suggestions) >= limit:
                break
        return suggestions

    # ═══════════════════════════════════════════════════════════
    # UTILITY METHODS
    # ═══════════════════════════════════════════════════════════

    def validate_page(self, query: str, offset: int, limit: int | None) -> tuple[int, int]:
        if not query or not query.strip():
            raise ValidationError("Search query cannot be empty")
        if offset < 0:
            raise ValidationError("offset must be >= 0", {"offset": offset})
        limit = self.config.default_limit if limit is None else limit
        if limit < 1:
            raise ValidationError("limit must be >= 1", {"limit": limit})
        return offset, min(limit, self.config.max_limit)

    async def _collection_stats(self) -> tuple[int, float]:
        cursor = await self.connection.execute("SELECT COUNT(*), AVG(length) FROM search_docs")
        row = await cursor.fetchone()
        return (row[0] or 0), float(row[1] or 0.0)

    async def count_documents(self) -> int:
        await self.connect()
        cursor = await self.connection.execute("SELECT COUNT(*) FROM search_docs")
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def ping(self) -> bool:
        try:
            await self.connect()
            await self.connection.execute("SELECT 1")
            return True
        except (aiosqlite.Error, SearchIndexError, ValueError):
            return False

    async def close(self) -> None:
        """Close the connection."""
        if self.connection is not None:
            await self.connection.close()
            self.connection = None


def paginate(ranked: list[SearchResult], query: str, offset: int, limit: int) -> SearchResponse:
    """Slice ranked results into a page; ``has_more`` iff offset + returned < total."""
    page = ranked[offset : offset + limit]
    total = len(ranked)
    return SearchResponse(
        query=query,
        results=page,
        pagination=Pagination(
            offset=offset,
            limit=limit,
            total=total,
            has_more=offset + len(page) < total,
        ),
    )


def _entity_score(needle: str, terms: set[str], normalized_name: str) -> float:
    if not needle:
        return 0.0
    if normalized_name == needle:
        return 1.0
    if normalized_name.startswith(needle):
        return 0.9
    if needle in normalized_name:
        return 0.75
    name_terms = set(tokenize(normalized_name, keep_stop_words=True))
    if terms and name_terms:
        overlap = len(terms & name_terms) / len(terms)
        return 0.6 * overlap
    return 0.0
