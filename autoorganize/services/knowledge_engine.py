"""
Knowledge Engine - Integrates all components.

Brings together:
- Content store & encryption layer
- Entity extraction & relationship building
- Graph store & search index
- Ingestion pipeline, job queue, file watcher & notification bus
"""

import asyncio
import base64
import time
from pathlib import Path
from typing import Any

from autoorganize.config import Config
from autoorganize.core.content_store.content_store import ContentStore
from autoorganize.core.encryption.encryption_layer import EncryptionLayer
from autoorganize.core.extraction.entity_extractor import EntityExtractor
from autoorganize.core.graph_store.base import GraphStore
from autoorganize.core.graph_store.factory import create_graph_store
from autoorganize.core.relationships.builder import RelationshipBuilder
from autoorganize.core.search.ranking import make_snippet, rank_results
from autoorganize.core.search.search_index import SearchIndex, paginate
from autoorganize.models.document import DataSourceType, Document, DocumentInput, DocumentListFilter
from autoorganize.models.entity import Entity
from autoorganize.models.events import FileEvent, FileEventType, SyncEvent, SyncEventType
from autoorganize.models.graph import GraphEdgeFilter, GraphNode, GraphNodeFilter, NodeKind
from autoorganize.models.ingestion import IngestionResult
from autoorganize.models.job import Job, JobStatus
from autoorganize.models.relationships import GraphRelationship
from autoorganize.models.search import (
    ResultKind,
    SearchFilter,
    SearchMode,
    SearchResponse,
    SearchResult,
    SourceDescriptor,
)
from autoorganize.services.file_watcher import FileWatcher
from autoorganize.services.ingestion_pipeline import IngestionPipeline
from autoorganize.services.job_queue import JobQueue
from autoorganize.services.notification_bus import NotificationBus
from autoorganize.utils.exceptions import (
    NotFoundError,
    SearchIndexError,
    StoreError,
    ValidationError,
)
from autoorganize.utils.logger import get_logger

logger = get_logger(__name__)


class KnowledgeEngine:
    """
    Unified knowledge engine integrating all components.

    Features:
    - Single and batch ingestion with content-hash deduplication
    - Transparent encryption of confidential documents
    - Ranked search with a degraded fallback scan
    - Graph browsing over entities and relationships
    - File watching with automatic re-ingestion
    - Job tracking and lifecycle notifications
    """

    def __init__(self, config: Config, graph_store: GraphStore | None = None):
        """
        Initialize Knowledge Engine.

        Args:
            config: Configuration object
            graph_store: Graph store override (built from config when omitted)
        """
        self.config = config

        self.content_store = ContentStore(config.storage.content_db_path)
        self.graph_store = graph_store or create_graph_store(config)
        self.search_index = SearchIndex(
            config.storage.search_db_path, config.search, graph_store=self.graph_store
        )
        self.encryption = EncryptionLayer(config.encryption, self.content_store)
        self.extractor = EntityExtractor(config.extraction)
        self.relationship_builder = RelationshipBuilder(self.graph_store, config.relationships)
        self.bus = NotificationBus(config.notifications)

        self.pipeline = IngestionPipeline(
            content_store=self.content_store,
            graph_store=self.graph_store,
            search_index=self.search_index,
            extractor=self.extractor,
            relationship_builder=self.relationship_builder,
            bus=self.bus,
            config=config,
            encryption=self.encryption,
        )
        self.jobs = JobQueue(self.pipeline, self.bus, config.jobs)
        self.watcher = FileWatcher(self.bus, config.watcher, callback=self.handle_file_event)

    async def initialize(self) -> None:
        """Initialize all stores and start the worker pool."""
        logger.info("Initializing Knowledge Engine")

        await self.content_store.initialize()
        logger.info("Content store initialized")

        await self.graph_store.initialize()
        logger.info("Graph store initialized")

        await self.search_index.initialize()
        logger.info("Search index initialized")

        await self.encryption.initialize()
        self.jobs.start()

        logger.info("Knowledge Engine ready")

    # ═══════════════════════════════════════════════════════════
    # DOCUMENTS
    # ═══════════════════════════════════════════════════════════

    async def ingest(self, document: DocumentInput, password: str | None = None) -> IngestionResult:
        """
        Ingest one document synchronously.

        Raises:
            ValidationError: If the input is unusable
            EncryptionKeyError: If encryption is required but no key is available
            StorageFailure: If the content store write fails after retries
        """
        return await self.pipeline.ingest_one(document, password)

    def ingest_batch(self, documents: list[DocumentInput], password: str | None = None) -> Job:
        """Queue documents for asynchronous ingestion; returns the queued job."""
        return self.jobs.submit_batch(documents, password)

    async def get_document(
        self, document_id: str, decrypt: bool = False, password: str | None = None
    ) -> Document:
        """
        Get a document with its content and entities.

        Args:
            document_id: Document ID
            decrypt: Return plaintext for encrypted documents
            password: Password overriding the configured one

        Returns:
            Document. Encrypted content read without ``decrypt`` is the
            base64 ciphertext with ``content_encoding="base64"``.

        Raises:
            NotFoundError: If the document doesn't exist
            EncryptionKeyError: If decryption is requested without a valid key
        """
        document = await self.content_store.get_document(document_id)
        if document is None:
            raise NotFoundError(f"Document {document_id} not found", {"document_id": document_id})

        data = await self.content_store.read_content(document)
        if document.encrypted and decrypt:
            plaintext = await self.encryption.decrypt(data, document.encryption, password)
            content, encoding = plaintext.decode("utf-8"), "utf-8"
        elif document.encrypted:
            content, encoding = base64.b64encode(data).decode("ascii"), "base64"
        else:
            content, encoding = data.decode("utf-8", errors="replace"), "utf-8"

        entities = await self._document_entities(document_id)
        return document.model_copy(
            update={"content": content, "content_encoding": encoding, "entities": entities}
        )

    async def list_documents(self, filters: DocumentListFilter | None = None) -> dict[str, Any]:
        """List documents; returns documents, total and has_more."""
        filters = filters or DocumentListFilter()
        documents, total = await self.content_store.list_documents(filters)
        return {
            "documents": documents,
            "total": total,
            "has_more": filters.offset + len(documents) < total,
        }

    async def delete_document(self, document_id: str) -> None:
        """
        Delete a document, its mentions and search postings.

        Raises:
            NotFoundError: If the document doesn't exist
        """
        if not await self.pipeline.remove_document(document_id):
            raise NotFoundError(f"Document {document_id} not found", {"document_id": document_id})

    # ═══════════════════════════════════════════════════════════
    # SEARCH
    # ═══════════════════════════════════════════════════════════

    async def search(
        self,
        query: str,
        filters: SearchFilter | None = None,
        mode: SearchMode = SearchMode.EXACT,
        offset: int = 0,
        limit: int | None = None,
        fallback_mode: bool = False,
    ) -> SearchResponse:
        """
        Ranked search over documents, entities and relationships.

        Falls back to a substring scan over stored plaintext when
        ``fallback_mode`` is set or the index is unavailable.

        Raises:
            ValidationError: For blank queries or bad pagination
        """
        if not fallback_mode:
            try:
                return await self.search_index.query(query, filters, mode, offset, limit)
            except SearchIndexError as e:
                logger.warning(
                    f"Search index unavailable, using fallback scan: {e}",
                    extra={"query": query, "error_type": type(e).__name__},
                )
        return await self._fallback_search(query, filters or SearchFilter(), mode, offset, limit)

    async def suggest(
        self, prefix: str, history: list[str] | None = None, limit: int | None = None
    ) -> list[str]:
        try:
            return await self.search_index.suggest(prefix, history, limit)
        except StoreError as e:
            logger.warning(f"Suggestions unavailable: {e}", extra={"prefix": prefix})
            needle = prefix.strip().casefold()
            return [h for h in history or [] if needle and h.casefold().startswith(needle)][
                : limit or self.config.search.max_suggestions
            ]

    async def _fallback_search(
        self,
        query: str,
        filters: SearchFilter,
        mode: SearchMode,
        offset: int,
        limit: int | None,
    ) -> SearchResponse:
        started = time.perf_counter()
        offset, limit = self.search_index.validate_page(query, offset, limit)
        needle = " ".join(query.split()).casefold()

        scored: list[tuple[Document, str, int]] = []
        if ResultKind.DOCUMENT in filters.kinds:
            for document, text in await self.content_store.iter_plaintext():
                if not self._matches_filters(document, filters):
                    continue
                hits = text.casefold().count(needle) + 2 * document.title.casefold().count(needle)
                if hits:
                    scored.append((document, text, hits))

        best = max((hits for _, _, hits in scored), default=1)
        results = [
            SearchResult(
                id=document.id,
                kind=ResultKind.DOCUMENT,
                title=document.title,
                snippet=make_snippet(text, query, self.config.search.snippet_length),
                relevance_score=round(hits / best, 6),
                source=SourceDescriptor(type=document.source_type.value, name=document.file_path),
                metadata={"content_type": document.content_type, "source": document.source},
            )
            for document, text, hits in scored
        ]

        response = paginate(rank_results(results, query), query, offset, limit)
        response.mode = mode
        response.degraded = True
        if filters.entity_types:
            response.ignored_filters = ["entity_types"]
            logger.info(
                "Fallback search ignores entity type filters",
                extra={"query": query, "entity_types": [t.value for t in filters.entity_types]},
            )
        response.took_ms = (time.perf_counter() - started) * 1000
        return response

    @staticmethod
    def _matches_filters(document: Document, filters: SearchFilter) -> bool:
        if filters.data_sources and document.source_type not in filters.data_sources:
            return False
        if filters.content_types and document.content_type not in filters.content_types:
            return False
        if filters.time_range and not filters.time_range.contains(document.modified_at):
            return False
        return True

    # ═══════════════════════════════════════════════════════════
    # GRAPH
    # ═══════════════════════════════════════════════════════════

    async def graph_nodes(self, filters: GraphNodeFilter | None = None) -> list[GraphNode]:
        """
        Entity nodes matching a filter.

        With ``document_id`` the document itself is the first node.

        Raises:
            NotFoundError: If ``document_id`` names an unknown document
        """
        filters = filters or GraphNodeFilter()
        nodes: list[GraphNode] = []
        if filters.document_id:
            document = await self.content_store.get_document(filters.document_id)
            if document is None:
                raise NotFoundError(
                    f"Document {filters.document_id} not found", {"document_id": filters.document_id}
                )
            nodes.append(
                GraphNode(
                    id=document.id,
                    kind=NodeKind.DOCUMENT,
                    label=document.title,
                    type="document",
                    properties={
                        "file_path": document.file_path,
                        "source_type": document.source_type.value,
                        "encrypted": document.encrypted,
                    },
                )
            )

        entities = await self.graph_store.query_entities(
            entity_types=filters.entity_types,
            name_contains=filters.name,
            document_id=filters.document_id,
            limit=filters.limit,
        )
        nodes.extend(_entity_node(entity) for entity in entities)
        return nodes

    async def graph_edges(self, filters: GraphEdgeFilter | None = None) -> list[GraphRelationship]:
        filters = filters or GraphEdgeFilter()
        entity_ids = None
        if filters.document_id:
            mentions = await self.graph_store.get_mentions(document_id=filters.document_id)
            entity_ids = sorted({m.entity_id for m in mentions})
            if not entity_ids:
                return []
        return await self.graph_store.query_relationships(
            entity_id=filters.entity_id,
            relationship_types=filters.relationship_types,
            min_strength=filters.min_strength,
            entity_ids=entity_ids,
            limit=filters.limit,
        )

    async def neighbors(
        self,
        entity_id: str,
        relationship_types: list[str] | None = None,
        direction: str = "both",
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        """
        Neighboring entities with their connecting edges.

        Raises:
            NotFoundError: If the entity doesn't exist
            ValidationError: For an unknown direction
        """
        if direction not in ("outgoing", "incoming", "both"):
            raise ValidationError(f"Invalid direction: {direction}")
        if await self.graph_store.get_entity(entity_id) is None:
            raise NotFoundError(f"Entity {entity_id} not found", {"entity_id": entity_id})
        pairs = await self.graph_store.get_neighbors(entity_id, relationship_types, direction, limit)
        return [{"node": _entity_node(entity), "edge": edge} for entity, edge in pairs]

    # ═══════════════════════════════════════════════════════════
    # FILE WATCHING
    # ═══════════════════════════════════════════════════════════

    async def watch(self, path: str, recursive: bool = True) -> bool:
        return await self.watcher.watch(path, recursive)

    async def unwatch(self, path: str) -> bool:
        return await self.watcher.unwatch(path)

    async def handle_file_event(self, event: FileEvent) -> None:
        """
        Route a file event: created/modified paths are queued for ingestion,
        deleted paths lose their documents, renames do both.
        """
        if event.event_type in (FileEventType.DELETED, FileEventType.RENAMED):
            await self._remove_path(event.file_path)
        if not self.config.watcher.auto_ingest:
            return

        target = event.dest_path if event.event_type == FileEventType.RENAMED else event.file_path
        if event.event_type == FileEventType.DELETED or not target:
            return
        if Path(target).suffix.lower() not in self.config.ingestion.supported_extensions:
            return
        self.jobs.submit_single(
            DocumentInput(
                file_path=target,
                source="watcher",
                source_type=DataSourceType.FILE_SYSTEM,
                metadata={"file_event": event.event_type.value},
            )
        )

    async def _remove_path(self, file_path: str) -> None:
        for document in await self.content_store.find_by_path(file_path):
            await self.pipeline.remove_document(document.id)

    # ═══════════════════════════════════════════════════════════
    # JOBS & NOTIFICATIONS
    # ═══════════════════════════════════════════════════════════

    def job_status(self, job_id: str) -> Job:
        return self.jobs.status(job_id)

    def cancel_job(self, job_id: str) -> Job:
        return self.jobs.cancel(job_id)

    def list_jobs(self, status: JobStatus | None = None, limit: int = 50) -> list[Job]:
        return self.jobs.list(status, limit)

    def notifications(
        self, limit: int | None = None, kinds: list[SyncEventType] | None = None
    ) -> list[SyncEvent]:
        return self.bus.list(limit, kinds)

    # ═══════════════════════════════════════════════════════════
    # STATUS
    # ═══════════════════════════════════════════════════════════

    async def stats(self) -> dict[str, Any]:
        """
        Get engine statistics.

        Returns:
            Statistics dictionary
        """
        return {
            "documents": await self.content_store.count_documents(),
            "blobs": await self.content_store.count_blobs(),
            "indexed_documents": await self.search_index.count_documents(),
            "entities": await self.graph_store.count_entities(),
            "relationships": await self.graph_store.count_relationships(),
            "jobs": self.jobs.counts(),
            "watched_paths": self.watcher.watched_paths(),
            "subscribers": self.bus.subscriber_count,
        }

    async def health(self) -> dict[str, Any]:
        """Reachability of database (content store), cache (search index) and graph."""
        database, cache, graph = await asyncio.gather(
            self.content_store.ping(), self.search_index.ping(), self.graph_store.ping()
        )
        services = {
            "database": "connected" if database else "unavailable",
            "cache": "connected" if cache else "unavailable",
            "graph": "connected" if graph else "unavailable",
        }
        healthy = database and cache and graph
        return {"status": "healthy" if healthy else "degraded", "services": services}

    # LIFECYCLE MANAGEMENT

    async def close(self) -> None:
        """Stop workers and close all connections."""
        logger.info("Shutting down Knowledge Engine")

        await self.watcher.stop()
        await self.jobs.stop()
        self.bus.close()

        await self.search_index.close()
        await self.graph_store.close()
        await self.content_store.close()

        logger.info("Knowledge Engine shutdown complete")

    # HELPER METHODS

    async def _document_entities(self, document_id: str) -> list[Entity]:
        try:
            return await self.graph_store.query_entities(document_id=document_id, limit=1000)
        except StoreError as e:
            logger.warning(
                f"Entities unavailable for {document_id}: {e}", extra={"document_id": document_id}
            )
            return []


def _entity_node(entity: Entity) -> GraphNode:
    return GraphNode(
        id=entity.id,
        kind=NodeKind.ENTITY,
        label=entity.name,
        type=entity.type.value,
        properties={**entity.properties, "confidence": entity.confidence},
    )
