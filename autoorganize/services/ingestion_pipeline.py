"""
Ingestion Pipeline - stores, enriches and indexes one document.

Stages (each recorded in the document's stage status):
1. normalize - read, convert per format, normalize, compute the content hash
2. store     - dedup by (path, hash), encrypt if confidential, persist (retried)
3. extract   - run the entity extractor (bounded duration)
4. graph     - upsert entities and mentions, build relationships
5. index     - update the search index (bounded duration)
6. publish   - emit lifecycle events

Only a failed store fails the ingestion. Enrichment failures leave the
document stored and searchable and are reported as a partial result.
"""

import asyncio
import mimetypes
import time
from collections.abc import Awaitable
from datetime import datetime
from pathlib import Path
from typing import TypeVar

from autoorganize.config import Config
from autoorganize.core.content_store.content_store import ContentStore
from autoorganize.core.encryption.encryption_layer import EncryptionLayer
from autoorganize.core.extraction.entity_extractor import EntityExtractor, ExtractionResult
from autoorganize.core.graph_store.base import GraphStore
from autoorganize.core.processors.document_processors import process_content
from autoorganize.core.relationships.builder import RelationshipBuilder
from autoorganize.core.search.search_index import SearchIndex
from autoorganize.models.document import (
    Document,
    DocumentInput,
    PipelineStage,
    StageStatus,
    compute_content_hash,
    normalize_content,
)
from autoorganize.models.entity import Entity, EntityMention, entity_key_id
from autoorganize.models.events import SyncEvent, SyncEventType
from autoorganize.models.ingestion import IngestionResult, IngestionStatus
from autoorganize.services.notification_bus import NotificationBus
from autoorganize.utils.exceptions import (
    DuplicateContentError,
    EncryptionKeyError,
    ExtractionFailure,
    RelationshipBuildFailure,
    StoreError,
    ValidationError,
)
from autoorganize.utils.id_generator import generate_document_id
from autoorganize.utils.logger import get_logger
from autoorganize.utils.retry import retry_async

logger = get_logger(__name__)

T = TypeVar("T")


class _KeyedLocks:
    """One asyncio lock per key, dropped once nobody holds or waits for it."""

    def __init__(self):
        self._locks: dict[str, tuple[asyncio.Lock, int]] = {}

    async def acquire(self, key: str) -> None:
        lock, users = self._locks.get(key, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[key] = (lock, users + 1)
        await lock.acquire()

    def release(self, key: str) -> None:
        lock, users = self._locks[key]
        lock.release()
        if users <= 1:
            del self._locks[key]
        else:
            self._locks[key] = (lock, users - 1)


class IngestionPipeline:
    """
    Orchestrates content store, encryption, extraction, graph and index
    updates for a single document.

    Ingestion attempts for the same content hash are serialized, so a
    second concurrent attempt waits and then resolves to the first one's
    document as a duplicate.
    """

    def __init__(
        self,
        content_store: ContentStore,
        graph_store: GraphStore,
        search_index: SearchIndex,
        extractor: EntityExtractor,
        relationship_builder: RelationshipBuilder,
        bus: NotificationBus,
        config: Config,
        encryption: EncryptionLayer | None = None,
    ):
        """
        Initialize ingestion pipeline.

        Args:
            content_store: Durable document storage
            graph_store: Entity/relationship storage
            search_index: Ranked search index
            extractor: Entity extractor
            relationship_builder: Edge derivation
            bus: Notification bus for lifecycle events
            config: Full configuration
            encryption: Encryption layer (required for encrypted documents)
        """
        self.content_store = content_store
        self.graph_store = graph_store
        self.search_index = search_index
        self.extractor = extractor
        self.relationship_builder = relationship_builder
        self.bus = bus
        self.config = config
        self.encryption = encryption
        self._locks = _KeyedLocks()

    async def ingest_one(
        self,
        document: DocumentInput,
        password: str | None = None,
        store_attempts: int | None = None,
    ) -> IngestionResult:
        """
        Ingest a single document.

        Args:
            document: Document to ingest (content or readable file path)
            password: Encryption password overriding the configured one
            store_attempts: Content store write attempts; defaults to
                ``ingestion.storage_max_attempts``. Callers that retry the
                whole ingestion themselves pass 1.

        Returns:
            IngestionResult (``duplicate=True`` with the prior id when the
            content is already stored for this path)

        Raises:
            ValidationError: If the input is unusable
            EncryptionKeyError: If encryption is required but no key is available
            StorageFailure: If the content store write fails after all attempts
        """
        started = time.perf_counter()
        stages: dict[str, StageStatus] = {}

        text, record = await self._normalize(document)
        stages[PipelineStage.NORMALIZE.value] = StageStatus.OK

        await self._locks.acquire(record.content_hash)
        try:
            existing = await self.content_store.find_by_hash(record.file_path, record.content_hash)
            if existing is not None:
                return self._duplicate_result(existing.id, started)

            try:
                stored = await self._store(
                    record, text, document.encrypted, password, store_attempts
                )
            except DuplicateContentError as e:
                return self._duplicate_result(e.existing_id, started)
            stages[PipelineStage.STORE.value] = StageStatus.OK
        finally:
            self._locks.release(record.content_hash)

        await self._supersede_previous_versions(stored)

        logger.info(
            f"Stored document {stored.id}",
            extra={
                "document_id": stored.id,
                "file_path": stored.file_path,
                "encrypted": stored.encrypted,
            },
        )

        entities, mentions, relationship_count = await self._enrich(stored, text, stages)
        await self._index(stored, text, entities, stages)

        try:
            await self.content_store.update_stage_status(stored.id, stages)
        except StoreError as e:
            logger.warning(
                f"Could not persist stage status for {stored.id}: {e}",
                extra={"document_id": stored.id, "error_type": type(e).__name__},
            )

        stages[PipelineStage.PUBLISH.value] = StageStatus.OK
        failed = [name for name, status in stages.items() if status == StageStatus.FAILED]
        result = IngestionResult(
            document_id=stored.id,
            status=IngestionStatus.PARTIAL if failed else IngestionStatus.COMPLETED,
            stages=stages,
            entity_count=len(entities),
            relationship_count=relationship_count,
            processing_time_ms=(time.perf_counter() - started) * 1000,
            message=f"Enrichment failed: {', '.join(failed)}" if failed else None,
        )
        self.bus.publish(
            SyncEvent(
                event_type=SyncEventType.DOCUMENT_INGESTED,
                data={
                    "document_id": stored.id,
                    "title": stored.title,
                    "file_path": stored.file_path,
                    "source": stored.source,
                    "status": result.status.value,
                    "entity_count": len(entities),
                    "mention_count": len(mentions),
                },
            )
        )
        return result

    async def remove_document(self, document_id: str) -> bool:
        """
        Delete a document, its mentions and its search postings.

        Entities and relationships stay in the graph.
        """
        deleted = await self.content_store.delete_document(document_id)
        if not deleted:
            return False
        await self.graph_store.delete_document_mentions(document_id)
        await self.search_index.remove_document(document_id)
        logger.info(f"Removed document {document_id}", extra={"document_id": document_id})
        return True

    # ═══════════════════════════════════════════════════════════
    # STAGES
    # ═══════════════════════════════════════════════════════════

    async def _normalize(self, document: DocumentInput) -> tuple[str, Document]:
        raw: str | bytes | None = document.content
        path = Path(document.file_path) if document.file_path else None
        modified_at = document.modified_at

        if raw is None:
            if path is None:
                raise ValidationError("Document needs content or a file path")
            raw, file_modified = await asyncio.to_thread(self._read_file, path)
            modified_at = modified_at or file_modified

        content_type = document.content_type
        if not content_type and path is not None:
            content_type = mimetypes.guess_type(path.name)[0]

        processed = await asyncio.to_thread(
            process_content,
            normalize_content(raw),
            path.suffix if path is not None else None,
            content_type,
        )
        text = normalize_content(processed.text)
        if not text:
            raise ValidationError(
                "Document content is empty", {"file_path": document.file_path}
            )

        title = (document.title or "").strip() or processed.title
        if not title:
            title = path.name if path is not None else text.split("\n", 1)[0][:80].strip()

        data = text.encode("utf-8")
        record = Document(
            id=generate_document_id(),
            source_type=document.source_type,
            source=document.source,
            file_path=document.file_path,
            content_hash=compute_content_hash(text),
            title=title,
            content_type=content_type or "text/plain",
            size_bytes=len(data),
            metadata={**processed.metadata, **document.metadata},
            modified_at=modified_at or datetime.now(),
        )
        return text, record

    def _read_file(self, path: Path) -> tuple[bytes, datetime]:
        if not path.is_file():
            raise ValidationError(f"File not found: {path}", {"file_path": str(path)})
        suffix = path.suffix.lower()
        if suffix and suffix not in self.config.ingestion.supported_extensions:
            raise ValidationError(
                f"Unsupported file type: {suffix}", {"file_path": str(path)}
            )
        stat = path.stat()
        if stat.st_size > self.config.ingestion.max_file_size:
            raise ValidationError(
                f"File too large: {stat.st_size} bytes",
                {"file_path": str(path), "max_file_size": self.config.ingestion.max_file_size},
            )
        return path.read_bytes(), datetime.fromtimestamp(stat.st_mtime)

    async def _store(
        self,
        record: Document,
        text: str,
        encrypted: bool,
        password: str | None,
        attempts: int | None = None,
    ) -> Document:
        data = text.encode("utf-8")
        if self._should_encrypt(record, encrypted):
            if self.encryption is None:
                raise EncryptionKeyError("Encryption requested but the encryption layer is disabled")
            data, info = await self.encryption.encrypt(data, password)
            record = record.model_copy(update={"encrypted": True, "encryption": info})

        return await retry_async(
            lambda: self.content_store.store_document(record, data),
            operation_name=f"store document {record.id}",
            max_attempts=attempts or self.config.ingestion.storage_max_attempts,
            base_delay=self.config.ingestion.retry_base_delay,
        )

    def _should_encrypt(self, record: Document, requested: bool) -> bool:
        encryption = self.config.encryption
        return (
            requested
            or encryption.enabled
            or record.source_type in encryption.confidential_sources
        )

    async def _supersede_previous_versions(self, stored: Document) -> None:
        """A path holds one current version: older hashes for it are removed."""
        if not stored.file_path:
            return
        for previous in await self.content_store.find_by_path(stored.file_path):
            if previous.id == stored.id or previous.ingested_at > stored.ingested_at:
                continue
            try:
                await self.remove_document(previous.id)
            except StoreError as e:
                logger.warning(
                    f"Failed to remove superseded document {previous.id}: {e}",
                    extra={"document_id": previous.id, "file_path": stored.file_path},
                )

    async def _enrich(
        self, document: Document, text: str, stages: dict[str, StageStatus]
    ) -> tuple[list[Entity], list[EntityMention], int]:
        """Extract, then persist entities/mentions and relationships."""
        settings = self.config.ingestion
        if not settings.extract_entities:
            stages[PipelineStage.EXTRACT.value] = StageStatus.SKIPPED
            stages[PipelineStage.GRAPH.value] = StageStatus.SKIPPED
            return [], [], 0

        try:
            extraction = await self._bounded(
                asyncio.to_thread(self.extractor.extract, text),
                settings.extraction_timeout,
                ExtractionFailure,
                "extraction",
            )
            stages[PipelineStage.EXTRACT.value] = StageStatus.OK
        except ExtractionFailure as e:
            self._stage_failed(document, PipelineStage.EXTRACT, e)
            stages[PipelineStage.EXTRACT.value] = StageStatus.FAILED
            stages[PipelineStage.GRAPH.value] = StageStatus.SKIPPED
            return [], [], 0

        try:
            entities, mentions = await self._persist_entities(document, extraction)
        except Exception as e:
            self._stage_failed(document, PipelineStage.GRAPH, e)
            stages[PipelineStage.GRAPH.value] = StageStatus.FAILED
            return [], [], 0

        if entities:
            self.bus.publish(
                SyncEvent(
                    event_type=SyncEventType.ENTITY_EXTRACTED,
                    data={
                        "document_id": document.id,
                        "entity_ids": [e.id for e in entities],
                        "entity_count": len(entities),
                        "confidence": round(extraction.confidence, 4),
                    },
                )
            )

        stages[PipelineStage.GRAPH.value] = StageStatus.OK
        if not settings.build_relationships or len(entities) < 2:
            return entities, mentions, 0

        try:
            built = await self._bounded(
                self.relationship_builder.build(document.id, entities, mentions, document.metadata),
                settings.relationship_timeout,
                RelationshipBuildFailure,
                "relationship build",
            )
        except RelationshipBuildFailure as e:
            self._stage_failed(document, PipelineStage.GRAPH, e)
            stages[PipelineStage.GRAPH.value] = StageStatus.FAILED
            return entities, mentions, 0
        return entities, mentions, built.count

    async def _persist_entities(
        self, document: Document, extraction: ExtractionResult
    ) -> tuple[list[Entity], list[EntityMention]]:
        """Upsert extracted entities and bind mentions to their stored ids."""
        scope = (
            document.source_type.value
            if self.config.extraction.dedup_scope == "source_type"
            else "global"
        )
        id_map: dict[str, str] = {}
        stored_entities: list[Entity] = []
        for entity in extraction.entities:
            candidate = entity.model_copy(
                update={"id": entity_key_id(entity.type, entity.normalized_name, scope), "scope": scope}
            )
            stored = await self.graph_store.upsert_entity(candidate)
            id_map[entity.id] = stored.id
            stored_entities.append(stored)

        mentions = [
            mention.model_copy(
                update={"entity_id": id_map[mention.entity_id], "document_id": document.id}
            )
            for mention in extraction.mentions
            if mention.entity_id in id_map
        ]
        await self.graph_store.add_mentions(mentions)
        return stored_entities, mentions

    async def _index(
        self,
        document: Document,
        text: str,
        entities: list[Entity],
        stages: dict[str, StageStatus],
    ) -> None:
        body = text
        if document.encrypted and not self.config.encryption.index_plaintext:
            body = None
        try:
            await self._bounded(
                self.search_index.index_document(document, body, entities),
                self.config.ingestion.index_timeout,
                StoreError,
                "index update",
            )
            stages[PipelineStage.INDEX.value] = StageStatus.OK
        except StoreError as e:
            self._stage_failed(document, PipelineStage.INDEX, e)
            stages[PipelineStage.INDEX.value] = StageStatus.FAILED

    # ═══════════════════════════════════════════════════════════
    # HELPER METHODS
    # ═══════════════════════════════════════════════════════════

    @staticmethod
    async def _bounded(
        awaitable: Awaitable[T],
        timeout: float,
        failure: type[Exception],
        step: str,
    ) -> T:
        """
        Await a stage with a time bound.

        Timeouts and any other exception raised by the stage become
        ``failure``; cancellation propagates.
        """
        try:
            return await asyncio.wait_for(awaitable, timeout)
        except asyncio.TimeoutError as e:
            raise failure(f"{step} timed out after {timeout}s") from e
        except failure:
            raise
        except Exception as e:
            raise failure(f"{step} failed: {type(e).__name__}: {e}") from e

    @staticmethod
    def _stage_failed(document: Document, stage: PipelineStage, error: Exception) -> None:
        logger.warning(
            f"Stage {stage.value} failed for {document.id}: {error}",
            extra={
                "document_id": document.id,
                "stage": stage.value,
                "error_type": type(error).__name__,
            },
        )

    @staticmethod
    def _duplicate_result(document_id: str, started: float) -> IngestionResult:
        logger.debug(f"Duplicate content, reusing {document_id}", extra={"document_id": document_id})
        return IngestionResult(
            document_id=document_id,
            status=IngestionStatus.DUPLICATE,
            duplicate=True,
            processing_time_ms=(time.perf_counter() - started) * 1000,
            message="Content already ingested",
        )
