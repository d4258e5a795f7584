"""
AutoOrganize FastAPI Application

A REST API server for the AutoOrganize knowledge engine.
Provides endpoints for ingesting, reading and searching documents,
browsing the entity graph, watching folders and tracking jobs.
"""

import os
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from autoorganize import __version__
from autoorganize.config import Config
from autoorganize.models.document import DataSourceType, DocumentInput, DocumentListFilter
from autoorganize.models.entity import EntityType
from autoorganize.models.events import SyncEventType
from autoorganize.models.graph import GraphEdgeFilter, GraphNodeFilter
from autoorganize.models.job import JobStatus
from autoorganize.models.search import SearchFilter, SearchMode, SearchResponse
from autoorganize.services.knowledge_engine import KnowledgeEngine
from autoorganize.utils.exceptions import (
    AutoOrganizeError,
    EncryptionKeyError,
    NotFoundError,
    ValidationError,
)
from autoorganize.utils.logger import get_logger, setup_logging

# Global engine instance
engine: KnowledgeEngine | None = None
logger = get_logger(__name__)


# Pydantic models for API
class IngestRequest(DocumentInput):
    """Request model for ingesting one document."""

    password: str | None = Field(default=None, description="Encryption password override")


class IngestResponse(BaseModel):
    """Response model for ingest."""

    success: bool
    document_id: str
    processing_time: float
    status: str
    duplicate: bool
    failed_stages: list[str]
    entity_count: int
    relationship_count: int


class IngestBatchRequest(BaseModel):
    """Request model for batch ingestion."""

    documents: list[DocumentInput] = Field(..., min_length=1)
    password: str | None = None


class SearchRequest(BaseModel):
    """Request model for search."""

    query: str = Field(..., description="Search query")
    filters: SearchFilter | None = None
    mode: SearchMode = SearchMode.EXACT
    offset: int = Field(default=0, ge=0)
    limit: int | None = Field(default=None, ge=1)
    fallback_mode: bool = Field(default=False, description="Serve from the substring scan")


class WatchRequest(BaseModel):
    """Request model for watching a folder."""

    path: str
    recursive: bool = True


class UnwatchRequest(BaseModel):
    path: str


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    engine_initialized: bool
    services: dict[str, str]


def _http_error(error: AutoOrganizeError, operation: str) -> HTTPException:
    """Map engine errors to HTTP status codes."""
    if isinstance(error, ValidationError):
        return HTTPException(status_code=400, detail=error.message)
    if isinstance(error, EncryptionKeyError):
        return HTTPException(status_code=403, detail=error.message)
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=error.message)
    logger.error(
        f"Error in {operation}: {error}",
        extra={"operation": operation, "error_type": type(error).__name__},
    )
    return HTTPException(status_code=500, detail=error.message)


def _require_engine() -> KnowledgeEngine:
    if not engine:
        raise HTTPException(status_code=503, detail="Engine not initialized")
    return engine


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown."""
    global engine

    # Explicit config (tests) wins over environment/YAML
    config = getattr(app.state, "config", None) or Config.from_env_or_yaml(
        os.getenv("AUTOORG_CONFIG")
    )

    # Initialize logging with config
    setup_logging(config.logging)

    logger.info("Starting AutoOrganize server")
    logger.info(
        f"Configuration: Graph={config.graph_backend}, "
        f"Encryption={'on' if config.encryption.enabled else 'per-document'}, "
        f"Workers={config.jobs.workers}"
    )

    engine = KnowledgeEngine(config)
    await engine.initialize()
    logger.info("AutoOrganize engine initialized")

    yield

    # Cleanup
    logger.info("Shutting down AutoOrganize server")
    await engine.close()
    engine = None
    logger.info("Cleanup complete")


# Create FastAPI app
app = FastAPI(
    title="AutoOrganize API",
    description="Personal knowledge engine: ingestion, entity graph and search",
    version=__version__,
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Health check endpoint
@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check: database, cache (search index) and graph reachability."""
    if not engine:
        return HealthResponse(status="initializing", engine_initialized=False, services={})
    report = await engine.health()
    return HealthResponse(
        status=report["status"], engine_initialized=True, services=report["services"]
    )


# Document endpoints
@app.post("/documents", response_model=IngestResponse)
async def ingest_document(request: IngestRequest):
    """
    Ingest a single document.

    Content is normalized and hashed; re-ingesting identical content for
    the same path returns the existing document id. Entity extraction,
    graph and index updates may partially fail without failing the call.
    """
    current = _require_engine()
    document = DocumentInput.model_validate(request.model_dump(exclude={"password"}))
    try:
        result = await current.ingest(document, password=request.password)
    except AutoOrganizeError as e:
        raise _http_error(e, "ingest") from e

    return IngestResponse(
        success=result.success,
        document_id=result.document_id,
        processing_time=result.processing_time_ms,
        status=result.status.value,
        duplicate=result.duplicate,
        failed_stages=result.failed_stages,
        entity_count=result.entity_count,
        relationship_count=result.relationship_count,
    )


@app.post("/documents/batch", status_code=202)
async def ingest_batch(request: IngestBatchRequest):
    """Queue documents for asynchronous ingestion; poll /jobs/{job_id}."""
    current = _require_engine()
    try:
        job = current.ingest_batch(request.documents, password=request.password)
    except AutoOrganizeError as e:
        raise _http_error(e, "ingest_batch") from e
    return {"job_id": job.id, "status": job.status.value, "items": len(job.items)}


@app.get("/documents")
async def list_documents(
    source: str | None = None,
    source_type: DataSourceType | None = None,
    file_path: str | None = None,
    encrypted: bool | None = None,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=1000),
):
    """List stored documents (content omitted)."""
    current = _require_engine()
    filters = DocumentListFilter(
        source=source,
        source_type=source_type,
        file_path=file_path,
        encrypted=encrypted,
        offset=offset,
        limit=limit,
    )
    page = await current.list_documents(filters)
    return {
        "documents": [d.model_dump(mode="json", exclude={"content"}) for d in page["documents"]],
        "total": page["total"],
        "has_more": page["has_more"],
    }


@app.get("/documents/{document_id}")
async def get_document(
    document_id: str,
    decrypt: bool = Query(default=False),
    x_encryption_password: str | None = Header(default=None),
):
    """
    Retrieve a document.

    Encrypted documents are returned as stored (base64 ciphertext) unless
    ``decrypt=true``; decryption needs the configured password or the
    ``X-Encryption-Password`` header.
    """
    current = _require_engine()
    try:
        document = await current.get_document(
            document_id, decrypt=decrypt, password=x_encryption_password
        )
    except AutoOrganizeError as e:
        raise _http_error(e, "get_document") from e
    return {"document": document.model_dump(mode="json")}


@app.delete("/documents/{document_id}")
async def delete_document(document_id: str):
    """Delete a document with its mentions and search postings. Entities stay."""
    current = _require_engine()
    try:
        await current.delete_document(document_id)
    except AutoOrganizeError as e:
        raise _http_error(e, "delete_document") from e
    return {"id": document_id, "deleted": True}


# Search endpoints
@app.post("/search", response_model=SearchResponse)
async def search(request: SearchRequest):
    """
    Ranked search over documents and entities (relationships on request).

    ``mode`` selects exact or fuzzy term matching. When the index is
    unavailable, or ``fallback_mode`` is set, results come from a raw
    substring scan and the response is marked ``degraded``.
    """
    current = _require_engine()
    try:
        return await current.search(
            request.query,
            filters=request.filters,
            mode=request.mode,
            offset=request.offset,
            limit=request.limit,
            fallback_mode=request.fallback_mode,
        )
    except AutoOrganizeError as e:
        raise _http_error(e, "search") from e


@app.get("/search/suggest")
async def suggest(
    prefix: str,
    history: list[str] | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1),
):
    """Prefix suggestions from query history (client and server) and entity names."""
    current = _require_engine()
    return {"suggestions": await current.suggest(prefix, history=history, limit=limit)}


# Graph endpoints
@app.get("/graph/nodes")
async def graph_nodes(
    entity_types: list[EntityType] | None = Query(default=None),
    name: str | None = None,
    document_id: str | None = None,
    limit: int = Query(default=100, ge=1, le=1000),
):
    """Entity nodes; with ``document_id`` the document node comes first."""
    current = _require_engine()
    filters = GraphNodeFilter(
        entity_types=entity_types, name=name, document_id=document_id, limit=limit
    )
    try:
        nodes = await current.graph_nodes(filters)
    except AutoOrganizeError as e:
        raise _http_error(e, "graph_nodes") from e
    return {"nodes": [n.model_dump(mode="json") for n in nodes]}


@app.get("/graph/edges")
async def graph_edges(
    entity_id: str | None = None,
    document_id: str | None = None,
    relationship_types: list[str] | None = Query(default=None),
    min_strength: float | None = Query(default=None, ge=0.0, le=1.0),
    limit: int = Query(default=100, ge=1, le=1000),
):
    """Relationship edges, strongest first."""
    current = _require_engine()
    filters = GraphEdgeFilter(
        entity_id=entity_id,
        document_id=document_id,
        relationship_types=relationship_types,
        min_strength=min_strength,
        limit=limit,
    )
    try:
        edges = await current.graph_edges(filters)
    except AutoOrganizeError as e:
        raise _http_error(e, "graph_edges") from e
    return {"edges": [e.model_dump(mode="json") for e in edges]}


@app.get("/graph/entities/{entity_id}/neighbors")
async def neighbors(
    entity_id: str,
    relationship_types: list[str] | None = Query(default=None),
    direction: str = "both",
    limit: int = Query(default=100, ge=1, le=1000),
):
    current = _require_engine()
    try:
        pairs = await current.neighbors(entity_id, relationship_types, direction, limit)
    except AutoOrganizeError as e:
        raise _http_error(e, "neighbors") from e
    return {
        "neighbors": [
            {"node": p["node"].model_dump(mode="json"), "edge": p["edge"].model_dump(mode="json")}
            for p in pairs
        ]
    }


# File watching endpoints
@app.post("/files/watch")
async def watch(request: WatchRequest):
    """Watch a folder; created/modified files are ingested automatically."""
    current = _require_engine()
    try:
        success = await current.watch(request.path, request.recursive)
    except AutoOrganizeError as e:
        raise _http_error(e, "watch") from e
    return {"success": success}


@app.post("/files/unwatch")
async def unwatch(request: UnwatchRequest):
    current = _require_engine()
    return {"success": await current.unwatch(request.path)}


@app.get("/files/watched")
async def watched():
    current = _require_engine()
    return {"paths": current.watcher.watched_paths()}


# Job endpoints
@app.get("/jobs")
async def list_jobs(status: JobStatus | None = None, limit: int = Query(default=50, ge=1)):
    current = _require_engine()
    return {"jobs": [j.model_dump(mode="json") for j in current.list_jobs(status, limit)]}


@app.get("/jobs/{job_id}")
async def job_status(job_id: str):
    """Job status with per-item results."""
    current = _require_engine()
    try:
        job = current.job_status(job_id)
    except AutoOrganizeError as e:
        raise _http_error(e, "job_status") from e
    return {
        "id": job.id,
        "status": job.status.value,
        "per_item_results": [item.model_dump(mode="json") for item in job.items],
        "retry_count": job.retry_count,
        "error": job.error,
    }


@app.post("/jobs/{job_id}/cancel")
async def cancel_job(job_id: str):
    """Cancel a job: running items finish, pending items are skipped."""
    current = _require_engine()
    try:
        job = current.cancel_job(job_id)
    except AutoOrganizeError as e:
        raise _http_error(e, "cancel_job") from e
    return {"id": job.id, "status": job.status.value, "cancel_requested": job.cancel_requested}


# Notification endpoint
@app.get("/notifications")
async def notifications(
    limit: int | None = Query(default=None, ge=1),
    kinds: list[SyncEventType] | None = Query(default=None),
):
    """Recent lifecycle events (bounded buffer), newest first."""
    current = _require_engine()
    return {
        "notifications": [e.model_dump(mode="json") for e in current.notifications(limit, kinds)]
    }


# Statistics endpoint
@app.get("/stats")
async def get_stats() -> dict[str, Any]:
    """Counts of documents, entities, relationships and jobs."""
    current = _require_engine()
    try:
        return await current.stats()
    except AutoOrganizeError as e:
        raise _http_error(e, "stats") from e


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": "AutoOrganize API",
        "version": __version__,
        "description": "Personal knowledge engine: ingestion, entity graph and search",
        "docs": "/docs",
        "health": "/health",
    }
