"""
Document model with content-hash identity.

Documents are the unit of ingestion. Raw bytes live in the content store
(content-addressed); the record carries metadata, encryption info and the
outcome of each enrichment stage.
"""

import hashlib
import unicodedata
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from autoorganize.models.entity import Entity


class DataSourceType(str, Enum):
    """Where a document came from."""

    FILE_SYSTEM = "file_system"
    EMAIL = "email"
    CLOUD_STORAGE = "cloud_storage"
    DEVELOPMENT_TOOLS = "development_tools"
    COMMUNICATION = "communication"
    BROWSER = "browser"


class PipelineStage(str, Enum):
    """Ingestion pipeline stages, in execution order."""

    NORMALIZE = "normalize"
    STORE = "store"
    EXTRACT = "extract"
    GRAPH = "graph"
    INDEX = "index"
    PUBLISH = "publish"


class StageStatus(str, Enum):
    """Outcome of a single pipeline stage."""

    OK = "ok"
    FAILED = "failed"
    SKIPPED = "skipped"


class EncryptionInfo(BaseModel):
    """
    Encryption metadata stored with an encrypted document record.

    Holds everything needed to re-derive the key from the password except
    the password itself.
    """

    algorithm: str = Field(..., description="Cipher identifier")
    key_derivation: str = Field(..., description="KDF identifier")
    kdf_strength: str = Field(default="interactive", description="KDF cost preset")
    salt: str = Field(..., description="Base64 KDF salt")


class DocumentInput(BaseModel):
    """
    A document submitted for ingestion.

    Either ``content`` or ``file_path`` must be provided. When only the path
    is given the file is read at ingestion time.
    """

    title: str | None = Field(default=None, description="Document title")
    content: str | None = Field(default=None, description="Raw text content")
    file_path: str = Field(default="", description="Source path (dedup key together with hash)")
    source: str | None = Field(default=None, description="Free-form source tag")
    source_type: DataSourceType = Field(default=DataSourceType.FILE_SYSTEM)
    content_type: str | None = Field(default=None, description="MIME type")
    encrypted: bool = Field(default=False, description="Store content encrypted")
    metadata: dict[str, Any] = Field(default_factory=dict)
    modified_at: datetime | None = Field(default=None, description="Source modification time")


class Document(BaseModel):
    """
    Stored document record.

    ``content`` is only populated on reads. For encrypted documents read
    without decryption it holds the base64 ciphertext and
    ``content_encoding`` is ``"base64"``.
    """

    # Core identity
    id: str = Field(..., description="Unique document ID (doc_xxx)")
    source_type: DataSourceType = Field(default=DataSourceType.FILE_SYSTEM)
    source: str | None = Field(default=None, description="Free-form source tag")
    file_path: str = Field(default="", description="Source path")
    content_hash: str = Field(..., description="SHA256 of normalized content")
    blob_key: str = Field(default="", description="Content store blob key")
    title: str = Field(default="", description="Document title")

    # Content
    content: str | None = Field(default=None, description="Content (populated on read)")
    content_encoding: str = Field(default="utf-8", description="'utf-8' or 'base64'")
    content_type: str = Field(default="text/plain", description="MIME type")
    size_bytes: int = Field(default=0, ge=0, description="Normalized content size")

    # Encryption
    encrypted: bool = Field(default=False)
    encryption: EncryptionInfo | None = Field(default=None)

    # Metadata
    metadata: dict[str, Any] = Field(default_factory=dict)
    entities: list[Entity] = Field(default_factory=list, description="Extracted entities")
    stage_status: dict[str, StageStatus] = Field(default_factory=dict)

    # Timestamps
    ingested_at: datetime = Field(default_factory=datetime.now)
    modified_at: datetime = Field(default_factory=datetime.now)

    @property
    def content_preview(self) -> str:
        """First 200 characters of plaintext content, empty for ciphertext."""
        if not self.content or self.content_encoding != "utf-8":
            return ""
        return self.content[:200]

    def is_enriched(self) -> bool:
        """True if every enrichment stage that ran succeeded."""
        return all(status != StageStatus.FAILED for status in self.stage_status.values())


class DocumentListFilter(BaseModel):
    """Filter for listing stored documents."""

    source: str | None = None
    source_type: DataSourceType | None = None
    file_path: str | None = None
    encrypted: bool | None = None
    offset: int = Field(default=0, ge=0)
    limit: int = Field(default=50, ge=1, le=1000)


def normalize_content(raw: str | bytes) -> str:
    """
    Normalize document content before hashing and storage.

    Decodes bytes as UTF-8 (invalid sequences replaced), applies NFC
    normalization, converts line endings to ``\\n`` and strips surrounding
    whitespace.

    Args:
        raw: Raw text or bytes

    Returns:
        Normalized text
    """
    if isinstance(raw, bytes):
        text = raw.decode("utf-8", errors="replace")
    else:
        text = raw
    text = unicodedata.normalize("NFC", text)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    return text.strip()


def compute_content_hash(content: str | bytes) -> str:
    """
    Compute SHA256 hash of normalized content for identity and deduplication.

    The hash is prefixed with "sha256:" for easy identification of the algorithm used.

    Args:
        content: Raw or normalized content

    Returns:
        Hash string in format "sha256:hexdigest"
    """
    normalized = normalize_content(content)
    hash_hex = hashlib.sha256(normalized.encode("utf-8")).hexdigest()
    return f"sha256:{hash_hex}"
