"""Utility modules for AutoOrganize."""

from autoorganize.utils.exceptions import (
    AutoOrganizeError,
    ConfigurationError,
    DuplicateContentError,
    EncryptionKeyError,
    ExtractionFailure,
    GraphStoreError,
    NotFoundError,
    RelationshipBuildFailure,
    SearchIndexError,
    StorageFailure,
    StoreError,
    ValidationError,
)
from autoorganize.utils.id_generator import (
    generate_document_id,
    generate_event_id,
    generate_job_id,
    generate_relationship_id,
)
from autoorganize.utils.logger import get_logger, setup_logging
from autoorganize.utils.retry import retry_async

__all__ = [
    # Logging
    "get_logger",
    "setup_logging",
    # Retry
    "retry_async",
    # ID Generators
    "generate_document_id",
    "generate_relationship_id",
    "generate_job_id",
    "generate_event_id",
    # Exceptions
    "AutoOrganizeError",
    "ValidationError",
    "NotFoundError",
    "ConfigurationError",
    "DuplicateContentError",
    "ExtractionFailure",
    "RelationshipBuildFailure",
    "StoreError",
    "StorageFailure",
    "GraphStoreError",
    "SearchIndexError",
    "EncryptionKeyError",
]
