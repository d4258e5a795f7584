"""
Custom exception hierarchy for AutoOrganize.

Provides structured error types for pipeline stages and stores.
All exceptions inherit from AutoOrganizeError for easy catching.
"""


class AutoOrganizeError(Exception):
    """
    Base exception for all AutoOrganize errors.
    All custom exceptions should inherit from this class.
    """

    def __init__(self, message: str, context: dict | None = None):
        """
        Initialize AutoOrganize error.
        Args:
            message: Error message
            context: Optional context dictionary with additional error details
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}


class ValidationError(AutoOrganizeError):
    """
    Validation errors.
    Raised for malformed input. Never retried.
    """

    pass


class NotFoundError(AutoOrganizeError):
    """
    Resource not found errors.
    Raised when a requested document, entity or job doesn't exist.
    """

    pass


class ConfigurationError(AutoOrganizeError):
    """
    Configuration errors.
    Raised when configuration is invalid or missing required values.
    """

    pass


class DuplicateContentError(AutoOrganizeError):
    """
    Content already stored for the same source path.

    Not a failure: the pipeline resolves it into a normal result that
    carries the existing document id.
    """

    def __init__(self, message: str, existing_id: str, context: dict | None = None):
        super().__init__(message, context)
        self.existing_id = existing_id


class ExtractionFailure(AutoOrganizeError):
    """
    Entity extraction failed or timed out.
    Recoverable: the document stays stored and searchable by raw content.
    """

    pass


class RelationshipBuildFailure(AutoOrganizeError):
    """
    Relationship derivation failed.
    Recoverable: the graph update is skipped and logged.
    """

    pass


class StoreError(AutoOrganizeError):
    """
    Base exception for store operations.
    """

    pass


class StorageFailure(StoreError):
    """
    Content store write/read failed.
    Fatal for the affected item, retried up to the configured attempt limit.
    """

    pass


class GraphStoreError(StoreError):
    """
    Graph store operation errors.
    Raised when graph database operations fail.
    """

    pass


class SearchIndexError(StoreError):
    """
    Search index operation errors.
    Raised when index updates or queries fail.
    """

    pass


class EncryptionKeyError(AutoOrganizeError):
    """
    Missing or wrong encryption key.
    Surfaced to the caller, never retried.
    """

    pass
