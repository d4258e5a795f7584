"""Per-format document processors."""

from autoorganize.core.processors.document_processors import (
    ProcessedContent,
    get_processor,
    process_content,
)

__all__ = ["ProcessedContent", "get_processor", "process_content"]
