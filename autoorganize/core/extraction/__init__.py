"""Entity extraction."""

from autoorganize.core.extraction.entity_extractor import (
    EntityExtractor,
    ExtractionResult,
    is_valid_email,
    is_valid_url,
)

__all__ = ["EntityExtractor", "ExtractionResult", "is_valid_email", "is_valid_url"]
