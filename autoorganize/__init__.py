"""AutoOrganize core: ingestion, extraction, graph and search engine."""

__version__ = "0.1.0"
