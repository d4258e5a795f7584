"""Core storage, extraction and indexing components."""
