"""Content-addressed document storage."""

from autoorganize.core.content_store.content_store import ContentStore, blob_key_for

__all__ = ["ContentStore", "blob_key_for"]
