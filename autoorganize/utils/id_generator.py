"""
ID generation utilities for AutoOrganize.

Provides consistent ID generation for all record types:
- Documents: doc_xxx
- Relationships: rel_xxx
- Jobs: job_xxx
- Events: evt_xxx
"""

from uuid import uuid4


def generate_document_id() -> str:
    """
    Generate unique Document ID.

    Returns:
        ID in format "doc_xxx" where xxx is 12 hex characters
    """
    return f"doc_{uuid4().hex[:12]}"


def generate_relationship_id() -> str:
    """
    Generate unique Relationship ID.

    Returns:
        ID in format "rel_xxx" where xxx is 12 hex characters
    """
    return f"rel_{uuid4().hex[:12]}"


def generate_job_id() -> str:
    """
    Generate unique async Job ID.

    Returns:
        ID in format "job_xxx" where xxx is 12 hex characters
    """
    return f"job_{uuid4().hex[:12]}"


def generate_event_id() -> str:
    """Generate unique event ID (evt_xxx)."""
    return f"evt_{uuid4().hex[:12]}"
