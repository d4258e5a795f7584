"""
Graph store implementations for AutoOrganize.

Provides abstract base and concrete implementations for graph storage.

Available backends:
- SQLiteGraphStore: Local single-file storage (default)
- Neo4jGraphStore: Production-grade graph database
"""

from autoorganize.core.graph_store.base import GraphStore
from autoorganize.core.graph_store.factory import create_graph_store
from autoorganize.core.graph_store.neo4j_store import Neo4jGraphStore
from autoorganize.core.graph_store.sqlite_store import SQLiteGraphStore

__all__ = [
    "GraphStore",
    "Neo4jGraphStore",
    "SQLiteGraphStore",
    "create_graph_store",
]
