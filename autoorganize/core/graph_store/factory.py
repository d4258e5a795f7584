"""Factory for creating graph stores."""

from autoorganize.config import Config
from autoorganize.core.graph_store.base import GraphStore
from autoorganize.core.graph_store.neo4j_store import Neo4jGraphStore
from autoorganize.core.graph_store.sqlite_store import SQLiteGraphStore
from autoorganize.utils.exceptions import ConfigurationError


def create_graph_store(config: Config) -> GraphStore:
    """
    Create the graph store selected by ``config.graph_backend``.

    Args:
        config: Application configuration

    Returns:
        GraphStore instance (not yet initialized)

    Raises:
        ConfigurationError: If backend is not supported
    """
    backend = config.graph_backend
    if backend == "sqlite":
        return SQLiteGraphStore(db_path=config.storage.graph_db_path)
    elif backend == "neo4j":
        return Neo4jGraphStore(
            uri=config.neo4j.uri,
            username=config.neo4j.username,
            password=config.neo4j.password,
            database=config.neo4j.database,
        )
    else:
        raise ConfigurationError(
            f"Unknown graph backend: {backend}", {"supported": ["sqlite", "neo4j"]}
        )
