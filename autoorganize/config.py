"""
Configuration for AutoOrganize.

Supports loading from:
1. Environment variables (highest priority)
2. YAML config file
3. Default values (fallback)
"""

import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from autoorganize.models.document import DataSourceType
from autoorganize.models.entity import EntityType
from autoorganize.models.relationships import RelationshipOrigin


class StorageConfig(BaseModel):
    """SQLite database locations. Any path may be ':memory:'."""

    data_dir: str = "data"
    content_db_path: str = "data/content.db"
    search_db_path: str = "data/search.db"
    graph_db_path: str = "data/graph.db"


class Neo4jConfig(BaseModel):
    """Neo4j graph database configuration."""

    uri: str = "bolt://localhost:7687"
    username: str = "neo4j"
    password: str = "password"
    database: str = "neo4j"


class EncryptionConfig(BaseModel):
    """Encryption layer configuration."""

    enabled: bool = False
    algorithm: str = "XSalsa20Poly1305"  # XSalsa20Poly1305, XChaCha20Poly1305
    key_derivation: str = "argon2id"  # argon2id, argon2i, scrypt
    kdf_strength: str = "interactive"  # interactive, moderate, sensitive
    password: str | None = None
    confidential_sources: list[DataSourceType] = Field(default_factory=list)
    index_plaintext: bool = False


class IngestionConfig(BaseModel):
    """Ingestion pipeline configuration."""

    max_file_size: int = 100 * 1024 * 1024
    supported_extensions: list[str] = Field(
        default_factory=lambda: [
            ".txt", ".md", ".markdown", ".rst", ".csv", ".tsv", ".json", ".html", ".htm", ".eml"
        ]
    )
    extract_entities: bool = True
    build_relationships: bool = True
    extraction_timeout: float = 10.0
    index_timeout: float = 10.0
    relationship_timeout: float = 10.0
    storage_max_attempts: int = 3
    retry_base_delay: float = 0.2


class ExtractionConfig(BaseModel):
    """Entity extractor configuration."""

    min_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    context_window: int = 50
    dedup_scope: str = "global"  # global, source_type
    enabled_types: list[EntityType] = Field(default_factory=lambda: list(EntityType))

    @field_validator("dedup_scope")
    @classmethod
    def _check_scope(cls, value: str) -> str:
        if value not in ("global", "source_type"):
            raise ValueError("dedup_scope must be 'global' or 'source_type'")
        return value


class RelationshipConfig(BaseModel):
    """Relationship builder configuration."""

    initial_strength: float = Field(default=0.3, ge=0.0, le=1.0)
    strength_increment: float = Field(default=0.1, ge=0.0, le=1.0)
    proximity_window: int = 100
    max_entities_per_document: int = Field(default=50, ge=2)
    # Highest precedence first; applies when several origins propose an edge for one pair
    type_precedence: list[RelationshipOrigin] = Field(
        default_factory=lambda: [
            RelationshipOrigin.DECLARED,
            RelationshipOrigin.RELATES_TO,
            RelationshipOrigin.MENTIONS,
        ]
    )


class SearchConfig(BaseModel):
    """Search index configuration."""

    default_limit: int = 20
    max_limit: int = 100
    snippet_length: int = 160
    max_suggestions: int = 10
    fuzzy_threshold: float = Field(default=80.0, ge=0.0, le=100.0)
    bm25_k1: float = 1.2
    bm25_b: float = 0.75
    history_size: int = 200


class WatcherConfig(BaseModel):
    """File watcher configuration."""

    debounce_seconds: float = 0.5
    ignore_patterns: list[str] = Field(
        default_factory=lambda: [".*", "~*", "*.tmp", "*.temp", "*.swp", "*.swo"]
    )
    auto_ingest: bool = True


class JobConfig(BaseModel):
    """Job queue configuration."""

    workers: int = Field(default=4, ge=1)
    max_attempts: int = Field(default=3, ge=1)
    backoff_base: float = 0.2
    failure_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    history_size: int = Field(default=1000, ge=1)


class NotificationConfig(BaseModel):
    """Notification bus configuration."""

    history_size: int = 500
    subscriber_queue_size: int = 1000


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    log_to_file: bool = True
    log_dir: str = "logs"
    file_rotation: str = "10 MB"
    file_retention: str = "7 days"
    compression: str = "zip"
    serialize: bool = True


class Config(BaseModel):
    """Main configuration."""

    storage: StorageConfig = Field(default_factory=StorageConfig)
    neo4j: Neo4jConfig = Field(default_factory=Neo4jConfig)
    encryption: EncryptionConfig = Field(default_factory=EncryptionConfig)
    ingestion: IngestionConfig = Field(default_factory=IngestionConfig)
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    relationships: RelationshipConfig = Field(default_factory=RelationshipConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    watcher: WatcherConfig = Field(default_factory=WatcherConfig)
    jobs: JobConfig = Field(default_factory=JobConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    # Graph store backend
    graph_backend: str = "sqlite"

    @classmethod
    def in_memory(cls, **overrides: Any) -> "Config":
        """Config with every database in memory and file logging off."""
        config = cls(
            storage=StorageConfig(
                data_dir="",
                content_db_path=":memory:",
                search_db_path=":memory:",
                graph_db_path=":memory:",
            ),
            logging=LoggingConfig(log_to_file=False),
        )
        return config.model_copy(update=overrides)

    @classmethod
    def from_env(cls, env_file: str | Path | None = None) -> "Config":
        """
        Load configuration from environment variables.

        Priority: .env file -> system environment variables -> defaults

        Args:
            env_file: Optional path to .env file (default: .env in project root)

        Returns:
            Config instance

        Environment variables:
            AUTOORG_DATA_DIR: Data directory
            AUTOORG_CONTENT_DB: Content store database path
            AUTOORG_SEARCH_DB: Search index database path
            AUTOORG_GRAPH_DB: Graph database path (sqlite backend)
            AUTOORG_GRAPH_BACKEND: Graph backend (sqlite, neo4j)
            AUTOORG_NEO4J_URI: Neo4j URI
            AUTOORG_NEO4J_USERNAME: Neo4j username
            AUTOORG_NEO4J_PASSWORD: Neo4j password
            AUTOORG_ENCRYPTION_ENABLED: Enable the encryption layer
            AUTOORG_ENCRYPTION_PASSWORD: Master password
            AUTOORG_ENCRYPTION_ALGORITHM: Cipher (XSalsa20Poly1305, XChaCha20Poly1305)
            AUTOORG_KEY_DERIVATION: KDF (argon2id, argon2i, scrypt)
            AUTOORG_JOB_WORKERS: Job queue worker count
            AUTOORG_LOG_LEVEL: Log level
        """
        # Load .env file if provided or exists
        if env_file:
            load_dotenv(env_file)
        elif Path(".env").exists():
            load_dotenv()

        def get_env(key: str, default: Any = None) -> Any:
            """Get environment variable with type conversion."""
            value = os.getenv(key)
            if value is None:
                return default
            # If value is empty string, return default
            if value == "":
                return default
            # Convert boolean strings
            if isinstance(default, bool):
                return str(value).lower() in ("true", "1", "yes")
            # Convert numeric strings
            if isinstance(default, int):
                return int(value)
            if isinstance(default, float):
                return float(value)
            return value

        data_dir = get_env("AUTOORG_DATA_DIR", "data")

        return cls(
            storage=StorageConfig(
                data_dir=data_dir,
                content_db_path=get_env("AUTOORG_CONTENT_DB", f"{data_dir}/content.db"),
                search_db_path=get_env("AUTOORG_SEARCH_DB", f"{data_dir}/search.db"),
                graph_db_path=get_env("AUTOORG_GRAPH_DB", f"{data_dir}/graph.db"),
            ),
            graph_backend=get_env("AUTOORG_GRAPH_BACKEND", "sqlite"),
            neo4j=Neo4jConfig(
                uri=get_env("AUTOORG_NEO4J_URI", "bolt://localhost:7687"),
                username=get_env("AUTOORG_NEO4J_USERNAME", "neo4j"),
                password=get_env("AUTOORG_NEO4J_PASSWORD", "password"),
                database=get_env("AUTOORG_NEO4J_DATABASE", "neo4j"),
            ),
            encryption=EncryptionConfig(
                enabled=get_env("AUTOORG_ENCRYPTION_ENABLED", False),
                algorithm=get_env("AUTOORG_ENCRYPTION_ALGORITHM", "XSalsa20Poly1305"),
                key_derivation=get_env("AUTOORG_KEY_DERIVATION", "argon2id"),
                kdf_strength=get_env("AUTOORG_KDF_STRENGTH", "interactive"),
                password=get_env("AUTOORG_ENCRYPTION_PASSWORD"),
                index_plaintext=get_env("AUTOORG_INDEX_PLAINTEXT", False),
            ),
            ingestion=IngestionConfig(
                extract_entities=get_env("AUTOORG_EXTRACT_ENTITIES", True),
                build_relationships=get_env("AUTOORG_BUILD_RELATIONSHIPS", True),
                extraction_timeout=get_env("AUTOORG_EXTRACTION_TIMEOUT", 10.0),
                index_timeout=get_env("AUTOORG_INDEX_TIMEOUT", 10.0),
                storage_max_attempts=get_env("AUTOORG_STORAGE_MAX_ATTEMPTS", 3),
            ),
            extraction=ExtractionConfig(
                min_confidence=get_env("AUTOORG_MIN_CONFIDENCE", 0.5),
                dedup_scope=get_env("AUTOORG_DEDUP_SCOPE", "global"),
            ),
            search=SearchConfig(
                default_limit=get_env("AUTOORG_SEARCH_DEFAULT_LIMIT", 20),
                fuzzy_threshold=get_env("AUTOORG_FUZZY_THRESHOLD", 80.0),
            ),
            watcher=WatcherConfig(
                debounce_seconds=get_env("AUTOORG_WATCHER_DEBOUNCE", 0.5),
                auto_ingest=get_env("AUTOORG_WATCHER_AUTO_INGEST", True),
            ),
            jobs=JobConfig(
                workers=get_env("AUTOORG_JOB_WORKERS", 4),
                max_attempts=get_env("AUTOORG_JOB_MAX_ATTEMPTS", 3),
                failure_threshold=get_env("AUTOORG_JOB_FAILURE_THRESHOLD", 0.5),
                history_size=get_env("AUTOORG_JOB_HISTORY_SIZE", 1000),
            ),
            logging=LoggingConfig(
                level=get_env("AUTOORG_LOG_LEVEL", "INFO"),
                log_to_file=get_env("AUTOORG_LOG_TO_FILE", True),
                log_dir=get_env("AUTOORG_LOG_DIR", "logs"),
                file_rotation=get_env("AUTOORG_LOG_FILE_ROTATION", "10 MB"),
                file_retention=get_env("AUTOORG_LOG_FILE_RETENTION", "7 days"),
                compression=get_env("AUTOORG_LOG_COMPRESSION", "zip"),
                serialize=get_env("AUTOORG_LOG_SERIALIZE", True),
            ),
        )

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> "Config":
        """
        Load configuration from YAML file.

        Args:
            yaml_path: Path to YAML configuration file

        Returns:
            Config instance

        Raises:
            FileNotFoundError: If YAML file doesn't exist
            yaml.YAMLError: If YAML is invalid
        """
        yaml_path = Path(yaml_path)
        if not yaml_path.exists():
            raise FileNotFoundError(f"Config file not found: {yaml_path}")

        with open(yaml_path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def from_env_or_yaml(
        cls, yaml_path: str | Path | None = None, env_file: str | Path | None = None
    ) -> "Config":
        """
        Load configuration with priority: env vars > YAML > defaults.

        Args:
            yaml_path: Optional path to YAML config
            env_file: Optional path to .env file

        Returns:
            Config instance
        """
        # Start with YAML if provided
        if yaml_path and Path(yaml_path).exists():
            with open(yaml_path) as f:
                config_dict = yaml.safe_load(f) or {}
        else:
            config_dict = {}

        env_config = cls.from_env(env_file)

        # Env values that differ from defaults override YAML, field by field
        final_dict = {**config_dict}
        default = cls()
        for section in cls.model_fields:
            env_value = getattr(env_config, section)
            default_value = getattr(default, section)
            if env_value == default_value:
                continue
            if not isinstance(env_value, BaseModel):
                final_dict[section] = env_value
                continue
            merged = dict(final_dict.get(section) or {})
            for key in type(env_value).model_fields:
                if getattr(env_value, key) != getattr(default_value, key):
                    merged[key] = getattr(env_value, key)
            final_dict[section] = merged

        return cls(**final_dict) if final_dict else env_config


# Default config instance
default_config = Config()
