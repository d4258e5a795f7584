"""
Services for AutoOrganize.

High-level orchestration services:
- KnowledgeEngine: Unified interface for all engine operations
- IngestionPipeline: Store, extract, graph and index one document
- JobQueue: Asynchronous ingestion jobs on a worker pool
- FileWatcher: Debounced file system events for watched paths
- NotificationBus: Live lifecycle events with a bounded history
"""

from autoorganize.services.file_watcher import FileWatcher
from autoorganize.services.ingestion_pipeline import IngestionPipeline
from autoorganize.services.job_queue import JobQueue
from autoorganize.services.knowledge_engine import KnowledgeEngine
from autoorganize.services.notification_bus import NotificationBus, Subscription

__all__ = [
    "KnowledgeEngine",
    "IngestionPipeline",
    "JobQueue",
    "FileWatcher",
    "NotificationBus",
    "Subscription",
]
