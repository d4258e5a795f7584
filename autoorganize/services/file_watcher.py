"""
File Watcher - watchdog-based monitoring of configured paths.

Watchdog delivers events on its observer thread; they are handed to the
event loop, debounced per path and emitted as FileEvents. The watcher
performs no content processing: consumers decide what to ingest.
"""

import asyncio
import fnmatch
import inspect
from collections.abc import Awaitable, Callable
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import ObservedWatch

from autoorganize.config import WatcherConfig
from autoorganize.models.events import FileEvent, FileEventType, SyncEvent, SyncEventType
from autoorganize.services.notification_bus import NotificationBus
from autoorganize.utils.exceptions import ValidationError
from autoorganize.utils.logger import get_logger

logger = get_logger(__name__)

FileEventCallback = Callable[[FileEvent], Awaitable[None] | None]


class _WatchdogHandler(FileSystemEventHandler):
    """Forwards watchdog events to the watcher."""

    def __init__(self, watcher: "FileWatcher"):
        super().__init__()
        self._watcher = watcher

    def on_created(self, event: FileSystemEvent):
        if not event.is_directory:
            self._watcher.notify(FileEventType.CREATED, event.src_path)

    def on_modified(self, event: FileSystemEvent):
        if not event.is_directory:
            self._watcher.notify(FileEventType.MODIFIED, event.src_path)

    def on_deleted(self, event: FileSystemEvent):
        if not event.is_directory:
            self._watcher.notify(FileEventType.DELETED, event.src_path)

    def on_moved(self, event: FileSystemEvent):
        if not event.is_directory:
            self._watcher.notify(FileEventType.RENAMED, event.src_path, event.dest_path)


class FileWatcher:
    """
    Watches paths and emits debounced FileEvents.

    Rapid repeated events on one path within ``debounce_seconds`` collapse
    into one event. A create followed by modifications stays a create.
    """

    def __init__(
        self,
        bus: NotificationBus,
        config: WatcherConfig | None = None,
        callback: FileEventCallback | None = None,
    ):
        """
        Initialize file watcher.

        Args:
            bus: Notification bus (file_changed events)
            config: Watcher configuration
            callback: Optional consumer called with every emitted FileEvent
        """
        self.bus = bus
        self.config = config or WatcherConfig()
        self.callback = callback

        self._observer: Observer | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._handler = _WatchdogHandler(self)
        self._watches: dict[str, tuple[ObservedWatch, bool]] = {}
        self._pending: dict[str, tuple[FileEvent, asyncio.TimerHandle]] = {}
        self._tasks: set[asyncio.Task] = set()

    async def start(self) -> None:
        """Start the observer thread."""
        if self._observer is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._observer = Observer()
        self._observer.daemon = True
        self._observer.start()
        logger.info("File watcher started")

    async def stop(self) -> None:
        """Stop the observer and drop pending debounced events."""
        for _, handle in self._pending.values():
            handle.cancel()
        self._pending.clear()

        if self._observer is not None:
            observer = self._observer
            self._observer = None
            observer.stop()
            await asyncio.to_thread(observer.join, 5)
        self._watches.clear()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        logger.info("File watcher stopped")

    # ═══════════════════════════════════════════════════════════
    # WATCH MANAGEMENT
    # ═══════════════════════════════════════════════════════════

    async def watch(self, path: str, recursive: bool = True) -> bool:
        """
        Start watching a directory.

        Args:
            path: Directory to watch
            recursive: Include subdirectories

        Returns:
            True once the path is watched

        Raises:
            ValidationError: If the path is not an existing directory
        """
        target = Path(path).expanduser().resolve()
        if not target.is_dir():
            raise ValidationError(f"Not a directory: {path}", {"path": path})

        await self.start()
        key = str(target)
        if key in self._watches:
            return True

        watch = self._observer.schedule(self._handler, key, recursive=recursive)
        self._watches[key] = (watch, recursive)
        logger.info(f"Watching {key}", extra={"path": key, "recursive": recursive})
        return True

    async def unwatch(self, path: str) -> bool:
        """
        Stop watching a directory.

        Returns:
            False if the path was not watched
        """
        key = str(Path(path).expanduser().resolve())
        entry = self._watches.pop(key, None)
        if entry is None:
            return False
        if self._observer is not None:
            self._observer.unschedule(entry[0])
        logger.info(f"Stopped watching {key}", extra={"path": key})
        return True

    def watched_paths(self) -> list[dict]:
        return [{"path": key, "recursive": recursive} for key, (_, recursive) in self._watches.items()]

    def is_ignored(self, path: str) -> bool:
        name = Path(path).name
        return any(fnmatch.fnmatch(name, pattern) for pattern in self.config.ignore_patterns)

    # ═══════════════════════════════════════════════════════════
    # EVENT DELIVERY
    # ═══════════════════════════════════════════════════════════

    def notify(
        self, event_type: FileEventType, path: str, dest_path: str | None = None
    ) -> None:
        """
        Report a raw file system event. Safe to call from any thread.

        Args:
            event_type: Kind of change
            path: Affected path (source path for renames)
            dest_path: New path for renames
        """
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._debounce, event_type, path, dest_path)

    def _debounce(self, event_type: FileEventType, path: str, dest_path: str | None) -> None:
        if event_type == FileEventType.RENAMED:
            if self.is_ignored(path) and dest_path and not self.is_ignored(dest_path):
                # Editors often write a temp file then rename it into place
                event_type, path, dest_path = FileEventType.MODIFIED, dest_path, None
            elif dest_path and self.is_ignored(dest_path):
                event_type, dest_path = FileEventType.DELETED, None
        if self.is_ignored(path):
            return

        previous = self._pending.pop(path, None)
        if previous is not None:
            previous[1].cancel()
            if previous[0].event_type == FileEventType.CREATED and event_type == FileEventType.MODIFIED:
                event_type = FileEventType.CREATED

        event = FileEvent(event_type=event_type, file_path=path, dest_path=dest_path)
        handle = self._loop.call_later(self.config.debounce_seconds, self._emit, path)
        self._pending[path] = (event, handle)

    def _emit(self, path: str) -> None:
        entry = self._pending.pop(path, None)
        if entry is None:
            return
        event = entry[0]

        logger.debug(
            f"File {event.event_type.value}: {event.file_path}",
            extra={"path": event.file_path, "event_type": event.event_type.value},
        )
        self.bus.publish(
            SyncEvent(
                event_type=SyncEventType.FILE_CHANGED,
                data={
                    "event_id": event.id,
                    "change": event.event_type.value,
                    "file_path": event.file_path,
                    "dest_path": event.dest_path,
                },
            )
        )

        if self.callback is None:
            return
        outcome = self.callback(event)
        if inspect.isawaitable(outcome):
            task = asyncio.ensure_future(outcome)
            self._tasks.add(task)
            task.add_done_callback(self._callback_done)

    def _callback_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            error = task.exception()
            logger.error(
                f"File event consumer failed: {error}",
                extra={"error_type": type(error).__name__},
            )
