"""
Tests for the file watcher.

Raw events are injected through ``notify``; one integration test drives
a real watchdog observer.
"""

import asyncio
from collections.abc import AsyncGenerator

import pytest

from autoorganize.config import WatcherConfig
from autoorganize.models.events import FileEvent, FileEventType, SyncEventType
from autoorganize.services.file_watcher import FileWatcher
from autoorganize.services.notification_bus import NotificationBus
from autoorganize.utils.exceptions import ValidationError

DEBOUNCE = 0.05


@pytest.fixture
def received() -> list[FileEvent]:
    return []


@pytest.fixture
async def watcher(received) -> AsyncGenerator[FileWatcher, None]:
    async def collect(event: FileEvent) -> None:
        received.append(event)

    file_watcher = FileWatcher(
        NotificationBus(), WatcherConfig(debounce_seconds=DEBOUNCE), callback=collect
    )
    await file_watcher.start()
    yield file_watcher
    await file_watcher.stop()


async def settle() -> None:
    await asyncio.sleep(DEBOUNCE * 4)


class TestDebounce:
    async def test_single_event(self, watcher: FileWatcher, received):
        watcher.notify(FileEventType.MODIFIED, "/notes/a.md")
        await settle()

        assert [(e.event_type, e.file_path) for e in received] == [
            (FileEventType.MODIFIED, "/notes/a.md")
        ]

    async def test_rapid_events_collapse(self, watcher: FileWatcher, received):
        for _ in range(5):
            watcher.notify(FileEventType.MODIFIED, "/notes/a.md")
        await settle()

        assert len(received) == 1

    async def test_create_then_modify_stays_create(self, watcher: FileWatcher, received):
        watcher.notify(FileEventType.CREATED, "/notes/new.md")
        watcher.notify(FileEventType.MODIFIED, "/notes/new.md")
        await settle()

        assert [e.event_type for e in received] == [FileEventType.CREATED]

    async def test_paths_debounced_independently(self, watcher: FileWatcher, received):
        watcher.notify(FileEventType.MODIFIED, "/notes/a.md")
        watcher.notify(FileEventType.DELETED, "/notes/b.md")
        await settle()

        assert {(e.event_type, e.file_path) for e in received} == {
            (FileEventType.MODIFIED, "/notes/a.md"),
            (FileEventType.DELETED, "/notes/b.md"),
        }

    async def test_file_changed_published(self, watcher: FileWatcher):
        subscription = watcher.bus.subscribe([SyncEventType.FILE_CHANGED])
        watcher.notify(FileEventType.DELETED, "/notes/gone.md")

        event = await subscription.get(timeout=1)

        assert event.data["change"] == "deleted"
        assert event.data["file_path"] == "/notes/gone.md"

    async def test_not_started_drops_events(self):
        idle = FileWatcher(NotificationBus(), WatcherConfig(debounce_seconds=DEBOUNCE))
        idle.notify(FileEventType.MODIFIED, "/notes/a.md")
        await settle()
        assert idle.bus.list() == []


class TestIgnoredAndRenames:
    @pytest.mark.parametrize(
        "name", [".hidden", "~lock.md", "draft.tmp", "draft.temp", ".a.md.swp", "a.swo"]
    )
    async def test_ignored_names(self, watcher: FileWatcher, received, name):
        watcher.notify(FileEventType.MODIFIED, f"/notes/{name}")
        await settle()

        assert received == []

    async def test_temp_rename_becomes_modify(self, watcher: FileWatcher, received):
        watcher.notify(FileEventType.RENAMED, "/notes/.a.md.tmp", "/notes/a.md")
        await settle()

        assert [(e.event_type, e.file_path, e.dest_path) for e in received] == [
            (FileEventType.MODIFIED, "/notes/a.md", None)
        ]

    async def test_rename_to_ignored_becomes_delete(self, watcher: FileWatcher, received):
        watcher.notify(FileEventType.RENAMED, "/notes/a.md", "/notes/a.md.tmp")
        await settle()

        assert [(e.event_type, e.file_path) for e in received] == [
            (FileEventType.DELETED, "/notes/a.md")
        ]

    async def test_plain_rename(self, watcher: FileWatcher, received):
        watcher.notify(FileEventType.RENAMED, "/notes/a.md", "/notes/b.md")
        await settle()

        assert received[0].event_type == FileEventType.RENAMED
        assert received[0].dest_path == "/notes/b.md"


class TestWatchManagement:
    async def test_watch_and_unwatch(self, watcher: FileWatcher, tmp_path):
        assert await watcher.watch(str(tmp_path)) is True
        assert await watcher.watch(str(tmp_path)) is True
        assert watcher.watched_paths() == [{"path": str(tmp_path.resolve()), "recursive": True}]

        assert await watcher.unwatch(str(tmp_path)) is True
        assert await watcher.unwatch(str(tmp_path)) is False
        assert watcher.watched_paths() == []

    async def test_watch_rejects_non_directory(self, watcher: FileWatcher, tmp_path):
        path = tmp_path / "file.txt"
        path.write_text("x")

        with pytest.raises(ValidationError):
            await watcher.watch(str(path))
        with pytest.raises(ValidationError):
            await watcher.watch(str(tmp_path / "missing"))


class TestCallbacks:
    async def test_failing_callback_does_not_stop_delivery(self):
        calls: list[str] = []

        async def flaky(event: FileEvent) -> None:
            calls.append(event.file_path)
            if event.file_path.endswith("bad.md"):
                raise RuntimeError("consumer exploded")

        file_watcher = FileWatcher(
            NotificationBus(), WatcherConfig(debounce_seconds=DEBOUNCE), callback=flaky
        )
        await file_watcher.start()
        try:
            file_watcher.notify(FileEventType.MODIFIED, "/notes/bad.md")
            await settle()
            file_watcher.notify(FileEventType.MODIFIED, "/notes/good.md")
            await settle()

            assert calls == ["/notes/bad.md", "/notes/good.md"]
            assert file_watcher._tasks == set()
        finally:
            await file_watcher.stop()

    async def test_sync_callback(self):
        calls: list[FileEventType] = []
        file_watcher = FileWatcher(
            NotificationBus(),
            WatcherConfig(debounce_seconds=DEBOUNCE),
            callback=lambda event: calls.append(event.event_type),
        )
        await file_watcher.start()
        try:
            file_watcher.notify(FileEventType.CREATED, "/notes/a.md")
            await settle()
            assert calls == [FileEventType.CREATED]
        finally:
            await file_watcher.stop()


@pytest.mark.integration
class TestRealFilesystem:
    async def test_detects_new_file(self, watcher: FileWatcher, received, tmp_path):
        await watcher.watch(str(tmp_path))

        (tmp_path / "fresh.md").write_text("hello")

        for _ in range(50):
            if any(e.file_path.endswith("fresh.md") for e in received):
                break
            await asyncio.sleep(0.1)

        assert any(e.file_path.endswith("fresh.md") for e in received)
