"""File system watching for ``stoke watch``.

Watchdog delivers events on its own thread; :class:`SiteWatcher` turns them
into :class:`~stoke.changes.ChangeNotification` objects and hands them to the
event loop through an ``asyncio.Queue``, so the engine only ever runs on the
loop thread.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .changes import ChangeKind, ChangeNotification, TriggerReason
from .utils import is_within

_REASONS = {
    "created": TriggerReason.ADDED,
    "modified": TriggerReason.MODIFIED,
    "deleted": TriggerReason.DELETED,
}


class ChangeHandler(FileSystemEventHandler):
    """Maps watchdog events under the input and data roots to notifications.

    Attributes:
        input_dir: Template root.
        data_dir: Data root.
        notify: Called with each notification.
    """

    def __init__(
        self,
        input_dir: Path,
        data_dir: Path,
        notify: Callable[[ChangeNotification], None],
    ):
        super().__init__()
        self.input_dir = input_dir.resolve()
        self.data_dir = data_dir.resolve()
        self.notify = notify

    def kind_of(self, path: Path) -> ChangeKind | None:
        if is_within(self.input_dir, path):
            return ChangeKind.TEMPLATE
        if is_within(self.data_dir, path):
            return ChangeKind.DATA
        return None

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        if event.event_type == "moved":
            self._emit(event.src_path, TriggerReason.DELETED)
            self._emit(event.dest_path, TriggerReason.ADDED)
            return
        reason = _REASONS.get(event.event_type)
        if reason is not None:
            self._emit(event.src_path, reason)

    def _emit(self, raw_path: str | bytes, reason: TriggerReason) -> None:
        if isinstance(raw_path, bytes):
            raw_path = raw_path.decode()
        path = Path(raw_path).resolve()
        kind = self.kind_of(path)
        if kind is not None:
            self.notify(ChangeNotification(kind, path, reason))


class SiteWatcher:
    """Watches the input and data directories.

    Attributes:
        queue: Notifications waiting for the engine.
    """

    def __init__(self, input_dir: Path, data_dir: Path, loop: asyncio.AbstractEventLoop):
        self.input_dir = input_dir
        self.data_dir = data_dir
        self.queue: asyncio.Queue[ChangeNotification] = asyncio.Queue()
        self._loop = loop
        self._observer: Observer | None = None
        self.handler = ChangeHandler(input_dir, data_dir, self._enqueue)

    def _enqueue(self, notification: ChangeNotification) -> None:
        self._loop.call_soon_threadsafe(self.queue.put_nowait, notification)

    def start(self) -> None:
        observer = Observer()
        for folder in (self.input_dir, self.data_dir):
            if folder.exists():
                observer.schedule(self.handler, str(folder), recursive=True)
        observer.start()
        self._observer = observer

    def stop(self) -> None:
        if self._observer:
            self._observer.stop()
            self._observer.join()
            self._observer = None
