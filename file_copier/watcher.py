"""File system watcher for File Copier.

Uses the watchdog library to monitor the source folder (non-recursively)
for file-name level changes: files created, renamed inside the folder or
moved in.  Content writes are not changes; where the backend reports a writer
closing a file (inotify) a new file is picked up on close, so it is copied
complete.  The watchdog handler only queues the file name; a small pool of
worker threads takes names off the queue and hands them to the FileCopier,
so a slow or retrying copy never holds up the delivery of further events.
"""

from __future__ import annotations

import logging
import os
import queue
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from watchdog.events import (
    DirDeletedEvent,
    FileClosedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileMovedEvent,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from file_copier.config import ConfigurationError
from file_copier.copier import ChangeKind, CopyOutcome, CopyStats, FileCopier

logger = logging.getLogger(__name__)

# Name-level events only; content writes (FileModifiedEvent) are not subscribed
WATCHED_EVENTS: list[type[FileSystemEvent]] = [
    FileCreatedEvent,
    FileMovedEvent,
    FileClosedEvent,
    DirDeletedEvent,
]


@dataclass(frozen=True)
class WatchEvent:
    """A file in the watched folder that needs copying."""
    file_name: str
    change_kind: ChangeKind


def _log_watch_error(exc: BaseException) -> None:
    logger.error("File system watcher error: %s", exc, exc_info=exc)


def reports_close_events(observer: Any) -> bool:
    """Return True if *observer* reports writers closing files (inotify only)."""
    return any(
        cls.__module__ == "watchdog.observers.inotify" for cls in type(observer).__mro__
    )


def create_observer() -> Any:
    """Return the platform's observer.

    On inotify a file moved in from an unwatched folder is reported as a move
    with no source path, since such a file is never closed inside the folder.
    """
    if Observer.__module__ == "watchdog.observers.inotify":
        return Observer(generate_full_events=True)  # type: ignore[call-arg]
    return Observer()


class CopyEventHandler(FileSystemEventHandler):
    """Watchdog handler that turns file events into WatchEvents."""

    def __init__(
        self,
        root: str,
        on_event: Callable[[WatchEvent], None],
        on_error: Callable[[BaseException], None] = _log_watch_error,
        created_on_close: bool = False,
    ):
        """Handle events for files directly inside *root*.

        With *created_on_close* a new file is reported when its writer closes
        it instead of when it appears.
        """
        super().__init__()
        self._root = os.path.realpath(root)
        self._on_event = on_event
        self._on_error = on_error
        self.created_on_close = created_on_close

    def _file_name(self, path: bytes | str) -> str | None:
        """Return the name of *path* if it lives directly in the watched folder."""
        path = os.fsdecode(path)
        parent = os.path.realpath(os.path.dirname(path))
        if os.path.normcase(parent) != os.path.normcase(self._root):
            return None
        return os.path.basename(path) or None

    def _emit(self, path: bytes | str, kind: ChangeKind) -> None:
        name = self._file_name(path)
        if name is None:
            return
        logger.debug("%s: %s", kind.value.capitalize(), name)
        self._on_event(WatchEvent(name, kind))

    def on_created(self, event: FileCreatedEvent) -> None:  # type: ignore[override]
        """Handle a new file, unless its close event is awaited instead."""
        if event.is_directory or self.created_on_close:
            return
        self._emit(event.src_path, ChangeKind.CREATED)

    def on_closed(self, event: FileClosedEvent) -> None:  # type: ignore[override]
        """The writer closed the file: it is complete and can be copied."""
        if event.is_directory or not self.created_on_close:
            return
        self._emit(event.src_path, ChangeKind.CREATED)

    def on_moved(self, event: FileMovedEvent) -> None:  # type: ignore[override]
        """A rename inside the folder is a change; a file moved in is created."""
        if event.is_directory or not event.dest_path:
            return
        if event.src_path and self._file_name(event.src_path) is not None:
            self._emit(event.dest_path, ChangeKind.CHANGED)
        else:
            self._emit(event.dest_path, ChangeKind.CREATED)

    def on_deleted(self, event: FileDeletedEvent | DirDeletedEvent) -> None:  # type: ignore[override]
        """Report removal of the watched folder itself."""
        path = os.path.realpath(os.fsdecode(event.src_path))
        if event.is_directory and os.path.normcase(path) == os.path.normcase(self._root):
            self._on_error(FileNotFoundError(f"Watched folder was removed: {self._root}"))


class DirectoryWatcher:
    """Watches a folder and copies every new or changed file to the destination.

    Usage:
        watcher = DirectoryWatcher(source, destination, FileCopier())
        watcher.start()
        ...
        watcher.stop()
    """

    def __init__(
        self,
        source_folder: str,
        destination_folder: str,
        copier: FileCopier,
        worker_count: int = 2,
        observer_factory: Callable[[], Any] = create_observer,
        health_interval: float = 5.0,
        on_outcome: Callable[[CopyOutcome], None] | None = None,
        on_error: Callable[[BaseException], None] = _log_watch_error,
        created_on_close: bool | None = None,
    ):
        """Create a stopped watcher.

        *created_on_close* defaults to whether the observer reports close
        events.
        """
        self.source_folder = source_folder
        self.destination_folder = destination_folder
        self.copier = copier
        self.stats = CopyStats()
        self._worker_count = max(1, int(worker_count))
        self._observer_factory = observer_factory
        self._health_interval = health_interval
        self._on_outcome = on_outcome
        self._created_on_close = created_on_close
        self._on_error = on_error
        self._handler = CopyEventHandler(source_folder, self.dispatch, on_error)
        self._observer: Any | None = None
        self._queue: queue.Queue[str | None] = queue.Queue()
        # file name -> change kind, for names waiting in the queue
        self._pending: dict[str, ChangeKind] = {}
        self._lock = threading.Lock()
        self._stopped = threading.Event()
        self._stopped.set()
        self._workers: list[threading.Thread] = []
        self._monitor: threading.Thread | None = None

    # ---- lifecycle ----

    def start(self) -> None:
        """Start watching the source folder.

        Raises ``ConfigurationError`` if the folder does not exist.
        """
        if not self._stopped.is_set():
            logger.warning("Watcher for %s is already running.", self.source_folder)
            return
        if not os.path.isdir(self.source_folder):
            logger.error("Source folder does not exist: %s", self.source_folder)
            raise ConfigurationError(
                f"Source folder does not exist: {self.source_folder}"
            )

        self._stopped.clear()
        self.copier.cancel_event.clear()
        try:
            observer = self._observer_factory()
            if self._created_on_close is None:
                self._handler.created_on_close = reports_close_events(observer)
            else:
                self._handler.created_on_close = self._created_on_close
            observer.schedule(
                self._handler,
                self.source_folder,
                recursive=False,
                event_filter=WATCHED_EVENTS,
            )
            observer.start()
        except Exception:
            self._stopped.set()
            raise
        self._observer = observer

        self._workers = [
            threading.Thread(target=self._work, daemon=True, name=f"CopyWorker-{i + 1}")
            for i in range(self._worker_count)
        ]
        for worker in self._workers:
            worker.start()
        self._monitor = threading.Thread(
            target=self._monitor_health, daemon=True, name="WatcherHealth"
        )
        self._monitor.start()
        logger.info(
            "Watching for files in %s to copy to %s.",
            self.source_folder,
            self.destination_folder,
        )

    def stop(self) -> None:
        """Stop watching, drop queued events and wait for the workers.

        Safe to call more than once.
        """
        if self._stopped.is_set() and self._observer is None:
            return
        self._stopped.set()
        self.copier.cancel_event.set()

        observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            observer.join(timeout=5)

        with self._lock:
            dropped = len(self._pending)
            self._pending.clear()
        if dropped:
            logger.info("Discarded %d queued event(s).", dropped)

        for _ in self._workers:
            self._queue.put(None)
        for worker in self._workers:
            worker.join(timeout=10)
            if worker.is_alive():
                logger.warning("%s is still busy after stop.", worker.name)
        self._workers = []
        if self._monitor is not None:
            self._monitor.join(timeout=5)
            self._monitor = None
        logger.info("Watcher stopped.")

    @property
    def is_running(self) -> bool:
        """Return whether the watcher is currently active."""
        observer = self._observer
        return not self._stopped.is_set() and observer is not None and observer.is_alive()

    @property
    def pending_count(self) -> int:
        """Return the number of files waiting for a worker."""
        with self._lock:
            return len(self._pending)

    # ---- event flow ----

    def dispatch(self, event: WatchEvent) -> None:
        """Queue *event* for copying, merging it with a queued event for the same file."""
        if self._stopped.is_set():
            return
        with self._lock:
            # stop() clears the pending map under this lock
            if self._stopped.is_set():
                return
            queued = self._pending.get(event.file_name)
            if queued is not None:
                if event.change_kind is ChangeKind.CHANGED:
                    self._pending[event.file_name] = ChangeKind.CHANGED
                logger.debug("Coalesced %s event for %s", event.change_kind.value, event.file_name)
                return
            self._pending[event.file_name] = event.change_kind
            self._queue.put(event.file_name)

    def _work(self) -> None:
        while True:
            name = self._queue.get()
            try:
                if name is None:
                    return
                with self._lock:
                    kind = self._pending.pop(name, None)
                if kind is None or self._stopped.is_set():
                    continue
                self._process(WatchEvent(name, kind))
            finally:
                self._queue.task_done()

    def _process(self, event: WatchEvent) -> None:
        outcome = self.copier.copy(
            os.path.join(self.source_folder, event.file_name),
            os.path.join(self.destination_folder, event.file_name),
            event.change_kind,
        )
        self.stats.record(outcome)
        if self._on_outcome:
            try:
                self._on_outcome(outcome)
            except Exception:
                logger.exception("Error in on_outcome callback for %s", event.file_name)

    def _monitor_health(self) -> None:
        """Report a dead observer thread or a vanished source folder once."""
        reported = False
        while not self._stopped.wait(self._health_interval):
            observer = self._observer
            if observer is None:
                return
            problem: BaseException | None = None
            if not observer.is_alive():
                problem = RuntimeError("File system observer stopped unexpectedly; events are no longer received")
            elif not os.path.isdir(self.source_folder):
                problem = FileNotFoundError(f"Watched folder is missing: {self.source_folder}")
            if problem is None:
                reported = False
            elif not reported:
                reported = True
                try:
                    self._on_error(problem)
                except Exception:
                    logger.exception("Error in watcher error handler")
