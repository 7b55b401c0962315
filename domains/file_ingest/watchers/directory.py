"""
Directory watcher for the File Ingestion domain.

Wraps a watchdog observer around one watch target and forwards raw change
events to a callback as (kind, path) pairs.
"""

from enum import Enum
from fnmatch import fnmatch
from pathlib import Path
from typing import Callable, Optional

from loguru import logger
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from app.models.schemas import WatchTarget
from app.utils.helpers import normalise_path


class ChangeKind(str, Enum):
    """Kind of raw change reported by a watcher."""

    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
    MOVED = "moved"


EventCallback = Callable[[ChangeKind, Path], None]


class IngestEventHandler(FileSystemEventHandler):
    """Watchdog handler that turns file events into (kind, path) callbacks."""

    def __init__(self, target: WatchTarget, callback: EventCallback, name: str):
        """
        Initialize event handler.

        Args:
            target: Watch target the handler belongs to
            callback: Receiver of (kind, path) events
            name: Pipeline name used in log lines
        """
        super().__init__()
        self.target = target
        self.callback = callback
        self.name = name
        self.root = normalise_path(Path(target.folder))

    def should_process(self, path: str) -> bool:
        """Apply the optional filename filter."""
        if not self.target.filename_filter:
            return True
        return fnmatch(Path(path).name, self.target.filename_filter)

    def on_created(self, event: FileSystemEvent):
        """Handle file creation."""
        if event.is_directory:
            return
        self._emit(ChangeKind.CREATED, event.src_path)

    def on_modified(self, event: FileSystemEvent):
        """Handle file modification."""
        # Directory modifications are noise
        if event.is_directory:
            return
        self._emit(ChangeKind.MODIFIED, event.src_path)

    def on_deleted(self, event: FileSystemEvent):
        """Handle file deletion, and the watched folder itself going away."""
        if event.is_directory:
            if normalise_path(Path(event.src_path)) == self.root:
                logger.error(f"[{self.name}] Watched folder disappeared: {self.root}")
            return
        self._emit(ChangeKind.DELETED, event.src_path)

    def on_moved(self, event: FileSystemEvent):
        """A rename inside the watched tree: source deleted, destination moved in."""
        if event.is_directory:
            return
        self._emit(ChangeKind.DELETED, event.src_path)
        dest = getattr(event, "dest_path", None)
        if dest:
            self._emit(ChangeKind.MOVED, dest)

    def _emit(self, kind: ChangeKind, raw_path) -> None:
        if isinstance(raw_path, bytes):
            raw_path = raw_path.decode(errors="replace")
        if not self.should_process(raw_path):
            return

        try:
            self.callback(kind, Path(raw_path))
        except Exception as e:
            logger.error(f"[{self.name}] Event handling failed for {raw_path}: {e}")


class DirectoryWatcher:
    """One watchdog observer bound to one watch target."""

    def __init__(self, target: WatchTarget, callback: EventCallback, name: Optional[str] = None):
        self.target = target
        self.callback = callback
        self.name = name or "DirectoryWatcher"
        self._observer: Optional[Observer] = None

    @property
    def is_watching(self) -> bool:
        """Whether an observer is currently running."""
        return self._observer is not None and self._observer.is_alive()

    def start(self) -> bool:
        """
        Start watching the target folder.

        Returns:
            False when the folder is missing or cannot be watched
        """
        if self._observer is not None:
            logger.info(f"[{self.name}] Already watching: {self.target.folder}")
            return True

        folder = Path(self.target.folder).expanduser()
        if not folder.is_dir():
            logger.error(f"[{self.name}] Folder does not exist: {folder}")
            return False

        handler = IngestEventHandler(self.target, self.callback, self.name)
        observer = Observer()
        observer.daemon = True

        try:
            observer.schedule(handler, str(folder), recursive=self.target.recursive)
            observer.start()
        except Exception as e:
            logger.error(f"[{self.name}] Failed to watch {folder}: {e}")
            return False

        self._observer = observer
        logger.success(f"[{self.name}] Started watching: {folder}")
        return True

    def stop(self) -> None:
        """Stop and dispose the observer so a later start creates a fresh one."""
        observer, self._observer = self._observer, None
        if observer is None:
            return

        try:
            observer.unschedule_all()
            observer.stop()
            observer.join(timeout=5)
        except Exception as e:
            logger.warning(f"[{self.name}] Error while stopping observer: {e}")

        logger.info(f"[{self.name}] Stopped watching: {self.target.folder}")
