"""Debounce raw file events until a file stops changing."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from loguru import logger

from app.utils.helpers import file_signature

Signature = Tuple[int, int]


@dataclass(slots=True)
class TrackedFile:
    """Last observation of a path that is still being written."""

    path: Path
    last_event_time: float
    last_size: int
    last_mtime: int

    @property
    def signature(self) -> Signature:
        return self.last_size, self.last_mtime


class StabilityTracker:
    """Collapse bursts of events per path into one "stable" emission.

    Raw events only record the path's size and mtime. A timer re-reads every
    tracked path each ``poll_interval`` seconds; once a path has been unchanged
    for ``quiet_seconds`` it is handed to ``on_stable`` and dropped. The timer
    exists only while something is tracked.
    """

    def __init__(
        self,
        on_stable: Callable[[Path], None],
        poll_interval: float = 2.0,
        quiet_seconds: float = 2.0,
        duplicate_window: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        name: str = "StabilityTracker",
    ) -> None:
        self.on_stable = on_stable
        self.poll_interval = poll_interval
        self.quiet_seconds = quiet_seconds
        self.duplicate_window = duplicate_window
        self.clock = clock
        self.name = name

        self._files: Dict[Path, TrackedFile] = {}
        self._emitted: Dict[Path, Tuple[float, Signature]] = {}
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None

    # Event side ---------------------------------------------------------------

    def track(self, path: Path) -> None:
        """Record (or refresh) a raw event for ``path``."""

        path = Path(path)
        signature = file_signature(path)
        now = self.clock()

        with self._lock:
            if signature is None:
                # Deleted or moved away before we could look at it
                self._files.pop(path, None)
                return

            emitted = self._emitted.get(path)
            if emitted is not None:
                emitted_at, emitted_signature = emitted
                if now - emitted_at < self.duplicate_window and emitted_signature == signature:
                    logger.debug(f"[{self.name}] Duplicate event ignored: {path}")
                    return
                del self._emitted[path]

            info = self._files.get(path)
            if info is None:
                self._files[path] = TrackedFile(path, now, *signature)
            else:
                info.last_event_time = now
                info.last_size, info.last_mtime = signature

            self._ensure_timer_locked()

    def forget(self, path: Path) -> None:
        """Stop tracking ``path`` without emitting it."""
        with self._lock:
            self._files.pop(Path(path), None)

    # Timer side ---------------------------------------------------------------

    def check_stability(self) -> List[Path]:
        """Re-read every tracked path and emit the ones that settled.

        Returns:
            Paths declared stable during this pass
        """
        now = self.clock()
        stable: List[Tuple[Path, Signature]] = []

        with self._lock:
            for path, info in list(self._files.items()):
                signature = file_signature(path)
                if signature is None:
                    del self._files[path]
                    logger.debug(f"[{self.name}] No longer present, untracked: {path}")
                    continue

                if signature != info.signature:
                    info.last_event_time = now
                    info.last_size, info.last_mtime = signature
                    continue

                if now - info.last_event_time >= self.quiet_seconds:
                    stable.append((path, signature))

            for path, signature in stable:
                del self._files[path]
                self._emitted[path] = (now, signature)

            for path, (emitted_at, _) in list(self._emitted.items()):
                if now - emitted_at >= self.duplicate_window:
                    del self._emitted[path]

        for path, _ in stable:
            logger.debug(f"[{self.name}] File stable: {path}")
            try:
                self.on_stable(path)
            except Exception as e:
                logger.error(f"[{self.name}] Stable-file handler failed for {path}: {e}")

        return [path for path, _ in stable]

    def _ensure_timer_locked(self) -> None:
        if self._timer is not None:
            return
        self._timer = threading.Timer(self.poll_interval, self._on_timer)
        self._timer.daemon = True
        self._timer.start()

    def _on_timer(self) -> None:
        try:
            self.check_stability()
        except Exception as e:
            logger.error(f"[{self.name}] Stability check failed: {e}")

        with self._lock:
            self._timer = None
            if self._files:
                self._ensure_timer_locked()

    # Introspection / lifecycle ------------------------------------------------

    @property
    def tracked_count(self) -> int:
        with self._lock:
            return len(self._files)

    @property
    def timer_active(self) -> bool:
        with self._lock:
            return self._timer is not None

    def is_tracked(self, path: Path) -> bool:
        with self._lock:
            return Path(path) in self._files

    def clear(self) -> None:
        """Cancel the timer and drop all tracked and recently emitted paths."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._files.clear()
            self._emitted.clear()
