"""Periodic removal of expired baseline records."""

from __future__ import annotations

import os
import re
import stat
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, List, Optional

from loguru import logger

from domains.file_ingest.processors.baseline import RECORD_SUFFIX, RECORD_TIMESTAMP_FORMAT

RECORD_TIMESTAMP_RE = re.compile(r"^(?P<ts>\d{8}_\d{6})_")


class BaselineRetentionCleaner:
    """Delete ``*.info`` records whose name timestamp is older than N days.

    Runs once on start and then every ``interval`` seconds until stopped.
    """

    def __init__(
        self,
        baseline_folder: Path,
        retention_days: int,
        interval: float = 300.0,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.baseline_folder = Path(baseline_folder)
        self.retention_days = retention_days
        self.interval = interval
        self.now = now
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None or self.retention_days <= 0:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="baseline-retention", daemon=True)
        self._thread.start()
        logger.info(
            f"[InfoCleaner] Retention {self.retention_days} day(s) on {self.baseline_folder}"
        )

    def stop(self) -> None:
        self._stop.set()
        thread, self._thread = self._thread, None
        if thread is not None:
            thread.join(timeout=5)

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.run_once()
            except Exception as e:
                logger.error(f"[InfoCleaner] Cleanup pass failed: {e}")
            self._stop.wait(self.interval)

    def run_once(self) -> List[Path]:
        """Delete expired records once; return what was removed."""
        if self.retention_days <= 0 or not self.baseline_folder.is_dir():
            return []

        cutoff = self.now() - timedelta(days=self.retention_days)
        deleted: List[Path] = []

        for record in sorted(self.baseline_folder.glob(f"*{RECORD_SUFFIX}")):
            match = RECORD_TIMESTAMP_RE.match(record.name)
            if not match:
                continue
            try:
                created = datetime.strptime(match.group("ts"), RECORD_TIMESTAMP_FORMAT)
            except ValueError:
                continue
            if created > cutoff:
                continue
            if self._delete(record):
                deleted.append(record)

        return deleted

    def _delete(self, path: Path) -> bool:
        try:
            path.unlink()
        except FileNotFoundError:
            logger.info(f"[InfoCleaner] Already removed: {path.name}")
            return False
        except PermissionError:
            # Read-only records: clear the flag and try once more
            try:
                os.chmod(path, stat.S_IWRITE | stat.S_IREAD)
                path.unlink()
            except OSError as e:
                logger.error(f"[InfoCleaner] Delete fail {path.name}: {e}")
                return False
        except OSError as e:
            logger.error(f"[InfoCleaner] Delete fail {path.name}: {e}")
            return False

        logger.info(f"[InfoCleaner] Deleted: {path.name}")
        return True
