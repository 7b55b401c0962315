"""
Baseline correlation for the File Ingestion domain.

Two file streams arrive independently: a baseline file whose content carries
a "Date and Time:" stamp, and data files whose names still hold a
placeholder token. The correlator

1. turns each baseline file into an empty marker ("baseline record") named
   ``<yyyyMMdd_HHmmss>_<origin stem>.info`` under ``<base folder>/Baseline``;
2. renames comparison-folder files that share the record's timestamp and
   prefix, replacing the placeholder with the record's correlation tag;
3. lets the dispatch path block, for a bounded time, until a record for a
   given data file shows up.
"""

from __future__ import annotations

import re
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence

from loguru import logger

from domains.file_ingest.processors.readiness import wait_for_file_ready

BASELINE_DIRNAME = "Baseline"
RECORD_SUFFIX = ".info"
RECORD_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"

# <timestamp>_<prefix>_<tag>..., e.g. 20250711_142530_PSD276.1_C3W1_SCAN
RECORD_NAME_RE = re.compile(r"(\d{8}_\d{6})_([^_]+?)_(C\dW\d+)")
TIMESTAMP_RE = re.compile(r"\d{8}_\d{6}")

DEFAULT_DATE_PATTERN = r"Date and Time:\s*(\d{2}/\d{2}/\d{4} \d{2}:\d{2}:\d{2} (?:AM|PM))"
DEFAULT_DATE_FORMAT = "%m/%d/%Y %I:%M:%S %p"
DEFAULT_PLACEHOLDER = "_#1_"


@dataclass(frozen=True, slots=True)
class BaselineRecord:
    """Identity recovered from a baseline record's file name."""

    timestamp: str
    prefix: str
    tag: str
    name: str

    @classmethod
    def parse(cls, path: Path) -> Optional["BaselineRecord"]:
        """Parse a record file name; None if it does not follow the format."""
        stem = Path(path).stem
        match = RECORD_NAME_RE.search(stem)
        if not match:
            return None
        return cls(
            timestamp=match.group(1),
            prefix=match.group(2),
            tag=match.group(3),
            name=Path(path).name,
        )

    @property
    def created_at(self) -> datetime:
        return datetime.strptime(self.timestamp, RECORD_TIMESTAMP_FORMAT)

    def matches(self, file_name: str) -> bool:
        """A target belongs to this record when its name holds both keys."""
        return self.timestamp in file_name and self.prefix in file_name


def record_file_name(timestamp: datetime, origin: Path) -> str:
    """Build ``<yyyyMMdd_HHmmss>_<origin stem>.info``."""
    return f"{timestamp.strftime(RECORD_TIMESTAMP_FORMAT)}_{Path(origin).stem}{RECORD_SUFFIX}"


class BaselineCorrelator:
    """Creates baseline records and renames the files they correlate with."""

    def __init__(
        self,
        base_folder: Path,
        compare_folders: Sequence[Path] = (),
        date_pattern: str = DEFAULT_DATE_PATTERN,
        date_format: str = DEFAULT_DATE_FORMAT,
        placeholder: str = DEFAULT_PLACEHOLDER,
        poll_interval: float = 0.3,
        ready_check: Optional[Callable[[Path], bool]] = None,
        name: str = "BaselineCorrelator",
    ):
        """
        Initialize correlator.

        Args:
            base_folder: Folder under which the Baseline directory lives
            compare_folders: Folders holding files waiting to be renamed
            date_pattern: Regex with one group capturing the date/time text
            date_format: strptime format of the captured text
            placeholder: Token in target names replaced by the correlation tag
            poll_interval: Seconds between record lookups while blocking
            ready_check: Readiness gate applied to targets before renaming
            name: Component name for log lines
        """
        self.base_folder = Path(base_folder).expanduser()
        self.compare_folders = [Path(p).expanduser() for p in compare_folders]
        self.date_re = re.compile(date_pattern)
        self.date_format = date_format
        self.placeholder = placeholder
        self.poll_interval = poll_interval
        self.ready_check = ready_check or (
            lambda p: wait_for_file_ready(p, max_retries=5, delay=0.2, name=name)
        )
        self.name = name

    @property
    def baseline_folder(self) -> Path:
        return self.base_folder / BASELINE_DIRNAME

    # =====================================================
    # Record creation
    # =====================================================

    def extract_timestamp(self, path: Path) -> Optional[datetime]:
        """
        Find the labelled date/time inside a file's content.

        Args:
            path: Source file

        Returns:
            Parsed timestamp, or None if absent, unparsable or unreadable
        """
        try:
            content = Path(path).read_text(encoding="utf-8", errors="ignore")
        except OSError as e:
            logger.debug(f"[{self.name}] Could not read {Path(path).name}: {e}")
            return None

        match = self.date_re.search(content)
        if not match:
            return None

        try:
            return datetime.strptime(match.group(1), self.date_format)
        except ValueError as e:
            logger.debug(f"[{self.name}] Unparsable timestamp {match.group(1)!r} in {Path(path).name}: {e}")
            return None

    def create_record(self, path: Path) -> Optional[Path]:
        """
        Write an empty baseline record for a ready source file.

        Args:
            path: Ready source file

        Returns:
            Record path, or None when no timestamp could be extracted
        """
        path = Path(path)
        timestamp = self.extract_timestamp(path)
        if timestamp is None:
            logger.debug(f"[{self.name}] No baseline timestamp in {path.name}, skipped")
            return None

        if not self.base_folder.is_dir():
            logger.error(f"[{self.name}] Base folder is not configured or missing: {self.base_folder}")
            return None

        record_path = self.baseline_folder / record_file_name(timestamp, path)

        try:
            if not self.baseline_folder.exists():
                self.baseline_folder.mkdir(parents=True, exist_ok=True)
                logger.info(f"[{self.name}] Baseline folder created: {self.baseline_folder}")
            record_path.touch(exist_ok=True)
        except PermissionError as e:
            logger.debug(f"[{self.name}] Lock conflict creating record for {path.name}: {e}")
            return None
        except OSError as e:
            logger.error(f"[{self.name}] Record creation failed for {path}: {e}")
            return None

        logger.info(f"[{self.name}] Baseline file detected: {path.name} -> {record_path.name}")
        return record_path

    # =====================================================
    # Match & rename
    # =====================================================

    def list_records(self, pattern: str = f"*{RECORD_SUFFIX}") -> List[BaselineRecord]:
        """Parsable records in the baseline folder whose names match pattern."""
        try:
            candidates = sorted(self.baseline_folder.glob(pattern))
        except OSError:
            return []

        records = []
        for candidate in candidates:
            record = BaselineRecord.parse(candidate)
            if record is not None:
                records.append(record)
        return records

    def find_record(self, file_name: str) -> Optional[BaselineRecord]:
        """
        First record the given file name correlates with.

        Only records carrying one of the timestamps found in file_name are
        listed, so lookups stay cheap however many records accumulate.
        """
        for timestamp in dict.fromkeys(TIMESTAMP_RE.findall(file_name)):
            for record in self.list_records(f"*{timestamp}_*{RECORD_SUFFIX}"):
                if record.matches(file_name):
                    return record
        return None

    def corrected_name(self, file_name: str, record: BaselineRecord) -> Optional[str]:
        """
        Replace the placeholder with the record's tag.

        Returns:
            The new name, or None when the name carries no placeholder
        """
        new_name = file_name.replace(self.placeholder, f"_{record.tag}_")
        if new_name == file_name:
            return None
        return new_name

    def rename_target(self, target: Path, records: Iterable[BaselineRecord]) -> Optional[Path]:
        """
        Rename target in place using the first record it correlates with.

        Names without the placeholder are left alone, so calling this again
        on an already corrected file is a no-op.

        Args:
            target: File in a comparison folder
            records: Candidate baseline records

        Returns:
            New path if the file was renamed, otherwise None
        """
        target = Path(target)

        for record in records:
            if not record.matches(target.name):
                continue

            new_name = self.corrected_name(target.name, record)
            if new_name is None:
                return None

            if not self.ready_check(target):
                logger.debug(f"[{self.name}] Target not ready, rename deferred: {target.name}")
                return None

            return self._rename(target, target.with_name(new_name))

        return None

    def _rename(self, source: Path, destination: Path) -> Optional[Path]:
        if destination.exists():
            logger.debug(f"[{self.name}] Rename skipped, destination exists: {destination.name}")
            return None

        try:
            source.rename(destination)
        except FileNotFoundError as e:
            logger.debug(f"[{self.name}] Rename skipped (file gone): {source.name}: {e}")
            return None
        except (FileExistsError, PermissionError) as e:
            logger.debug(f"[{self.name}] Rename conflict: {source.name}, will retry on next event ({e})")
            return None
        except OSError as e:
            logger.error(f"[{self.name}] Rename failed: {source.name}: {e}")
            return None

        logger.info(f"[{self.name}] File renamed: {source} -> {destination.name}")
        return destination

    def _rename_in_folders(self, records: List[BaselineRecord]) -> List[Path]:
        renamed: List[Path] = []

        for folder in self.compare_folders:
            if not folder.is_dir():
                continue

            try:
                targets = sorted(p for p in folder.iterdir() if p.is_file())
            except OSError as e:
                logger.warning(f"[{self.name}] Could not list {folder}: {e}")
                continue

            for target in targets:
                try:
                    new_path = self.rename_target(target, records)
                except Exception as e:
                    logger.error(f"[{self.name}] Unexpected error renaming {target}: {e}")
                    continue
                if new_path is not None:
                    renamed.append(new_path)

        return renamed

    def on_record_created(self, record_path: Path) -> List[Path]:
        """
        Scan every comparison folder against one newly created record.

        Args:
            record_path: Record file reported by the baseline watcher

        Returns:
            Paths of renamed files
        """
        record_path = Path(record_path)
        if not record_path.exists():
            return []

        record = BaselineRecord.parse(record_path)
        if record is None:
            logger.debug(f"[{self.name}] Not a baseline record name: {record_path.name}")
            return []

        logger.debug(
            f"[{self.name}] Record {record.name}: timestamp={record.timestamp} "
            f"prefix={record.prefix} tag={record.tag}"
        )
        return self._rename_in_folders([record])

    def sweep(self) -> List[Path]:
        """Compare every record against every comparison folder."""
        records = self.list_records()
        if not records:
            logger.info(f"[{self.name}] No valid baseline records in {self.baseline_folder}")
            return []
        return self._rename_in_folders(records)

    # =====================================================
    # Blocking lookup
    # =====================================================

    def ensure_correlated(
        self,
        raw_path: Path,
        timeout: float,
        stop_event: Optional[threading.Event] = None,
    ) -> Path:
        """
        Wait for a record matching raw_path, rename the file, return its path.

        Never blocks longer than timeout. Without a record the original
        path comes back unchanged so dispatch can still proceed.

        Args:
            raw_path: Data file awaiting correlation
            timeout: Maximum wait in seconds
            stop_event: Optional cancellation signal

        Returns:
            Renamed path, or raw_path
        """
        raw_path = Path(raw_path)
        deadline = time.monotonic() + timeout

        while True:
            record = self.find_record(raw_path.name)
            if record is not None:
                new_name = self.corrected_name(raw_path.name, record)
                if new_name is None:
                    return raw_path

                destination = raw_path.with_name(new_name)
                if destination.exists():
                    return destination

                renamed = self._rename(raw_path, destination)
                if renamed is None and destination.exists():
                    # Renamed concurrently by the record watcher
                    return destination
                return renamed or raw_path

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break

            wait = min(self.poll_interval, remaining)
            if stop_event is not None:
                if stop_event.wait(wait):
                    logger.debug(f"[{self.name}] Correlation wait cancelled: {raw_path.name}")
                    return raw_path
            else:
                time.sleep(wait)

        logger.debug(f"[{self.name}] No baseline record within {timeout:.0f}s, rename skipped: {raw_path}")
        return raw_path
