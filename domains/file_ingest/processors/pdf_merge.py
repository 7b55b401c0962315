"""
Image to PDF merge for the File Ingestion domain.

Scanners drop one image per page, named ``<base>_<page>.<ext>``. Pages of
the same base name are collected until none of them has changed for a quiet
period, then written in page order as a single ``<base>.pdf`` and the
source images are removed.
"""

from __future__ import annotations

import re
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from loguru import logger
from PIL import Image

PAGE_NAME_RE = re.compile(r"^(?P<base>.+)_(?P<page>\d+)$")

DEFAULT_EXTENSIONS = (".jpg", ".jpeg", ".png", ".tif", ".tiff")


@dataclass(slots=True)
class MergeResult:
    """Outcome of merging one group of images."""

    output: Path
    merged: int
    deleted: int
    delete_failed: int


def parse_page_name(path: Path) -> Optional[Tuple[str, int]]:
    """Split ``<base>_<page>`` into (base, page); None for other names."""
    match = PAGE_NAME_RE.match(Path(path).stem)
    if not match:
        return None
    return match.group("base"), int(match.group("page"))


def merge_images_to_pdf(image_paths: Sequence[Path], output_pdf: Path, name: str = "PdfMerge") -> Optional[MergeResult]:
    """
    Write images as one page each into a PDF, then delete the images.

    Pages that cannot be opened are logged and left out. Source images are
    only deleted once the PDF has been written.

    Args:
        image_paths: Images in page order
        output_pdf: PDF to create; its folder is created if absent
        name: Component name for log lines

    Returns:
        MergeResult, or None when nothing could be written
    """
    if not image_paths:
        logger.info(f"[{name}] No images to merge for {Path(output_pdf).name}")
        return None

    pages: List[Image.Image] = []
    merged_paths: List[Path] = []
    for path in image_paths:
        try:
            with Image.open(path) as img:
                pages.append(img.convert("RGB"))
            merged_paths.append(Path(path))
        except (OSError, ValueError) as e:
            logger.error(f"[{name}] Image skipped: {Path(path).name}: {e}")

    if not pages:
        logger.error(f"[{name}] No readable images for {Path(output_pdf).name}")
        return None

    output_pdf = Path(output_pdf)
    try:
        output_pdf.parent.mkdir(parents=True, exist_ok=True)
        pages[0].save(output_pdf, "PDF", save_all=True, append_images=pages[1:])
    except OSError as e:
        logger.error(f"[{name}] PDF write failed: {output_pdf}: {e}")
        return None
    finally:
        for page in pages:
            page.close()

    deleted = 0
    delete_failed = 0
    for path in merged_paths:
        try:
            path.unlink()
            deleted += 1
        except FileNotFoundError:
            deleted += 1
        except OSError as e:
            delete_failed += 1
            logger.warning(f"[{name}] Could not delete merged image {path.name}: {e}")

    logger.info(
        f"[{name}] Merge completed. Images merged: {len(merged_paths)}, "
        f"deleted: {deleted}, delete-failed: {delete_failed}"
    )
    return MergeResult(output=output_pdf, merged=len(merged_paths), deleted=deleted, delete_failed=delete_failed)


class ImageMerger:
    """Group page images by base name and merge each group once it goes quiet.

    ``add_page`` records the time a page of a group was last seen. A timer
    re-checks the groups every ``poll_interval`` seconds and merges any group
    untouched for ``quiet_seconds``. Like the stability tracker, the timer
    only exists while groups are pending.
    """

    def __init__(
        self,
        folder: Path,
        output_folder: Optional[Path] = None,
        quiet_seconds: float = 30.0,
        extensions: Iterable[str] = DEFAULT_EXTENSIONS,
        poll_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        name: str = "PdfMerge",
    ) -> None:
        self.folder = Path(folder).expanduser()
        self.output_folder = Path(output_folder).expanduser() if output_folder is not None else self.folder
        self.quiet_seconds = quiet_seconds
        self.extensions = {ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in extensions}
        self.poll_interval = poll_interval
        self.clock = clock
        self.name = name

        self._groups: Dict[str, float] = {}
        self._merged: Set[str] = set()
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None

    def add_page(self, path: Path) -> bool:
        """
        Note a ready page image.

        Returns:
            False if the file is not a page image or its group was already merged
        """
        path = Path(path)
        if path.suffix.lower() not in self.extensions:
            return False

        parsed = parse_page_name(path)
        if parsed is None:
            logger.debug(f"[{self.name}] Not a page image name, ignored: {path.name}")
            return False

        base, _ = parsed
        with self._lock:
            if base in self._merged:
                logger.debug(f"[{self.name}] Skip duplicate merge: {base}")
                return False
            self._groups[base] = self.clock()
            self._ensure_timer_locked()

        logger.debug(f"[{self.name}] Page queued: {path.name} (group {base})")
        return True

    def pages_for(self, base: str) -> List[Path]:
        """Images of one group currently in the folder, in page order."""
        pattern = re.compile(rf"^{re.escape(base)}_(\d+)$", re.IGNORECASE)
        pages: List[Tuple[int, Path]] = []

        try:
            candidates = list(self.folder.iterdir())
        except OSError as e:
            logger.warning(f"[{self.name}] Could not list {self.folder}: {e}")
            return []

        for candidate in candidates:
            if candidate.suffix.lower() not in self.extensions or not candidate.is_file():
                continue
            match = pattern.match(candidate.stem)
            if match:
                pages.append((int(match.group(1)), candidate))

        return [path for _, path in sorted(pages)]

    def merge_group(self, base: str) -> Optional[MergeResult]:
        """Merge one group now, at most once per base name."""
        with self._lock:
            if base in self._merged:
                logger.debug(f"[{self.name}] Skip duplicate merge: {base}")
                return None
            self._merged.add(base)
            self._groups.pop(base, None)

        pages = self.pages_for(base)
        if not pages:
            logger.debug(f"[{self.name}] No images found for base '{base}'")
            return None

        result = merge_images_to_pdf(pages, self.output_folder / f"{base}.pdf", name=self.name)
        if result is not None:
            logger.info(f"[{self.name}] Created PDF for base '{base}': {result.output}")
        return result

    def check_groups(self) -> List[str]:
        """Merge every group that has been quiet long enough.

        Returns:
            Base names merged during this pass
        """
        now = self.clock()
        with self._lock:
            due = [base for base, seen in self._groups.items() if now - seen >= self.quiet_seconds]

        for base in due:
            try:
                self.merge_group(base)
            except Exception as e:
                logger.error(f"[{self.name}] Merge failed for '{base}': {e}")

        return due

    def _ensure_timer_locked(self) -> None:
        if self._timer is not None:
            return
        self._timer = threading.Timer(self.poll_interval, self._on_timer)
        self._timer.daemon = True
        self._timer.start()

    def _on_timer(self) -> None:
        try:
            self.check_groups()
        except Exception as e:
            logger.error(f"[{self.name}] Group check failed: {e}")

        with self._lock:
            self._timer = None
            if self._groups:
                self._ensure_timer_locked()

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._groups)

    def clear(self) -> None:
        """Cancel the timer and forget pending and merged groups."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._groups.clear()
            self._merged.clear()
