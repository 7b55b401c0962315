"""
Rule-based file routing.

Copies a ready file to the destination of the first rule whose pattern
matches its name. The source file is never touched.
"""

import re
import shutil
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from loguru import logger

from app.models.schemas import Rule
from app.utils.helpers import format_bytes


class RuleRouter:
    """Ordered pattern → destination routing. First match wins."""

    def __init__(self, rules: Sequence[Rule], name: str = "RuleRouter"):
        """
        Initialize router.

        Args:
            rules: Ordered rules
            name: Component name for log lines
        """
        self.name = name
        self._rules: List[Tuple[re.Pattern, Path]] = []

        for rule in rules:
            try:
                self._rules.append((re.compile(rule.pattern), Path(rule.destination).expanduser()))
            except re.error as e:
                logger.error(f"[{self.name}] Invalid rule pattern skipped: {rule.pattern!r} ({e})")

    def match(self, file_name: str) -> Optional[Path]:
        """Return the destination folder of the first matching rule."""
        for pattern, destination in self._rules:
            if pattern.search(file_name):
                return destination
        return None

    def route(self, path: Path) -> Optional[Path]:
        """
        Copy path into its rule's destination folder.

        Args:
            path: Ready source file

        Returns:
            Path of the copy, or None when nothing matched or the copy failed
        """
        path = Path(path)
        destination = self.match(path.name)

        if destination is None:
            logger.info(f"[{self.name}] No matching rule for file: {path.name}")
            return None

        target = destination / path.name

        try:
            destination.mkdir(parents=True, exist_ok=True)
            shutil.copy2(path, target)
        except Exception as e:
            logger.error(f"[{self.name}] Error copying file: {path.name} -> {destination}: {e}")
            return None

        try:
            size = format_bytes(target.stat().st_size)
        except OSError:
            size = "?"

        logger.info(f"[{self.name}] File copied: {path.name} ({size}) -> {destination}")
        return target
