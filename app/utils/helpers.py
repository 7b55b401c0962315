"""
Helper utilities for the File Ingest Agent.

Common functions used across domains.
"""

from pathlib import Path
from typing import Iterable, Optional, Tuple


def normalise_path(path: Path) -> Path:
    """Return a resolved version of ``path`` without forcing existence."""

    try:
        return path.expanduser().resolve()
    except (FileNotFoundError, RuntimeError):
        return path.expanduser().absolute()


def is_within(path: Path, folders: Iterable[Path]) -> bool:
    """
    Check whether path lies inside any of the given folders.

    Args:
        path: Path to check
        folders: Candidate parent folders

    Returns:
        True if path equals or is nested under one of the folders
    """
    path = normalise_path(Path(path))

    for folder in folders:
        folder = normalise_path(Path(folder))
        if path == folder or folder in path.parents:
            return True

    return False


def file_signature(path: Path) -> Optional[Tuple[int, int]]:
    """
    Return (size, mtime_ns) for a file, or None when it cannot be stat'ed.

    Args:
        path: File path

    Returns:
        Size in bytes and modification time in nanoseconds
    """
    try:
        stats = Path(path).stat()
    except OSError:
        return None

    return stats.st_size, stats.st_mtime_ns


def format_bytes(bytes_count: int) -> str:
    """Format bytes as human-readable string."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024.0:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024.0
    return f"{bytes_count:.1f} PB"
