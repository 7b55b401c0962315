"""
Readiness gate for the File Ingestion domain.

A file can look stable by size and mtime while its writer still holds it
open. The gate opens the file for shared read and retries a bounded number
of times before giving up.
"""

import sys
import threading
import time
from pathlib import Path
from typing import Callable, Optional

from loguru import logger

if sys.platform != "win32":
    import fcntl

DEFAULT_MAX_RETRIES = 10
DEFAULT_RETRY_DELAY = 0.5  # seconds


def is_file_ready(path: Path) -> bool:
    """
    Try to open path for shared read.

    On Windows a writer holding the file without read sharing makes the open
    fail. Elsewhere an exclusive advisory lock held by the writer is detected
    with a non-blocking shared lock.

    Args:
        path: File path

    Returns:
        True if the file could be opened

    Raises:
        FileNotFoundError: If the file no longer exists
    """
    with open(path, "rb") as stream:
        if sys.platform != "win32":
            try:
                fcntl.flock(stream.fileno(), fcntl.LOCK_SH | fcntl.LOCK_NB)
            except BlockingIOError:
                return False
            fcntl.flock(stream.fileno(), fcntl.LOCK_UN)
    return True


def wait_for_file_ready(
    path: Path,
    max_retries: int = DEFAULT_MAX_RETRIES,
    delay: float = DEFAULT_RETRY_DELAY,
    probe: Callable[[Path], bool] = is_file_ready,
    sleep: Callable[[float], object] = time.sleep,
    stop_event: Optional[threading.Event] = None,
    name: str = "ReadinessGate",
) -> bool:
    """
    Wait until path can be opened, retrying while it is locked.

    Makes at most ``max_retries`` attempts with ``delay`` seconds between them.
    A set ``stop_event`` interrupts the wait.

    Args:
        path: File to check
        max_retries: Number of attempts
        delay: Seconds between attempts
        probe: Callable reporting whether the file is ready
        sleep: Delay function
        stop_event: Optional cancellation signal
        name: Component name for log lines

    Returns:
        True if ready, False if retries ran out or the file vanished
    """
    path = Path(path)

    for attempt in range(1, max_retries + 1):
        try:
            if probe(path):
                return True
            reason = "locked"
        except FileNotFoundError:
            logger.debug(f"[{name}] File disappeared while waiting: {path}")
            return False
        except OSError as e:
            # Sharing violations surface as PermissionError / OSError
            reason = str(e)

        logger.debug(f"[{name}] File not ready ({reason}): {path.name}, attempt {attempt}/{max_retries}")

        if attempt == max_retries:
            break

        if stop_event is not None:
            if stop_event.wait(delay):
                return False
        else:
            sleep(delay)

    logger.info(f"[{name}] File not ready after {max_retries} attempts: {path}")
    return False
