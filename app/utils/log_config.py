"""
Logging setup for the File Ingest Agent.

Three daily log files are written next to the console output:

- ``YYYYMMDD_event.log`` - INFO through WARNING
- ``YYYYMMDD_error.log`` - ERROR and above
- ``YYYYMMDD_debug.log`` - DEBUG only, while debug mode is on

Each file rotates once it exceeds the configured size.
"""

import sys
import threading
from pathlib import Path
from typing import List

from loguru import logger

from app.utils.config import Settings

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} [{level}] {message}"

_lock = threading.Lock()
_handler_ids: List[int] = []
_state = {"debug": False, "log_dir": Path("logs"), "rotation": "5 MB", "level": "INFO"}


def _is_event(record) -> bool:
    return logger.level("INFO").no <= record["level"].no < logger.level("ERROR").no


def _is_error(record) -> bool:
    return record["level"].no >= logger.level("ERROR").no


def _is_debug(record) -> bool:
    return record["level"].no < logger.level("INFO").no


def _install_sinks() -> None:
    for handler_id in _handler_ids:
        try:
            logger.remove(handler_id)
        except ValueError:
            pass
    _handler_ids.clear()

    debug = _state["debug"]
    log_dir: Path = _state["log_dir"]
    rotation = _state["rotation"]

    _handler_ids.append(logger.add(
        sys.stdout,
        format=CONSOLE_FORMAT,
        level="DEBUG" if debug else _state["level"],
        catch=True,
    ))

    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.warning(f"[Logging] Log folder unavailable, console only: {e}")
        return

    _handler_ids.append(logger.add(
        log_dir / "{time:YYYYMMDD}_event.log",
        format=FILE_FORMAT,
        filter=_is_event,
        rotation=rotation,
        encoding="utf-8",
        enqueue=True,
        catch=True,
    ))
    _handler_ids.append(logger.add(
        log_dir / "{time:YYYYMMDD}_error.log",
        format=FILE_FORMAT,
        filter=_is_error,
        rotation=rotation,
        encoding="utf-8",
        enqueue=True,
        catch=True,
    ))
    if debug:
        _handler_ids.append(logger.add(
            log_dir / "{time:YYYYMMDD}_debug.log",
            format=FILE_FORMAT,
            filter=_is_debug,
            level="DEBUG",
            rotation=rotation,
            encoding="utf-8",
            enqueue=True,
            catch=True,
        ))


def configure_logging(settings: Settings) -> None:
    """Replace loguru's default handler with the agent's sinks."""
    with _lock:
        logger.remove()
        _handler_ids.clear()
        _state.update(
            debug=settings.debug_mode,
            log_dir=Path(settings.log_dir).expanduser(),
            rotation=settings.log_rotation,
            level=settings.log_level.upper(),
        )
        _install_sinks()


def set_debug_mode(enabled: bool) -> None:
    """Toggle the global debug flag at runtime."""
    with _lock:
        if _state["debug"] == enabled:
            return
        _state["debug"] = enabled
        _install_sinks()
    logger.info(f"[Logging] Debug mode {'enabled' if enabled else 'disabled'}")


def is_debug_mode() -> bool:
    """Whether debug lines are currently written."""
    return _state["debug"]
