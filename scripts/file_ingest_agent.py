#!/usr/bin/env python3
"""Run the file ingest agent headless, without the HTTP host.

Settings come from the environment and ``.env`` exactly as for the API
service; the flags below override the most common ones.
"""

from __future__ import annotations

import argparse
import signal
import sys
import threading
from pathlib import Path
from typing import Optional

from loguru import logger

from app.utils.config import Settings
from app.utils.log_config import configure_logging
from domains.file_ingest.orchestrator import Orchestrator


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--env-file",
        type=Path,
        default=Path(".env"),
        help="Settings file to read (default: .env).",
    )
    parser.add_argument(
        "--target",
        type=Path,
        action="append",
        default=[],
        help="Additional folder to classify (can be passed multiple times).",
    )
    parser.add_argument(
        "--base-folder",
        type=Path,
        help="Base folder holding the Baseline record directory.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Write debug log output.",
    )
    parser.add_argument(
        "--poll",
        type=float,
        default=1.0,
        help="Seconds between shutdown checks (default: 1.0).",
    )
    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace) -> Settings:
    """Settings from the env file with command-line overrides applied."""
    settings = Settings(_env_file=args.env_file)

    overrides = {}
    if args.target:
        overrides["target_folders"] = [*settings.target_folders, *args.target]
    if args.base_folder:
        overrides["base_folder"] = args.base_folder
    if args.debug:
        overrides["debug_mode"] = True

    return settings.model_copy(update=overrides) if overrides else settings


def main(argv: Optional[list[str]] = None) -> int:
    """Entry point for the CLI script."""

    args = parse_args(argv)
    settings = build_settings(args)
    configure_logging(settings)

    orchestrator = Orchestrator(settings)
    orchestrator.start()

    if not orchestrator.status().pipelines:
        logger.error("No folders configured to watch.")
        orchestrator.stop()
        return 1

    stop_event = threading.Event()

    def _signal_handler(signum, frame):  # noqa: D401
        logger.info(f"Received signal {signum}, shutting down.")
        stop_event.set()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    try:
        while not stop_event.is_set():
            stop_event.wait(args.poll)
    finally:
        orchestrator.stop()

    logger.info("File ingest agent stopped.")
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI bridge
    sys.exit(main())
