"""
Dispatch queue and consumer loop.

Watcher callbacks push ready files onto a shared FIFO; one background loop
takes them off, waits for baseline correlation, resolves the route's plugin
and invokes it. Any failure on one item becomes a log line and the loop
moves on.
"""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from loguru import logger

from domains.file_ingest.dispatch.plugins import DispatchResult, PluginInvoker, PluginRegistry
from domains.file_ingest.processors.baseline import BaselineCorrelator


@dataclass(slots=True)
class QueueItem:
    """A ready file and the plugin its route dispatches to."""

    path: Path
    plugin: str
    route: str = "upload"


class DispatchQueue:
    """Thread-safe FIFO of queue items."""

    def __init__(self) -> None:
        self._queue: "queue.Queue[QueueItem]" = queue.Queue()

    def __len__(self) -> int:
        return self._queue.qsize()

    def put(self, item: QueueItem) -> None:
        self._queue.put(item)
        logger.info(f"[DispatchQueue] Queued ({item.route}): {item.path}")

    def get(self, timeout: float) -> Optional[QueueItem]:
        """Next item, or None if nothing arrived within timeout seconds."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def clear(self) -> int:
        """Drop everything still queued; return how many items were dropped."""
        dropped = 0
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                return dropped
            dropped += 1


class DispatchConsumer:
    """Single background loop draining a DispatchQueue."""

    def __init__(
        self,
        dispatch_queue: DispatchQueue,
        registry: PluginRegistry,
        invoker: PluginInvoker,
        correlator: Optional[BaselineCorrelator] = None,
        baseline_timeout: float = 180.0,
        poll_interval: float = 0.3,
        name: str = "DispatchConsumer",
    ):
        """
        Initialize consumer.

        Args:
            dispatch_queue: Queue to drain
            registry: Plugin name → module lookup
            invoker: Plugin loader and invoker
            correlator: Baseline correlator, None when correlation is off
            baseline_timeout: Max seconds to wait for a baseline record per item
            poll_interval: Idle wait between empty polls
            name: Component name for log lines
        """
        self.queue = dispatch_queue
        self.registry = registry
        self.invoker = invoker
        self.correlator = correlator
        self.baseline_timeout = baseline_timeout
        self.poll_interval = poll_interval
        self.name = name

        self.processed = 0
        self.failed = 0

        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="dispatch-consumer", daemon=True)
        self._thread.start()
        logger.info(f"[{self.name}] Consumer started")

    def stop(self, timeout: float = 10.0) -> None:
        """Signal the loop, wait for the in-flight item, drop the rest."""
        self._stop.set()
        thread, self._thread = self._thread, None
        if thread is not None:
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning(f"[{self.name}] In-flight item still running after {timeout:.0f}s")

        dropped = self.queue.clear()
        if dropped:
            logger.info(f"[{self.name}] Dropped {dropped} queued item(s) on shutdown")
        logger.info(f"[{self.name}] Consumer stopped")

    def _run(self) -> None:
        while not self._stop.is_set():
            item = self.queue.get(timeout=self.poll_interval)
            if item is None:
                continue

            try:
                self.process(item)
            except Exception as e:
                self.failed += 1
                logger.error(f"[{self.name}] Consumer error on {item.path}: {e}")

    def process(self, item: QueueItem) -> Optional[DispatchResult]:
        """
        Correlate, resolve and dispatch one item.

        Returns:
            Invocation result, or None when the item was abandoned before dispatch
        """
        path = Path(item.path)

        if self.correlator is not None:
            path = self.correlator.ensure_correlated(path, self.baseline_timeout, stop_event=self._stop)

        if not item.plugin:
            self.failed += 1
            logger.error(f"[{self.name}] No plugin selected for route '{item.route}'")
            return None

        descriptor = self.registry.get(item.plugin)
        if descriptor is None or not Path(descriptor.path).exists():
            self.failed += 1
            logger.error(f"[{self.name}] Plugin module not found: {item.plugin}")
            return None

        result = self.invoker.invoke(descriptor.path, path, plugin_name=descriptor.name)

        if result.ok:
            self.processed += 1
            logger.info(f"[{self.name}] Upload completed: {path}")
        else:
            self.failed += 1
            logger.error(f"[{self.name}] Upload failed: {path.name} - {result.error}")

        return result
