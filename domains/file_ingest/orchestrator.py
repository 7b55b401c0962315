"""
Orchestrator for the File Ingestion domain.

Builds one watch pipeline per configured folder and use case:

- classification: target folders, recursive, ready files copied by the rule router
- baseline source: ready files turned into baseline records
- baseline records: new ``*.info`` files trigger renames in comparison folders
- upload routes: ready files queued for their route's plugin
- image merge: ready page images grouped by base name and merged into PDFs

The dispatch queue and plugin registry are shared by every pipeline; all
other state belongs to the pipeline that created it.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from loguru import logger

from app.models.schemas import AgentStatus, PipelineStatus, WatchTarget
from app.utils.config import Settings, get_settings
from app.utils.helpers import is_within
from app.utils.log_config import is_debug_mode
from domains.file_ingest.dispatch.plugins import PluginInvoker, PluginRegistry
from domains.file_ingest.dispatch.queue import DispatchConsumer, DispatchQueue, QueueItem
from domains.file_ingest.processors.baseline import RECORD_SUFFIX, BaselineCorrelator
from domains.file_ingest.processors.pdf_merge import ImageMerger
from domains.file_ingest.processors.readiness import wait_for_file_ready
from domains.file_ingest.processors.retention import BaselineRetentionCleaner
from domains.file_ingest.processors.router import RuleRouter
from domains.file_ingest.processors.stability import StabilityTracker
from domains.file_ingest.watchers.directory import ChangeKind, DirectoryWatcher


class WatchPipeline:
    """Watcher → stability tracker → readiness gate → on_ready, for one folder."""

    def __init__(
        self,
        name: str,
        target: WatchTarget,
        on_ready: Callable[[Path], object],
        settings: Settings,
        executor: ThreadPoolExecutor,
        stop_event: threading.Event,
        exclude_folders: Sequence[Path] = (),
        follow_moves: bool = True,
    ):
        """
        Initialize pipeline.

        Args:
            name: Pipeline name used in log lines and status
            target: Folder to watch
            on_ready: Receiver of files that are stable and readable
            settings: Timing configuration
            executor: Worker pool running readiness checks and on_ready
            stop_event: Set when the agent stops, cancels readiness waits
            exclude_folders: Events under these folders are ignored
            follow_moves: Treat files renamed inside the folder as new arrivals;
                when False only renames of files still being tracked are followed
        """
        self.name = name
        self.target = target
        self.on_ready = on_ready
        self.settings = settings
        self.executor = executor
        self.stop_event = stop_event
        self.exclude_folders = list(exclude_folders)
        self.follow_moves = follow_moves
        self._pending_source = False

        self.tracker = StabilityTracker(
            self._on_stable,
            poll_interval=settings.stability_poll_interval,
            quiet_seconds=settings.stability_quiet_seconds,
            duplicate_window=settings.duplicate_event_window,
            name=name,
        )
        self.watcher = DirectoryWatcher(target, self.handle_event, name=name)

    def start(self) -> bool:
        return self.watcher.start()

    def stop(self) -> None:
        self.watcher.stop()
        self.tracker.clear()

    def handle_event(self, kind: ChangeKind, path: Path) -> None:
        """Feed one raw watcher event into the tracker."""
        if self.exclude_folders and is_within(path, self.exclude_folders):
            return

        if kind == ChangeKind.DELETED:
            # A move arrives as DELETED(source) then MOVED(destination)
            self._pending_source = self.tracker.is_tracked(path)
            self.tracker.forget(path)
            return

        if kind == ChangeKind.MOVED and not self.follow_moves:
            pending, self._pending_source = self._pending_source, False
            if not pending:
                return

        self.tracker.track(path)

    def _on_stable(self, path: Path) -> None:
        if self.stop_event.is_set():
            return
        try:
            self.executor.submit(self.process, path)
        except RuntimeError:
            # Executor already shut down
            logger.debug(f"[{self.name}] Stopping, dropped stable file: {path}")

    def process(self, path: Path) -> None:
        """Readiness gate, then hand the file to on_ready."""
        ready = wait_for_file_ready(
            path,
            max_retries=self.settings.ready_max_retries,
            delay=self.settings.ready_retry_delay,
            stop_event=self.stop_event,
            name=self.name,
        )
        if not ready:
            return

        try:
            self.on_ready(path)
        except Exception as e:
            logger.error(f"[{self.name}] Processing failed for {path}: {e}")

    def status(self) -> PipelineStatus:
        return PipelineStatus(
            name=self.name,
            folder=self.target.folder,
            watching=self.watcher.is_watching,
            tracked_files=self.tracker.tracked_count,
        )


class Orchestrator:
    """Start and stop every pipeline of the agent as one unit."""

    def __init__(self, settings: Optional[Settings] = None):
        """
        Initialize orchestrator.

        Args:
            settings: Fixed settings; when omitted a fresh Settings is read on every start
        """
        self._settings = settings
        initial = settings or get_settings()

        self.queue = DispatchQueue()
        self.registry = self._build_registry(initial)
        self.invoker = PluginInvoker(initial.plugin_config_path)

        self._lock = threading.RLock()
        self._running = False
        self._stop_event = threading.Event()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._pipelines: List[WatchPipeline] = []
        self._record_watchers: List[DirectoryWatcher] = []
        self._correlator: Optional[BaselineCorrelator] = None
        self._consumer: Optional[DispatchConsumer] = None
        self._cleaner: Optional[BaselineRetentionCleaner] = None
        self._merger: Optional[ImageMerger] = None
        self.active_settings: Optional[Settings] = None

    @property
    def is_running(self) -> bool:
        return self._running

    def _read_settings(self) -> Settings:
        return self._settings if self._settings is not None else Settings()

    # =====================================================
    # Start / stop
    # =====================================================

    def start(self) -> bool:
        """
        Build and start all pipelines from current settings.

        Returns:
            False if already running
        """
        with self._lock:
            if self._running:
                logger.info("[Orchestrator] Already running")
                return False

            settings = self._read_settings()
            self.active_settings = settings
            self._stop_event = threading.Event()
            self._executor = ThreadPoolExecutor(
                max_workers=max(1, settings.worker_threads),
                thread_name_prefix="ingest-worker",
            )

            self._load_plugins(settings)
            self._correlator = self._build_correlator(settings)

            self._start_classification(settings)
            self._start_baseline(settings)
            self._start_upload_routes(settings)
            self._start_image_merge(settings)

            self._consumer = DispatchConsumer(
                self.queue,
                self.registry,
                self.invoker,
                correlator=self._correlator,
                baseline_timeout=settings.baseline_wait_timeout,
                poll_interval=settings.dispatch_poll_interval,
            )
            self._consumer.start()

            if self._correlator is not None and settings.baseline_retention_days > 0:
                self._cleaner = BaselineRetentionCleaner(
                    self._correlator.baseline_folder,
                    settings.baseline_retention_days,
                    interval=settings.retention_scan_interval,
                )
                self._cleaner.start()

            self._running = True

        watching = sum(1 for p in self._pipelines if p.watcher.is_watching)
        logger.success(f"[Orchestrator] Agent started: {watching}/{len(self._pipelines)} pipeline(s) watching")
        return True

    def stop(self) -> bool:
        """
        Stop watchers, clear tracked state and shut the consumer down.

        Returns:
            False if not running
        """
        with self._lock:
            if not self._running:
                return False

            self._stop_event.set()

            for pipeline in self._pipelines:
                pipeline.stop()
            for watcher in self._record_watchers:
                watcher.stop()
            if self._merger is not None:
                self._merger.clear()

            # Workers may still enqueue until the pool is down
            if self._executor is not None:
                self._executor.shutdown(wait=True, cancel_futures=True)
            if self._consumer is not None:
                self._consumer.stop()
            if self._cleaner is not None:
                self._cleaner.stop()

            self._pipelines = []
            self._record_watchers = []
            self._consumer = None
            self._cleaner = None
            self._merger = None
            self._executor = None
            self._correlator = None
            self._running = False

        logger.info("[Orchestrator] Agent stopped")
        return True

    # =====================================================
    # Pipeline construction
    # =====================================================

    def _add_pipeline(self, pipeline: WatchPipeline) -> None:
        self._pipelines.append(pipeline)
        if not pipeline.start():
            logger.warning(f"[Orchestrator] Pipeline skipped: {pipeline.name}")

    @staticmethod
    def _build_registry(settings: Settings) -> PluginRegistry:
        return PluginRegistry(
            settings.plugin_library_dir,
            settings.plugin_registry_file,
            drop_folder=settings.plugin_drop_folder,
        )

    def _load_plugins(self, settings: Settings) -> None:
        # Mappings dropped from settings must not survive a restart
        self.registry = self._build_registry(settings)
        self.invoker.config_path = settings.plugin_config_path

        self.registry.load()
        for name, path in settings.plugins.items():
            if not Path(path).expanduser().exists():
                logger.error(f"[Orchestrator] Plugin module not found: {name} -> {path}")
                continue
            self.registry.add(name, path)

    def _build_correlator(self, settings: Settings) -> Optional[BaselineCorrelator]:
        if not settings.baseline_enabled or settings.base_folder is None:
            return None

        stop_event = self._stop_event
        return BaselineCorrelator(
            settings.base_folder,
            settings.get_compare_folders(),
            date_pattern=settings.baseline_date_pattern,
            date_format=settings.baseline_date_format,
            placeholder=settings.placeholder_token,
            poll_interval=settings.baseline_poll_interval,
            ready_check=lambda p: wait_for_file_ready(
                p,
                max_retries=settings.ready_max_retries,
                delay=settings.ready_retry_delay,
                stop_event=stop_event,
                name="BaselineCorrelator",
            ),
        )

    def _start_classification(self, settings: Settings) -> None:
        folders = settings.get_target_folders()
        if not folders:
            return

        router = RuleRouter(settings.rules)
        excludes = settings.get_exclude_folders()

        for folder in folders:
            self._add_pipeline(WatchPipeline(
                f"Classify:{folder.name}",
                WatchTarget(folder=folder, recursive=True),
                router.route,
                settings,
                self._executor,
                self._stop_event,
                exclude_folders=excludes,
            ))

    def _start_baseline(self, settings: Settings) -> None:
        correlator = self._correlator
        if correlator is None:
            return

        if settings.baseline_source_folder is not None:
            source = Path(settings.baseline_source_folder).expanduser()
            self._add_pipeline(WatchPipeline(
                "Baseline:source",
                WatchTarget(folder=source, recursive=False),
                correlator.create_record,
                settings,
                self._executor,
                self._stop_event,
            ))

        if not correlator.base_folder.is_dir():
            logger.error(f"[Orchestrator] Base folder missing, record watcher skipped: {correlator.base_folder}")
            return

        correlator.baseline_folder.mkdir(parents=True, exist_ok=True)
        executor = self._executor

        def on_record_event(kind: ChangeKind, path: Path) -> None:
            if kind in (ChangeKind.CREATED, ChangeKind.MOVED):
                executor.submit(correlator.on_record_created, path)

        watcher = DirectoryWatcher(
            WatchTarget(folder=correlator.baseline_folder, recursive=False, filename_filter=f"*{RECORD_SUFFIX}"),
            on_record_event,
            name="Baseline:records",
        )
        if watcher.start():
            self._record_watchers.append(watcher)

    def _start_upload_routes(self, settings: Settings) -> None:
        for route in settings.upload_routes:
            def enqueue(path: Path, route=route) -> None:
                self.queue.put(QueueItem(path=path, plugin=route.plugin, route=route.name))

            # Renames of already queued files come from correlation, not new data
            self._add_pipeline(WatchPipeline(
                f"Upload:{route.name}",
                WatchTarget(folder=Path(route.folder).expanduser(), recursive=False),
                enqueue,
                settings,
                self._executor,
                self._stop_event,
                follow_moves=False,
            ))

    def _start_image_merge(self, settings: Settings) -> None:
        if settings.image_merge_folder is None:
            return

        folder = Path(settings.image_merge_folder).expanduser()
        self._merger = ImageMerger(
            folder,
            output_folder=settings.image_output_folder,
            quiet_seconds=settings.image_merge_quiet_seconds,
            extensions=settings.image_extensions,
            poll_interval=min(1.0, settings.stability_poll_interval),
        )
        self._add_pipeline(WatchPipeline(
            "ImageMerge",
            WatchTarget(folder=folder, recursive=False),
            self._merger.add_page,
            settings,
            self._executor,
            self._stop_event,
        ))

    # =====================================================
    # Operations
    # =====================================================

    def status(self) -> AgentStatus:
        with self._lock:
            pipelines = [p.status() for p in self._pipelines]
            pipelines.extend(
                PipelineStatus(name=w.name, folder=w.target.folder, watching=w.is_watching)
                for w in self._record_watchers
            )
            return AgentStatus(
                running=self._running,
                pipelines=pipelines,
                queue_depth=len(self.queue),
                plugins=len(self.registry),
                debug_mode=is_debug_mode(),
            )

    def sweep_baseline(self) -> List[Path]:
        """
        Compare every baseline record against every comparison folder now.

        Returns:
            Paths of renamed files
        """
        correlator = self._correlator or self._build_correlator(self._read_settings())
        if correlator is None:
            logger.warning("[Orchestrator] Baseline sweep requested but no base folder is configured")
            return []

        renamed = correlator.sweep()
        logger.info(f"[Orchestrator] Baseline sweep renamed {len(renamed)} file(s)")
        return renamed
