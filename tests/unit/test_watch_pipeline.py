import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

pytest.importorskip("watchdog", reason="watchdog dependency is required for pipeline tests")

from app.models.schemas import WatchTarget  # noqa: E402
from app.utils.config import Settings  # noqa: E402
from domains.file_ingest.orchestrator import WatchPipeline  # noqa: E402
from domains.file_ingest.watchers.directory import ChangeKind  # noqa: E402


@pytest.fixture
def executor():
    pool = ThreadPoolExecutor(max_workers=1)
    yield pool
    pool.shutdown(wait=True)


def _pipeline(tmp_path, executor, received, **kwargs):
    settings = Settings(_env_file=None, stability_poll_interval=60, ready_max_retries=2, ready_retry_delay=0.01)
    return WatchPipeline(
        "test",
        WatchTarget(folder=tmp_path),
        received.append,
        settings,
        executor,
        threading.Event(),
        **kwargs,
    )


def test_events_under_excluded_folder_are_ignored(tmp_path, executor):
    skip = tmp_path / "skip"
    skip.mkdir()
    ignored = skip / "a.txt"
    kept = tmp_path / "b.txt"
    ignored.write_text("x")
    kept.write_text("y")

    pipeline = _pipeline(tmp_path, executor, [], exclude_folders=[skip])
    try:
        pipeline.handle_event(ChangeKind.CREATED, ignored)
        pipeline.handle_event(ChangeKind.CREATED, kept)

        assert not pipeline.tracker.is_tracked(ignored)
        assert pipeline.tracker.is_tracked(kept)
    finally:
        pipeline.stop()


def test_rename_of_pending_file_is_followed(tmp_path, executor):
    old = tmp_path / "raw_#1_.dat"
    old.write_text("x")
    new = tmp_path / "raw_C3W1_.dat"

    pipeline = _pipeline(tmp_path, executor, [], follow_moves=False)
    try:
        pipeline.handle_event(ChangeKind.CREATED, old)
        old.rename(new)
        pipeline.handle_event(ChangeKind.DELETED, old)
        pipeline.handle_event(ChangeKind.MOVED, new)

        assert not pipeline.tracker.is_tracked(old)
        assert pipeline.tracker.is_tracked(new)
    finally:
        pipeline.stop()


def test_rename_of_handed_off_file_is_ignored(tmp_path, executor):
    old = tmp_path / "raw_#1_.dat"
    new = tmp_path / "raw_C3W1_.dat"
    new.write_text("x")

    pipeline = _pipeline(tmp_path, executor, [], follow_moves=False)
    try:
        pipeline.handle_event(ChangeKind.DELETED, old)
        pipeline.handle_event(ChangeKind.MOVED, new)

        assert pipeline.tracker.tracked_count == 0
    finally:
        pipeline.stop()


def test_ready_file_is_handed_on(tmp_path, executor):
    path = tmp_path / "ready.txt"
    path.write_text("x")
    received = []

    pipeline = _pipeline(tmp_path, executor, received)
    pipeline.process(path)

    assert received == [path]


def test_missing_file_is_not_handed_on(tmp_path, executor):
    received = []

    pipeline = _pipeline(tmp_path, executor, received)
    pipeline.process(tmp_path / "vanished.txt")

    assert received == []
