import threading

from domains.file_ingest.processors.stability import StabilityTracker

from tests.helpers import wait_until


def _tracker(emitted, clock, **kwargs):
    # Long poll interval: tests drive check_stability() by hand
    return StabilityTracker(emitted.append, poll_interval=60, quiet_seconds=2.0, clock=clock, **kwargs)


def test_file_becomes_stable_after_quiet_interval(tmp_path, clock):
    emitted = []
    tracker = _tracker(emitted, clock)
    path = tmp_path / "LOG_42.txt"
    path.write_text("first")

    try:
        tracker.track(path)
        assert tracker.is_tracked(path)

        clock.advance(1.0)
        assert tracker.check_stability() == []

        clock.advance(1.0)
        assert tracker.check_stability() == [path]
        assert emitted == [path]
        assert tracker.tracked_count == 0
    finally:
        tracker.clear()


def test_burst_of_events_collapses_to_one_emission(tmp_path, clock):
    emitted = []
    tracker = _tracker(emitted, clock)
    path = tmp_path / "burst.txt"
    path.write_text("a")

    try:
        for _ in range(5):
            tracker.track(path)
            clock.advance(0.1)

        assert tracker.tracked_count == 1
        clock.advance(2.0)
        tracker.check_stability()
        clock.advance(2.0)
        tracker.check_stability()

        assert emitted == [path]
    finally:
        tracker.clear()


def test_changes_seen_by_poll_reset_quiet_interval(tmp_path, clock):
    emitted = []
    tracker = _tracker(emitted, clock)
    path = tmp_path / "growing.txt"
    path.write_text("a")

    try:
        tracker.track(path)
        clock.advance(1.5)
        path.write_text("a much longer body")
        assert tracker.check_stability() == []

        clock.advance(1.5)
        assert tracker.check_stability() == []

        clock.advance(0.5)
        assert tracker.check_stability() == [path]
    finally:
        tracker.clear()


def test_vanished_file_is_dropped_silently(tmp_path, clock):
    emitted = []
    tracker = _tracker(emitted, clock)
    path = tmp_path / "gone.txt"
    path.write_text("x")

    try:
        tracker.track(path)
        path.unlink()
        clock.advance(5.0)

        assert tracker.check_stability() == []
        assert emitted == []
        assert tracker.tracked_count == 0
    finally:
        tracker.clear()


def test_event_for_missing_file_is_not_tracked(tmp_path, clock):
    tracker = _tracker([], clock)
    tracker.track(tmp_path / "never-existed.txt")
    assert tracker.tracked_count == 0
    assert not tracker.timer_active


def test_duplicate_event_within_window_is_ignored(tmp_path, clock):
    emitted = []
    tracker = _tracker(emitted, clock, duplicate_window=5.0)
    path = tmp_path / "dup.txt"
    path.write_text("x")

    try:
        tracker.track(path)
        clock.advance(2.0)
        tracker.check_stability()
        assert emitted == [path]

        # Same size and mtime reported again shortly after emission
        clock.advance(1.0)
        tracker.track(path)
        assert not tracker.is_tracked(path)

        # A real change is tracked again
        path.write_text("changed content")
        tracker.track(path)
        assert tracker.is_tracked(path)
    finally:
        tracker.clear()


def test_duplicate_window_expires(tmp_path, clock):
    emitted = []
    tracker = _tracker(emitted, clock, duplicate_window=5.0)
    path = tmp_path / "again.txt"
    path.write_text("x")

    try:
        tracker.track(path)
        clock.advance(2.0)
        tracker.check_stability()

        clock.advance(6.0)
        tracker.track(path)
        assert tracker.is_tracked(path)
    finally:
        tracker.clear()


def test_handler_failure_does_not_stop_other_emissions(tmp_path, clock):
    seen = []

    def on_stable(path):
        seen.append(path)
        if path.name == "bad.txt":
            raise RuntimeError("boom")

    tracker = StabilityTracker(on_stable, poll_interval=60, quiet_seconds=1.0, clock=clock)
    bad = tmp_path / "bad.txt"
    good = tmp_path / "good.txt"
    bad.write_text("1")
    good.write_text("2")

    try:
        tracker.track(bad)
        tracker.track(good)
        clock.advance(1.0)
        stable = tracker.check_stability()
    finally:
        tracker.clear()

    assert sorted(stable) == sorted([bad, good])
    assert sorted(seen) == sorted([bad, good])


def test_forget_drops_path_without_emitting(tmp_path, clock):
    emitted = []
    tracker = _tracker(emitted, clock)
    path = tmp_path / "deleted.txt"
    path.write_text("x")

    tracker.track(path)
    tracker.forget(path)
    clock.advance(5.0)

    try:
        assert tracker.check_stability() == []
        assert emitted == []
    finally:
        tracker.clear()


def test_timer_fires_and_tears_itself_down(tmp_path):
    done = threading.Event()
    emitted = []

    def on_stable(path):
        emitted.append(path)
        done.set()

    tracker = StabilityTracker(on_stable, poll_interval=0.05, quiet_seconds=0.1)
    path = tmp_path / "timer.txt"
    path.write_text("x")

    try:
        tracker.track(path)
        assert tracker.timer_active

        assert done.wait(5.0)
        assert emitted == [path]
        assert wait_until(lambda: not tracker.timer_active, timeout=5.0)
    finally:
        tracker.clear()


def test_timer_is_recreated_on_next_event(tmp_path):
    done = threading.Event()
    tracker = StabilityTracker(lambda p: done.set(), poll_interval=0.05, quiet_seconds=0.05)
    first = tmp_path / "first.txt"
    first.write_text("x")

    try:
        tracker.track(first)
        assert done.wait(5.0)
        assert wait_until(lambda: not tracker.timer_active, timeout=5.0)

        second = tmp_path / "second.txt"
        second.write_text("y")
        tracker.track(second)
        assert tracker.timer_active
    finally:
        tracker.clear()
