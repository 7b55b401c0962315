import textwrap

import pytest

from domains.file_ingest.dispatch.plugins import PluginInvoker, PluginRegistry
from domains.file_ingest.dispatch.queue import DispatchConsumer, DispatchQueue, QueueItem
from domains.file_ingest.processors.baseline import BaselineCorrelator

from tests.helpers import wait_until

RECORDING_PLUGIN = '''
from pathlib import Path


class RecordingUploader:
    def process_and_upload(self, file_path, config_path):
        if "poison" in file_path:
            raise RuntimeError("cannot upload " + file_path)
        with open(config_path, "a") as out:
            out.write(Path(file_path).name + "\\n")
'''


@pytest.fixture
def setup(tmp_path):
    plugin = tmp_path / "recording.py"
    plugin.write_text(textwrap.dedent(RECORDING_PLUGIN))
    received = tmp_path / "received.txt"

    registry = PluginRegistry(tmp_path / "library", tmp_path / "library" / "plugins.json")
    registry.add("Recorder", plugin)
    invoker = PluginInvoker(config_path=received)
    return registry, invoker, received


def _received(path):
    return path.read_text().splitlines() if path.exists() else []


def test_queue_is_fifo_and_clearable(tmp_path):
    dispatch_queue = DispatchQueue()
    for name in ("a", "b", "c"):
        dispatch_queue.put(QueueItem(path=tmp_path / name, plugin="Recorder"))

    assert len(dispatch_queue) == 3
    assert dispatch_queue.get(timeout=0.1).path.name == "a"
    assert dispatch_queue.clear() == 2
    assert dispatch_queue.get(timeout=0.01) is None


def test_process_dispatches_to_named_plugin(tmp_path, setup):
    registry, invoker, received = setup
    data = tmp_path / "LOG_42.txt"
    data.write_text("x")
    consumer = DispatchConsumer(DispatchQueue(), registry, invoker)

    result = consumer.process(QueueItem(path=data, plugin="recorder"))

    assert result.ok
    assert result.plugin == "Recorder"
    assert _received(received) == ["LOG_42.txt"]
    assert consumer.processed == 1


def test_unknown_plugin_abandons_item(tmp_path, setup, log_messages):
    registry, invoker, received = setup
    consumer = DispatchConsumer(DispatchQueue(), registry, invoker)

    assert consumer.process(QueueItem(path=tmp_path / "a.txt", plugin="Nope")) is None
    assert consumer.failed == 1
    assert any("Plugin module not found" in m for m in log_messages)


def test_consumer_survives_failing_items(tmp_path, setup):
    registry, invoker, received = setup
    dispatch_queue = DispatchQueue()
    consumer = DispatchConsumer(dispatch_queue, registry, invoker, poll_interval=0.05)

    dispatch_queue.put(QueueItem(path=tmp_path / "poison.txt", plugin="Recorder"))
    dispatch_queue.put(QueueItem(path=tmp_path / "missing-plugin.txt", plugin="Ghost"))
    dispatch_queue.put(QueueItem(path=tmp_path / "good.txt", plugin="Recorder"))

    consumer.start()
    try:
        assert wait_until(lambda: _received(received) == ["good.txt"], timeout=5.0)
    finally:
        consumer.stop()

    assert consumer.failed == 2
    assert consumer.processed == 1
    assert not consumer.is_running


def test_stop_drops_queued_items(tmp_path, setup, log_messages):
    registry, invoker, received = setup
    dispatch_queue = DispatchQueue()
    consumer = DispatchConsumer(dispatch_queue, registry, invoker)

    for name in ("a.txt", "b.txt"):
        dispatch_queue.put(QueueItem(path=tmp_path / name, plugin="Recorder"))

    consumer.stop()

    assert len(dispatch_queue) == 0
    assert _received(received) == []
    assert any("Dropped 2 queued item(s)" in m for m in log_messages)


def test_item_is_correlated_before_dispatch(tmp_path, setup):
    registry, invoker, received = setup
    base = tmp_path / "base"
    upload = tmp_path / "upload"
    (base / "Baseline").mkdir(parents=True)
    upload.mkdir()
    (base / "Baseline" / "20250711_142530_PSD276.1_C3W1_SCAN.info").touch()
    raw = upload / "20250711_142530_PSD276.1_#1_RAW.dat"
    raw.write_text("raw")

    correlator = BaselineCorrelator(base, [upload], poll_interval=0.02, ready_check=lambda p: True)
    consumer = DispatchConsumer(DispatchQueue(), registry, invoker, correlator=correlator, baseline_timeout=1.0)

    result = consumer.process(QueueItem(path=raw, plugin="Recorder", route="wafer"))

    assert result.ok
    assert _received(received) == ["20250711_142530_PSD276.1_C3W1_RAW.dat"]
    assert (upload / "20250711_142530_PSD276.1_C3W1_RAW.dat").exists()


def test_uncorrelated_item_is_dispatched_after_timeout(tmp_path, setup):
    registry, invoker, received = setup
    base = tmp_path / "base"
    base.mkdir()
    raw = tmp_path / "20250711_142530_PSD276.1_#1_RAW.dat"
    raw.write_text("raw")

    correlator = BaselineCorrelator(base, poll_interval=0.02, ready_check=lambda p: True)
    consumer = DispatchConsumer(DispatchQueue(), registry, invoker, correlator=correlator, baseline_timeout=0.1)

    assert consumer.process(QueueItem(path=raw, plugin="Recorder")).ok
    assert _received(received) == [raw.name]
