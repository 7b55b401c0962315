import os
import stat
from datetime import datetime

from domains.file_ingest.processors.retention import BaselineRetentionCleaner

NOW = datetime(2025, 7, 20, 12, 0, 0)


def _cleaner(folder, days=7):
    return BaselineRetentionCleaner(folder, days, now=lambda: NOW)


def test_expired_records_are_deleted(tmp_path):
    old = tmp_path / "20250701_080000_PSD276.1_C3W1_SCAN.info"
    fresh = tmp_path / "20250719_080000_PSD276.1_C3W1_SCAN.info"
    old.touch()
    fresh.touch()

    deleted = _cleaner(tmp_path).run_once()

    assert deleted == [old]
    assert not old.exists()
    assert fresh.exists()


def test_unrelated_files_are_kept(tmp_path):
    notes = tmp_path / "notes.info"
    data = tmp_path / "20250101_000000_old.dat"
    notes.touch()
    data.touch()

    assert _cleaner(tmp_path).run_once() == []
    assert notes.exists()
    assert data.exists()


def test_read_only_record_is_deleted(tmp_path):
    record = tmp_path / "20250601_080000_PSD276.1_C3W1_SCAN.info"
    record.touch()
    os.chmod(record, stat.S_IREAD)

    assert _cleaner(tmp_path).run_once() == [record]
    assert not record.exists()


def test_disabled_retention_does_nothing(tmp_path):
    record = tmp_path / "20200101_000000_PSD276.1_C3W1_SCAN.info"
    record.touch()

    cleaner = _cleaner(tmp_path, days=0)
    cleaner.start()

    assert cleaner.run_once() == []
    assert record.exists()
    cleaner.stop()


def test_missing_folder_is_ignored(tmp_path):
    assert _cleaner(tmp_path / "nope").run_once() == []
