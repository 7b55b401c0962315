import pytest

Image = pytest.importorskip("PIL.Image", reason="Pillow is required for PDF merge tests")

from domains.file_ingest.processors.pdf_merge import (  # noqa: E402
    ImageMerger,
    merge_images_to_pdf,
    parse_page_name,
)


def _page(path, colour="white", size=(40, 60)):
    Image.new("RGB", size, colour).save(path)
    return path


@pytest.fixture
def scans(tmp_path):
    folder = tmp_path / "scans"
    folder.mkdir()
    return folder


def _merger(scans, clock, **kwargs):
    # Long poll interval: tests drive check_groups() by hand
    return ImageMerger(scans, quiet_seconds=30.0, poll_interval=60, clock=clock, **kwargs)


def test_parse_page_name():
    assert parse_page_name("DOC_A_12.jpg") == ("DOC_A", 12)
    assert parse_page_name("cover.png") is None


def test_merge_writes_one_page_per_image_and_deletes_sources(tmp_path, log_messages):
    pages = [_page(tmp_path / f"DOC_{n}.png", colour) for n, colour in ((1, "red"), (2, "blue"))]
    output = tmp_path / "out" / "DOC.pdf"

    result = merge_images_to_pdf(pages, output)

    assert result.merged == 2 and result.deleted == 2 and result.delete_failed == 0
    data = output.read_bytes()
    assert data.startswith(b"%PDF")
    assert b"/Count 2" in data
    assert not any(p.exists() for p in pages)
    assert any("Images merged: 2, deleted: 2, delete-failed: 0" in m for m in log_messages)


def test_unreadable_page_is_skipped_and_kept(tmp_path):
    good = _page(tmp_path / "DOC_1.png")
    broken = tmp_path / "DOC_2.png"
    broken.write_bytes(b"not an image")

    result = merge_images_to_pdf([good, broken], tmp_path / "DOC.pdf")

    assert result.merged == 1
    assert not good.exists()
    assert broken.exists()


def test_nothing_to_merge(tmp_path):
    assert merge_images_to_pdf([], tmp_path / "DOC.pdf") is None
    assert not (tmp_path / "DOC.pdf").exists()


def test_group_merges_after_quiet_period_in_page_order(scans, clock):
    merger = _merger(scans, clock)
    try:
        for n in (10, 2, 1):
            assert merger.add_page(_page(scans / f"SCAN_{n}.jpg"))

        assert [p.name for p in merger.pages_for("SCAN")] == ["SCAN_1.jpg", "SCAN_2.jpg", "SCAN_10.jpg"]

        clock.advance(29.0)
        assert merger.check_groups() == []

        # A late page restarts the quiet period for its group
        merger.add_page(_page(scans / "SCAN_11.jpg"))
        clock.advance(29.0)
        assert merger.check_groups() == []

        clock.advance(1.0)
        assert merger.check_groups() == ["SCAN"]
        assert b"/Count 4" in (scans / "SCAN.pdf").read_bytes()
        assert merger.pages_for("SCAN") == []
        assert merger.pending_count == 0
    finally:
        merger.clear()


def test_groups_are_merged_independently(scans, clock, tmp_path):
    merger = _merger(scans, clock, output_folder=tmp_path / "pdf")
    try:
        merger.add_page(_page(scans / "A_1.png"))
        clock.advance(20.0)
        merger.add_page(_page(scans / "B_1.png"))

        clock.advance(10.0)
        assert merger.check_groups() == ["A"]
        assert (tmp_path / "pdf" / "A.pdf").exists()
        assert (scans / "B_1.png").exists()
    finally:
        merger.clear()


def test_non_page_files_are_ignored(scans, clock):
    merger = _merger(scans, clock)
    try:
        (scans / "notes.txt").write_text("x")
        assert not merger.add_page(scans / "notes.txt")
        assert not merger.add_page(_page(scans / "cover.png"))
        assert merger.pending_count == 0
    finally:
        merger.clear()


def test_base_name_is_merged_once(scans, clock, log_messages):
    merger = _merger(scans, clock)
    try:
        merger.add_page(_page(scans / "DOC_1.png"))
        clock.advance(30.0)
        merger.check_groups()

        assert not merger.add_page(_page(scans / "DOC_2.png"))
        assert merger.merge_group("DOC") is None
        assert any("Skip duplicate merge: DOC" in m for m in log_messages)
    finally:
        merger.clear()
