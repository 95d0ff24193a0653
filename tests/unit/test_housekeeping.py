from pdfbatch.infrastructure.file_manager import LocalFileManager
from pdfbatch.infrastructure.housekeeping import HousekeepingService


def test_cleanup_job_dirs_removes_subdirectories(tmp_path):
    work = tmp_path / "work"
    for job_id in ("job-1", "job-2"):
        job_dir = work / job_id
        job_dir.mkdir(parents=True)
        (job_dir / "doc.pdf").write_text("x")
    stray = work / "keep.txt"
    stray.write_text("not a job")

    removed = HousekeepingService().cleanup_job_dirs(work)

    assert removed == 2
    assert list(work.iterdir()) == [stray]


def test_cleanup_job_dirs_missing_working_dir(tmp_path):
    assert HousekeepingService().cleanup_job_dirs(tmp_path / "missing") == 0


def test_local_file_manager_copies_into_new_folder(tmp_path):
    src = tmp_path / "work" / "doc_20250101_120000.pdf"
    src.parent.mkdir()
    src.write_bytes(b"%PDF small")
    dest_dir = tmp_path / "downloads" / "nested"

    saved = LocalFileManager().copy_to(src, dest_dir)

    assert saved == dest_dir / src.name
    assert saved.read_bytes() == b"%PDF small"
    assert src.exists()
