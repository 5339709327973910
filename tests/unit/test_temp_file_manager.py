"""
Unit tests for per-request working directories.
"""

import pytest

from pdfconvert.utils.temp_file_manager import TempFileError, WorkDirectory


@pytest.mark.asyncio
async def test_created_under_root(work_root):
    async with WorkDirectory(work_root, prefix="job-1") as work_dir:
        assert work_dir.path.parent == work_root
        assert work_dir.path.name.startswith("job-1_")
        assert work_dir.path.is_dir()
    assert not work_dir.path.exists()
    assert work_dir.cleaned_up


@pytest.mark.asyncio
async def test_removed_on_exception(work_root):
    work_dir = WorkDirectory(work_root)
    with pytest.raises(RuntimeError):
        async with work_dir:
            (work_dir.path / "page.png").write_bytes(b"data")
            raise RuntimeError("boom")
    assert not work_dir.path.exists()
    assert work_dir.cleanup_count == 1


def test_cleanup_runs_once(work_root):
    work_dir = WorkDirectory(work_root)
    work_dir.create()
    work_dir.cleanup()
    work_dir.cleanup()
    assert work_dir.cleanup_count == 1
    assert not work_dir.path.exists()


def test_cleanup_before_create_is_harmless(work_root):
    work_dir = WorkDirectory(work_root)
    work_dir.cleanup()
    assert work_dir.cleaned_up
    assert work_dir.path is None


def test_unwritable_root_raises(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_bytes(b"x")
    with pytest.raises(TempFileError):
        WorkDirectory(blocker / "work").create()


@pytest.mark.asyncio
async def test_concurrent_requests_get_distinct_directories(work_root):
    async with WorkDirectory(work_root, "job") as first, WorkDirectory(work_root, "job") as second:
        assert first.path != second.path
