"""Tests for the single-file copy engine."""
import errno
import os
import shutil
import threading

import pytest

from file_copier.copier import (
    TEMP_SUFFIX,
    ChangeKind,
    CopyOutcome,
    CopyResult,
    CopyStats,
    FileCopier,
    is_transient_error,
)


def busy_error() -> OSError:
    return OSError(errno.EBUSY, "Device or resource busy")


class FlakyCopy:
    """copy_function that fails a given number of times before copying."""

    def __init__(self, failures: int, error_factory=busy_error):
        self.failures = failures
        self.error_factory = error_factory
        self.calls = 0

    def __call__(self, src, dst):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error_factory()
        return shutil.copy2(src, dst)


class _SharingViolation(OSError):
    winerror = 32


@pytest.fixture
def source_file(folders):
    src, _ = folders
    path = src / "report.pdf"
    path.write_bytes(b"new content")
    return path


@pytest.fixture
def dest_file(folders):
    _, dst = folders
    return dst / "report.pdf"


def leftovers(directory):
    return [p.name for p in directory.iterdir() if p.name.endswith(TEMP_SUFFIX)]


def test_created_copies_when_destination_missing(source_file, dest_file):
    outcome = FileCopier(retry_delay=0).copy(source_file, dest_file, ChangeKind.CREATED)

    assert outcome.result is CopyResult.COPIED
    assert outcome.attempts == 1
    assert outcome.retries == 0
    assert dest_file.read_bytes() == b"new content"
    assert leftovers(dest_file.parent) == []


def test_created_skips_existing_destination_without_attempt(source_file, dest_file):
    dest_file.write_bytes(b"old content")
    copy = FlakyCopy(failures=0)

    outcome = FileCopier(copy_function=copy).copy(source_file, dest_file, ChangeKind.CREATED)

    assert outcome.result is CopyResult.SKIPPED_EXISTS
    assert outcome.attempts == 0
    assert copy.calls == 0
    assert dest_file.read_bytes() == b"old content"


def test_changed_overwrites_existing_destination(source_file, dest_file):
    dest_file.write_bytes(b"old content")
    copy = FlakyCopy(failures=0)

    outcome = FileCopier(copy_function=copy).copy(source_file, dest_file, ChangeKind.CHANGED)

    assert outcome.result is CopyResult.COPIED
    assert copy.calls == 1
    assert dest_file.read_bytes() == b"new content"


def test_changed_copies_when_destination_missing(source_file, dest_file):
    outcome = FileCopier().copy(source_file, dest_file, ChangeKind.CHANGED)
    assert outcome.result is CopyResult.COPIED
    assert dest_file.exists()


@pytest.mark.parametrize("failures", [1, 2, 4])
def test_transient_failures_are_retried_until_success(source_file, dest_file, failures):
    copy = FlakyCopy(failures=failures)

    outcome = FileCopier(max_attempts=5, retry_delay=0, copy_function=copy).copy(
        source_file, dest_file, ChangeKind.CREATED
    )

    assert outcome.result is CopyResult.COPIED
    assert outcome.retries == failures
    assert copy.calls == failures + 1
    assert dest_file.read_bytes() == b"new content"


def test_gives_up_after_max_attempts(source_file, dest_file):
    copy = FlakyCopy(failures=100)

    outcome = FileCopier(max_attempts=5, retry_delay=0, copy_function=copy).copy(
        source_file, dest_file, ChangeKind.CREATED
    )

    assert outcome.result is CopyResult.FAILED_AFTER_RETRIES
    assert outcome.attempts == 5
    assert copy.calls == 5
    assert "busy" in outcome.error
    assert not dest_file.exists()
    assert leftovers(dest_file.parent) == []


def test_permanent_error_is_not_retried(source_file, dest_file):
    copy = FlakyCopy(
        failures=100,
        error_factory=lambda: PermissionError(errno.EACCES, "Permission denied"),
    )

    outcome = FileCopier(max_attempts=5, retry_delay=0, copy_function=copy).copy(
        source_file, dest_file, ChangeKind.CREATED
    )

    assert outcome.result is CopyResult.FAILED_PERMANENT
    assert outcome.attempts == 1
    assert copy.calls == 1


def test_missing_source_is_a_permanent_failure(folders, dest_file):
    src, _ = folders
    outcome = FileCopier(retry_delay=0).copy(src / "gone.txt", dest_file, ChangeKind.CREATED)

    assert outcome.result is CopyResult.FAILED_PERMANENT
    assert outcome.attempts == 1
    assert not dest_file.exists()


def test_interrupted_copy_leaves_no_partial_file(source_file, dest_file):
    def half_copy(src, dst):
        with open(dst, "wb") as fh:
            fh.write(b"new")
        raise busy_error()

    outcome = FileCopier(max_attempts=3, retry_delay=0, copy_function=half_copy).copy(
        source_file, dest_file, ChangeKind.CHANGED
    )

    assert outcome.result is CopyResult.FAILED_AFTER_RETRIES
    assert not dest_file.exists()
    assert list(dest_file.parent.iterdir()) == []


def test_failed_overwrite_keeps_previous_destination(source_file, dest_file):
    dest_file.write_bytes(b"old content")
    copy = FlakyCopy(failures=100)

    FileCopier(max_attempts=2, retry_delay=0, copy_function=copy).copy(
        source_file, dest_file, ChangeKind.CHANGED
    )

    assert dest_file.read_bytes() == b"old content"
    assert leftovers(dest_file.parent) == []


def test_created_does_not_clobber_file_appearing_during_copy(source_file, dest_file):
    def racing_copy(src, dst):
        shutil.copy2(src, dst)
        dest_file.write_bytes(b"written by someone else")

    outcome = FileCopier(copy_function=racing_copy).copy(source_file, dest_file, ChangeKind.CREATED)

    assert outcome.result is CopyResult.SKIPPED_EXISTS
    assert dest_file.read_bytes() == b"written by someone else"
    assert leftovers(dest_file.parent) == []


def test_created_commit_never_renames_over_destination(source_file, dest_file, monkeypatch):
    replaced = []
    real_replace = os.replace

    def recording_replace(src, dst):
        replaced.append(dst)
        return real_replace(src, dst)

    monkeypatch.setattr(os, "replace", recording_replace)

    outcome = FileCopier().copy(source_file, dest_file, ChangeKind.CREATED)

    assert outcome.result is CopyResult.COPIED
    assert dest_file.read_bytes() == b"new content"
    assert replaced == []
    assert leftovers(dest_file.parent) == []


def test_created_commit_without_hard_links_falls_back_to_rename(source_file, dest_file, monkeypatch):
    def no_links(src, dst):
        raise OSError(errno.EPERM, "Operation not permitted")

    monkeypatch.setattr(os, "link", no_links)

    outcome = FileCopier().copy(source_file, dest_file, ChangeKind.CREATED)

    assert outcome.result is CopyResult.COPIED
    assert outcome.attempts == 1
    assert dest_file.read_bytes() == b"new content"
    assert leftovers(dest_file.parent) == []


def test_created_without_hard_links_still_skips_file_appearing_during_copy(
    source_file, dest_file, monkeypatch
):
    def no_links(src, dst):
        raise OSError(errno.EPERM, "Operation not permitted")

    def racing_copy(src, dst):
        shutil.copy2(src, dst)
        dest_file.write_bytes(b"written by someone else")

    monkeypatch.setattr(os, "link", no_links)

    outcome = FileCopier(copy_function=racing_copy).copy(source_file, dest_file, ChangeKind.CREATED)

    assert outcome.result is CopyResult.SKIPPED_EXISTS
    assert dest_file.read_bytes() == b"written by someone else"
    assert leftovers(dest_file.parent) == []


def test_missing_destination_folder_is_created(source_file, tmp_path):
    dest = tmp_path / "new" / "folder" / "report.pdf"
    outcome = FileCopier().copy(source_file, dest, ChangeKind.CREATED)
    assert outcome.result is CopyResult.COPIED
    assert dest.read_bytes() == b"new content"


def test_cancel_event_stops_retry_loop(source_file, dest_file):
    cancel = threading.Event()
    cancel.set()
    copy = FlakyCopy(failures=100)

    outcome = FileCopier(max_attempts=5, retry_delay=10, copy_function=copy, cancel_event=cancel).copy(
        source_file, dest_file, ChangeKind.CREATED
    )

    assert outcome.result is CopyResult.CANCELLED
    assert copy.calls == 1


def test_unexpected_exception_is_reported_not_raised(source_file, dest_file):
    def broken(src, dst):
        raise RuntimeError("boom")

    outcome = FileCopier(copy_function=broken).copy(source_file, dest_file, ChangeKind.CREATED)

    assert outcome.result is CopyResult.FAILED_PERMANENT
    assert outcome.error == "boom"
    assert leftovers(dest_file.parent) == []


@pytest.mark.parametrize(
    "exc, expected",
    [
        (OSError(errno.EBUSY, "busy"), True),
        (OSError(errno.EAGAIN, "try again"), True),
        (_SharingViolation(errno.EACCES, "in use by another process"), True),
        (PermissionError(errno.EACCES, "Permission denied"), False),
        (OSError(errno.ENOSPC, "No space left on device"), False),
        (FileNotFoundError(errno.ENOENT, "No such file"), False),
        (ValueError("not an OS error"), False),
    ],
)
def test_error_classification(exc, expected):
    assert is_transient_error(exc) is expected


def test_stats_count_outcomes():
    stats = CopyStats()
    stats.record(CopyOutcome("a", CopyResult.COPIED, destination="/out/a"))
    stats.record(CopyOutcome("b", CopyResult.SKIPPED_EXISTS))
    stats.record(CopyOutcome("c", CopyResult.FAILED_AFTER_RETRIES))
    stats.record(CopyOutcome("d", CopyResult.FAILED_PERMANENT))

    assert stats.total_copied == 1
    assert stats.total_skipped == 1
    assert stats.total_failed == 2
    assert stats.last_copied_file == "/out/a"
    assert stats.summary() == "1 copied, 1 skipped, 2 failed"
