"""
File copy engine for File Copier.

Copies a single file from the watched source folder to the destination.
A file created in the source is never allowed to clobber an existing
destination file; a changed one overwrites it.  Copies go through a
temporary file in the destination folder and are committed with an atomic
rename (a hard link for new files, which fails if the name is taken), so a
failed copy never leaves a partial file under the real name.

Failures are classified: lock and sharing violations (the writer still has
the file open) are retried a bounded number of times, anything else is
reported straight away.
"""

import errno
import logging
import os
import shutil
import tempfile
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable

logger = logging.getLogger(__name__)

TEMP_SUFFIX = ".partial"

_TRANSIENT_ERRNOS = frozenset(
    getattr(errno, name)
    for name in ("EBUSY", "EAGAIN", "EWOULDBLOCK", "ETXTBSY", "EDEADLK", "ETIMEDOUT", "EINTR")
    if hasattr(errno, name)
)
# ERROR_SHARING_VIOLATION, ERROR_LOCK_VIOLATION
_TRANSIENT_WINERRORS = frozenset({32, 33})


class ChangeKind(Enum):
    """What happened to a file in the watched folder."""
    CREATED = "created"
    CHANGED = "changed"


class CopyResult(Enum):
    COPIED = "copied"
    SKIPPED_EXISTS = "skipped_exists"
    FAILED_AFTER_RETRIES = "failed_after_retries"
    FAILED_PERMANENT = "failed_permanent"
    CANCELLED = "cancelled"


@dataclass
class CopyOutcome:
    """Result of handling one watch event."""
    file_name: str
    result: CopyResult = CopyResult.FAILED_PERMANENT
    attempts: int = 0
    error: str = ""
    source: str = ""
    destination: str = ""

    @property
    def retries(self) -> int:
        """Number of attempts after the first one."""
        return max(0, self.attempts - 1)

    @property
    def succeeded(self) -> bool:
        return self.result is CopyResult.COPIED


@dataclass
class CopyStats:
    """Running totals of copy outcomes, shared by the copy workers."""
    total_copied: int = 0
    total_skipped: int = 0
    total_failed: int = 0
    total_cancelled: int = 0
    last_copied_file: str = ""
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record(self, outcome: CopyOutcome) -> None:
        with self._lock:
            if outcome.result is CopyResult.COPIED:
                self.total_copied += 1
                self.last_copied_file = outcome.destination
            elif outcome.result is CopyResult.SKIPPED_EXISTS:
                self.total_skipped += 1
            elif outcome.result is CopyResult.CANCELLED:
                self.total_cancelled += 1
            else:
                self.total_failed += 1

    def summary(self) -> str:
        with self._lock:
            return (
                f"{self.total_copied} copied, {self.total_skipped} skipped, "
                f"{self.total_failed} failed"
            )


def is_transient_error(exc: BaseException) -> bool:
    """Return True if *exc* is worth retrying (file locked or busy)."""
    if not isinstance(exc, OSError):
        return False
    winerror = getattr(exc, "winerror", None)
    if winerror is not None:
        return winerror in _TRANSIENT_WINERRORS
    return exc.errno in _TRANSIENT_ERRNOS


class FileCopier:
    """
    Copies one file per call, retrying transient failures.

    Parameters
    ----------
    max_attempts : int
        Total number of copy attempts (minimum 1).
    retry_delay : float
        Seconds to wait between attempts.
    copy_function : callable
        ``copy_function(src, dst)`` used for the data copy, like
        ``shutil.copytree``'s argument of the same name.
    cancel_event : threading.Event, optional
        When set, a retry loop stops at its next wait instead of sleeping.

    The copier keeps no per-copy state, so one instance can serve several
    worker threads.
    """

    def __init__(
        self,
        max_attempts: int = 5,
        retry_delay: float = 1.0,
        copy_function: Callable[[str, str], object] = shutil.copy2,
        cancel_event: threading.Event | None = None,
    ):
        self._max_attempts = max(1, int(max_attempts))
        self._retry_delay = max(0.0, float(retry_delay))
        self._copy_function = copy_function
        self.cancel_event = cancel_event or threading.Event()

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def copy(self, source_file: str | Path, dest_file: str | Path, change_kind: ChangeKind) -> CopyOutcome:
        """Copy *source_file* to *dest_file* according to *change_kind*.

        Never raises for copy errors; the returned outcome says what happened.
        """
        source = Path(source_file)
        dest = Path(dest_file)
        outcome = CopyOutcome(file_name=source.name, source=str(source), destination=str(dest))
        overwrite = change_kind is ChangeKind.CHANGED

        try:
            if not overwrite and dest.exists():
                outcome.result = CopyResult.SKIPPED_EXISTS
                logger.info(
                    "File %s already exists in %s. Skipping copying.",
                    source.name, dest.parent,
                )
                return outcome

            for attempt in range(1, self._max_attempts + 1):
                outcome.attempts = attempt
                try:
                    self._copy_atomic(source, dest, overwrite)
                except FileExistsError:
                    outcome.result = CopyResult.SKIPPED_EXISTS
                    logger.info(
                        "File %s appeared in %s during the copy. Skipping copying.",
                        source.name, dest.parent,
                    )
                    return outcome
                except OSError as exc:
                    outcome.error = str(exc)
                    if not is_transient_error(exc):
                        outcome.result = CopyResult.FAILED_PERMANENT
                        logger.error("Copying %s failed, not retrying: %s", source.name, exc)
                        return outcome
                    if attempt == self._max_attempts:
                        break
                    logger.warning(
                        "Error copying file %s: %s. Retrying in %.1fs (attempt %d/%d)…",
                        source.name, exc, self._retry_delay, attempt, self._max_attempts,
                    )
                    if self.cancel_event.wait(self._retry_delay):
                        outcome.result = CopyResult.CANCELLED
                        logger.warning("Copy of %s cancelled after %d attempt(s).", source.name, attempt)
                        return outcome
                else:
                    outcome.result = CopyResult.COPIED
                    outcome.error = ""
                    logger.info("Copied file %s to %s.", source.name, dest.parent)
                    return outcome

            outcome.result = CopyResult.FAILED_AFTER_RETRIES
            logger.error(
                "Failed to copy file %s after %d attempts: %s",
                source.name, self._max_attempts, outcome.error,
            )
        except Exception as exc:
            outcome.result = CopyResult.FAILED_PERMANENT
            outcome.error = str(exc)
            logger.exception("Unexpected error copying %s", source)
        return outcome

    def _copy_atomic(self, source: Path, dest: Path, overwrite: bool) -> None:
        """Copy into a temporary sibling of *dest*, then rename it into place."""
        dest.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{dest.name}.", suffix=TEMP_SUFFIX, dir=str(dest.parent)
        )
        os.close(fd)
        try:
            self._copy_function(str(source), tmp_name)
            if overwrite:
                os.replace(tmp_name, dest)
                return
            _link_new(tmp_name, dest)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                logger.debug("Could not remove temporary file %s", tmp_name, exc_info=True)
            raise


def _link_new(tmp_name: str, dest: Path) -> None:
    """Move *tmp_name* to *dest*, raising ``FileExistsError`` if *dest* exists.

    A hard link fails atomically on an existing name.  Where the file system
    has no hard links (FAT, some network shares) the existence check and the
    rename are separate steps.
    """
    try:
        os.link(tmp_name, dest)
    except FileExistsError:
        raise
    except OSError as exc:
        logger.debug("Hard link to %s not possible (%s); renaming instead.", dest, exc)
        if dest.exists():
            raise FileExistsError(errno.EEXIST, "Destination file already exists", str(dest))
        os.replace(tmp_name, dest)
        return
    try:
        os.unlink(tmp_name)
    except OSError:
        logger.debug("Could not remove temporary file %s", tmp_name, exc_info=True)
