"""
Pytest fixtures for the File Copier test suite
"""
import functools
import logging
import threading
import time
from pathlib import Path

import pytest
from watchdog.observers.polling import PollingObserver

from file_copier.config import Config


@pytest.fixture(scope="session", autouse=True)
def setup_test_logging():
    """Only warnings and errors reach stderr while testing."""
    root_logger = logging.getLogger()
    handler = logging.StreamHandler()
    handler.setLevel(logging.WARNING)
    handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)-8s | %(name)s - %(message)s"))
    root_logger.addHandler(handler)
    yield
    root_logger.removeHandler(handler)


@pytest.fixture
def observer_factory():
    """Polling observer: independent of inotify/FSEvents availability."""
    return functools.partial(PollingObserver, timeout=0.1)


@pytest.fixture
def folders(tmp_path: Path) -> tuple[Path, Path]:
    src = tmp_path / "source"
    dst = tmp_path / "destination"
    src.mkdir()
    dst.mkdir()
    return src, dst


@pytest.fixture
def config(tmp_path: Path, folders) -> Config:
    src, dst = folders
    cfg = Config(tmp_path / "config.json")
    cfg.source_folder = str(src)
    cfg.destination_folder = str(dst)
    cfg.restart_enabled = False
    cfg.retry_delay = 0
    cfg.worker_count = 1
    return cfg


def wait_for(predicate, timeout: float = 5.0, interval: float = 0.02) -> bool:
    """Poll *predicate* until it is true or *timeout* runs out."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class CountingCallback:
    """Thread-safe call counter for timer and callback tests."""

    def __init__(self, error: Exception | None = None):
        self.count = 0
        self._lock = threading.Lock()
        self._error = error

    def __call__(self, *args):
        with self._lock:
            self.count += 1
        if self._error is not None:
            raise self._error
