"""
Service lifecycle and hosting for File Copier.

``FileCopierService`` owns everything that runs: the directory watcher with
its copy workers and the daily restart timer.  The rest of this module
hosts it:

**Any platform** — foreground process (blocks until Ctrl-C / SIGTERM):
    python -m file_copier run [--config PATH]

**Windows** — Windows service via pywin32 (``pip install file-copier[windows]``):
    python -m file_copier install
    python -m file_copier start
    python -m file_copier stop
    python -m file_copier remove
"""

import argparse
import logging
import logging.handlers
import os
import signal
import sys
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from file_copier import __app_name__, __version__
from file_copier.config import Config
from file_copier.copier import FileCopier
from file_copier.paths import resolve_source_path
from file_copier.platform_utils import IS_WINDOWS, get_log_path, spawn_replacement
from file_copier.scheduler import RestartScheduler, compute_initial_delay
from file_copier.watcher import DirectoryWatcher, create_observer

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_HANDLER_PREFIX = "file_copier."

# ---- Windows service (pywin32) -----------------------------------------

_HAS_WIN32 = False
if IS_WINDOWS:
    try:
        import servicemanager  # type: ignore[import-untyped]
        import win32service  # type: ignore[import-untyped]
        import win32serviceutil  # type: ignore[import-untyped]
        _HAS_WIN32 = True
    except ImportError:
        pass


def setup_logging(config: Config, log_path: Path | None = None) -> None:
    """Configure a daily rolling log file and a stderr handler."""
    log_path = log_path or get_log_path()
    level = getattr(logging, config.log_level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in list(root_logger.handlers):
        if (handler.get_name() or "").startswith(_HANDLER_PREFIX):
            root_logger.removeHandler(handler)
            handler.close()

    fmt = logging.Formatter(LOG_FORMAT)

    # New file every midnight
    fh = logging.handlers.TimedRotatingFileHandler(
        str(log_path),
        when="midnight",
        backupCount=config.log_backup_count,
        encoding="utf-8",
    )
    fh.set_name(_HANDLER_PREFIX + "file")
    fh.setLevel(level)
    fh.setFormatter(fmt)
    root_logger.addHandler(fh)

    sh = logging.StreamHandler(sys.stderr)
    sh.set_name(_HANDLER_PREFIX + "stderr")
    sh.setLevel(level)
    sh.setFormatter(fmt)
    root_logger.addHandler(sh)


class FileCopierService:
    """
    Starts and stops the copy pipeline for one configuration.

    Parameters
    ----------
    config : Config
        Loaded configuration; validated on ``start``.
    spawn : callable or None
        Launches the replacement process on the daily restart.  ``None``
        restarts in place instead (stop, then start again in this process),
        which is what a Windows service host needs.
    observer_factory : callable
        Creates the watchdog observer.
    """

    def __init__(
        self,
        config: Config,
        spawn: Callable[[], Any] | None = spawn_replacement,
        observer_factory: Callable[[], Any] = create_observer,
    ):
        self.config = config
        self.watcher: DirectoryWatcher | None = None
        self.scheduler = RestartScheduler()
        self.source_path = ""
        self.degraded = False
        self.restart_requested = False
        self._spawn = spawn
        self._observer_factory = observer_factory
        self._exit = threading.Event()
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, strict: bool = False) -> bool:
        """Start watching and arm the daily restart.

        Startup errors are logged and leave the service running without the
        failed part (``degraded``).  With *strict* they are re-raised.
        Returns True when everything started.
        """
        with self._lock:
            if self.watcher is not None or self.scheduler.is_armed:
                logger.warning("Service is already running; stop it before starting again.")
                return not self.degraded
            self.degraded = False
            try:
                self._start_watcher()
            except Exception:
                self.degraded = True
                logger.exception("Could not start watching; no files will be copied.")
                if strict:
                    raise
            try:
                self._arm_restart()
            except Exception:
                self.degraded = True
                logger.exception("Could not schedule the daily restart.")
                if strict:
                    raise
            return not self.degraded

    def stop(self) -> None:
        """Stop the watcher and the restart timer.  Safe to call repeatedly."""
        with self._lock:
            watcher, self.watcher = self.watcher, None
            if watcher is not None:
                watcher.stop()
                logger.info("Copied so far: %s", watcher.stats.summary())
            self.scheduler.cancel()

    def restart(self) -> None:
        """Daily restart: replace this process, or reload in place."""
        logger.info("Restarting application...")
        if self._spawn is None:
            self.stop()
            self.start()
            return
        try:
            self._spawn()
        except Exception as exc:
            logger.error("Error occurred during application restart: %s", exc, exc_info=True)
            return
        self.restart_requested = True
        self.stop()
        self.request_exit()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until ``request_exit`` is called; return True if it was."""
        return self._exit.wait(timeout)

    def request_exit(self) -> None:
        self._exit.set()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _start_watcher(self) -> None:
        cfg = self.config
        cfg.validate()
        self.source_path = resolve_source_path(
            cfg.source_folder,
            cfg.use_month_folder,
            cfg.month_folder_locale,
        )
        self._ensure_source_dir(self.source_path)

        copier = FileCopier(max_attempts=cfg.max_attempts, retry_delay=cfg.retry_delay)
        watcher = DirectoryWatcher(
            self.source_path,
            cfg.destination_folder,
            copier,
            worker_count=cfg.worker_count,
            observer_factory=self._observer_factory,
        )
        watcher.start()
        self.watcher = watcher

    @staticmethod
    def _ensure_source_dir(path: str) -> None:
        if os.path.isdir(path):
            return
        try:
            os.makedirs(path, exist_ok=True)
            logger.info("Source directory %s created.", path)
        except OSError:
            logger.exception("Error creating source directory %s", path)

    def _arm_restart(self) -> None:
        if not self.config.restart_enabled:
            logger.info("Daily restart is disabled.")
            return
        delay = compute_initial_delay(datetime.now(), self.config.restart_hour)
        self.scheduler.arm(delay, self.restart)


# ======================================================================
# Windows service
# ======================================================================

if _HAS_WIN32:

    class FileCopierWindowsService(win32serviceutil.ServiceFramework):
        """Windows service host; names are taken from the config on install."""

        _svc_name_ = "FileCopierService"
        _svc_display_name_ = "File Copier Service"
        _svc_description_ = "A service that copies files from source to destination."

        def __init__(self, args):
            super().__init__(args)
            self._service: FileCopierService | None = None

        def SvcStop(self):
            self.ReportServiceStatus(win32service.SERVICE_STOP_PENDING)
            logger.info("Service stop requested.")
            if self._service:
                self._service.request_exit()

        def SvcDoRun(self):
            servicemanager.LogMsg(
                servicemanager.EVENTLOG_INFORMATION_TYPE,
                servicemanager.PYS_SERVICE_STARTED,
                (self._svc_name_, ""),
            )
            try:
                cfg = Config()
                setup_logging(cfg)
                logger.info("%s %s started as a Windows service.", __app_name__, __version__)
                # The service control manager owns this process; restart in place.
                self._service = FileCopierService(cfg, spawn=None)
                self._service.start()
                self._service.wait()
            except Exception as exc:
                logger.exception("Service error: %s", exc)
                servicemanager.LogErrorMsg(f"File Copier error: {exc}")
            finally:
                if self._service:
                    self._service.stop()
            logger.info("Service stopped.")

    def _apply_service_names(cfg: Config) -> None:
        FileCopierWindowsService._svc_name_ = cfg.service_name
        FileCopierWindowsService._svc_display_name_ = cfg.service_display_name
        FileCopierWindowsService._svc_description_ = cfg.service_description


# ======================================================================
# Foreground runner
# ======================================================================

def run_foreground(config_path: Path | None = None) -> int:
    """Run the service until SIGINT/SIGTERM or a daily restart."""
    cfg = Config(config_path)
    setup_logging(cfg)
    logger.info("%s %s started.", __app_name__, __version__)

    service = FileCopierService(cfg)

    def _handler(sig, frame):
        logger.info("Received signal %d, shutting down.", sig)
        service.request_exit()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)

    service.start()
    # Event.wait without a timeout can block signal delivery on Windows
    while not service.wait(timeout=1.0):
        pass
    service.stop()
    if service.restart_requested:
        logger.info("Exiting; the replacement instance takes over.")
    else:
        logger.info("%s stopped.", __app_name__)
    return 0


# ======================================================================
# CLI entry
# ======================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="file-copier",
        description="Copy new and changed files from a watched folder to a destination.",
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="run",
        choices=("run", "install", "start", "stop", "remove", "restart", "update"),
        help="run in the foreground (default) or manage the Windows service",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="path to config.json (default: the per-user config directory)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Entry point for ``python -m file_copier`` and the console script."""
    args = build_parser().parse_args(argv)
    if args.command == "run":
        return run_foreground(args.config)

    if not IS_WINDOWS:
        print(f"'{args.command}' manages the Windows service; use 'run' on this platform.")
        return 2
    if not _HAS_WIN32:
        print("ERROR: pywin32 is required for service mode on Windows.")
        print("       pip install file-copier[windows]")
        return 1

    _apply_service_names(Config(args.config))
    win32serviceutil.HandleCommandLine(
        FileCopierWindowsService, argv=[sys.argv[0], args.command]
    )
    return 0
