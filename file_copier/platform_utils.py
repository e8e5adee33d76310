"""
Cross-platform utilities for File Copier.

Centralises all OS-detection logic so every other module can import
a single canonical set of helpers rather than scattering ``sys.platform``
checks throughout the codebase.

Supported platforms:
  - Windows 10/11 (foreground or Windows service)
  - macOS 12+ (foreground)
  - Linux (foreground, e.g. under systemd)
"""

from __future__ import annotations

import logging
import os
import subprocess
import sys
from pathlib import Path

logger = logging.getLogger(__name__)

# ---- platform flags ----------------------------------------------------

IS_WINDOWS: bool = sys.platform == "win32"
IS_MACOS: bool = sys.platform == "darwin"
IS_LINUX: bool = sys.platform.startswith("linux")

APP_DIR_NAME = "FileCopier"

# ---- directories -------------------------------------------------------


def get_config_dir() -> Path:
    """
    Return the application config directory, created if needed.

    - Windows : ``%APPDATA%\\FileCopier``
    - macOS   : ``~/Library/Application Support/FileCopier``
    - Linux   : ``$XDG_CONFIG_HOME/FileCopier`` (default ``~/.config``)
    """
    if IS_WINDOWS:
        base = os.environ.get("APPDATA", str(Path.home()))
    elif IS_MACOS:
        base = str(Path.home() / "Library" / "Application Support")
    else:
        base = os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config"))

    config_dir = Path(base) / APP_DIR_NAME
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_log_dir() -> Path:
    """Return the ``logs`` directory inside the config directory, created if needed."""
    log_dir = get_config_dir() / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def get_log_path() -> Path:
    """Return the path to the active log file."""
    return get_log_dir() / "file_copier.log"


# ---- process control ---------------------------------------------------


def replacement_command(argv: list[str] | None = None) -> list[str]:
    """Return the command line that starts a fresh instance of this program."""
    args = sys.argv[1:] if argv is None else argv
    return [sys.executable, "-m", "file_copier", *args]


def spawn_replacement(argv: list[str] | None = None) -> subprocess.Popen:
    """
    Launch a new, detached instance of File Copier.

    The child gets its own session (POSIX) or process group (Windows) so it
    survives the exit of the current process.  Raises ``OSError`` if the
    interpreter cannot be started.
    """
    cmd = replacement_command(argv)
    kwargs: dict = {
        "stdin": subprocess.DEVNULL,
        "stdout": subprocess.DEVNULL,
        "stderr": subprocess.DEVNULL,
        "close_fds": True,
    }
    if IS_WINDOWS:
        kwargs["creationflags"] = (
            subprocess.DETACHED_PROCESS  # type: ignore[attr-defined]
            | subprocess.CREATE_NEW_PROCESS_GROUP  # type: ignore[attr-defined]
        )
    else:
        kwargs["start_new_session"] = True

    proc = subprocess.Popen(cmd, **kwargs)
    logger.info("Spawned replacement process (pid %d): %s", proc.pid, " ".join(cmd))
    return proc
