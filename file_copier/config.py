"""Configuration management for File Copier.

Stores and retrieves service settings from a JSON config file
in the platform-appropriate application data directory.
"""

import json
import logging
from pathlib import Path
from typing import Any

from file_copier.platform_utils import (
    get_config_dir as _platform_config_dir,
)

logger = logging.getLogger(__name__)

DEFAULT_MONTH_LOCALE = "de_DE"

DEFAULT_CONFIG: dict[str, Any] = {
    "source_folder": "",
    "destination_folder": "",
    # ---- source sub-folder ----
    "use_month_folder": False,  # append {year}/{month name} to source_folder
    "month_folder_locale": DEFAULT_MONTH_LOCALE,
    # ---- daily restart ----
    "restart_enabled": True,
    "restart_hour": 4,  # local wall-clock hour, 0-23
    # ---- copy retry ----
    "max_attempts": 5,  # total copy attempts per event (minimum 1)
    "retry_delay_ms": 1000,  # pause between attempts
    "worker_count": 2,  # threads copying files concurrently
    # ---- logging ----
    "log_level": "DEBUG",
    "log_backup_count": 14,  # daily log files to keep
    # ---- Windows service registration ----
    "service_name": "FileCopierService",
    "service_display_name": "File Copier Service",
    "service_description": "A service that copies files from source to destination.",
}

# Keys written by earlier releases of the service
LEGACY_KEYS: dict[str, str] = {
    "SourcePath": "source_folder",
    "DestinationPath": "destination_folder",
    "UseGermanMonths": "use_month_folder",
    "RestartTime": "restart_hour",
    "ServiceName": "service_name",
    "ServiceDisplayName": "service_display_name",
    "ServiceDescription": "service_description",
}


class ConfigurationError(ValueError):
    """Raised when the service cannot run with the given settings."""


def get_config_path() -> Path:
    """Return the path to the configuration file."""
    return _platform_config_dir() / "config.json"


def _migrate_legacy(stored: dict[str, Any]) -> dict[str, Any]:
    """Return *stored* with legacy PascalCase keys renamed to current ones."""
    migrated = {}
    for key, value in stored.items():
        new_key = LEGACY_KEYS.get(key, key)
        if new_key != key:
            logger.debug("Config key %s read as %s", key, new_key)
            if new_key in stored:
                continue  # the current key wins
        migrated[new_key] = value
    return migrated


class Config:
    """Configuration backed by a JSON file.

    The file is read once at construction; accessors coerce stored values to
    their declared types and fall back to the defaults above.
    """

    def __init__(self, path: Path | None = None):
        """Load config from *path*, falling back to the platform default."""
        self._path = path or get_config_path()
        self._data: dict[str, Any] = dict(DEFAULT_CONFIG)
        self.load()

    @property
    def path(self) -> Path:
        """Return the file this configuration is stored in."""
        return self._path

    # ---- persistence ----

    def load(self) -> None:
        """Load configuration from disk, applying defaults for missing keys."""
        if self._path.exists():
            try:
                with open(self._path, encoding="utf-8") as fh:
                    stored = json.load(fh)
                if not isinstance(stored, dict):
                    raise ValueError("top-level JSON value is not an object")
                self._data = {**DEFAULT_CONFIG, **_migrate_legacy(stored)}
                logger.info("Configuration loaded from %s", self._path)
            except (ValueError, OSError) as exc:
                logger.warning("Could not read config (%s); using defaults.", exc)
                self._data = dict(DEFAULT_CONFIG)
        else:
            self._data = dict(DEFAULT_CONFIG)
            self.save()
            logger.warning(
                "Config file not found. A default configuration has been created at %s.",
                self._path,
            )

    def save(self) -> None:
        """Persist the current configuration to disk."""
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._path, "w", encoding="utf-8") as fh:
                json.dump(self._data, fh, indent=2)
            logger.info("Configuration saved.")
        except OSError as exc:
            logger.error("Failed to save configuration: %s", exc)

    # ---- folders ----

    @property
    def source_folder(self) -> str:
        """Return the watched source folder (before the month sub-folder)."""
        return str(self._data["source_folder"] or "").strip()

    @source_folder.setter
    def source_folder(self, value: str) -> None:
        self._data["source_folder"] = value

    @property
    def destination_folder(self) -> str:
        """Return the copy-destination folder path."""
        return str(self._data["destination_folder"] or "").strip()

    @destination_folder.setter
    def destination_folder(self, value: str) -> None:
        self._data["destination_folder"] = value

    @property
    def use_month_folder(self) -> bool:
        """Return whether ``{year}/{month name}`` is appended to the source."""
        return bool(self._data.get("use_month_folder", False))

    @use_month_folder.setter
    def use_month_folder(self, value: bool) -> None:
        self._data["use_month_folder"] = value

    @property
    def month_folder_locale(self) -> str:
        """Return the locale month names are rendered in."""
        return self._data.get("month_folder_locale") or DEFAULT_MONTH_LOCALE

    @month_folder_locale.setter
    def month_folder_locale(self, value: str) -> None:
        self._data["month_folder_locale"] = value.strip() or DEFAULT_MONTH_LOCALE

    # ---- daily restart ----

    @property
    def restart_enabled(self) -> bool:
        """Return whether the daily self-restart is armed."""
        return bool(self._data.get("restart_enabled", True))

    @restart_enabled.setter
    def restart_enabled(self, value: bool) -> None:
        self._data["restart_enabled"] = value

    @property
    def restart_hour(self) -> int:
        """Return the hour of day (0-23) the service restarts at."""
        return int(self._data.get("restart_hour", 4))

    @restart_hour.setter
    def restart_hour(self, value: int) -> None:
        self._data["restart_hour"] = int(value)

    # ---- copy retry ----

    @property
    def max_attempts(self) -> int:
        """Return the number of copy attempts per event."""
        return max(1, int(self._data.get("max_attempts", 5)))

    @max_attempts.setter
    def max_attempts(self, value: int) -> None:
        self._data["max_attempts"] = max(1, int(value))

    @property
    def retry_delay(self) -> float:
        """Return seconds between copy attempts."""
        return max(0, int(self._data.get("retry_delay_ms", 1000))) / 1000.0

    @retry_delay.setter
    def retry_delay(self, value: float) -> None:
        """Set seconds between copy attempts."""
        self._data["retry_delay_ms"] = max(0, int(round(value * 1000)))

    @property
    def worker_count(self) -> int:
        """Return the number of copy worker threads."""
        return max(1, int(self._data.get("worker_count", 2)))

    @worker_count.setter
    def worker_count(self, value: int) -> None:
        self._data["worker_count"] = max(1, int(value))

    # ---- logging ----

    @property
    def log_level(self) -> str:
        """Return the current logging level name."""
        return self._data.get("log_level", "DEBUG")

    @log_level.setter
    def log_level(self, value: str) -> None:
        self._data["log_level"] = value

    @property
    def log_backup_count(self) -> int:
        """Return the number of rotated daily log files to keep."""
        return max(0, int(self._data.get("log_backup_count", 14)))

    # ---- Windows service ----

    @property
    def service_name(self) -> str:
        return self._data.get("service_name") or DEFAULT_CONFIG["service_name"]

    @property
    def service_display_name(self) -> str:
        return (
            self._data.get("service_display_name")
            or DEFAULT_CONFIG["service_display_name"]
        )

    @property
    def service_description(self) -> str:
        return (
            self._data.get("service_description")
            or DEFAULT_CONFIG["service_description"]
        )

    # ---- validation ----

    def is_configured(self) -> bool:
        """Return True when both source and destination folders are set."""
        return bool(self.source_folder) and bool(self.destination_folder)

    def validate(self) -> None:
        """Check the settings the service cannot run without.

        Raises ``ConfigurationError`` naming every problem found.
        """
        problems = []
        if not self.source_folder:
            problems.append("source_folder is empty")
        if not self.destination_folder:
            problems.append("destination_folder is empty")
        try:
            hour = self.restart_hour
        except (TypeError, ValueError):
            problems.append(f"restart_hour is not a number: {self._data.get('restart_hour')!r}")
        else:
            if not 0 <= hour <= 23:
                problems.append(f"restart_hour must be between 0 and 23, got {hour}")
        for key in ("max_attempts", "retry_delay_ms", "worker_count"):
            try:
                int(self._data.get(key, DEFAULT_CONFIG[key]))
            except (TypeError, ValueError):
                problems.append(f"{key} is not a number: {self._data.get(key)!r}")
        if problems:
            raise ConfigurationError(
                f"Invalid configuration in {self._path}: " + "; ".join(problems)
            )
