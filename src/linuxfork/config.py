"""linuxfork environment variable configuration.

Environment variables:
    LINUXFORK_LAUNCHER: POSIX shell used to chdir and exec the child command
        - a bare name is searched for on LINUXFORK_SEARCH_PATH
        - an existing path is used as is
        - default: sh

    LINUXFORK_SEARCH_PATH: colon separated directories searched for the launcher
        - default: PATH, or /usr/bin:/bin when PATH is unset

    LINUXFORK_KILL_SIGNAL: signal sent by SpawnedProcess.destroy()
        - name with or without the SIG prefix (KILL, SIGTERM) or a number
        - default: SIGKILL

    LINUXFORK_LOG_DEBUG: debug logging
        - true/1/yes = on (log to a file in the temp directory)
        - false/0/no = off (default, log to stderr)
"""

from __future__ import annotations

import os
import signal
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

__all__ = ["Config", "load_config", "get_config", "reload_config"]

DEFAULT_LAUNCHER = "sh"
DEFAULT_SEARCH_PATH = "/usr/bin:/bin"
DEFAULT_KILL_SIGNAL = getattr(signal, "SIGKILL", signal.SIGTERM)


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse a boolean environment variable."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_kill_signal(value: str | None) -> signal.Signals:
    """Parse a signal name or number.

    Args:
        value: "KILL", "SIGTERM", "9", ...

    Returns:
        The matching signal, SIGKILL for empty or unknown values
    """
    if not value or not value.strip():
        return DEFAULT_KILL_SIGNAL

    value = value.strip().upper()
    if value.isdigit():
        try:
            return signal.Signals(int(value))
        except ValueError:
            return DEFAULT_KILL_SIGNAL

    if not value.startswith("SIG"):
        value = "SIG" + value
    try:
        return signal.Signals[value]
    except KeyError:
        return DEFAULT_KILL_SIGNAL


def _parse_search_path(value: str | None) -> list[str]:
    """Split a search path, dropping empty entries.

    Falls back to PATH, then to /usr/bin:/bin.
    """
    if not value:
        value = os.environ.get("PATH")
    if not value:
        value = DEFAULT_SEARCH_PATH
    return [entry for entry in value.split(os.pathsep) if entry]


@dataclass
class Config:
    """linuxfork configuration.

    Attributes:
        launcher: Launcher name or path
        search_path: Directories searched for the launcher
        kill_signal: Signal sent by destroy()
        log_debug: Debug logging to a file
        log_file: Log file path (set when log_debug is True)
    """

    launcher: str = DEFAULT_LAUNCHER
    search_path: tuple[str, ...] = tuple(DEFAULT_SEARCH_PATH.split(":"))
    kill_signal: signal.Signals = DEFAULT_KILL_SIGNAL
    log_debug: bool = False
    log_file: str | None = None

    def __repr__(self) -> str:
        return (
            f"Config(launcher={self.launcher}, "
            f"search_path={':'.join(self.search_path)}, "
            f"kill_signal={self.kill_signal.name}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file})"
        )


def _generate_log_file_path() -> str:
    """Build a timestamped log file path under the temp directory."""
    log_dir = Path(tempfile.gettempdir()) / "linuxfork"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"linuxfork_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """Load configuration from the environment."""
    log_debug = _parse_bool(os.environ.get("LINUXFORK_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    launcher = os.environ.get("LINUXFORK_LAUNCHER", "").strip() or DEFAULT_LAUNCHER

    return Config(
        launcher=launcher,
        search_path=tuple(_parse_search_path(os.environ.get("LINUXFORK_SEARCH_PATH"))),
        kill_signal=_parse_kill_signal(os.environ.get("LINUXFORK_KILL_SIGNAL")),
        log_debug=log_debug,
        log_file=log_file,
    )


# Global config instance, loaded lazily
_config: Config | None = None


def get_config() -> Config:
    """Return the global config instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """Reload configuration from the environment (used by tests)."""
    global _config
    _config = load_config()
    return _config
