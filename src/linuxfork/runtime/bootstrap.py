"""Process-wide runtime initialization.

Loading the native layer and locating the launcher happen once, on first
use. The outcome, including a failure, is kept in an immutable
NativeRuntime that every spawn consults instead of probing again.
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Iterable
from dataclasses import dataclass

from ..config import Config, get_config
from ..errors import ConfigurationError
from .native import NativeLayer, load_native_layer

__all__ = [
    "NativeRuntime",
    "find_launcher",
    "initialize_runtime",
    "get_runtime",
    "reinitialize_runtime",
    "is_library_loaded",
    "get_library_load_error",
]

logger = logging.getLogger(__name__)


def find_launcher(name: str, search_path: Iterable[str]) -> str | None:
    """Locate the launcher program.

    Args:
        name: Launcher name or path
        search_path: Directories to search when name is not an existing path

    Returns:
        Absolute path of the launcher, or None if it was not found
    """
    if os.path.exists(name):
        return os.path.abspath(name)

    for directory in search_path:
        if not directory:
            continue
        candidate = os.path.join(directory, name)
        if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
            return os.path.abspath(candidate)
    return None


@dataclass(frozen=True)
class NativeRuntime:
    """Result of runtime initialization.

    Attributes:
        native: Loaded native layer, None if loading failed
        launcher: Absolute launcher path, None if it was not found
        launcher_name: Launcher name or path discovery was attempted with
        load_error: Why the native layer failed to load
    """

    native: NativeLayer | None
    launcher: str | None
    launcher_name: str
    load_error: BaseException | None = None

    @property
    def ready(self) -> bool:
        return self.native is not None and self.launcher is not None

    def ensure_ready(self) -> None:
        """Raise unless spawning is possible.

        Raises:
            ConfigurationError: Launcher not found or native layer not loaded
        """
        if self.launcher is None:
            raise ConfigurationError(
                f"Couldn't find launcher program. Tried: {self.launcher_name}",
                tried=self.launcher_name,
            )
        if self.native is None:
            raise ConfigurationError(
                f"Native process layer not loaded: {self.load_error}",
                cause=self.load_error,
            ) from self.load_error


def initialize_runtime(config: Config | None = None) -> NativeRuntime:
    """Load the native layer and locate the launcher.

    Failures are recorded in the returned runtime rather than raised.
    """
    config = config or get_config()

    native: NativeLayer | None = None
    load_error: BaseException | None = None
    try:
        native = load_native_layer(kill_signal=config.kill_signal)
    except OSError as e:
        load_error = e
        logger.warning(f"Native process layer unavailable: {e}")

    launcher = find_launcher(config.launcher, config.search_path)
    if launcher is None:
        logger.warning(
            f"Launcher {config.launcher!r} not found on {':'.join(config.search_path)}"
        )
    else:
        logger.debug(f"Using launcher {launcher}")

    return NativeRuntime(
        native=native,
        launcher=launcher,
        launcher_name=config.launcher,
        load_error=load_error,
    )


# Global runtime, initialized on first use
_runtime: NativeRuntime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> NativeRuntime:
    """Return the global runtime, initializing it once."""
    global _runtime
    with _runtime_lock:
        if _runtime is None:
            _runtime = initialize_runtime()
        return _runtime


def reinitialize_runtime(config: Config | None = None) -> NativeRuntime:
    """Discard the global runtime and initialize it again (used by tests)."""
    global _runtime
    with _runtime_lock:
        _runtime = initialize_runtime(config)
        return _runtime


def is_library_loaded() -> bool:
    """Whether the native process layer loaded successfully."""
    return get_runtime().native is not None


def get_library_load_error() -> BaseException | None:
    """Why the native process layer failed to load, if it did."""
    return get_runtime().load_error
