"""linuxfork - spawn child processes and reap them on a background thread.

Environment variables:
    LINUXFORK_LAUNCHER: launcher shell (default sh)
    LINUXFORK_SEARCH_PATH: where to look for the launcher (default PATH)
    LINUXFORK_KILL_SIGNAL: signal used by destroy() (default SIGKILL)

Usage:
    from linuxfork import spawn

    proc = spawn(["true"])
    proc.wait_for()
"""

__version__ = "0.1.0"

from .errors import (
    ConfigurationError,
    IllegalStateError,
    InvalidArgumentError,
    ProcessError,
    SpawnError,
    WaitTimeoutError,
)
from .runtime import (
    SpawnedProcess,
    get_library_load_error,
    is_library_loaded,
    spawn,
)

__all__ = [
    "__version__",
    "ConfigurationError",
    "IllegalStateError",
    "InvalidArgumentError",
    "ProcessError",
    "SpawnError",
    "SpawnedProcess",
    "WaitTimeoutError",
    "get_library_load_error",
    "is_library_loaded",
    "spawn",
]
