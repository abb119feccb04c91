"""Exception classes for linuxfork.

Every error raised by the package derives from ProcessError and also from
the builtin exception a caller would naturally catch for it.
"""

from __future__ import annotations

__all__ = [
    "ProcessError",
    "InvalidArgumentError",
    "ConfigurationError",
    "SpawnError",
    "IllegalStateError",
    "WaitTimeoutError",
]


class ProcessError(Exception):
    """Base exception for linuxfork."""
    pass


class InvalidArgumentError(ProcessError, ValueError):
    """Malformed command vector or environment, rejected before any OS call."""
    pass


class ConfigurationError(ProcessError):
    """Launcher program or native process layer unavailable.

    Attributes:
        tried: Launcher name or path that discovery was attempted with
        cause: Native layer load error, if that is what failed
    """

    def __init__(
        self,
        message: str,
        tried: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        self.tried = tried
        self.cause = cause
        super().__init__(message)


class SpawnError(ProcessError, OSError):
    """The native spawn call failed; no process handle was created.

    Attributes:
        argv: Command vector that failed to start
    """

    def __init__(self, message: str, argv: list[str], errno: int | None = None) -> None:
        super().__init__(message)
        self.argv = argv
        self.errno = errno


class IllegalStateError(ProcessError, RuntimeError):
    """Exit status queried before the process exited."""
    pass


class WaitTimeoutError(ProcessError, TimeoutError):
    """wait_for() gave up before the process exited.

    Attributes:
        pid: Process that was being waited on
        timeout: Seconds waited
    """

    def __init__(self, pid: int, timeout: float | None) -> None:
        self.pid = pid
        self.timeout = timeout
        super().__init__(f"process {pid} did not exit within {timeout}s")
