"""Native process layer.

The synchronization core in process.py only talks to the OS through the
three calls of NativeLayer: spawn, wait and kill. PosixNativeLayer is the
implementation used by default. It starts the launcher (a POSIX shell) with
os.posix_spawn; the launcher changes into the working directory and then
execs the real command:

    sh -c 'cd -- "$1" || exit 126; shift; exec "$@"' linuxfork CWD ARGV...

Key design points:
- Parent ends of the three pipes stay close-on-exec; only the child ends are
  dup2'ed onto fds 0/1/2 inside the child.
- Signal dispositions Python changes for itself (SIGPIPE, SIGXFSZ) are reset
  to their defaults in the child.
- wait() reports death by signal N as -N, like subprocess does.
"""

from __future__ import annotations

import errno
import logging
import os
import shutil
import signal
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Protocol

__all__ = [
    "NativeLayer",
    "PosixNativeLayer",
    "SpawnResult",
    "WAIT_STATUS_UNAVAILABLE",
    "LAUNCH_SCRIPT",
    "load_native_layer",
]

logger = logging.getLogger(__name__)

# Returned by wait() when the exit status could not be determined.
# Real statuses are 0..255 or a negated signal number.
WAIT_STATUS_UNAVAILABLE = -500

LAUNCH_SCRIPT = 'cd -- "$1" || exit 126; shift; exec "$@"'
LAUNCHER_ARGV0 = "linuxfork"
DEFAULT_KILL_SIGNAL = getattr(signal, "SIGKILL", signal.SIGTERM)


@dataclass(frozen=True)
class SpawnResult:
    """Parent-side view of a freshly spawned child.

    Attributes:
        pid: Child process id
        stdin_fd: Write end of the child's stdin pipe
        stdout_fd: Read end of the child's stdout pipe
        stderr_fd: Read end of the child's stderr pipe
    """

    pid: int
    stdin_fd: int
    stdout_fd: int
    stderr_fd: int


class NativeLayer(Protocol):
    """Operations the spawn core needs from the operating system."""

    def spawn(
        self,
        argv: Sequence[str],
        env: Mapping[str, str] | None,
        cwd: str,
        launcher: str,
    ) -> SpawnResult:
        """Start argv in cwd through the launcher.

        Raises:
            OSError: The process or its pipes could not be created
            IndexError: argv is empty
        """
        ...

    def wait(self, pid: int) -> int:
        """Block until pid terminates and return its exit status.

        Returns WAIT_STATUS_UNAVAILABLE when the status cannot be determined.
        """
        ...

    def kill(self, pid: int) -> None:
        """Forcibly terminate pid. Failures are not reported."""
        ...


def _close_quietly(*fds: int) -> None:
    for fd in fds:
        try:
            os.close(fd)
        except OSError:
            pass


class PosixNativeLayer:
    """NativeLayer built on os.posix_spawn and os.waitpid."""

    def __init__(self, kill_signal: int = DEFAULT_KILL_SIGNAL) -> None:
        self.kill_signal = kill_signal

    def spawn(
        self,
        argv: Sequence[str],
        env: Mapping[str, str] | None,
        cwd: str,
        launcher: str,
    ) -> SpawnResult:
        if not argv:
            raise IndexError("argv must contain at least the program name")

        child_env = dict(os.environ if env is None else env)
        self._check_spawnable(argv[0], cwd, child_env)

        stdin_r, stdin_w = os.pipe()
        stdout_r, stdout_w = os.pipe()
        stderr_r, stderr_w = os.pipe()

        file_actions = [
            (os.POSIX_SPAWN_DUP2, stdin_r, 0),
            (os.POSIX_SPAWN_DUP2, stdout_w, 1),
            (os.POSIX_SPAWN_DUP2, stderr_w, 2),
        ]
        setsigdef = (getattr(signal, sig, None) for sig in ("SIGPIPE", "SIGXFSZ"))
        setsigdef = [sig for sig in setsigdef if sig is not None]

        launcher_argv = [launcher, "-c", LAUNCH_SCRIPT, LAUNCHER_ARGV0, cwd, *argv]
        try:
            pid = os.posix_spawn(
                launcher,
                launcher_argv,
                child_env,
                file_actions=file_actions,
                setsigdef=setsigdef,
            )
        except BaseException:
            _close_quietly(stdin_w, stdout_r, stderr_r)
            raise
        finally:
            _close_quietly(stdin_r, stdout_w, stderr_w)

        logger.debug(f"posix_spawn pid={pid} launcher={launcher} argv0={argv[0]} cwd={cwd}")
        return SpawnResult(pid=pid, stdin_fd=stdin_w, stdout_fd=stdout_r, stderr_fd=stderr_r)

    def _check_spawnable(self, program: str, cwd: str, env: Mapping[str, str]) -> None:
        """Fail in the parent for errors the launcher could only report as a status.

        Relative PATH entries are resolved against cwd, where the launcher
        execs the program.

        Raises:
            FileNotFoundError: cwd or program does not exist
            NotADirectoryError: cwd is not a directory
            PermissionError: program is not executable
        """
        if not os.path.exists(cwd):
            raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), cwd)
        if not os.path.isdir(cwd):
            raise NotADirectoryError(errno.ENOTDIR, os.strerror(errno.ENOTDIR), cwd)

        if os.sep in program:
            candidate = program if os.path.isabs(program) else os.path.join(cwd, program)
            if not os.path.isfile(candidate):
                raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), program)
            if not os.access(candidate, os.X_OK):
                raise PermissionError(errno.EACCES, os.strerror(errno.EACCES), program)
            return

        search_path = os.pathsep.join(
            entry if os.path.isabs(entry) else os.path.join(cwd, entry)
            for entry in env.get("PATH", os.defpath).split(os.pathsep)
        )
        if shutil.which(program, path=search_path) is None:
            raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), program)

    def wait(self, pid: int) -> int:
        try:
            _, status = os.waitpid(pid, 0)
        except ChildProcessError:
            logger.debug(f"waitpid pid={pid}: no such child, status unavailable")
            return WAIT_STATUS_UNAVAILABLE
        return os.waitstatus_to_exitcode(status)

    def kill(self, pid: int) -> None:
        try:
            os.kill(pid, self.kill_signal)
            logger.debug(f"Sent signal {self.kill_signal} to pid={pid}")
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.debug(f"kill pid={pid} failed: {e}")


def load_native_layer(kill_signal: int = DEFAULT_KILL_SIGNAL) -> PosixNativeLayer:
    """Create the default native layer for this platform.

    Raises:
        OSError: The platform has no posix_spawn/waitpid
    """
    missing = [name for name in ("posix_spawn", "waitpid", "waitstatus_to_exitcode") if not hasattr(os, name)]
    if os.name != "posix" or missing:
        raise OSError(
            errno.ENOSYS,
            f"native process layer unavailable on {os.name} (missing: {', '.join(missing) or 'posix'})",
        )
    return PosixNativeLayer(kill_signal=kill_signal)
