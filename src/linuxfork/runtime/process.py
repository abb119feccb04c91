"""Spawned process handle with a background reaper.

This module provides:
- Argument validation before any OS interaction
- Spawning through the native layer, gated so that the constructor only
  returns once the spawn attempt has concluded and the reaper is running
- One daemon reaper thread per child that blocks in wait() and publishes
  the exit status
- Blocking, non-blocking and async access to the exit status
- Forcible termination that never kills an already reaped pid

Key design points:
- exit_code and has_exited are written together by the reaper and read
  together by every accessor, under one lock per handle
- destroy() decides whether to kill under that same lock
- The reaper is never joined; it ends when the child does
"""

from __future__ import annotations

import logging
import os
import sys
import threading
from collections.abc import Mapping, Sequence
from typing import Any, BinaryIO, Union, cast

import anyio

from ..errors import (
    IllegalStateError,
    InvalidArgumentError,
    SpawnError,
    WaitTimeoutError,
)
from .bootstrap import NativeRuntime, get_runtime
from .gate import Gate
from .native import WAIT_STATUS_UNAVAILABLE, NativeLayer, SpawnResult

__all__ = [
    "SpawnedProcess",
    "spawn",
]

logger = logging.getLogger(__name__)

StrPath = Union[str, "os.PathLike[str]"]
EnvArg = Union[Mapping[str, str], Sequence[str], None]


def _normalize_argv(argv: Any) -> list[str]:
    """Validate the command vector.

    A bare string is a one-element command, not a shell line.

    Raises:
        InvalidArgumentError: argv is empty, not a sequence, or has a None or
            non-string element
    """
    if isinstance(argv, (str, os.PathLike)):
        argv = [argv]
    if argv is None or isinstance(argv, (bytes, Mapping)) or not isinstance(argv, Sequence):
        raise InvalidArgumentError(f"command must be a sequence of strings, got {type(argv).__name__}")
    if len(argv) == 0:
        raise InvalidArgumentError("command must not be empty")

    result: list[str] = []
    for index, arg in enumerate(argv):
        if arg is None:
            raise InvalidArgumentError(f"command element {index} is None")
        if isinstance(arg, os.PathLike):
            arg = os.fspath(arg)
        if not isinstance(arg, str):
            raise InvalidArgumentError(
                f"command element {index} must be a string, got {type(arg).__name__}"
            )
        if "\0" in arg:
            raise InvalidArgumentError(f"command element {index} contains a NUL byte")
        result.append(arg)

    if not result[0]:
        raise InvalidArgumentError("program name must not be empty")
    return result


def _normalize_env(env: EnvArg) -> dict[str, str] | None:
    """Validate the environment.

    Accepts a mapping or a sequence of "NAME=VALUE" strings. None means the
    child inherits this process's environment.

    Raises:
        InvalidArgumentError: An entry has no name, no "=" or a None part
    """
    if env is None:
        return None

    if isinstance(env, Mapping):
        items = list(env.items())
    elif isinstance(env, (str, bytes)) or not isinstance(env, Sequence):
        raise InvalidArgumentError(
            f"environment must be a mapping or a sequence of NAME=VALUE strings, "
            f"got {type(env).__name__}"
        )
    else:
        items = []
        for entry in env:
            if not isinstance(entry, str) or "=" not in entry:
                raise InvalidArgumentError(f"environment entry {entry!r} is not NAME=VALUE")
            name, _, value = entry.partition("=")
            items.append((name, value))

    result: dict[str, str] = {}
    for name, value in items:
        if not isinstance(name, str) or not isinstance(value, str):
            raise InvalidArgumentError(f"environment entry {name!r}={value!r} must be strings")
        if not name or "=" in name or "\0" in name or "\0" in value:
            raise InvalidArgumentError(f"invalid environment variable name {name!r}")
        result[name] = value
    return result


def _resolve_cwd(cwd: StrPath | None) -> str:
    if cwd is None:
        return os.getcwd()
    try:
        return os.path.abspath(os.fspath(cwd))
    except TypeError as e:
        raise InvalidArgumentError(f"working directory must be a path: {e}") from e


class SpawnedProcess:
    """A child process started through the native layer.

    The constructor spawns the process and returns once it is running and
    its reaper thread has started. Exit status becomes available when the
    reaper observes termination.

    Example:
        proc = SpawnedProcess(["sh", "-c", "echo hello"])
        print(proc.stdout.read())
        assert proc.wait_for() == 0

    Attributes:
        argv: Normalized command vector
        cwd: Absolute working directory of the child
    """

    def __init__(
        self,
        argv: Sequence[StrPath] | StrPath,
        env: EnvArg = None,
        cwd: StrPath | None = None,
        *,
        runtime: NativeRuntime | None = None,
    ) -> None:
        """Spawn argv.

        Args:
            argv: Program and arguments
            env: Child environment (None = inherit)
            cwd: Working directory (None = current directory)
            runtime: Native runtime to use (default: the global one)

        Raises:
            InvalidArgumentError: Malformed argv or env
            ConfigurationError: Launcher or native layer unavailable
            SpawnError: The native spawn call failed
        """
        self.argv = _normalize_argv(argv)
        self._env = _normalize_env(env)
        self.cwd = _resolve_cwd(cwd)

        self._runtime = runtime if runtime is not None else get_runtime()
        self._runtime.ensure_ready()
        self._native = cast(NativeLayer, self._runtime.native)
        self._launcher = cast(str, self._runtime.launcher)

        self._pid: int = 0
        self._stdin: BinaryIO | None = None
        self._stdout: BinaryIO | None = None
        self._stderr: BinaryIO | None = None

        self._lock = threading.Lock()
        self._exited = threading.Condition(self._lock)
        self._has_exited = False
        self._exit_code: int | None = None
        self._reaper: threading.Thread | None = None

        sys.audit("linuxfork.spawn", self.argv[0], self.argv, self.cwd)

        gate = Gate()
        self._launch(gate)
        gate.wait_for_open()

        error = gate.read_error()
        if error is not None:
            raise SpawnError(
                f"Cannot run program {self.argv[0]!r} (in directory {self.cwd!r}): {error}",
                argv=self.argv,
                errno=getattr(error, "errno", None),
            ) from error

    def _launch(self, gate: Gate) -> None:
        """Perform the native spawn, open the streams and start the reaper.

        A spawn failure is recorded in the gate, which is then opened so the
        constructor can report it. On success the reaper opens the gate. If
        setup fails after the child exists, the child is killed and reaped
        and the failure is reported the same way.
        """
        try:
            result = self._native.spawn(self.argv, self._env, self.cwd, self._launcher)
        except OSError as e:
            logger.debug(f"Spawn failed argv0={self.argv[0]} cwd={self.cwd}: {e}")
            gate.record_error(e)
            gate.open()
            return
        except (IndexError, ValueError) as e:
            gate.open()
            raise InvalidArgumentError(f"native layer rejected command: {e}") from e

        self._pid = result.pid
        try:
            self._stdin = open(result.stdin_fd, "wb")
            self._stdout = open(result.stdout_fd, "rb")
            self._stderr = open(result.stderr_fd, "rb", buffering=0)

            self._reaper = threading.Thread(
                target=self._reap,
                args=(gate,),
                name=f"process reaper {self._pid}",
                daemon=True,
            )
            self._reaper.start()
        except Exception as e:
            logger.warning(f"Setup of subprocess pid={self._pid} failed, killing it: {e}")
            self._discard_child(result)
            gate.record_error(e)
            gate.open()
            return
        except BaseException:
            self._discard_child(result)
            gate.open()
            raise

        logger.debug(f"Started subprocess pid={self._pid} argv={self.argv[0]} cwd={self.cwd}")

    def _discard_child(self, result: SpawnResult) -> None:
        """Kill and reap a child whose handle could not be set up, then close its pipes."""
        self._reaper = None
        try:
            self._native.kill(result.pid)
            self._native.wait(result.pid)
        except Exception as e:
            logger.warning(f"Error discarding subprocess pid={result.pid}: {e}")

        streams = (self._stdin, self._stdout, self._stderr)
        fds = (result.stdin_fd, result.stdout_fd, result.stderr_fd)
        for stream, fd in zip(streams, fds):
            try:
                if stream is not None:
                    stream.close()
                else:
                    os.close(fd)
            except (OSError, ValueError) as e:
                logger.debug(f"Error closing pipe of pid={result.pid}: {e}")
        self._stdin = self._stdout = self._stderr = None

    def _reap(self, gate: Gate) -> None:
        """Reaper thread body: wait for the child and publish its status."""
        gate.open()

        try:
            status: int | None = self._native.wait(self._pid)
        except Exception as e:
            logger.warning(f"Waiting for pid={self._pid} failed, exit status unknown: {e}")
            status = None

        if status == WAIT_STATUS_UNAVAILABLE:
            status = None

        with self._exited:
            self._exit_code = status
            self._has_exited = True
            self._exited.notify_all()

        logger.debug(f"Subprocess exited pid={self._pid} returncode={status}")

    @property
    def pid(self) -> int:
        return self._pid

    @property
    def stdin(self) -> BinaryIO:
        """Buffered writer connected to the child's stdin."""
        return cast(BinaryIO, self._stdin)

    @property
    def stdout(self) -> BinaryIO:
        """Buffered reader connected to the child's stdout."""
        return cast(BinaryIO, self._stdout)

    @property
    def stderr(self) -> BinaryIO:
        """Unbuffered reader connected to the child's stderr."""
        return cast(BinaryIO, self._stderr)

    @property
    def has_exited(self) -> bool:
        with self._lock:
            return self._has_exited

    def exit_value(self) -> int | None:
        """Return the exit status without blocking.

        Returns:
            Exit status, negative signal number if killed by a signal, or None
            if the process exited but its status could not be determined

        Raises:
            IllegalStateError: The process has not exited yet
        """
        with self._lock:
            if not self._has_exited:
                raise IllegalStateError("Process has not yet exited.")
            return self._exit_code

    def wait_for(self, timeout: float | None = None) -> int | None:
        """Block until the process exits and return its exit status.

        Safe to call from any number of threads at once.

        Args:
            timeout: Seconds to wait (None = forever)

        Returns:
            Same as exit_value()

        Raises:
            WaitTimeoutError: timeout elapsed first; the process, the reaper
                and other waiters are unaffected
        """
        with self._exited:
            if not self._exited.wait_for(lambda: self._has_exited, timeout):
                raise WaitTimeoutError(self._pid, timeout)
            return self._exit_code

    async def wait_async(self) -> int | None:
        """Await process exit without blocking the event loop.

        Cancelling the awaiting task abandons the worker thread doing the
        blocking wait; the reaper keeps running.
        """
        return await anyio.to_thread.run_sync(self.wait_for, abandon_on_cancel=True)

    def destroy(self) -> None:
        """Forcibly terminate the process and close its streams.

        The kill is skipped when the reaper has already published an exit,
        since the pid may have been reused. Never raises.
        """
        with self._lock:
            if not self._has_exited:
                try:
                    self._native.kill(self._pid)
                except Exception as e:
                    logger.warning(f"Error killing subprocess pid={self._pid}: {e}")
            else:
                logger.debug(f"Subprocess pid={self._pid} already exited, not killing")
        self._close_streams()

    def _close_streams(self) -> None:
        for stream in (self._stdin, self._stdout, self._stderr):
            if stream is None:
                continue
            try:
                stream.close()
            except (OSError, ValueError) as e:
                logger.debug(f"Error closing stream of pid={self._pid}: {e}")

    def __enter__(self) -> SpawnedProcess:
        return self

    def __exit__(self, *args: object) -> None:
        self.destroy()
        self.wait_for()

    def __repr__(self) -> str:
        with self._lock:
            if not self._has_exited:
                return f"<SpawnedProcess pid={self._pid} exited=False>"
            code = "unknown" if self._exit_code is None else self._exit_code
            return f"<SpawnedProcess pid={self._pid} exitcode={code}>"


def spawn(
    argv: Sequence[StrPath] | StrPath,
    env: EnvArg = None,
    cwd: StrPath | None = None,
    *,
    runtime: NativeRuntime | None = None,
) -> SpawnedProcess:
    """Spawn argv and return its handle. See SpawnedProcess."""
    return SpawnedProcess(argv, env, cwd, runtime=runtime)
