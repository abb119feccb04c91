"""Pytest configuration and fixtures."""

from __future__ import annotations

import os
import sys
import threading
from pathlib import Path
from typing import Iterator

import pytest

# Project root
PROJECT_ROOT = Path(__file__).parent.parent

# Add src to the Python path
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from linuxfork.config import Config
from linuxfork.runtime.bootstrap import NativeRuntime, initialize_runtime
from linuxfork.runtime.native import SpawnResult


class FakeNativeLayer:
    """In-memory NativeLayer.

    Children never run; each gets real pipes so streams can be opened, and
    exits when the test calls finish() (or kill() when kill_terminates).
    """

    def __init__(self) -> None:
        self.events: list[tuple[str, int | None]] = []
        self.spawn_calls: list[tuple[list[str], dict[str, str] | None, str, str]] = []
        self.wait_calls: list[int] = []
        self.kill_calls: list[int] = []

        self.spawn_error: BaseException | None = None
        self.wait_error: BaseException | None = None
        self.kill_error: BaseException | None = None
        self.kill_terminates = True

        self._lock = threading.Lock()
        self._next_pid = 40000
        self._exited: dict[int, threading.Event] = {}
        self._codes: dict[int, int] = {}
        self._child_fds: dict[int, tuple[int, int, int]] = {}
        self.wait_started = threading.Event()

    def spawn(self, argv, env, cwd, launcher) -> SpawnResult:
        self.spawn_calls.append((list(argv), env, cwd, launcher))
        if self.spawn_error is not None:
            self.events.append(("spawn-failed", None))
            raise self.spawn_error

        stdin_r, stdin_w = os.pipe()
        stdout_r, stdout_w = os.pipe()
        stderr_r, stderr_w = os.pipe()
        with self._lock:
            pid = self._next_pid
            self._next_pid += 1
            self._exited[pid] = threading.Event()
            self._child_fds[pid] = (stdin_r, stdout_w, stderr_w)
        self.events.append(("spawn", pid))
        return SpawnResult(pid=pid, stdin_fd=stdin_w, stdout_fd=stdout_r, stderr_fd=stderr_r)

    def child_fds(self, pid: int) -> tuple[int, int, int]:
        """Child ends of the pipes: (stdin read, stdout write, stderr write)."""
        return self._child_fds[pid]

    def finish(self, pid: int, code: int = 0) -> None:
        """Make pid exit with code."""
        with self._lock:
            if pid in self._codes:
                return
            self._codes[pid] = code
            fds = self._child_fds.pop(pid, ())
        for fd in fds:
            try:
                os.close(fd)
            except OSError:
                pass
        self._exited[pid].set()

    def finish_all(self) -> None:
        for pid in list(self._exited):
            self.finish(pid, 0)

    def wait(self, pid: int) -> int:
        self.events.append(("wait", pid))
        self.wait_calls.append(pid)
        self.wait_started.set()
        self._exited[pid].wait()
        if self.wait_error is not None:
            raise self.wait_error
        return self._codes[pid]

    def kill(self, pid: int) -> None:
        self.events.append(("kill", pid))
        self.kill_calls.append(pid)
        if self.kill_error is not None:
            raise self.kill_error
        if self.kill_terminates:
            self.finish(pid, -9)


@pytest.fixture
def fake_native() -> Iterator[FakeNativeLayer]:
    """Fake native layer; every fake child is finished on teardown."""
    native = FakeNativeLayer()
    yield native
    native.finish_all()


@pytest.fixture
def fake_runtime(fake_native: FakeNativeLayer) -> NativeRuntime:
    """Ready runtime backed by the fake native layer."""
    return NativeRuntime(native=fake_native, launcher="/bin/sh", launcher_name="sh")


@pytest.fixture
def posix_runtime() -> NativeRuntime:
    """Real runtime using sh from PATH, independent of LINUXFORK_* variables."""
    search_path = tuple(os.environ.get("PATH", "/usr/bin:/bin").split(os.pathsep))
    runtime = initialize_runtime(Config(search_path=search_path))
    if not runtime.ready:
        pytest.skip(f"posix runtime unavailable: {runtime.load_error or 'no launcher'}")
    return runtime


@pytest.fixture
def temp_workspace(tmp_path: Path) -> Path:
    """Create temporary workspace directory."""
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return workspace
