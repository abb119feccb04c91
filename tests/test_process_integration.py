"""SpawnedProcess tests that run real commands.

Test coverage:
- Exit statuses (true, false, explicit codes, signals)
- stdin/stdout/stderr wiring
- Working directory and environment
- Spawn failures (missing program, missing directory)
- destroy() on a running child
- Concurrent waiters
"""

from __future__ import annotations

import errno
import os
import signal
import threading
from pathlib import Path

import pytest

from linuxfork.errors import IllegalStateError, SpawnError
from linuxfork.runtime.process import SpawnedProcess

pytestmark = pytest.mark.integration


# =============================================================================
# Exit Status Tests
# =============================================================================


class TestExitStatus:
    """Exit statuses reported by the reaper."""

    def test_true_exits_zero(self, posix_runtime):
        proc = SpawnedProcess(["true"], runtime=posix_runtime)
        assert proc.wait_for(timeout=10) == 0
        assert proc.has_exited is True

    def test_false_exits_nonzero(self, posix_runtime):
        proc = SpawnedProcess(["false"], runtime=posix_runtime)
        code = proc.wait_for(timeout=10)
        assert code != 0
        assert proc.exit_value() == code

    def test_explicit_exit_code(self, posix_runtime):
        proc = SpawnedProcess(["sh", "-c", "exit 7"], runtime=posix_runtime)
        assert proc.wait_for(timeout=10) == 7

    def test_death_by_signal_is_negative(self, posix_runtime):
        proc = SpawnedProcess(["sh", "-c", "kill -TERM $$"], runtime=posix_runtime)
        assert proc.wait_for(timeout=10) == -signal.SIGTERM

    def test_arguments_passed_verbatim(self, posix_runtime):
        proc = SpawnedProcess(
            ["sh", "-c", 'printf "%s|" "$@"', "sh", "a b", "", "$HOME", "*"],
            runtime=posix_runtime,
        )
        assert proc.stdout.read() == b"a b||$HOME|*|"
        assert proc.wait_for(timeout=10) == 0

    def test_exit_value_before_exit(self, posix_runtime):
        proc = SpawnedProcess(["sleep", "30"], runtime=posix_runtime)
        try:
            with pytest.raises(IllegalStateError):
                proc.exit_value()
        finally:
            proc.destroy()
        proc.wait_for(timeout=10)


# =============================================================================
# Stream Tests
# =============================================================================


class TestStreams:
    """Pipes between this process and the child."""

    def test_stdout(self, posix_runtime):
        proc = SpawnedProcess(["echo", "hello"], runtime=posix_runtime)
        assert proc.stdout.read() == b"hello\n"
        assert proc.wait_for(timeout=10) == 0

    def test_stderr(self, posix_runtime):
        proc = SpawnedProcess(["sh", "-c", "echo oops >&2"], runtime=posix_runtime)
        assert b"oops" in proc.stderr.read()
        assert proc.wait_for(timeout=10) == 0

    def test_stdin(self, posix_runtime):
        proc = SpawnedProcess(["cat"], runtime=posix_runtime)
        proc.stdin.write(b"line1\nline2\n")
        proc.stdin.close()

        assert proc.stdout.read() == b"line1\nline2\n"
        assert proc.wait_for(timeout=10) == 0


# =============================================================================
# Working Directory / Environment Tests
# =============================================================================


class TestEnvironment:
    """cwd and env handling."""

    def test_working_directory(self, posix_runtime, temp_workspace: Path):
        proc = SpawnedProcess(["pwd"], cwd=temp_workspace, runtime=posix_runtime)
        result = proc.stdout.read().decode().strip()
        assert proc.wait_for(timeout=10) == 0
        assert str(temp_workspace) in result or temp_workspace.name in result

    def test_relative_program_resolved_against_cwd(self, posix_runtime, temp_workspace: Path):
        script = temp_workspace / "run.sh"
        script.write_text("#!/bin/sh\necho ran\n")
        script.chmod(0o755)

        proc = SpawnedProcess(["./run.sh"], cwd=temp_workspace, runtime=posix_runtime)
        assert proc.stdout.read() == b"ran\n"
        assert proc.wait_for(timeout=10) == 0

    def test_relative_path_entry_uses_working_directory(self, posix_runtime, temp_workspace: Path):
        bin_dir = temp_workspace / "bin"
        bin_dir.mkdir()
        tool = bin_dir / "workspace-tool"
        tool.write_text("#!/bin/sh\necho from-bin\n")
        tool.chmod(0o755)

        env = {"PATH": f"bin{os.pathsep}{os.environ.get('PATH', os.defpath)}"}
        proc = SpawnedProcess(["workspace-tool"], env=env, cwd=temp_workspace, runtime=posix_runtime)
        assert proc.stdout.read() == b"from-bin\n"
        assert proc.wait_for(timeout=10) == 0

    def test_env_mapping(self, posix_runtime):
        env = {"FOO": "bar", "PATH": os.environ.get("PATH", os.defpath)}
        proc = SpawnedProcess(["sh", "-c", "echo $FOO"], env=env, runtime=posix_runtime)
        assert proc.stdout.read() == b"bar\n"
        proc.wait_for(timeout=10)

    def test_env_sequence(self, posix_runtime):
        env = ["FOO=baz", f"PATH={os.environ.get('PATH', os.defpath)}"]
        proc = SpawnedProcess(["sh", "-c", "echo $FOO"], env=env, runtime=posix_runtime)
        assert proc.stdout.read() == b"baz\n"
        proc.wait_for(timeout=10)

    def test_env_replaces_parent_environment(self, posix_runtime, monkeypatch):
        monkeypatch.setenv("LINUXFORK_TEST_MARKER", "parent")
        env = {"PATH": os.environ.get("PATH", os.defpath)}
        proc = SpawnedProcess(
            ["sh", "-c", "echo ${LINUXFORK_TEST_MARKER-unset}"], env=env, runtime=posix_runtime
        )
        assert proc.stdout.read() == b"unset\n"
        proc.wait_for(timeout=10)

    def test_env_none_inherits(self, posix_runtime, monkeypatch):
        monkeypatch.setenv("LINUXFORK_TEST_MARKER", "parent")
        proc = SpawnedProcess(
            ["sh", "-c", "echo ${LINUXFORK_TEST_MARKER-unset}"], runtime=posix_runtime
        )
        assert proc.stdout.read() == b"parent\n"
        proc.wait_for(timeout=10)


# =============================================================================
# Spawn Failure Tests
# =============================================================================


class TestSpawnFailure:
    """Failures reported by the native layer."""

    def test_missing_program(self, posix_runtime):
        with pytest.raises(SpawnError) as exc_info:
            SpawnedProcess(["linuxfork-no-such-program-xyz"], runtime=posix_runtime)
        assert exc_info.value.errno == errno.ENOENT
        assert isinstance(exc_info.value.__cause__, FileNotFoundError)

    def test_missing_program_path(self, posix_runtime, temp_workspace: Path):
        with pytest.raises(SpawnError):
            SpawnedProcess([str(temp_workspace / "missing")], runtime=posix_runtime)

    def test_missing_working_directory(self, posix_runtime, temp_workspace: Path):
        with pytest.raises(SpawnError) as exc_info:
            SpawnedProcess(["true"], cwd=temp_workspace / "missing", runtime=posix_runtime)
        assert exc_info.value.errno == errno.ENOENT

    def test_working_directory_is_file(self, posix_runtime, temp_workspace: Path):
        not_a_dir = temp_workspace / "file"
        not_a_dir.write_text("x")
        with pytest.raises(SpawnError) as exc_info:
            SpawnedProcess(["true"], cwd=not_a_dir, runtime=posix_runtime)
        assert exc_info.value.errno == errno.ENOTDIR

    def test_not_executable(self, posix_runtime, temp_workspace: Path):
        script = temp_workspace / "plain.sh"
        script.write_text("echo hi\n")
        script.chmod(0o644)
        with pytest.raises(SpawnError) as exc_info:
            SpawnedProcess([str(script)], runtime=posix_runtime)
        assert exc_info.value.errno == errno.EACCES


# =============================================================================
# Termination / Concurrency Tests
# =============================================================================


class TestTermination:
    """destroy() and concurrent waiters on real children."""

    def test_destroy_running_process(self, posix_runtime):
        proc = SpawnedProcess(["sleep", "30"], runtime=posix_runtime)

        proc.destroy()

        assert proc.wait_for(timeout=10) == -posix_runtime.native.kill_signal
        assert proc.stdout.closed and proc.stderr.closed and proc.stdin.closed

    def test_destroy_after_exit_keeps_status(self, posix_runtime):
        proc = SpawnedProcess(["sh", "-c", "exit 3"], runtime=posix_runtime)
        assert proc.wait_for(timeout=10) == 3

        proc.destroy()

        assert proc.exit_value() == 3

    def test_reaper_thread_is_daemon(self, posix_runtime):
        proc = SpawnedProcess(["sleep", "30"], runtime=posix_runtime)
        try:
            reapers = [t for t in threading.enumerate() if t.name == f"process reaper {proc.pid}"]
            assert len(reapers) == 1
            assert reapers[0].daemon
        finally:
            proc.destroy()
        proc.wait_for(timeout=10)

    def test_two_concurrent_waiters(self, posix_runtime):
        proc = SpawnedProcess(["sh", "-c", "sleep 0.2; exit 5"], runtime=posix_runtime)
        results: list[int | None] = []
        lock = threading.Lock()

        def waiter():
            code = proc.wait_for(timeout=10)
            with lock:
                results.append(code)

        threads = [threading.Thread(target=waiter) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(15)

        assert results == [5, 5]

    def test_context_manager_kills_and_reaps(self, posix_runtime):
        with SpawnedProcess(["sleep", "30"], runtime=posix_runtime) as proc:
            pass

        assert proc.has_exited is True
        assert proc.exit_value() == -posix_runtime.native.kill_signal
