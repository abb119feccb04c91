"""linuxfork command line entry point.

Runs one command through SpawnedProcess, passes its output through and
exits with its status.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import threading
from typing import BinaryIO, Sequence

from . import __version__
from .config import Config, get_config
from .errors import ConfigurationError, InvalidArgumentError, SpawnError, WaitTimeoutError
from .runtime import SpawnedProcess, get_runtime

__all__ = ["build_parser", "run", "main"]

logger = logging.getLogger(__name__)

EXIT_USAGE = 2
EXIT_TIMEOUT = 124
EXIT_CANNOT_RUN = 127
EXIT_UNKNOWN_STATUS = 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="linuxfork",
        description="Run a command with a background reaper and exit with its status.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--status", action="store_true", help="print launcher and native layer status")
    parser.add_argument("--cwd", help="working directory of the command")
    parser.add_argument(
        "--env",
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="set an environment variable (repeatable)",
    )
    parser.add_argument(
        "--clear-env",
        action="store_true",
        help="start from an empty environment instead of inheriting this one",
    )
    parser.add_argument("--timeout", type=float, help="kill the command after this many seconds")
    parser.add_argument("command", nargs=argparse.REMAINDER, help="command and arguments")
    return parser


def _build_env(entries: list[str], clear: bool) -> dict[str, str] | None:
    """Merge --env entries over the inherited (or empty) environment.

    Raises:
        InvalidArgumentError: An entry is not NAME=VALUE
    """
    if not entries and not clear:
        return None

    env = {} if clear else dict(os.environ)
    for entry in entries:
        name, sep, value = entry.partition("=")
        if not sep or not name:
            raise InvalidArgumentError(f"--env expects NAME=VALUE, got {entry!r}")
        env[name] = value
    return env


def _pump(source: BinaryIO, target: BinaryIO) -> None:
    """Copy a child stream to ours until EOF."""
    read = getattr(source, "read1", source.read)
    try:
        while True:
            chunk = read(4096)
            if not chunk:
                break
            target.write(chunk)
            target.flush()
    except (OSError, ValueError) as e:
        logger.debug(f"Stream copy stopped: {e}")


def _status_to_exit_code(status: int | None) -> int:
    if status is None:
        return EXIT_UNKNOWN_STATUS
    if status < 0:
        return 128 - status
    return status


def _print_status(out: BinaryIO) -> int:
    runtime = get_runtime()
    lines = [
        f"launcher: {runtime.launcher or 'not found (tried ' + runtime.launcher_name + ')'}",
        f"native layer: {'loaded' if runtime.native is not None else 'not loaded'}",
    ]
    if runtime.load_error is not None:
        lines.append(f"load error: {runtime.load_error}")
    out.write(("\n".join(lines) + "\n").encode())
    out.flush()
    return 0 if runtime.ready else 1


def run(
    argv: Sequence[str] | None = None,
    stdout: BinaryIO | None = None,
    stderr: BinaryIO | None = None,
) -> int:
    """Run the CLI and return the process exit code.

    Args:
        argv: Command line arguments (default: sys.argv[1:])
        stdout: Where the child's stdout goes (default: our stdout)
        stderr: Where the child's stderr and error messages go (default: our stderr)
    """
    stdout = stdout if stdout is not None else sys.stdout.buffer
    stderr = stderr if stderr is not None else sys.stderr.buffer

    parser = build_parser()
    args = parser.parse_args(argv)

    if args.status:
        return _print_status(stdout)

    command = list(args.command)
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        stderr.write(parser.format_usage().encode())
        stderr.flush()
        return EXIT_USAGE

    def report(message: str) -> None:
        stderr.write(f"linuxfork: {message}\n".encode())
        stderr.flush()

    try:
        env = _build_env(args.env, args.clear_env)
        proc = SpawnedProcess(command, env=env, cwd=args.cwd)
    except InvalidArgumentError as e:
        report(str(e))
        return EXIT_USAGE
    except (ConfigurationError, SpawnError) as e:
        report(str(e))
        return EXIT_CANNOT_RUN

    proc.stdin.close()
    pumps = [
        threading.Thread(target=_pump, args=(proc.stdout, stdout), name="stdout pump", daemon=True),
        threading.Thread(target=_pump, args=(proc.stderr, stderr), name="stderr pump", daemon=True),
    ]
    for pump in pumps:
        pump.start()

    try:
        status = proc.wait_for(args.timeout)
    except WaitTimeoutError:
        logger.info(f"Command timed out after {args.timeout}s, killing pid={proc.pid}")
        proc.destroy()
        proc.wait_for()
        return EXIT_TIMEOUT

    for pump in pumps:
        pump.join(timeout=1.0)
    proc.destroy()

    logger.debug(f"Command finished: {proc!r}")
    return _status_to_exit_code(status)


def setup_logging(config: Config) -> None:
    """Configure logging for the command line entry point."""
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s (%(threadName)s): %(message)s")
        )
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        log_handlers.append(stderr_handler)
        log_level = logging.INFO

    # Root logger (third party) stays at WARNING
    logging.basicConfig(
        level=logging.WARNING,
        handlers=log_handlers,
    )
    logging.getLogger("linuxfork").setLevel(log_level)


def main() -> None:
    """Main entry point."""
    setup_logging(get_config())
    sys.exit(run())


if __name__ == "__main__":
    main()
