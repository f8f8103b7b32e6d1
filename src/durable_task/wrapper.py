"""Execution wrapper started on the worker for every file-monitored task.

Runs the task command with its output appended to the log file, then records
the exit code. Write order is the protocol: the log is closed first, the
captured output is moved into place next, and the result file is renamed into
place as the very last step.
"""

from __future__ import annotations

import argparse
import logging
import os
import signal
import subprocess
import sys
from contextlib import ExitStack
from pathlib import Path

from durable_task.contracts import WrapperSpec, read_wrapper_spec

logger = logging.getLogger(__name__)

EXIT_CANNOT_EXECUTE = 126
EXIT_NOT_FOUND = 127
_FORWARDED_SIGNALS = ("SIGTERM", "SIGINT", "SIGHUP")


class _ChildRelay:
    """Forwards termination signals received by the wrapper to the command."""

    def __init__(self) -> None:
        self.child: subprocess.Popen[bytes] | None = None
        self.signum: int | None = None

    def handle(self, signum: int, _frame: object) -> None:
        self.signum = signum
        self.forward()

    def forward(self) -> None:
        if self.child is None or self.signum is None or self.child.poll() is not None:
            return
        try:
            self.child.send_signal(self.signum)
        except ProcessLookupError:
            return


def write_file_atomic(path: Path, content: bytes) -> None:
    """Write ``content`` so that ``path`` appears complete or not at all."""

    temporary = path.with_name(f".{path.name}.tmp")
    with temporary.open("wb") as handle:
        handle.write(content)
        handle.flush()
        os.fsync(handle.fileno())
    os.replace(temporary, path)


def run_wrapped(spec: WrapperSpec) -> int:
    """Run ``spec.command`` under the file protocol and return its exit code."""

    relay = _ChildRelay()
    for name in _FORWARDED_SIGNALS:
        signum = getattr(signal, name, None)
        if signum is not None:
            signal.signal(signum, relay.handle)

    write_file_atomic(Path(spec.pid_path), f"{os.getpid()}\n".encode())

    log_path = Path(spec.log_path)
    with ExitStack() as stack:
        log_handle = stack.enter_context(log_path.open("ab"))
        if relay.signum is not None or _stop_requested(spec):
            log_handle.write(b"durable-task: stop requested before the command started\n")
            exit_code = 128 + signal.SIGTERM
        else:
            if spec.capturing_output:
                stdout = stack.enter_context(Path(spec.temporary_output_path).open("wb"))
                stderr: object = log_handle
            else:
                stdout = log_handle
                stderr = subprocess.STDOUT
            exit_code = _run_child(spec.command, stdout, stderr, log_handle, relay)

    if spec.capturing_output:
        temporary_output = Path(spec.temporary_output_path)
        output = Path(spec.output_path)
        if temporary_output.exists():
            os.replace(temporary_output, output)
        else:
            write_file_atomic(output, b"")

    write_file_atomic(Path(spec.result_path), f"{exit_code}\n".encode())
    logger.debug("Recorded exit code %d in %s", exit_code, spec.result_path)
    return exit_code


def _run_child(command, stdout, stderr, log_handle, relay: _ChildRelay) -> int:
    try:
        child = subprocess.Popen(  # noqa: S603
            command,
            stdin=subprocess.DEVNULL,
            stdout=stdout,
            stderr=stderr,
        )
    except FileNotFoundError as error:
        log_handle.write(f"durable-task: command not found: {command[0]}: {error}\n".encode())
        return EXIT_NOT_FOUND
    except OSError as error:
        log_handle.write(f"durable-task: cannot execute {command[0]}: {error}\n".encode())
        return EXIT_CANNOT_EXECUTE

    relay.child = child
    relay.forward()
    returncode = child.wait()
    if returncode < 0:
        return 128 - returncode
    return returncode


def _stop_requested(spec: WrapperSpec) -> bool:
    return spec.stop_path is not None and Path(spec.stop_path).exists()


def main(argv: list[str] | None = None) -> int:
    """Run one wrapped task described by a ``launch.json`` file."""

    parser = argparse.ArgumentParser(prog="python -m durable_task.wrapper")
    parser.add_argument("--spec", required=True, help="Path to the task launch.json.")
    args = parser.parse_args(argv)

    spec = read_wrapper_spec(Path(args.spec))
    return run_wrapped(spec)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
