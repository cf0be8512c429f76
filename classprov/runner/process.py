import logging
import os
import signal
import subprocess
import threading
import time
from collections.abc import Mapping, Sequence
from pathlib import Path

from classprov.runner.models import AttemptOutcome

logger = logging.getLogger(__name__)

# Shell conventions for a program that could not be started.
EXIT_NOT_FOUND = 127
EXIT_NOT_EXECUTABLE = 126

POLL_INTERVAL_SEC = 0.05
KILL_GRACE_SEC = 2.0


def _signal_group(proc: subprocess.Popen, sig: int) -> None:
    # POSIX only: relies on start_new_session making the child a group leader
    try:
        os.killpg(proc.pid, sig)
    except ProcessLookupError:
        pass


def terminate_process_tree(proc: subprocess.Popen, grace_sec: float = KILL_GRACE_SEC) -> None:
    """
    Stop a child started in its own session together with all its descendants.

    SIGTERM goes to the whole process group first. After the grace period the
    group gets SIGKILL regardless, so a grandchild that ignored SIGTERM or
    outlived its parent does not keep running.
    """
    _signal_group(proc, signal.SIGTERM)
    try:
        proc.wait(timeout=grace_sec)
    except subprocess.TimeoutExpired:
        logger.debug("Process %d ignored SIGTERM, sending SIGKILL", proc.pid)
    _signal_group(proc, signal.SIGKILL)
    proc.wait()


def _wait(
    proc: subprocess.Popen,
    deadline: float,
    cancel: threading.Event | None,
) -> AttemptOutcome | None:
    """Block until exit, deadline or cancellation. Returns None on normal exit."""
    while True:
        if cancel is not None and cancel.is_set():
            return AttemptOutcome.CANCELLED
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return AttemptOutcome.TIMED_OUT
        try:
            proc.wait(timeout=min(remaining, POLL_INTERVAL_SEC) if cancel else remaining)
            return None
        except subprocess.TimeoutExpired:
            continue


def run_attempt(
    cmd: Sequence[str],
    timeout_sec: float,
    stdout_path: Path | None = None,
    stderr_path: Path | None = None,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    cancel: threading.Event | None = None,
) -> tuple[AttemptOutcome, int | None, float]:
    """
    Run `cmd` once, bounded by `timeout_sec` of wall-clock time.

    Returns (outcome, exit_code, duration_sec). exit_code is None when the
    attempt timed out or was cancelled.
    """
    stdout = stderr = None
    started = time.monotonic()
    deadline = started + timeout_sec
    try:
        if stdout_path is not None:
            stdout = stdout_path.open("w", encoding="utf-8", newline="\n")
        if stderr_path is not None:
            stderr = stderr_path.open("w", encoding="utf-8", newline="\n")

        try:
            proc = subprocess.Popen(
                list(cmd),
                cwd=cwd,
                env=dict(env) if env is not None else None,
                stdin=subprocess.DEVNULL,
                stdout=stdout if stdout is not None else subprocess.DEVNULL,
                stderr=stderr if stderr is not None else subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as e:
            code = EXIT_NOT_FOUND if isinstance(e, FileNotFoundError) else EXIT_NOT_EXECUTABLE
            logger.warning("Could not start %s: %s", cmd[0], e)
            if stderr is not None:
                stderr.write(f"Could not start {cmd[0]}: {e}\n")
            return AttemptOutcome.FAILED, code, time.monotonic() - started

        try:
            interrupted = _wait(proc, deadline, cancel)
        except KeyboardInterrupt:
            # the child runs in its own session and never sees the terminal's SIGINT
            terminate_process_tree(proc)
            raise
        if interrupted is not None:
            terminate_process_tree(proc)
            duration = time.monotonic() - started
            if stderr is not None:
                if interrupted == AttemptOutcome.TIMED_OUT:
                    stderr.write(f"Execution timed out after {timeout_sec:g} seconds\n")
                else:
                    stderr.write("Execution cancelled\n")
            return interrupted, None, duration

        exit_code = proc.returncode
        outcome = AttemptOutcome.SUCCESS if exit_code == 0 else AttemptOutcome.FAILED
        return outcome, exit_code, time.monotonic() - started
    finally:
        if stdout is not None:
            stdout.close()
        if stderr is not None:
            stderr.close()
