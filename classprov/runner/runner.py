import logging
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path

from classprov.runner.models import (
    AttemptOutcome,
    AttemptResult,
    CommandResult,
    RetryPolicy,
    RunnerState,
)
from classprov.runner.process import run_attempt
from classprov.util.paths import ensure_dir

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]


class ResilientRunner:
    """
    Run one external command with a per-attempt timeout and a retry budget.

    The runner blocks until a terminal outcome and always returns a
    CommandResult; command failures and timeouts are never raised. Side
    effects of a failed attempt are not rolled back, and a retry re-runs the
    whole command, so the command itself must be safe to repeat.
    """

    def __init__(
        self,
        name: str,
        command: Sequence[str],
        policy: RetryPolicy,
        description: str | None = None,
        logs_dir: Path | None = None,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        progress: ProgressCallback | None = None,
        cancel: threading.Event | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if not command:
            raise ValueError("command must contain at least the program name")
        if not name:
            raise ValueError("name must not be empty")

        self.name = name
        self.command = [str(part) for part in command]
        self.policy = policy
        self.description = description or " ".join(self.command)
        self.logs_dir = logs_dir
        self.cwd = cwd
        self.env = env
        self.progress = progress
        self.cancel = cancel
        self._sleep = sleep
        self.state = RunnerState.PENDING

    def _report(self, message: str) -> None:
        logger.info(message)
        if self.progress is not None:
            self.progress(message)

    def _log_paths(self, attempt_index: int) -> tuple[Path | None, Path | None]:
        if self.logs_dir is None:
            return None, None
        logs_dir = ensure_dir(self.logs_dir)
        prefix = f"{self.name}_attempt{attempt_index}"
        return logs_dir / f"{prefix}_stdout.txt", logs_dir / f"{prefix}_stderr.txt"

    def _pause(self) -> bool:
        """Sleep the retry delay. Returns False if cancelled meanwhile."""
        delay = self.policy.retry_delay_sec
        if self.cancel is not None:
            return not self.cancel.wait(delay)
        if delay > 0:
            self._sleep(delay)
        return True

    def run(self) -> CommandResult:
        if self.state != RunnerState.PENDING:
            raise RuntimeError(f"Runner {self.name!r} has already been used")

        max_attempts = self.policy.max_attempts
        attempts: list[AttemptResult] = []
        started = time.monotonic()
        outcome = AttemptOutcome.CANCELLED
        exit_code: int | None = None

        for attempt_index in range(1, max_attempts + 1):
            if self.cancel is not None and self.cancel.is_set():
                outcome, exit_code = AttemptOutcome.CANCELLED, None
                break

            self.state = RunnerState.RUNNING
            self._report(f"[{self.name}] attempt {attempt_index}/{max_attempts}: {self.description}")

            stdout_path, stderr_path = self._log_paths(attempt_index)
            outcome, exit_code, duration = run_attempt(
                self.command,
                timeout_sec=self.policy.timeout_sec,
                stdout_path=stdout_path,
                stderr_path=stderr_path,
                cwd=self.cwd,
                env=self.env,
                cancel=self.cancel,
            )
            attempts.append(
                AttemptResult(
                    attempt_index=attempt_index,
                    outcome=outcome,
                    exit_code=exit_code,
                    duration_sec=duration,
                    stdout_path=stdout_path,
                    stderr_path=stderr_path,
                )
            )
            logger.debug(
                "[%s] attempt %d finished: %s (exit_code=%s, %.2fs)",
                self.name,
                attempt_index,
                outcome,
                exit_code,
                duration,
            )

            if outcome in (AttemptOutcome.SUCCESS, AttemptOutcome.CANCELLED):
                break
            if attempt_index == max_attempts:
                break

            self.state = RunnerState.RETRYING
            self._report(
                f"[{self.name}] attempt {attempt_index} {_describe(outcome, exit_code, self.policy)}; "
                f"retrying in {self.policy.retry_delay_sec:g}s"
            )
            if not self._pause():
                outcome, exit_code = AttemptOutcome.CANCELLED, None
                break

        self.state = RunnerState.TERMINAL
        result = CommandResult(
            name=self.name,
            command=self.command,
            outcome=outcome,
            exit_code=exit_code,
            attempts_used=len(attempts),
            max_attempts=max_attempts,
            attempts=attempts,
            duration_sec=time.monotonic() - started,
        )

        if result.succeeded:
            self._report(f"[{self.name}] succeeded after {result.attempts_used} attempt(s)")
        else:
            self._report(
                f"[{self.name}] gave up after {result.attempts_used} attempt(s): "
                f"{_describe(outcome, exit_code, self.policy)}"
            )
            logger.warning(
                "Command %s finished with %s after %d/%d attempts",
                self.name,
                outcome,
                result.attempts_used,
                max_attempts,
            )
        return result


def _describe(outcome: AttemptOutcome, exit_code: int | None, policy: RetryPolicy) -> str:
    if outcome == AttemptOutcome.TIMED_OUT:
        return f"timed out after {policy.timeout_sec:g}s"
    if outcome == AttemptOutcome.FAILED:
        return f"failed with exit code {exit_code}"
    if outcome == AttemptOutcome.CANCELLED:
        return "cancelled"
    return "succeeded"


def run_with_retry(
    name: str,
    command: Sequence[str],
    timeout_sec: float,
    max_attempts: int = 3,
    retry_delay_sec: float = 0.0,
    **kwargs,
) -> CommandResult:
    """Convenience wrapper: build a RetryPolicy and run the command once through it."""
    policy = RetryPolicy(
        timeout_sec=timeout_sec,
        max_attempts=max_attempts,
        retry_delay_sec=retry_delay_sec,
    )
    return ResilientRunner(name, command, policy, **kwargs).run()
