"""Tests for ResilientRunner retry and timeout behaviour."""

import sys
import threading
import time
from pathlib import Path

import pytest
from pydantic import ValidationError

from classprov.runner import (
    AttemptOutcome,
    ResilientRunner,
    RetryPolicy,
    RunnerState,
    run_with_retry,
)

PY = sys.executable


def _py(code: str) -> list[str]:
    return [PY, "-c", code]


def _succeed_on_call(counter: Path, k: int) -> list[str]:
    """Command that fails until it has been called k times."""
    code = (
        "import pathlib, sys\n"
        f"p = pathlib.Path({str(counter)!r})\n"
        "n = int(p.read_text()) + 1 if p.exists() else 1\n"
        "p.write_text(str(n))\n"
        f"sys.exit(0 if n >= {k} else 1)\n"
    )
    return _py(code)


class TestAttemptBudget:
    """Attempt counts for failing and eventually-succeeding commands."""

    @pytest.mark.parametrize("max_attempts", [1, 2, 3, 5])
    def test_always_failing_command_uses_every_attempt(self, max_attempts):
        result = run_with_retry(
            "fail",
            _py("import sys; sys.exit(1)"),
            timeout_sec=10,
            max_attempts=max_attempts,
        )

        assert result.attempts_used == max_attempts
        assert result.outcome == AttemptOutcome.FAILED
        assert result.exit_code == 1
        assert result.exhausted_retries is True
        assert [a.attempt_index for a in result.attempts] == list(range(1, max_attempts + 1))

    @pytest.mark.parametrize("k,max_attempts", [(1, 1), (1, 3), (2, 3), (3, 3), (2, 5)])
    def test_success_on_kth_call_stops_retrying(self, tmp_path: Path, k, max_attempts):
        counter = tmp_path / "count"

        result = run_with_retry(
            "flaky",
            _succeed_on_call(counter, k),
            timeout_sec=10,
            max_attempts=max_attempts,
        )

        assert result.succeeded
        assert result.attempts_used == k
        assert int(counter.read_text()) == k
        assert result.exhausted_retries is False

    def test_three_attempts_exit_one_every_time(self):
        result = run_with_retry(
            "exit1",
            _py("import sys; sys.exit(1)"),
            timeout_sec=10,
            max_attempts=3,
            retry_delay_sec=0,
        )

        assert result.attempts_used == 3
        assert result.outcome == AttemptOutcome.FAILED

    def test_exit_code_of_last_attempt_is_preserved(self):
        result = run_with_retry("exit7", _py("import sys; sys.exit(7)"), timeout_sec=10, max_attempts=2)

        assert result.exit_code == 7
        assert all(a.exit_code == 7 for a in result.attempts)

    def test_missing_program_is_failed_not_raised(self):
        result = run_with_retry(
            "missing",
            ["classprov-definitely-not-installed"],
            timeout_sec=5,
            max_attempts=2,
        )

        assert result.outcome == AttemptOutcome.FAILED
        assert result.exit_code == 127
        assert result.attempts_used == 2


class TestTimeout:
    """Timeouts are classified separately and kill the whole process tree."""

    def test_sleeping_command_is_terminated_near_timeout(self):
        started = time.monotonic()
        result = run_with_retry(
            "sleepy",
            _py("import time; time.sleep(5)"),
            timeout_sec=1,
            max_attempts=1,
        )
        elapsed = time.monotonic() - started

        assert result.outcome == AttemptOutcome.TIMED_OUT
        assert result.exit_code is None
        assert result.attempts_used == 1
        assert 1.0 <= elapsed < 4.0

    def test_timed_out_attempts_are_retried(self):
        result = run_with_retry(
            "sleepy",
            _py("import time; time.sleep(5)"),
            timeout_sec=0.3,
            max_attempts=2,
        )

        assert result.attempts_used == 2
        assert [a.outcome for a in result.attempts] == [AttemptOutcome.TIMED_OUT] * 2
        assert result.exhausted_retries is True

    def test_descendants_are_killed_on_timeout(self, tmp_path: Path):
        marker = tmp_path / "grandchild_survived"
        grandchild = (
            "import pathlib, time\n"
            "time.sleep(1.5)\n"
            f"pathlib.Path({str(marker)!r}).write_text('alive')\n"
        )
        parent = (
            "import subprocess, sys, time\n"
            f"subprocess.Popen([sys.executable, '-c', {grandchild!r}])\n"
            "time.sleep(30)\n"
        )

        result = run_with_retry("tree", _py(parent), timeout_sec=0.5, max_attempts=1)
        time.sleep(2.5)

        assert result.outcome == AttemptOutcome.TIMED_OUT
        assert not marker.exists()

    def test_timeout_is_noted_in_stderr_log(self, tmp_path: Path):
        result = run_with_retry(
            "sleepy",
            _py("import time; time.sleep(5)"),
            timeout_sec=0.3,
            max_attempts=1,
            logs_dir=tmp_path,
        )

        stderr_path = result.attempts[0].stderr_path
        assert stderr_path == tmp_path / "sleepy_attempt1_stderr.txt"
        assert "timed out" in stderr_path.read_text()


class TestRetryDelay:
    """The retry delay sits between attempts only."""

    def test_delay_is_not_applied_after_last_attempt(self):
        sleeps: list[float] = []
        policy = RetryPolicy(timeout_sec=10, max_attempts=3, retry_delay_sec=4)

        result = ResilientRunner(
            "fail", _py("import sys; sys.exit(2)"), policy, sleep=sleeps.append
        ).run()

        assert result.attempts_used == 3
        assert sleeps == [4, 4]

    def test_no_delay_after_success(self):
        sleeps: list[float] = []
        policy = RetryPolicy(timeout_sec=10, max_attempts=3, retry_delay_sec=4)

        ResilientRunner("ok", _py("pass"), policy, sleep=sleeps.append).run()

        assert sleeps == []

    def test_delay_elapses_between_attempts(self):
        started = time.monotonic()
        result = run_with_retry(
            "fail",
            _py("import sys; sys.exit(1)"),
            timeout_sec=10,
            max_attempts=2,
            retry_delay_sec=0.5,
        )
        elapsed = time.monotonic() - started

        attempt_time = sum(a.duration_sec for a in result.attempts)
        assert elapsed - attempt_time >= 0.5


class TestCancellation:
    def test_cancel_interrupts_running_attempt(self):
        cancel = threading.Event()
        timer = threading.Timer(0.3, cancel.set)
        timer.start()
        started = time.monotonic()
        try:
            result = run_with_retry(
                "sleepy",
                _py("import time; time.sleep(10)"),
                timeout_sec=20,
                max_attempts=3,
                cancel=cancel,
            )
        finally:
            timer.cancel()

        assert result.outcome == AttemptOutcome.CANCELLED
        assert result.attempts_used == 1
        assert result.exhausted_retries is False
        assert time.monotonic() - started < 5

    def test_cancel_before_start_runs_nothing(self):
        cancel = threading.Event()
        cancel.set()

        result = run_with_retry("noop", _py("pass"), timeout_sec=5, cancel=cancel)

        assert result.outcome == AttemptOutcome.CANCELLED
        assert result.attempts_used == 0


class TestSideEffects:
    def test_retries_repeat_side_effects(self, tmp_path: Path):
        """Retrying a non-idempotent command applies its effect once per attempt."""
        log = tmp_path / "appended.txt"
        code = (
            f"open({str(log)!r}, 'a').write('line\\n')\n"
            "import sys; sys.exit(1)\n"
        )

        run_with_retry("append", _py(code), timeout_sec=10, max_attempts=3)

        assert log.read_text().count("line") == 3


class TestProgressAndValidation:
    def test_progress_reports_each_attempt_and_final_line(self):
        messages: list[str] = []

        run_with_retry(
            "fail",
            _py("import sys; sys.exit(1)"),
            timeout_sec=10,
            max_attempts=2,
            description="install things",
            progress=messages.append,
        )

        assert messages[0] == "[fail] attempt 1/2: install things"
        assert any("retrying" in m for m in messages)
        assert "[fail] attempt 2/2: install things" in messages
        assert messages[-1].startswith("[fail] gave up after 2 attempt(s)")

    def test_success_message(self):
        messages: list[str] = []

        run_with_retry("ok", _py("pass"), timeout_sec=10, progress=messages.append)

        assert messages[-1] == "[ok] succeeded after 1 attempt(s)"

    def test_empty_command_is_rejected(self):
        with pytest.raises(ValueError):
            ResilientRunner("empty", [], RetryPolicy(timeout_sec=1))

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"timeout_sec": 0},
            {"timeout_sec": -1},
            {"timeout_sec": 1, "max_attempts": 0},
            {"timeout_sec": 1, "retry_delay_sec": -0.5},
        ],
    )
    def test_invalid_policy_is_rejected(self, kwargs):
        with pytest.raises(ValidationError):
            RetryPolicy(**kwargs)

    def test_runner_is_single_use(self):
        runner = ResilientRunner("ok", _py("pass"), RetryPolicy(timeout_sec=10))
        runner.run()

        assert runner.state == RunnerState.TERMINAL
        with pytest.raises(RuntimeError):
            runner.run()
