"""Timeout-bounded, retrying execution of external commands."""

from .models import (
    AttemptOutcome,
    AttemptResult,
    CommandResult,
    RetryPolicy,
    RunnerState,
)
from .process import run_attempt, terminate_process_tree
from .runner import ResilientRunner, run_with_retry

__all__ = [
    "AttemptOutcome",
    "AttemptResult",
    "CommandResult",
    "RetryPolicy",
    "RunnerState",
    "ResilientRunner",
    "run_attempt",
    "run_with_retry",
    "terminate_process_tree",
]
