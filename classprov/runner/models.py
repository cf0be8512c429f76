from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_serializer


class AttemptOutcome(StrEnum):
    SUCCESS = "SUCCESS"
    TIMED_OUT = "TIMED_OUT"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class RunnerState(StrEnum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    RETRYING = "RETRYING"
    TERMINAL = "TERMINAL"


class RetryPolicy(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    timeout_sec: float = Field(gt=0)
    max_attempts: int = Field(default=3, ge=1)
    retry_delay_sec: float = Field(default=0.0, ge=0)


class AttemptResult(BaseModel):
    attempt_index: int
    outcome: AttemptOutcome
    exit_code: int | None
    duration_sec: float
    stdout_path: Path | None = None
    stderr_path: Path | None = None

    @field_serializer("stdout_path", "stderr_path")
    def serialize_paths(self, v: Path | None) -> str | None:
        return str(v) if v is not None else None


class CommandResult(BaseModel):
    """
    Terminal result of one runner invocation.

    `outcome` and `exit_code` are those of the last attempt made. `exit_code`
    is None when the last attempt timed out or was cancelled.
    """

    name: str
    command: list[str]
    outcome: AttemptOutcome
    exit_code: int | None
    attempts_used: int
    max_attempts: int
    attempts: list[AttemptResult] = Field(default_factory=list)
    duration_sec: float

    @property
    def succeeded(self) -> bool:
        return self.outcome == AttemptOutcome.SUCCESS

    @property
    def exhausted_retries(self) -> bool:
        return (
            self.outcome in (AttemptOutcome.FAILED, AttemptOutcome.TIMED_OUT)
            and self.attempts_used == self.max_attempts
        )
