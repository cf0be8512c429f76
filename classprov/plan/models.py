from enum import StrEnum
from pathlib import Path

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
    model_validator,
)

from classprov.runner.models import RetryPolicy

SUPPORTED_PLAN_SPEC_VERSIONS = {"1.0"}


class FailurePolicy(StrEnum):
    CONTINUE = "continue"
    ABORT = "abort"


class StepDefaults(BaseModel):
    model_config = ConfigDict(extra="forbid")

    timeout_sec: float = Field(default=300, gt=0)
    max_attempts: int = Field(default=1, ge=1)
    retry_delay_sec: float = Field(default=0, ge=0)
    on_failure: FailurePolicy = FailurePolicy.CONTINUE


class StepSpec(BaseModel):
    """
    One named step of a provisioning plan.

    A step either runs an external `command` or calls a built-in `action`.
    Retry settings left unset are filled from the plan's defaults.
    """

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, pattern=r"^[A-Za-z0-9_.-]+$")
    description: str | None = None
    command: list[str] | None = None
    action: str | None = None
    timeout_sec: float | None = Field(default=None, gt=0)
    max_attempts: int | None = Field(default=None, ge=1)
    retry_delay_sec: float | None = Field(default=None, ge=0)
    on_failure: FailurePolicy | None = None
    cwd: Path | None = None
    env: dict[str, str] | None = None

    @field_validator("command")
    @classmethod
    def _command_not_empty(cls, v: list[str] | None) -> list[str] | None:
        if v is not None and not v:
            raise ValueError("command must not be empty")
        return v

    @model_validator(mode="after")
    def _one_kind(self) -> "StepSpec":
        if (self.command is None) == (self.action is None):
            raise ValueError(f"step '{self.name}' needs exactly one of 'command' or 'action'")
        return self

    @property
    def summary(self) -> str:
        if self.description:
            return self.description
        if self.command is not None:
            return " ".join(self.command)
        return f"action {self.action}"

    @property
    def policy(self) -> RetryPolicy:
        return RetryPolicy(
            timeout_sec=self.timeout_sec if self.timeout_sec is not None else StepDefaults().timeout_sec,
            max_attempts=self.max_attempts or 1,
            retry_delay_sec=self.retry_delay_sec or 0,
        )

    @field_serializer("cwd")
    def serialize_cwd(self, v: Path | None) -> str | None:
        return str(v) if v is not None else None


class PlanSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    plan_spec_version: str = "1.0"
    name: str = Field(min_length=1)
    description: str | None = None
    defaults: StepDefaults = Field(default_factory=StepDefaults)
    steps: list[StepSpec] = Field(min_length=1)
    source_path: Path | None = None

    @field_validator("plan_spec_version")
    @classmethod
    def _supported_version(cls, v: str) -> str:
        if v not in SUPPORTED_PLAN_SPEC_VERSIONS:
            raise ValueError(
                f"Unsupported plan_spec_version: {v}. "
                f"Supported versions: {sorted(SUPPORTED_PLAN_SPEC_VERSIONS)}"
            )
        return v

    @model_validator(mode="after")
    def _apply_defaults(self) -> "PlanSpec":
        seen: set[str] = set()
        for step in self.steps:
            if step.name in seen:
                raise ValueError(f"Duplicate step name: {step.name}")
            seen.add(step.name)

            if step.timeout_sec is None:
                step.timeout_sec = self.defaults.timeout_sec
            if step.max_attempts is None:
                step.max_attempts = self.defaults.max_attempts
            if step.retry_delay_sec is None:
                step.retry_delay_sec = self.defaults.retry_delay_sec
            if step.on_failure is None:
                step.on_failure = self.defaults.on_failure
        return self

    @field_serializer("source_path")
    def serialize_path(self, v: Path | None) -> str | None:
        return str(v) if v is not None else None
