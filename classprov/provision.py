import logging
import os
import threading
import time
from collections.abc import Callable
from datetime import datetime, timezone
from enum import StrEnum
from pathlib import Path

import ulid
from pydantic import BaseModel, Field, field_serializer

from classprov.actions import get_action
from classprov.config import ProvisionConfig
from classprov.plan.models import FailurePolicy, PlanSpec, StepSpec
from classprov.runner import AttemptOutcome, ResilientRunner
from classprov.util.jsonl import append_jsonl, read_jsonl
from classprov.util.paths import ensure_dir

logger = logging.getLogger(__name__)

HISTORY_FILE = "history.jsonl"
RUN_DIR_FORMAT = "%Y-%m-%d_%H-%M-%S"


class StepStatus(StrEnum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"
    CANCELLED = "CANCELLED"
    SKIPPED = "SKIPPED"


_OUTCOME_TO_STATUS = {
    AttemptOutcome.SUCCESS: StepStatus.SUCCESS,
    AttemptOutcome.FAILED: StepStatus.FAILED,
    AttemptOutcome.TIMED_OUT: StepStatus.TIMED_OUT,
    AttemptOutcome.CANCELLED: StepStatus.CANCELLED,
}


class StepReport(BaseModel):
    name: str
    description: str
    status: StepStatus
    attempts_used: int = 0
    exit_code: int | None = None
    duration_sec: float = 0.0
    detail: str | None = None

    @property
    def failed(self) -> bool:
        return self.status in (StepStatus.FAILED, StepStatus.TIMED_OUT)


class ProvisionReport(BaseModel):
    run_id: str
    plan_name: str
    student_id: str
    started_at: datetime
    ended_at: datetime
    duration_sec: float
    aborted: bool
    dry_run: bool
    steps: list[StepReport] = Field(default_factory=list)
    run_dir: Path | None = None

    @field_serializer("started_at", "ended_at")
    def _serialize_datetime(self, value: datetime) -> str:
        return value.isoformat()

    @field_serializer("run_dir")
    def _serialize_path(self, v: Path | None) -> str | None:
        return str(v) if v is not None else None

    def count(self, status: StepStatus) -> int:
        return sum(1 for step in self.steps if step.status == status)

    @property
    def failed_steps(self) -> list[StepReport]:
        return [step for step in self.steps if step.failed]

    @property
    def succeeded(self) -> bool:
        return not self.aborted and not self.failed_steps and self.count(StepStatus.CANCELLED) == 0


def _run_command_step(
    step: StepSpec,
    logs_dir: Path,
    progress: Callable[[str], None] | None,
    cancel: threading.Event | None,
) -> StepReport:
    env = {**os.environ, **step.env} if step.env else None

    result = ResilientRunner(
        step.name,
        step.command,
        step.policy,
        description=step.summary,
        logs_dir=logs_dir,
        cwd=step.cwd,
        env=env,
        progress=progress,
        cancel=cancel,
    ).run()

    detail = None
    if result.attempts and result.attempts[-1].stderr_path is not None:
        detail = f"logs: {result.attempts[-1].stderr_path}"
    return StepReport(
        name=step.name,
        description=step.summary,
        status=_OUTCOME_TO_STATUS[result.outcome],
        attempts_used=result.attempts_used,
        exit_code=result.exit_code,
        duration_sec=result.duration_sec,
        detail=detail,
    )


def _run_action_step(
    step: StepSpec,
    config: ProvisionConfig,
    progress: Callable[[str], None] | None,
    cancel: threading.Event | None,
    sleep: Callable[[float], None] = time.sleep,
) -> StepReport:
    """Call a built-in action with the same attempt budget a command step gets."""
    action = get_action(step.action)
    policy = step.policy
    started = time.monotonic()
    detail = None
    attempts = 0

    def report(message: str) -> None:
        logger.info(message)
        if progress is not None:
            progress(message)

    def cancelled() -> StepReport:
        report(f"[{step.name}] cancelled after {attempts} attempt(s)")
        return StepReport(
            name=step.name,
            description=step.summary,
            status=StepStatus.CANCELLED,
            attempts_used=attempts,
            duration_sec=time.monotonic() - started,
            detail=detail,
        )

    for attempt_index in range(1, policy.max_attempts + 1):
        if cancel is not None and cancel.is_set():
            return cancelled()
        attempts = attempt_index
        report(f"[{step.name}] attempt {attempt_index}/{policy.max_attempts}: {step.summary}")
        try:
            detail = action(config)
        except Exception as e:
            logger.warning("Action %s failed on attempt %d: %s", step.action, attempt_index, e)
            detail = f"{type(e).__name__}: {e}"
            if attempt_index < policy.max_attempts:
                report(f"[{step.name}] attempt {attempt_index} failed; retrying in {policy.retry_delay_sec:g}s")
                if cancel is not None:
                    if cancel.wait(policy.retry_delay_sec):
                        return cancelled()
                elif policy.retry_delay_sec > 0:
                    sleep(policy.retry_delay_sec)
            continue

        report(f"[{step.name}] succeeded after {attempt_index} attempt(s)")
        return StepReport(
            name=step.name,
            description=step.summary,
            status=StepStatus.SUCCESS,
            attempts_used=attempt_index,
            duration_sec=time.monotonic() - started,
            detail=detail,
        )

    report(f"[{step.name}] gave up after {attempts} attempt(s): {detail}")
    return StepReport(
        name=step.name,
        description=step.summary,
        status=StepStatus.FAILED,
        attempts_used=attempts,
        duration_sec=time.monotonic() - started,
        detail=detail,
    )


def provision(
    plan: PlanSpec,
    config: ProvisionConfig,
    progress: Callable[[str], None] | None = None,
    cancel: threading.Event | None = None,
    str_format: str = RUN_DIR_FORMAT,
) -> ProvisionReport:
    """
    Run every step of `plan` in order and record the outcome.

    A failed step stops the sequence only when the step says `on_failure:
    abort` or the config disables `continue_on_failure`; the remaining steps
    are then reported as SKIPPED. Command steps that are retried re-run their
    command from scratch, so they must be safe to repeat.
    """
    started_at = datetime.now(timezone.utc)
    started = time.monotonic()
    run_id = str(ulid.new())

    logs_root = ensure_dir(config.logs_dir)
    run_dir = ensure_dir(
        logs_root / "runs" / f"{started_at.strftime(str_format)}__{run_id}"
    )
    step_logs = ensure_dir(run_dir / "logs")

    logger.info("Provisioning run %s: plan %s (%d steps)", run_id, plan.name, len(plan.steps))

    reports: list[StepReport] = []
    stop_reason: str | None = None

    for step in plan.steps:
        if stop_reason is not None or config.dry_run:
            reports.append(
                StepReport(
                    name=step.name,
                    description=step.summary,
                    status=StepStatus.SKIPPED,
                    detail="dry_run" if config.dry_run else stop_reason,
                )
            )
            continue

        if step.command is not None:
            step_report = _run_command_step(step, step_logs, progress, cancel)
        else:
            step_report = _run_action_step(step, config, progress, cancel)
        reports.append(step_report)

        if step_report.status == StepStatus.CANCELLED:
            stop_reason = "cancelled"
        elif step_report.failed:
            if step.on_failure == FailurePolicy.ABORT:
                stop_reason = f"aborted after {step.name} failed"
            elif not config.continue_on_failure:
                stop_reason = f"stopped after {step.name} failed (continue_on_failure is off)"
            else:
                logger.warning("Step %s failed, continuing with the next step", step.name)

    report = ProvisionReport(
        run_id=run_id,
        plan_name=plan.name,
        student_id=config.student_id,
        started_at=started_at,
        ended_at=datetime.now(timezone.utc),
        duration_sec=time.monotonic() - started,
        aborted=stop_reason is not None,
        dry_run=config.dry_run,
        steps=reports,
        run_dir=run_dir,
    )

    (run_dir / "run.json").write_text(report.model_dump_json(indent=2), encoding="utf-8")
    append_jsonl(
        logs_root / HISTORY_FILE,
        {
            "run_id": run_id,
            "plan": plan.name,
            "started_at": started_at.isoformat(),
            "duration_sec": round(report.duration_sec, 3),
            "succeeded": report.succeeded,
            "aborted": report.aborted,
            "failed_steps": [step.name for step in report.failed_steps],
            "run_dir": str(run_dir),
        },
    )
    logger.info(
        "Provisioning run %s finished: %d ok, %d failed, %d skipped",
        run_id,
        report.count(StepStatus.SUCCESS),
        len(report.failed_steps),
        report.count(StepStatus.SKIPPED),
    )
    return report


def read_history(config: ProvisionConfig) -> list[dict]:
    return list(read_jsonl(config.logs_dir / HISTORY_FILE))
