"""Unit tests for plan Pydantic models."""

import json

import pytest
from pydantic import ValidationError

from classprov.plan.models import FailurePolicy, PlanSpec, StepDefaults, StepSpec
from classprov.runner import RetryPolicy


class TestStepSpec:
    def test_command_step(self):
        step = StepSpec(name="apt-update", command=["apt-get", "update"])

        assert step.summary == "apt-get update"
        assert step.action is None

    def test_action_step_summary(self):
        step = StepSpec(name="scaffold", action="scaffold_workspace")

        assert step.summary == "action scaffold_workspace"

    def test_description_overrides_summary(self):
        step = StepSpec(name="x", command=["true"], description="Do nothing")

        assert step.summary == "Do nothing"

    def test_requires_command_or_action(self):
        with pytest.raises(ValidationError, match="exactly one"):
            StepSpec(name="nothing")

    def test_rejects_command_and_action(self):
        with pytest.raises(ValidationError, match="exactly one"):
            StepSpec(name="both", command=["true"], action="health_check")

    def test_rejects_empty_command(self):
        with pytest.raises(ValidationError):
            StepSpec(name="empty", command=[])

    @pytest.mark.parametrize("name", ["", "has space", "slash/name"])
    def test_rejects_bad_names(self, name):
        with pytest.raises(ValidationError):
            StepSpec(name=name, command=["true"])

    def test_rejects_unknown_fields(self):
        with pytest.raises(ValidationError):
            StepSpec(name="x", command=["true"], retries=3)

    def test_policy(self):
        step = StepSpec(name="x", command=["true"], timeout_sec=5, max_attempts=2, retry_delay_sec=1)

        assert step.policy == RetryPolicy(timeout_sec=5, max_attempts=2, retry_delay_sec=1)


class TestPlanSpec:
    def test_defaults_fill_unset_step_fields(self):
        plan = PlanSpec(
            name="p",
            defaults=StepDefaults(timeout_sec=60, max_attempts=3, retry_delay_sec=10, on_failure="abort"),
            steps=[
                StepSpec(name="a", command=["true"]),
                StepSpec(name="b", command=["true"], max_attempts=1, on_failure="continue"),
            ],
        )

        a, b = plan.steps
        assert (a.timeout_sec, a.max_attempts, a.retry_delay_sec, a.on_failure) == (
            60,
            3,
            10,
            FailurePolicy.ABORT,
        )
        assert b.max_attempts == 1
        assert b.timeout_sec == 60
        assert b.on_failure == FailurePolicy.CONTINUE

    def test_requires_steps(self):
        with pytest.raises(ValidationError):
            PlanSpec(name="empty", steps=[])

    def test_rejects_duplicate_step_names(self):
        with pytest.raises(ValidationError, match="Duplicate step name"):
            PlanSpec(
                name="dup",
                steps=[StepSpec(name="a", command=["true"]), StepSpec(name="a", command=["false"])],
            )

    def test_rejects_unsupported_version(self):
        with pytest.raises(ValidationError, match="Unsupported plan_spec_version"):
            PlanSpec(plan_spec_version="2.0", name="p", steps=[StepSpec(name="a", command=["true"])])

    def test_serialization(self):
        plan = PlanSpec(name="p", steps=[StepSpec(name="a", command=["true"])])

        data = json.loads(plan.model_dump_json())

        assert data["steps"][0]["command"] == ["true"]
        assert data["steps"][0]["max_attempts"] == 1
        assert data["source_path"] is None
