"""Unit tests for loading plans from YAML."""

from pathlib import Path

import pytest

from classprov.plan import InvalidPlanError, load_plan

VALID_PLAN = """\
plan_spec_version: "1.0"
name: classroom
description: Minimal classroom setup
defaults:
  timeout_sec: 120
  max_attempts: 3
  retry_delay_sec: 5
steps:
  - name: apt-update
    command: [sudo, apt-get, update, -qq]
  - name: python
    description: Python essentials
    command: [pip, install, --user, pandas]
    timeout_sec: 600
    on_failure: abort
  - name: scaffold
    action: scaffold_workspace
"""


class TestLoadPlan:
    def test_load_valid_plan(self, tmp_path: Path):
        path = tmp_path / "plan.yaml"
        path.write_text(VALID_PLAN)

        plan = load_plan(path)

        assert plan.name == "classroom"
        assert plan.source_path == path
        assert [s.name for s in plan.steps] == ["apt-update", "python", "scaffold"]
        assert plan.steps[0].max_attempts == 3
        assert plan.steps[1].timeout_sec == 600
        assert plan.steps[1].on_failure == "abort"
        assert plan.steps[2].action == "scaffold_workspace"

    def test_name_defaults_to_file_stem(self, tmp_path: Path):
        path = tmp_path / "nightly.yml"
        path.write_text("steps:\n  - name: a\n    command: [\"true\"]\n")

        assert load_plan(path).name == "nightly"

    def test_unknown_action(self, tmp_path: Path):
        path = tmp_path / "plan.yaml"
        path.write_text("steps:\n  - name: a\n    action: launch_rockets\n")

        with pytest.raises(InvalidPlanError, match="launch_rockets"):
            load_plan(path)

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(InvalidPlanError):
            load_plan(tmp_path / "missing.yaml")

    def test_malformed_yaml(self, tmp_path: Path):
        path = tmp_path / "plan.yaml"
        path.write_text("steps: [unclosed\n")

        with pytest.raises(InvalidPlanError):
            load_plan(path)

    def test_root_must_be_mapping(self, tmp_path: Path):
        path = tmp_path / "plan.yaml"
        path.write_text("- just\n- a list\n")

        with pytest.raises(InvalidPlanError, match="mapping"):
            load_plan(path)

    def test_unknown_keys_are_rejected(self, tmp_path: Path):
        path = tmp_path / "plan.yaml"
        path.write_text("steps:\n  - name: a\n    command: [\"true\"]\n    retries: 4\n")

        with pytest.raises(InvalidPlanError):
            load_plan(path)

    def test_error_keeps_cause(self, tmp_path: Path):
        path = tmp_path / "plan.yaml"
        path.write_text("steps: []\n")

        with pytest.raises(InvalidPlanError) as exc_info:
            load_plan(path)

        assert exc_info.value.plan_path == path
        assert exc_info.value.__cause__ is exc_info.value.error
        assert "plan.yaml" in str(exc_info.value)
