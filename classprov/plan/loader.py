import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from classprov.actions import ACTIONS
from classprov.plan.exceptions import InvalidPlanError
from classprov.plan.models import PlanSpec

logger = logging.getLogger(__name__)


def validate_plan(plan: PlanSpec) -> None:
    """Checks that need more than the model: action names must be registered."""
    for step in plan.steps:
        if step.action is not None and step.action not in ACTIONS:
            raise ValueError(
                f"Step '{step.name}' uses unknown action '{step.action}'. "
                f"Known actions: {', '.join(sorted(ACTIONS))}"
            )


def load_plan(plan_yaml: Path) -> PlanSpec:
    plan_yaml = Path(plan_yaml)
    try:
        with plan_yaml.open(encoding="utf-8") as f:
            data = yaml.safe_load(f)
        if not isinstance(data, dict):
            raise TypeError("root must be a mapping")

        data.setdefault("name", plan_yaml.stem)
        plan = PlanSpec(**data, source_path=plan_yaml)
        validate_plan(plan)
    except (OSError, yaml.YAMLError, TypeError, ValueError, ValidationError) as e:
        logger.error("Plan validation failed for %s: %s", plan_yaml, e)
        raise InvalidPlanError(plan_yaml, e) from e

    logger.debug("Loaded plan %s with %d steps from %s", plan.name, len(plan.steps), plan_yaml)
    return plan
