"""Provisioning plans: ordered, named steps with their own retry settings."""

from .exceptions import InvalidPlanError, PresetNotFoundError
from .loader import load_plan, validate_plan
from .models import FailurePolicy, PlanSpec, StepDefaults, StepSpec
from .presets import get_preset, list_presets

__all__ = [
    "FailurePolicy",
    "InvalidPlanError",
    "PlanSpec",
    "PresetNotFoundError",
    "StepDefaults",
    "StepSpec",
    "get_preset",
    "list_presets",
    "load_plan",
    "validate_plan",
]
