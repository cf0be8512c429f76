from pathlib import Path


class InvalidPlanError(Exception):
    def __init__(self, plan_path: Path | str, error: Exception):
        super().__init__(f"Invalid plan ({plan_path}): {error}")
        self.plan_path = plan_path
        self.error = error


class PresetNotFoundError(Exception):
    def __init__(self, name: str, available: list[str]):
        super().__init__(
            f"Preset '{name}' not found. Available presets: {', '.join(available)}"
        )
        self.name = name
        self.available = available
