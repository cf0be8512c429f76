"""Built-in Python actions a plan step can call by name."""

from collections.abc import Callable

from classprov.config import ProvisionConfig
from classprov.credentials import ensure_credentials_file
from classprov.database import create_student_database
from classprov.health import HealthStatus, run_health_checks
from classprov.scaffold import scaffold_workspace

Action = Callable[[ProvisionConfig], str]


class ActionFailedError(Exception):
    pass


def _ensure_credentials(config: ProvisionConfig) -> str:
    credentials = ensure_credentials_file(config)
    return f"credentials for {credentials.user} in {config.credentials_path}"


def _create_student_database(config: ProvisionConfig) -> str:
    credentials = ensure_credentials_file(config)
    create_student_database(config, credentials)
    return f"database {credentials.database} owned by {credentials.user}"


def _scaffold_workspace(config: ProvisionConfig) -> str:
    created = scaffold_workspace(config)
    return f"{len(created)} new paths under {config.project_dir}"


def _health_check(config: ProvisionConfig) -> str:
    report = run_health_checks(config)
    summary = ", ".join(f"{c.name}={c.status}" for c in report.checks)
    if report.count(HealthStatus.FAILED):
        raise ActionFailedError(summary)
    return summary


ACTIONS: dict[str, Action] = {
    "ensure_credentials": _ensure_credentials,
    "create_student_database": _create_student_database,
    "scaffold_workspace": _scaffold_workspace,
    "health_check": _health_check,
}


def get_action(name: str) -> Action:
    try:
        return ACTIONS[name]
    except KeyError:
        raise KeyError(f"Unknown action '{name}'. Known actions: {', '.join(sorted(ACTIONS))}")
