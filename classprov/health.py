"""
Environment health checks.

Replaces the generated `test.py` of the original setup: checks the Python
data stack, the R and psql binaries, and whether the student database accepts
connections. A database that is still starting is reported as
NOT_YET_AVAILABLE, which is neither a pass nor a failure.
"""

import importlib.util
import logging
from enum import StrEnum

from pydantic import BaseModel

from classprov.config import ProvisionConfig
from classprov.runner import AttemptOutcome, run_with_retry

logger = logging.getLogger(__name__)

PYTHON_MODULES = ("pandas", "numpy", "psycopg2")
BINARY_TIMEOUT_SEC = 5
PG_ISREADY_TIMEOUT_SEC = 10


class HealthStatus(StrEnum):
    OK = "OK"
    NOT_YET_AVAILABLE = "NOT_YET_AVAILABLE"
    FAILED = "FAILED"


class HealthCheckResult(BaseModel):
    name: str
    status: HealthStatus
    detail: str = ""


class HealthReport(BaseModel):
    checks: list[HealthCheckResult]

    def count(self, status: HealthStatus) -> int:
        return sum(1 for check in self.checks if check.status == status)

    @property
    def failed(self) -> bool:
        return self.count(HealthStatus.FAILED) > 0


def check_python_modules(modules: tuple[str, ...] = PYTHON_MODULES) -> HealthCheckResult:
    missing = [name for name in modules if importlib.util.find_spec(name) is None]
    if missing:
        return HealthCheckResult(
            name="python", status=HealthStatus.FAILED, detail=f"missing: {', '.join(missing)}"
        )
    return HealthCheckResult(name="python", status=HealthStatus.OK, detail=", ".join(modules))


def check_binary(name: str, command: list[str]) -> HealthCheckResult:
    result = run_with_retry(
        f"check_{name}", command, timeout_sec=BINARY_TIMEOUT_SEC, max_attempts=1
    )
    if result.succeeded:
        return HealthCheckResult(name=name, status=HealthStatus.OK, detail=command[0])
    if result.outcome == AttemptOutcome.TIMED_OUT:
        detail = f"{command[0]} did not answer within {BINARY_TIMEOUT_SEC}s"
    elif result.exit_code == 127:
        detail = f"{command[0]} not found"
    else:
        detail = f"{command[0]} exited with {result.exit_code}"
    return HealthCheckResult(name=name, status=HealthStatus.FAILED, detail=detail)


def classify_pg_isready(outcome: AttemptOutcome, exit_code: int | None) -> HealthStatus:
    """
    Map a pg_isready run onto the tri-state health status.

    pg_isready exits 0 when the server accepts connections, 1 when it rejects
    them (usually while starting), 2 when there is no response and 3 when no
    attempt was made (bad parameters).
    """
    if outcome == AttemptOutcome.SUCCESS:
        return HealthStatus.OK
    if outcome == AttemptOutcome.FAILED and exit_code in (1, 2):
        return HealthStatus.NOT_YET_AVAILABLE
    return HealthStatus.FAILED


def check_database(config: ProvisionConfig) -> HealthCheckResult:
    result = run_with_retry(
        "check_database",
        ["pg_isready", "-h", config.db_host, "-p", str(config.db_port)],
        timeout_sec=PG_ISREADY_TIMEOUT_SEC,
        max_attempts=1,
    )
    status = classify_pg_isready(result.outcome, result.exit_code)
    target = f"{config.db_host}:{config.db_port}"
    if status == HealthStatus.OK:
        detail = f"accepting connections on {target}"
    elif status == HealthStatus.NOT_YET_AVAILABLE:
        detail = f"not accepting connections on {target} yet; start the database and retry"
    elif result.exit_code == 127:
        detail = "pg_isready not found"
    else:
        detail = f"pg_isready {result.outcome.lower()} (exit code {result.exit_code})"
    return HealthCheckResult(name="database", status=status, detail=detail)


def run_health_checks(config: ProvisionConfig) -> HealthReport:
    checks = [
        check_python_modules(),
        check_binary("r", ["R", "--version"]),
        check_binary("psql", ["psql", "--version"]),
        check_database(config),
    ]
    for check in checks:
        logger.info("Health check %s: %s (%s)", check.name, check.status, check.detail)
    return HealthReport(checks=checks)
