import logging
import os
import re
import subprocess
from pathlib import Path

from classprov.config import ProvisionConfig
from classprov.credentials import DatabaseCredentials
from classprov.runner import CommandResult, run_with_retry

logger = logging.getLogger(__name__)

PSQL_TIMEOUT_SEC = 30

PROJECT_NAME_PATTERN = re.compile(r"[A-Za-z0-9_]+")

OWNED_DATABASES_SQL = (
    "SELECT datname FROM pg_database "
    "WHERE pg_get_userbyid(datdba) = current_user ORDER BY datname;"
)


class DatabaseCommandError(Exception):
    def __init__(self, step: str, result: CommandResult):
        super().__init__(
            f"Database step '{step}' ended with {result.outcome} "
            f"(exit code {result.exit_code}) after {result.attempts_used} attempt(s)"
        )
        self.step = step
        self.result = result


class DatabaseSetupError(DatabaseCommandError):
    pass


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def _as_postgres(*args: str) -> list[str]:
    return ["sudo", "-u", "postgres", *args]


def _run(name: str, command: list[str], description: str, **kwargs) -> CommandResult:
    return run_with_retry(
        name,
        command,
        timeout_sec=PSQL_TIMEOUT_SEC,
        max_attempts=2,
        retry_delay_sec=2,
        description=description,
        **kwargs,
    )


def student_database_commands(credentials: DatabaseCredentials) -> list[tuple[str, list[str], bool]]:
    """
    Commands that create the student's role and database.

    Each entry is (name, command, required). createuser and createdb fail when
    the object already exists, which is fine on a re-run, so they are not
    required to succeed.
    """
    user = quote_identifier(credentials.user)
    database = quote_identifier(credentials.database)
    password = quote_literal(credentials.password)
    return [
        ("createuser", _as_postgres("createuser", "--createdb", "--login", credentials.user), False),
        ("set-password", _as_postgres("psql", "-c", f"ALTER USER {user} PASSWORD {password};"), True),
        ("createdb", _as_postgres("createdb", credentials.database, f"--owner={credentials.user}"), False),
        (
            "grant",
            _as_postgres("psql", "-c", f"GRANT ALL PRIVILEGES ON DATABASE {database} TO {user};"),
            True,
        ),
    ]


def create_student_database(config: ProvisionConfig, credentials: DatabaseCredentials) -> None:
    for name, command, required in student_database_commands(credentials):
        # progress lines show the description, never the SQL carrying the password
        result = _run(f"db_{name}", command, description=f"{name} for {credentials.user}")
        if result.succeeded:
            continue
        if required:
            raise DatabaseSetupError(name, result)
        logger.info("%s for %s did not succeed, assuming it already exists", name, config.db_user)


def project_database_name(credentials: DatabaseCredentials, name: str) -> str:
    """Name of an extra database for `name`, prefixed with the student's role."""
    if not PROJECT_NAME_PATTERN.fullmatch(name):
        raise ValueError(f"Database name may only contain letters, digits and underscores: {name!r}")
    return f"{credentials.user}_{name.lower()}"


def _client_args(credentials: DatabaseCredentials) -> list[str]:
    return ["-h", credentials.host, "-p", str(credentials.port), "-U", credentials.user]


def _client_env(credentials: DatabaseCredentials) -> dict[str, str]:
    return {**os.environ, **credentials.to_env()}


def list_databases(credentials: DatabaseCredentials, logs_dir: Path) -> list[str]:
    """Databases owned by the student's role, read from psql's unaligned output."""
    command = ["psql", *_client_args(credentials), "-d", "postgres", "-At", "-c", OWNED_DATABASES_SQL]
    result = _run(
        "db_list",
        command,
        description=f"list databases of {credentials.user}",
        logs_dir=logs_dir,
        env=_client_env(credentials),
    )
    if not result.succeeded:
        raise DatabaseCommandError("list", result)

    stdout_path = result.attempts[-1].stdout_path
    return [line.strip() for line in stdout_path.read_text(encoding="utf-8").splitlines() if line.strip()]


def create_project_database(credentials: DatabaseCredentials, name: str, logs_dir: Path) -> str:
    database = project_database_name(credentials, name)
    # a retry after a createdb that got through would only fail on "already exists"
    result = run_with_retry(
        "db_create",
        ["createdb", *_client_args(credentials), database],
        timeout_sec=PSQL_TIMEOUT_SEC,
        max_attempts=1,
        description=f"create {database}",
        logs_dir=logs_dir,
        env=_client_env(credentials),
    )
    if not result.succeeded:
        raise DatabaseCommandError("create", result)
    logger.info("Created database %s", database)
    return database


def connect_command(credentials: DatabaseCredentials, name: str | None = None) -> list[str]:
    database = project_database_name(credentials, name) if name else credentials.database
    return ["psql", *_client_args(credentials), "-d", database]


def connect_database(credentials: DatabaseCredentials, name: str | None = None) -> int:
    """Open an interactive psql session; no timeout applies to it."""
    return subprocess.run(connect_command(credentials, name), env=_client_env(credentials)).returncode
