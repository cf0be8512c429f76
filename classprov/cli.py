import logging
from pathlib import Path

import typer

from classprov.config import ProvisionConfig
from classprov.credentials import (
    CredentialsError,
    DatabaseCredentials,
    ensure_credentials_file,
    load_credentials,
)
from classprov.database import (
    DatabaseCommandError,
    connect_database,
    create_project_database,
    list_databases,
)
from classprov.health import HealthStatus, run_health_checks
from classprov.logging import LOGGER_NAME, setup_logging
from classprov.plan import (
    InvalidPlanError,
    PresetNotFoundError,
    get_preset,
    list_presets,
    load_plan,
)
from classprov.provision import StepStatus, provision, read_history
from classprov.runner import AttemptOutcome, RetryPolicy, ResilientRunner
from classprov.runner.process import EXIT_NOT_FOUND

app = typer.Typer(no_args_is_help=True)

EXIT_FAILED = 1
EXIT_TIMED_OUT = 124
EXIT_CANCELLED = 130


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at INFO level"),
    debug: bool = typer.Option(False, "--debug", help="Log at DEBUG level"),
):
    """
    classprov: provision a classroom data-science environment
    """
    level = logging.DEBUG if debug else logging.INFO if verbose else None
    logger = logging.getLogger(LOGGER_NAME)
    if logger.handlers:
        if level is not None:
            logger.setLevel(level)
        return
    setup_logging(level)


@app.command("exec")
def exec_cmd(
    name: str = typer.Argument(..., help="Short name used in progress lines and log files"),
    command: list[str] = typer.Argument(..., help="Program and arguments (put them after --)"),
    timeout: float = typer.Option(120, "--timeout", help="Seconds allowed per attempt"),
    attempts: int = typer.Option(3, "--attempts", help="Maximum attempts, first try included"),
    delay: float = typer.Option(0, "--delay", help="Seconds to wait between attempts"),
    logs: Path | None = typer.Option(None, "--logs", help="Directory for per-attempt stdout/stderr"),
):
    """Run one command with a per-attempt timeout and retries."""
    try:
        policy = RetryPolicy(timeout_sec=timeout, max_attempts=attempts, retry_delay_sec=delay)
    except ValueError as exc:
        raise typer.BadParameter(str(exc))

    result = ResilientRunner(name, command, policy, logs_dir=logs, progress=typer.echo).run()

    if result.succeeded:
        return
    if result.outcome == AttemptOutcome.TIMED_OUT:
        raise typer.Exit(EXIT_TIMED_OUT)
    if result.outcome == AttemptOutcome.CANCELLED:
        raise typer.Exit(EXIT_CANCELLED)
    raise typer.Exit(EXIT_FAILED)


def _resolve_plan(plan: str, config: ProvisionConfig):
    path = Path(plan)
    if path.suffix in (".yaml", ".yml") or path.is_file():
        try:
            return load_plan(path)
        except InvalidPlanError as exc:
            raise typer.BadParameter(str(exc))
    try:
        return get_preset(plan, config)
    except PresetNotFoundError as exc:
        raise typer.BadParameter(str(exc))


@app.command("provision")
def provision_cmd(
    plan: str = typer.Argument(..., help="Preset name or path to a plan YAML file"),
    workspace: Path | None = typer.Option(None, "--workspace", help="Workspace root directory"),
    logs: Path | None = typer.Option(None, "--logs", help="Directory for run logs and history"),
    continue_on_failure: bool | None = typer.Option(
        None,
        "--continue-on-failure/--fail-fast",
        help="Keep going after a failed step (default) or stop at the first failure",
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Report the steps without running them"),
):
    """Run a provisioning plan step by step."""
    config = ProvisionConfig.from_env(
        workspace_root=workspace,
        logs_dir=logs,
        continue_on_failure=continue_on_failure,
        dry_run=dry_run or None,
    )
    spec = _resolve_plan(plan, config)

    report = provision(spec, config, progress=typer.echo)

    typer.echo("")
    typer.echo(f"Plan {report.plan_name} for {report.student_id} ({report.duration_sec:.1f}s)")
    for step in report.steps:
        line = f"  {step.status:<9} {step.name}"
        if step.attempts_used:
            line += f" [{step.attempts_used} attempt(s)]"
        if step.detail:
            line += f" - {step.detail}"
        typer.echo(line)
    typer.echo(
        f"{report.count(StepStatus.SUCCESS)} ok, {len(report.failed_steps)} failed, "
        f"{report.count(StepStatus.SKIPPED)} skipped. Run record: {report.run_dir}"
    )

    if not report.succeeded and not report.dry_run:
        raise typer.Exit(EXIT_FAILED)


@app.command("presets")
def presets_cmd():
    """List the built-in provisioning plans."""
    for name, description in list_presets():
        typer.echo(f"{name:<12} {description}")


@app.command("check")
def check_cmd():
    """Check the Python stack, R, psql and the student database."""
    config = ProvisionConfig.from_env()
    report = run_health_checks(config)

    for check in report.checks:
        typer.echo(f"{check.status:<18} {check.name:<9} {check.detail}")

    pending = report.count(HealthStatus.NOT_YET_AVAILABLE)
    if pending:
        typer.echo(f"{pending} check(s) not available yet; start the services and check again.")
    if report.failed:
        raise typer.Exit(EXIT_FAILED)


@app.command("credentials")
def credentials_cmd():
    """Create or refresh the database credentials file."""
    config = ProvisionConfig.from_env()
    credentials = ensure_credentials_file(config)
    typer.echo(f"Credentials for {credentials.user}@{credentials.database}: {config.credentials_path}")
    typer.echo(f"Load them with: source {config.credentials_path}")


@app.command("history")
def history_cmd(
    logs: Path | None = typer.Option(None, "--logs", help="Directory for run logs and history"),
):
    """Show past provisioning runs."""
    config = ProvisionConfig.from_env(logs_dir=logs)
    records = read_history(config)
    if not records:
        typer.echo("No provisioning runs recorded.")
        return
    for record in records:
        status = "ok" if record.get("succeeded") else "FAILED"
        failed = ", ".join(record.get("failed_steps") or [])
        line = f"{record.get('started_at')}  {str(record.get('plan')):<12} {status}"
        if failed:
            line += f" ({failed})"
        typer.echo(line)


db_app = typer.Typer(no_args_is_help=True, help="List, create and connect to your databases.")
app.add_typer(db_app, name="db")


def _load_db_credentials() -> tuple[ProvisionConfig, DatabaseCredentials]:
    config = ProvisionConfig.from_env()
    try:
        return config, load_credentials(config.credentials_path)
    except FileNotFoundError:
        typer.echo(
            f"No credentials at {config.credentials_path}; run 'classprov credentials' first.", err=True
        )
    except CredentialsError as exc:
        typer.echo(str(exc), err=True)
    raise typer.Exit(EXIT_FAILED)


@db_app.command("list")
def db_list_cmd():
    """List the databases you own."""
    config, credentials = _load_db_credentials()
    try:
        names = list_databases(credentials, config.logs_dir / "db")
    except DatabaseCommandError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(EXIT_FAILED)
    for name in names:
        marker = "*" if name == credentials.database else " "
        typer.echo(f"{marker} {name}")


@db_app.command("create")
def db_create_cmd(
    name: str = typer.Argument(..., help="Suffix of the new database, prefixed with your user name"),
):
    """Create an extra database named <user>_<name>."""
    config, credentials = _load_db_credentials()
    try:
        database = create_project_database(credentials, name, config.logs_dir / "db")
    except ValueError as exc:
        raise typer.BadParameter(str(exc))
    except DatabaseCommandError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(EXIT_FAILED)
    typer.echo(f"Created database {database}")


@db_app.command("connect")
def db_connect_cmd(
    name: str | None = typer.Argument(None, help="Suffix given to 'db create'; omit for your main database"),
):
    """Open psql on your main database or on <user>_<name>."""
    _, credentials = _load_db_credentials()
    try:
        code = connect_database(credentials, name)
    except ValueError as exc:
        raise typer.BadParameter(str(exc))
    except OSError as exc:
        typer.echo(f"Could not start psql: {exc}", err=True)
        raise typer.Exit(EXIT_NOT_FOUND)
    if code:
        raise typer.Exit(code)
