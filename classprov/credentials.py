import logging
import os
import secrets
import shlex
from pathlib import Path

from pydantic import BaseModel

from classprov.config import ProvisionConfig

logger = logging.getLogger(__name__)

_KEYS = ("PGHOST", "PGPORT", "PGDATABASE", "PGUSER", "PGPASSWORD")


class CredentialsError(Exception):
    def __init__(self, path: Path, reason: str):
        super().__init__(f"Invalid credentials file {path}: {reason}")
        self.path = path
        self.reason = reason


class DatabaseCredentials(BaseModel):
    host: str
    port: int
    database: str
    user: str
    password: str

    def to_env(self) -> dict[str, str]:
        return {
            "PGHOST": self.host,
            "PGPORT": str(self.port),
            "PGDATABASE": self.database,
            "PGUSER": self.user,
            "PGPASSWORD": self.password,
        }

    @property
    def url(self) -> str:
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"


def generate_password(student_id: str) -> str:
    return f"{student_id}_{secrets.token_hex(4)}"


def load_credentials(path: Path) -> DatabaseCredentials:
    """Parse a file of `export KEY=VALUE` lines as written by ensure_credentials_file."""
    path = Path(path)
    values: dict[str, str] = {}
    for lineno, line in enumerate(path.read_text(encoding="utf-8").splitlines(), start=1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export "):]
        key, sep, value = line.partition("=")
        if not sep:
            raise CredentialsError(path, f"line {lineno} is not KEY=VALUE")
        try:
            values[key.strip()] = " ".join(shlex.split(value))
        except ValueError as e:
            raise CredentialsError(path, f"line {lineno}: {e}")

    missing = [key for key in _KEYS if key not in values]
    if missing:
        raise CredentialsError(path, f"missing {', '.join(missing)}")

    try:
        port = int(values["PGPORT"])
    except ValueError:
        raise CredentialsError(path, f"PGPORT is not a number: {values['PGPORT']}")

    return DatabaseCredentials(
        host=values["PGHOST"],
        port=port,
        database=values["PGDATABASE"],
        user=values["PGUSER"],
        password=values["PGPASSWORD"],
    )


def _matches(existing: DatabaseCredentials, config: ProvisionConfig) -> bool:
    return (
        existing.host == config.db_host
        and existing.port == config.db_port
        and existing.database == config.db_name
        and existing.user == config.db_user
    )


def write_credentials(path: Path, credentials: DatabaseCredentials) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    body = "".join(f"export {key}={shlex.quote(value)}\n" for key, value in credentials.to_env().items())
    # mode is 0600 before any content is written
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(body)
    os.chmod(path, 0o600)


def ensure_credentials_file(config: ProvisionConfig) -> DatabaseCredentials:
    """
    Make sure the credentials file describes the configured database.

    An existing file for the same host, port, database and user is kept as is,
    password included. A missing, unreadable or mismatching file is replaced
    with a freshly generated password.
    """
    path = config.credentials_path
    if path.exists():
        try:
            existing = load_credentials(path)
        except CredentialsError as e:
            logger.warning("Rewriting credentials: %s", e)
        else:
            if _matches(existing, config):
                logger.debug("Credentials file %s already up to date", path)
                return existing
            logger.info("Credentials file %s describes another database, rewriting", path)

    credentials = DatabaseCredentials(
        host=config.db_host,
        port=config.db_port,
        database=config.db_name,
        user=config.db_user,
        password=generate_password(config.student_id),
    )
    write_credentials(path, credentials)
    logger.info("Wrote credentials for %s to %s", config.db_user, path)
    return credentials
