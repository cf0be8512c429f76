import os
import re
import time
from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_serializer

DEFAULT_WORKSPACE_ROOT = Path("/workspaces")
DEFAULT_PROJECT_NAME = "data-management"


def _env_truthy(env: Mapping[str, str], name: str, default: bool) -> bool:
    value = env.get(name)
    if value is None or value == "":
        return default
    return value.lower() in ("1", "true", "yes", "on")


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    value = env.get(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        return default


def normalize_student_id(raw: str) -> str:
    """Lowercase `raw` and drop everything but ASCII letters and digits."""
    student_id = re.sub(r"[^a-z0-9]", "", raw.lower())
    return student_id or f"student{int(time.time())}"


def derive_student_id(env: Mapping[str, str] | None = None) -> str:
    """
    Pick a stable identifier for the student owning this container.

    GITHUB_USER wins, then the first dash-separated part of CODESPACE_NAME,
    then a time-based fallback. The result goes through normalize_student_id.
    """
    env = os.environ if env is None else env

    if env.get("GITHUB_USER"):
        raw = env["GITHUB_USER"]
    elif env.get("CODESPACE_NAME"):
        raw = env["CODESPACE_NAME"].split("-")[0]
    else:
        raw = f"student{int(time.time())}"

    return normalize_student_id(raw)


class ProvisionConfig(BaseModel):
    """
    Everything a provisioning run needs, passed explicitly to every step.

    `continue_on_failure` defaults to True: a failed step is logged and the
    sequence moves on, unless the step itself says `on_failure: abort`.
    """

    model_config = ConfigDict(extra="forbid")

    workspace_root: Path = DEFAULT_WORKSPACE_ROOT
    project_name: str = DEFAULT_PROJECT_NAME
    # these end up in SQL and in a sourced shell file
    student_id: str = Field(pattern=r"^[a-z0-9]+$")
    db_host: str = "localhost"
    db_port: int = Field(default=5432, ge=1, le=65535)
    db_name: str = Field(pattern=r"^[a-z0-9_]+$")
    db_user: str = Field(pattern=r"^[a-z0-9_]+$")
    credentials_path: Path
    logs_dir: Path
    continue_on_failure: bool = True
    dry_run: bool = False

    @property
    def project_dir(self) -> Path:
        return self.workspace_root / self.project_name

    @field_serializer("workspace_root", "credentials_path", "logs_dir")
    def serialize_paths(self, v: Path) -> str:
        return str(v)

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None, **overrides) -> "ProvisionConfig":
        """
        Build a config from CLASSPROV_* variables plus the Codespaces ones.

        Keyword overrides (e.g. from CLI options) win over the environment.
        """
        env = os.environ if env is None else env

        explicit_id = overrides.pop("student_id", None) or env.get("CLASSPROV_STUDENT_ID")
        student_id = normalize_student_id(explicit_id) if explicit_id else derive_student_id(env)
        project_name = env.get("CLASSPROV_PROJECT") or (
            env["GITHUB_REPOSITORY"].rsplit("/", 1)[-1]
            if env.get("GITHUB_REPOSITORY")
            else DEFAULT_PROJECT_NAME
        )
        home = Path(env.get("HOME") or Path.home())
        workspace_root = Path(env.get("CLASSPROV_WORKSPACE_ROOT") or DEFAULT_WORKSPACE_ROOT)

        values = {
            "workspace_root": workspace_root,
            "project_name": project_name,
            "student_id": student_id,
            "db_host": env.get("CLASSPROV_DB_HOST") or "localhost",
            "db_port": _env_int(env, "CLASSPROV_DB_PORT", 5432),
            "db_name": f"{student_id}_db",
            "db_user": student_id,
            "credentials_path": Path(env.get("CLASSPROV_CREDENTIALS") or home / ".pg_credentials"),
            "logs_dir": Path(env.get("CLASSPROV_LOGS_DIR") or home / ".classprov"),
            "continue_on_failure": _env_truthy(env, "CLASSPROV_CONTINUE_ON_FAILURE", True),
            "dry_run": _env_truthy(env, "CLASSPROV_DRY_RUN", False),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
