import logging
import os
from pathlib import Path

from classprov.config import ProvisionConfig
from classprov.scaffold import templates
from classprov.util.paths import ensure_dir

logger = logging.getLogger(__name__)


def _write_once(path: Path, content: str) -> bool:
    """Write `content` unless the file already exists. Returns True if written."""
    if path.exists():
        logger.debug("Keeping existing %s", path)
        return False
    ensure_dir(path.parent)
    path.write_text(content, encoding="utf-8")
    return True


def scaffold_workspace(config: ProvisionConfig) -> list[Path]:
    """
    Create the project layout and starter files under config.project_dir.

    Idempotent: directories are created if missing and files the student may
    have edited are never overwritten. Returns every path created by this call.
    """
    project_dir = config.project_dir
    created: list[Path] = []

    for rel in templates.PROJECT_DIRS:
        path = project_dir / rel
        if not path.is_dir():
            ensure_dir(path)
            created.append(path)

    server_user = os.environ.get("USER") or config.student_id
    files = {
        project_dir / "README.md": templates.readme(config),
        project_dir / "databases" / "sample.sql": templates.SAMPLE_SQL,
        project_dir / "notebooks" / "welcome.ipynb": templates.welcome_notebook(config),
        project_dir / "config" / "jupyter_lab_config.py": templates.JUPYTER_CONFIG,
        project_dir / "config" / "rserver.conf": templates.rserver_conf(server_user),
    }
    for path, content in files.items():
        if _write_once(path, content):
            created.append(path)

    logger.info("Scaffolded %s (%d new paths)", project_dir, len(created))
    return created
