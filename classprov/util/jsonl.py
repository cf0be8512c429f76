import json
import logging
import os
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from filelock import FileLock

logger = logging.getLogger(__name__)


def append_jsonl(path: Path, record: dict[str, Any] | str) -> bool:
    """
    Append one record to a JSONL file.

    Accepts a dict or an already-serialized JSON string. Writes are guarded by
    a sibling ``.lock`` file so two provisioning runs sharing a logs directory
    cannot interleave lines.

    Returns:
        True if the line was written and fsynced, False on an OS error.
    """
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)

        with FileLock(str(path) + ".lock"):
            if isinstance(record, str):
                line = record.rstrip("\n") + "\n"
            else:
                line = json.dumps(record, default=str) + "\n"
            with open(path, "ab") as f:
                f.write(line.encode("utf-8"))
                f.flush()
                os.fsync(f.fileno())
        return True

    except OSError as e:
        logger.critical("Failed to append record to %s: %s", path, e)
        return False


def read_jsonl(path: Path) -> Iterator[dict]:
    """Yield one dict per non-empty line; malformed lines are logged and skipped."""
    path = Path(path)
    if not path.exists():
        return

    with path.open("r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning("Skipping malformed line %d in %s: %s", lineno, path, e)
