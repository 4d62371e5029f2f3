from __future__ import annotations

import logging
import re
import shutil
from pathlib import Path
from uuid import UUID

_UNSAFE = re.compile(r"[^A-Za-z0-9_-]+")

log = logging.getLogger(__name__)


def safe_segment(value: str | None, fallback: str = "default") -> str:
    cleaned = _UNSAFE.sub("-", (value or "").strip()).strip("-")
    return cleaned[:64] or fallback


class JobWorkspace:
    """Job-scoped working directory: ``<root>/<request_id>/<job_id>``."""

    def __init__(self, root: str | Path, request_id: str, job_id: UUID) -> None:
        self.root = Path(root)
        self.path = self.root / safe_segment(request_id) / str(job_id)

    def create(self) -> Path:
        self.path.mkdir(parents=True, exist_ok=True)
        return self.path

    def file(self, name: str) -> str:
        return str(self.path / name)

    def exists(self) -> bool:
        return self.path.exists()

    def remove(self) -> None:
        shutil.rmtree(self.path, ignore_errors=True)
        parent = self.path.parent
        try:
            parent.rmdir()
        except OSError:
            # other jobs for the same request still live here
            pass
        log.debug("workspace removed", extra={"path": str(self.path)})
