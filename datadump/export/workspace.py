"""
Per-request scratch directories for intermediate export files.
"""

import logging
import shutil
import tempfile
import uuid
from pathlib import Path
from typing import Optional

from datadump.core.logging_config import get_logger


class ScratchWorkspace:
    """A uniquely named directory owned by one export request.

    ``cleanup()`` is safe to call more than once and never raises; failures
    are logged so they cannot mask the request's own result.
    """

    def __init__(self, path: Path, logger: Optional[logging.Logger] = None):
        self.path = path
        self._logger = logger or get_logger(__name__)
        self._removed = False
        self._reserved: set[str] = set()

    @classmethod
    def create(
        cls, root: Optional[Path] = None, logger: Optional[logging.Logger] = None
    ) -> "ScratchWorkspace":
        base = Path(root) if root else Path(tempfile.gettempdir())
        path = base / f"export_{uuid.uuid4().hex}"
        path.mkdir(parents=True, exist_ok=False)
        return cls(path, logger=logger)

    def file(self, name: str) -> Path:
        return self.path / name

    def reserve(self, name: str) -> str:
        """Claim ``name`` for a new file, suffixing ``_2``, ``_3``... on collision.

        Project names are not unique, so two projects can map to the same file.
        """
        stem, dot, ext = name.rpartition(".")
        if not dot:
            stem, ext = name, ""
        candidate = name
        n = 2
        while candidate in self._reserved or (self.path / candidate).exists():
            candidate = f"{stem}_{n}{dot}{ext}"
            n += 1
        self._reserved.add(candidate)
        return candidate

    @property
    def removed(self) -> bool:
        return self._removed

    def cleanup(self) -> None:
        if self._removed:
            return
        try:
            shutil.rmtree(self.path)
            self._removed = True
            self._logger.debug(f"Removed scratch workspace {self.path}")
        except FileNotFoundError:
            self._removed = True
        except OSError as e:
            self._logger.error(f"Error cleaning up scratch workspace {self.path}: {e}")

    def __repr__(self) -> str:
        return f"ScratchWorkspace({str(self.path)!r})"
