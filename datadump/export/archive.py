"""
ZIP packaging of successful export files.
"""

import asyncio
import logging
import zipfile
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Optional

from datadump.export.workspace import ScratchWorkspace

if TYPE_CHECKING:
    from datadump.export.orchestrator import ExportOutcome

ZIP_MEDIA_TYPE = "application/zip"


def archive_file_name(prefix: str = "supabase_export", when: Optional[datetime] = None) -> str:
    when = when or datetime.now(timezone.utc)
    return f"{prefix}_{when.date().isoformat()}.zip"


class ArchiveBuilder:
    """Packs the files behind ``success`` outcomes into one ZIP in the workspace."""

    def __init__(self, compression_level: int = 9, logger: Optional[logging.Logger] = None):
        self._compression_level = compression_level
        self._logger = logger or logging.getLogger(__name__)

    def _write(self, archive_path: Path, workspace: ScratchWorkspace, file_names: list[str]) -> None:
        with zipfile.ZipFile(
            archive_path,
            "w",
            compression=zipfile.ZIP_DEFLATED,
            compresslevel=self._compression_level,
        ) as zf:
            for name in file_names:
                # ZipFile.write copies in blocks, so large exports are never held in memory
                zf.write(workspace.file(name), arcname=name)

    async def build(
        self,
        workspace: ScratchWorkspace,
        outcomes: Iterable["ExportOutcome"],
        archive_name: str,
    ) -> Path:
        """Write ``archive_name`` into the workspace.

        Args:
            workspace: Scratch directory holding the per-table files
            outcomes: Export outcomes; only ``success`` entries are packed
            archive_name: File name of the ZIP

        Returns:
            Path of the finished archive. A run with no successes still
            yields a valid, empty archive.
        """
        file_names = [
            outcome.file_name
            for outcome in outcomes
            if outcome.status == "success" and outcome.file_name
        ]
        archive_path = workspace.file(archive_name)
        await asyncio.to_thread(self._write, archive_path, workspace, file_names)
        self._logger.info(
            f"Built {archive_name} with {len(file_names)} file(s), "
            f"{archive_path.stat().st_size} bytes"
        )
        return archive_path
