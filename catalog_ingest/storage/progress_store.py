# catalog_ingest/storage/progress_store.py

"""JSON checkpoint file for resumable batch jobs."""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from catalog_ingest.config.settings import Settings
from catalog_ingest.errors import PersistenceFailure
from catalog_ingest.models.job import JobProgress

logger = logging.getLogger("catalog_ingest.progress")


class JsonProgressStore:
    """Stores one :class:`JobProgress` as JSON.

    Writes go to a temp file in the same directory and are swapped in
    with ``os.replace``, so a crash mid-write leaves the previous
    checkpoint intact.
    """

    def __init__(self, path: Path | None = None) -> None:
        self.path: Path = path or Settings.PROGRESS_PATH

    def load(self) -> JobProgress | None:
        """Return the saved progress, or ``None`` if absent or unreadable."""
        if not self.path.exists():
            return None
        try:
            with open(self.path, encoding="utf-8") as f:
                data: Any = json.load(f)
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning(
                "Ignoring unreadable progress file %s: %s",
                self.path,
                exc,
            )
            return None
        if not isinstance(data, dict):
            return None
        progress = JobProgress.from_dict(data)
        logger.info(
            "Resuming from offset %d (%d ok, %d partial, %d failed)",
            progress.offset,
            progress.succeeded,
            progress.partial,
            progress.failed,
        )
        return progress

    def save(self, progress: JobProgress) -> None:
        """Atomically persist ``progress``.

        Raises:
            PersistenceFailure: the file could not be written.
        """
        tmp_name = ""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                dir=self.path.parent,
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(progress.to_dict(), f, indent=2)
            os.replace(tmp_name, self.path)
        except OSError as exc:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise PersistenceFailure(
                f"Could not write progress to {self.path}: {exc}"
            ) from exc
        logger.debug("Progress saved at offset %d", progress.offset)

    def delete(self) -> None:
        """Remove the checkpoint; a missing file is not an error."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            return
        logger.info("Progress file %s removed", self.path)
