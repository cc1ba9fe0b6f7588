# tests/test_progress_store.py

"""Tests for the JSON progress checkpoint."""

import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from catalog_ingest.errors import PersistenceFailure
from catalog_ingest.models.job import JobProgress
from catalog_ingest.storage.progress_store import JsonProgressStore


class TestJsonProgressStore(unittest.TestCase):
    """load / save / delete against a temp directory."""

    def setUp(self) -> None:
        self.tmp_dir = Path(tempfile.mkdtemp())
        self.path = self.tmp_dir / "jobs" / "progress.json"
        self.store = JsonProgressStore(self.path)

    def test_missing_file_loads_none(self) -> None:
        self.assertIsNone(self.store.load())

    def test_save_then_load(self) -> None:
        self.store.save(JobProgress(offset=45, succeeded=30, partial=10, failed=5))
        loaded = self.store.load()
        self.assertEqual(
            loaded, JobProgress(offset=45, succeeded=30, partial=10, failed=5)
        )

    def test_no_temp_files_left_behind(self) -> None:
        self.store.save(JobProgress(offset=1))
        self.store.save(JobProgress(offset=2))
        self.assertEqual(
            [p.name for p in self.path.parent.iterdir()], ["progress.json"]
        )

    def test_corrupt_file_loads_none(self) -> None:
        self.path.parent.mkdir(parents=True)
        self.path.write_text("{not json", encoding="utf-8")
        self.assertIsNone(self.store.load())

    def test_missing_keys_default(self) -> None:
        self.path.parent.mkdir(parents=True)
        self.path.write_text(json.dumps({"offset": 7}), encoding="utf-8")
        self.assertEqual(self.store.load(), JobProgress(offset=7))

    def test_failed_write_raises_and_keeps_previous(self) -> None:
        self.store.save(JobProgress(offset=15))
        with patch(
            "catalog_ingest.storage.progress_store.os.replace",
            side_effect=OSError("disk full"),
        ):
            with self.assertRaises(PersistenceFailure):
                self.store.save(JobProgress(offset=30))
        self.assertEqual(self.store.load(), JobProgress(offset=15))
        self.assertEqual(len(list(self.path.parent.iterdir())), 1)

    def test_delete(self) -> None:
        self.store.save(JobProgress(offset=3))
        self.store.delete()
        self.assertFalse(self.path.exists())
        # second delete is a no-op
        self.store.delete()


if __name__ == "__main__":
    unittest.main()
