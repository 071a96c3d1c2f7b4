"""Shared fixtures for the datastore test suite."""

from __future__ import annotations

import logging
import os
import threading
import time
from pathlib import Path
from typing import BinaryIO, List

import pytest

from Datastore import Datastore, DatastoreSettings, LocalFilesystemStore

GROUP = "org.example.datastore.test"

TESTFILE_SIZES = {
    "small_file_at_root.bin": 1024,
    "medium_file_at_root.bin": 256 * 1024,
    "big_file_at_root.bin": 3 * 1024 * 1024,
}


class RecordingStore(LocalFilesystemStore):
    """Local store that counts downloads and can simulate transfer latency."""

    def __init__(self, root: Path, *, delay: float = 0.0) -> None:
        super().__init__(root)
        self.delay = delay
        self.opened: List[str] = []
        self._guard = threading.Lock()

    def open(self, object_id: str) -> BinaryIO:
        stream = super().open(object_id)
        with self._guard:
            self.opened.append(object_id)
        if self.delay:
            time.sleep(self.delay)
        return stream

    def transfers(self, object_id: str) -> int:
        with self._guard:
            return self.opened.count(object_id)


@pytest.fixture(autouse=True)
def _reset_datastore_logger():
    """Undo handler and propagation changes made by ``setup_logging``."""

    yield
    logger = logging.getLogger("Datastore")
    for handler in list(logger.handlers):
        if getattr(handler, "_datastore_managed", False):
            logger.removeHandler(handler)
            handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def testfiles_dir(tmp_path: Path) -> Path:
    """Build a tree with root files, a nested directory, and an empty directory."""

    root = tmp_path / "testfiles"
    root.mkdir()
    for filename, size in TESTFILE_SIZES.items():
        (root / filename).write_bytes(os.urandom(size))
    filled = root / "filledDir"
    (filled / "nested").mkdir(parents=True)
    (filled / "small_file_in_dir.bin").write_bytes(os.urandom(2048))
    (filled / "nested" / "notes.txt").write_text("nested file\n", encoding="utf-8")
    (root / "emptyDir").mkdir()
    return root


@pytest.fixture
def settings(tmp_path: Path) -> DatastoreSettings:
    return DatastoreSettings(
        cache_dir=tmp_path / "cache",
        remote_url_template=str(tmp_path / "remote" / "{name}"),
    )


@pytest.fixture
def remote_store(tmp_path: Path) -> RecordingStore:
    store = RecordingStore(tmp_path / "remote" / "test-store")
    store.ensure_container()
    return store


@pytest.fixture
def datastore(remote_store: RecordingStore, settings: DatastoreSettings) -> Datastore:
    return Datastore("test-store", store=remote_store, settings=settings)
