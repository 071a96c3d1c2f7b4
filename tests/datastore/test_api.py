# === NAVMAP v1 ===
# {
#   "module": "tests.datastore.test_api",
#   "purpose": "End-to-end tests for the Datastore facade",
#   "sections": [
#     {"id": "publish", "name": "Publishing", "anchor": "PUB", "kind": "tests"},
#     {"id": "fetch", "name": "Fetching and caching", "anchor": "FET", "kind": "tests"},
#     {"id": "errors", "name": "Error reporting", "anchor": "ERR", "kind": "tests"},
#     {"id": "listing", "name": "Listings and cache administration", "anchor": "LST", "kind": "tests"}
#   ]
# }
# === /NAVMAP ===

"""End-to-end tests for publishing and resolving artifacts through the facade."""

from __future__ import annotations

import time
from pathlib import Path

import pytest

from Datastore import (
    AlreadyExistsError,
    CorruptArchiveError,
    Datastore,
    DoesNotExistError,
    FetchOutcome,
    Locator,
    TransferError,
)
from Datastore.io.archives import directory_listing
from Datastore.locator import is_temporary_name

from .conftest import GROUP, TESTFILE_SIZES, RecordingStore


def _no_staging_debris(directory: Path) -> bool:
    return not any(is_temporary_name(entry.name) for entry in directory.iterdir())


# --- Publishing ---


def test_publish_and_download_files(datastore: Datastore, testfiles_dir: Path):
    for filename in TESTFILE_SIZES:
        datastore.publish_file(testfiles_dir / filename, GROUP, filename, 11)

    for filename, size in TESTFILE_SIZES.items():
        local = datastore.file_path(GROUP, filename, 11)
        assert local.stat().st_size == size
        assert local.read_bytes() == (testfiles_dir / filename).read_bytes()


def test_scenario_versioned_file(datastore: Datastore, remote_store: RecordingStore, tmp_path: Path):
    source = tmp_path / "a.bin"
    source.write_bytes(bytes(range(16)))

    datastore.publish_file(source, "g", "a.bin", 7)

    assert remote_store.exists("g/a-v7.bin")
    local = datastore.file_path("g", "a.bin", 7)
    assert local == datastore.cache_root / "g" / "a-v7.bin"
    assert local.read_bytes() == bytes(range(16))
    with pytest.raises(DoesNotExistError) as excinfo:
        datastore.file_path("g", "a.bin", 8)
    assert excinfo.value.missing == "version"


def test_publish_directory_round_trip(datastore: Datastore, testfiles_dir: Path):
    datastore.publish_directory(testfiles_dir, GROUP, "TestfilesDir", 11)

    local = datastore.directory_path(GROUP, "TestfilesDir", 11)

    assert local.name == "TestfilesDir-d11"
    assert local.is_dir()
    assert directory_listing(local) == directory_listing(testfiles_dir)
    assert (local / "emptyDir").is_dir()
    assert (local / "filledDir" / "small_file_in_dir.bin").read_bytes() == (
        testfiles_dir / "filledDir" / "small_file_in_dir.bin"
    ).read_bytes()
    assert _no_staging_debris(local.parent)


def test_file_and_directory_with_same_coordinates_coexist(
    datastore: Datastore, testfiles_dir: Path
):
    datastore.publish_file(testfiles_dir / "small_file_at_root.bin", "g", "data", 1)
    datastore.publish_directory(testfiles_dir / "filledDir", "g", "data", 1)

    file_path = datastore.file_path("g", "data", 1)
    dir_path = datastore.directory_path("g", "data", 1)

    assert file_path != dir_path
    assert file_path.is_file()
    assert dir_path.is_dir()


def test_republish_requires_overwrite(datastore: Datastore, tmp_path: Path):
    source = tmp_path / "a.bin"
    source.write_bytes(b"first")
    datastore.publish_file(source, "g", "a.bin", 1)
    assert datastore.file_path("g", "a.bin", 1).read_bytes() == b"first"

    source.write_bytes(b"second")
    with pytest.raises(AlreadyExistsError):
        datastore.publish_file(source, "g", "a.bin", 1)
    assert datastore.file_path("g", "a.bin", 1).read_bytes() == b"first"

    datastore.publish_file(source, "g", "a.bin", 1, overwrite=True)
    assert datastore.file_path("g", "a.bin", 1).read_bytes() == b"second"


def test_publish_validates_source_kind(datastore: Datastore, testfiles_dir: Path):
    with pytest.raises(IsADirectoryError):
        datastore.publish_file(testfiles_dir, "g", "tree", 1)
    with pytest.raises(NotADirectoryError):
        datastore.publish_directory(testfiles_dir / "small_file_at_root.bin", "g", "f", 1)
    with pytest.raises(FileNotFoundError):
        datastore.publish_file(testfiles_dir / "absent.bin", "g", "absent.bin", 1)


# --- Fetching and caching ---


def test_second_request_is_served_from_cache(
    tmp_path: Path, testfiles_dir: Path, settings
):
    store = RecordingStore(tmp_path / "slow-remote", delay=0.25)
    datastore = Datastore("test-store", store=store, settings=settings)
    datastore.publish_file(testfiles_dir / "medium_file_at_root.bin", "g", "m.bin", 1)
    locator = Locator("g", "m.bin", 1)

    start = time.monotonic()
    first = datastore.fetch(locator)
    first_elapsed = time.monotonic() - start
    start = time.monotonic()
    second = datastore.fetch(locator)
    second_elapsed = time.monotonic() - start

    assert first.outcome is FetchOutcome.DOWNLOADED
    assert second.outcome is FetchOutcome.CACHED
    assert second_elapsed < first_elapsed
    assert store.transfers(locator.object_id) == 1


def test_exists_reports_remote_state(datastore: Datastore, tmp_path: Path):
    source = tmp_path / "a.bin"
    source.write_bytes(b"x")
    datastore.publish_file(source, "g", "a.bin", 1)

    assert datastore.exists(Locator("g", "a.bin", 1))
    assert not datastore.exists(Locator("g", "a.bin", 2))
    assert not datastore.exists(Locator("g", "a.bin", 1, directory=True))


# --- Error reporting ---


def test_missing_coordinates_are_distinguished(datastore: Datastore, tmp_path: Path):
    source = tmp_path / "a.bin"
    source.write_bytes(b"x")
    datastore.publish_file(source, "g", "a.bin", 1)

    cases = {
        "group": Locator("other-group", "a.bin", 1),
        "name": Locator("g", "b.bin", 1),
        "version": Locator("g", "a.bin", 2),
    }
    messages = set()
    for missing, locator in cases.items():
        with pytest.raises(DoesNotExistError) as excinfo:
            datastore.path(locator)
        assert excinfo.value.missing == missing
        assert excinfo.value.locator == locator
        messages.add(str(excinfo.value))
    assert len(messages) == 3
    assert not (datastore.cache_root / "g" / "a-v2.bin").exists()


def test_missing_directory_is_reported_by_name(datastore: Datastore, tmp_path: Path):
    source = tmp_path / "a.bin"
    source.write_bytes(b"x")
    datastore.publish_file(source, "g", "a.bin", 1)

    with pytest.raises(DoesNotExistError) as excinfo:
        datastore.directory_path("g", "a.bin", 1)
    assert excinfo.value.missing == "name"


def test_corrupt_archive_leaves_no_cache_entry(
    datastore: Datastore, remote_store: RecordingStore
):
    remote_store.put_bytes(b"definitely not a zip", "g/broken-d1.zip")

    with pytest.raises(CorruptArchiveError):
        datastore.directory_path("g", "broken", 1)

    group_dir = datastore.cache_root / "g"
    assert not (group_dir / "broken-d1").exists()
    assert list(group_dir.iterdir()) == []


class FlakyStore(RecordingStore):
    def __init__(self, root: Path) -> None:
        super().__init__(root)
        self.failures = 1

    def open(self, object_id: str):
        if self.failures:
            self.failures -= 1
            raise ConnectionResetError("connection reset by peer")
        return super().open(object_id)


def test_transfer_failure_is_retryable(tmp_path: Path, settings):
    store = FlakyStore(tmp_path / "flaky-remote")
    datastore = Datastore("flaky", store=store, settings=settings)
    source = tmp_path / "a.bin"
    source.write_bytes(b"payload")
    datastore.publish_file(source, "g", "a.bin", 1)

    with pytest.raises(TransferError) as excinfo:
        datastore.file_path("g", "a.bin", 1)
    assert excinfo.value.object_id == "g/a-v1.bin"
    assert not (datastore.cache_root / "g" / "a-v1.bin").exists()
    assert datastore.coordinator.in_flight() == []

    assert datastore.file_path("g", "a.bin", 1).read_bytes() == b"payload"


# --- Listings and cache administration ---


def test_listings(datastore: Datastore, testfiles_dir: Path):
    small = testfiles_dir / "small_file_at_root.bin"
    datastore.publish_file(small, "g1", "a.bin", 1)
    datastore.publish_file(small, "g1", "a.bin", 3)
    datastore.publish_file(small, "g1", "b.bin", 2)
    datastore.publish_directory(testfiles_dir / "filledDir", "g1", "tree", 5)
    datastore.publish_file(small, "g2", "c.bin", 1)
    datastore.store.put_bytes(b"foreign", "g1/not-versioned.txt")

    assert datastore.list_groups() == ["g1", "g2"]
    assert datastore.list_files("g1") == [
        Locator("g1", "a.bin", 1),
        Locator("g1", "a.bin", 3),
        Locator("g1", "b.bin", 2),
    ]
    assert datastore.list_directories("g1") == [Locator("g1", "tree", 5, directory=True)]
    assert datastore.list_versions("g1", "a.bin") == [1, 3]
    assert datastore.list_versions("g1", "tree", directory=True) == [5]
    assert datastore.list_versions("g1", "missing") == []


def test_url_formatting(datastore: Datastore):
    assert datastore.url(Locator("g", "a.bin", 7)) == "datastore://test-store/g/a-v7.bin"
    tree = Locator("g", "tree", 2, directory=True)
    assert datastore.url(tree, "sub/leaf.txt") == "datastore://test-store/g/tree-d2/sub/leaf.txt"
    with pytest.raises(ValueError):
        datastore.url(Locator("g", "a.bin", 7), "sub")


def test_wipe_cache_forces_redownload(
    datastore: Datastore, remote_store: RecordingStore, testfiles_dir: Path
):
    datastore.publish_file(testfiles_dir / "small_file_at_root.bin", "g", "a.bin", 1)
    datastore.file_path("g", "a.bin", 1)
    assert datastore.cache_size() == TESTFILE_SIZES["small_file_at_root.bin"]

    datastore.wipe_cache()

    assert not datastore.cache_root.exists()
    assert datastore.cache_size() == 0
    assert remote_store.exists("g/a-v1.bin")
    datastore.file_path("g", "a.bin", 1)
    assert remote_store.transfers("g/a-v1.bin") == 2


def test_stores_share_cache_root_without_collisions(
    tmp_path: Path, settings, testfiles_dir: Path
):
    first = Datastore("first", store=RecordingStore(tmp_path / "r1"), settings=settings)
    second = Datastore("second", store=RecordingStore(tmp_path / "r2"), settings=settings)
    first.publish_file(testfiles_dir / "small_file_at_root.bin", "g", "a.bin", 1)
    second.publish_file(testfiles_dir / "medium_file_at_root.bin", "g", "a.bin", 1)

    assert first.file_path("g", "a.bin", 1) != second.file_path("g", "a.bin", 1)
    assert first.file_path("g", "a.bin", 1).stat().st_size == TESTFILE_SIZES["small_file_at_root.bin"]
    assert second.file_path("g", "a.bin", 1).stat().st_size == TESTFILE_SIZES["medium_file_at_root.bin"]
