"""Tests for ``datastore://`` parsing, resolution, and the urllib handler."""

from __future__ import annotations

import urllib.request
from pathlib import Path, PurePosixPath

import pytest

from Datastore import Datastore, DatastoreResolver, InvalidLocatorError, Locator
from Datastore.coordinator import DownloadCoordinator
from Datastore.urls import install_url_handler, parse_url

from .conftest import RecordingStore


@pytest.fixture
def resolver(datastore: Datastore) -> DatastoreResolver:
    resolver = DatastoreResolver()
    resolver.register(datastore)
    return resolver


@pytest.fixture
def published(datastore: Datastore, testfiles_dir: Path) -> Datastore:
    datastore.publish_file(testfiles_dir / "medium_file_at_root.bin", "g", "m.bin", 2)
    datastore.publish_directory(testfiles_dir, "g", "tree", 5)
    return datastore


def test_parse_file_url():
    parsed = parse_url("datastore://public/org.example/model-v3.bin")

    assert parsed.store == "public"
    assert parsed.locator == Locator("org.example", "model.bin", 3)
    assert parsed.relative_path is None
    assert str(parsed) == "datastore://public/org.example/model-v3.bin"


def test_parse_directory_url_with_relative_path():
    parsed = parse_url("datastore://public/g/tree-d5/filledDir/small_file_in_dir.bin")

    assert parsed.locator == Locator("g", "tree", 5, directory=True)
    assert parsed.relative_path == PurePosixPath("filledDir/small_file_in_dir.bin")
    assert parsed.format() == "datastore://public/g/tree-d5/filledDir/small_file_in_dir.bin"


def test_parse_bare_directory_url():
    parsed = parse_url("datastore://public/g/tree-d5")

    assert parsed.locator == Locator("g", "tree", 5, directory=True)
    assert parsed.relative_path is None


def test_resolve_bare_directory_url(published: Datastore, resolver: DatastoreResolver):
    resolved = resolver.resolve("datastore://test-store/g/tree-d5")
    assert resolved == published.directory_path("g", "tree", 5)
    assert resolved.is_dir()


@pytest.mark.parametrize(
    "url",
    [
        "https://public/g/a-v1.bin",
        "datastore://public/g",
        "datastore://public/g/a.bin",
        "datastore://public/g/tree-d1/../escape",
        "datastore://public/g/a-v1.bin?version=2",
        "datastore:///g/a-v1.bin",
    ],
)
def test_parse_rejects_malformed_urls(url):
    with pytest.raises(InvalidLocatorError):
        parse_url(url)


def test_facade_url_parses_back(published: Datastore):
    locator = Locator("g", "tree", 5, directory=True)
    parsed = parse_url(published.url(locator, "emptyDir"))
    assert parsed.store == published.name
    assert parsed.locator == locator


def test_open_matches_file_path(published: Datastore, resolver: DatastoreResolver):
    expected = published.file_path("g", "m.bin", 2).read_bytes()

    with resolver.open("datastore://test-store/g/m-v2.bin") as stream:
        assert stream.read() == expected
    assert resolver.resolve("datastore://test-store/g/m-v2.bin") == published.file_path(
        "g", "m.bin", 2
    )


def test_open_file_inside_directory(
    published: Datastore, resolver: DatastoreResolver, testfiles_dir: Path
):
    url = "datastore://test-store/g/tree-d5/filledDir/small_file_in_dir.bin"
    with resolver.open(url) as stream:
        assert stream.read() == (testfiles_dir / "filledDir" / "small_file_in_dir.bin").read_bytes()


def test_missing_path_inside_directory(published: Datastore, resolver: DatastoreResolver):
    with pytest.raises(FileNotFoundError):
        resolver.resolve("datastore://test-store/g/tree-d5/not/there.txt")


def test_resolver_builds_unknown_stores_with_factory(tmp_path: Path, settings):
    built = []

    def factory(name: str) -> Datastore:
        datastore = Datastore(name, store=RecordingStore(tmp_path / "remotes" / name), settings=settings)
        built.append(datastore)
        return datastore

    resolver = DatastoreResolver(factory)
    first = resolver.get("alpha")
    assert resolver.get("alpha") is first
    assert [datastore.name for datastore in built] == ["alpha"]


def test_urlopen_through_installed_handler(published: Datastore, resolver: DatastoreResolver):
    expected = published.file_path("g", "m.bin", 2).read_bytes()
    install_url_handler(resolver)
    try:
        with urllib.request.urlopen("datastore://test-store/g/m-v2.bin") as response:
            body = response.read()
            headers = response.headers
    finally:
        urllib.request.install_opener(None)

    assert body == expected
    assert headers["Content-Length"] == str(len(expected))
    assert headers["Content-Type"] == "application/octet-stream"


@pytest.mark.parametrize(
    "locator",
    [
        Locator("g", "file.x-v2", 3),
        Locator("g", "a.b-c", 1),
        Locator("g", "m-v3.x", 1),
        Locator("g", "m-v3.x", 1, directory=True),
        Locator("g", "tree-d2", 4, directory=True),
    ],
)
def test_url_of_hyphenated_name_parses_back(datastore: Datastore, locator: Locator):
    assert parse_url(datastore.url(locator)).locator == locator


def test_hyphenated_file_name_publishes_and_resolves(
    datastore: Datastore, resolver: DatastoreResolver, testfiles_dir: Path
):
    source = testfiles_dir / "small_file_at_root.bin"
    locator = datastore.publish_file(source, "g", "file.x-v2", 3)

    assert datastore.list_versions("g", "file.x-v2") == [3]
    assert [loc.name for loc in datastore.list_files("g")] == ["file.x-v2"]
    resolved = resolver.resolve(datastore.url(locator))
    assert resolved.read_bytes() == source.read_bytes()


def test_default_factory_shares_resolver_coordinator(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("DATASTORE_CACHE_DIR", str(tmp_path / "cache"))
    monkeypatch.setenv("DATASTORE_REMOTE_URL_TEMPLATE", str(tmp_path / "remote" / "{name}"))
    coordinator = DownloadCoordinator()

    resolver = DatastoreResolver(coordinator=coordinator)

    assert resolver.coordinator is coordinator
    assert resolver.get("alpha").coordinator is coordinator
    assert resolver.get("beta").coordinator is coordinator


def test_default_factory_downloads_once_per_cache_root(
    tmp_path: Path, monkeypatch, testfiles_dir: Path
):
    monkeypatch.setenv("DATASTORE_CACHE_DIR", str(tmp_path / "cache"))
    monkeypatch.setenv("DATASTORE_REMOTE_URL_TEMPLATE", str(tmp_path / "remote" / "{name}"))
    resolver = DatastoreResolver()
    alpha = resolver.get("alpha")
    alpha.publish_file(testfiles_dir / "small_file_at_root.bin", "g", "s.bin", 1)

    first = resolver.resolve("datastore://alpha/g/s-v1.bin")
    other = DatastoreResolver(coordinator=resolver.coordinator).get("alpha")

    assert other.coordinator is alpha.coordinator
    assert other.fetch(Locator("g", "s.bin", 1)).path == first
