# === NAVMAP v1 ===
# {
#   "module": "Datastore.api",
#   "purpose": "Public facade for publishing and resolving versioned artifacts",
#   "sections": [
#     {"id": "datastore", "name": "Datastore", "anchor": "class-datastore", "kind": "class"},
#     {"id": "publish", "name": "Publishing", "anchor": "PUB", "kind": "api"},
#     {"id": "fetch", "name": "Fetching", "anchor": "FET", "kind": "api"},
#     {"id": "listing", "name": "Remote Listings", "anchor": "LST", "kind": "api"},
#     {"id": "cache", "name": "Cache Administration", "anchor": "CAC", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Public facade of the versioned artifact store.

A :class:`Datastore` publishes immutable files and directories under
``(group, name, version)`` coordinates into a remote store and resolves them
back to local paths, downloading each artifact at most once per cache root.
Directories are packed into a zip object on publish and extracted on fetch.

Example:
    >>> store = Datastore("public")  # doctest: +SKIP
    >>> store.publish_file("model.bin", "org.example", "model.bin", 3)  # doctest: +SKIP
    >>> store.file_path("org.example", "model.bin", 3)  # doctest: +SKIP
    PosixPath('.../public/org.example/model-v3.bin')
"""

from __future__ import annotations

import logging
import tempfile
from functools import partial
from pathlib import Path
from typing import List, Optional, Union

from .coordinator import DownloadCoordinator, FetchOutcome, FetchResult
from .errors import AlreadyExistsError, DoesNotExistError, TransferError
from .io.archives import pack_directory, unpack_archive
from .io.filesystem import copy_stream, directory_size, remove_path
from .locator import ARCHIVE_SUFFIX, CachePathResolver, Locator, validate_component
from .settings import DatastoreSettings, load_settings
from .storage.base import RemoteStore, StoredObject
from .storage.fsspec_store import get_remote_store

__all__ = ["Datastore", "URL_SCHEME"]

URL_SCHEME = "datastore"

PathLike = Union[str, Path]

logger = logging.getLogger("Datastore.api")


class Datastore:
    """Versioned artifact store backed by a remote store and a local cache.

    Args:
        name: Store identity; selects the remote namespace and the cache subdirectory.
        store: Remote store adapter; built from ``settings`` when omitted.
        cache_dir: Cache root shared by all stores; defaults to the settings value.
        coordinator: Download coordinator; a private one is created when omitted.
            Share one coordinator between facades over the same cache root to
            deduplicate their downloads.
        settings: Configuration; loaded from the environment when omitted.
    """

    def __init__(
        self,
        name: str,
        *,
        store: Optional[RemoteStore] = None,
        cache_dir: Optional[PathLike] = None,
        coordinator: Optional[DownloadCoordinator] = None,
        settings: Optional[DatastoreSettings] = None,
    ) -> None:
        self._name = validate_component(name, "store name")
        self.settings = settings or load_settings()
        self.store = store if store is not None else get_remote_store(name, self.settings)
        root = Path(cache_dir) if cache_dir is not None else self.settings.resolved_cache_dir()
        self.paths = CachePathResolver(root)
        self.coordinator = coordinator or DownloadCoordinator(
            interprocess_locks=self.settings.interprocess_locks
        )

    @property
    def name(self) -> str:
        return self._name

    @property
    def cache_root(self) -> Path:
        """Directory holding this store's cache entries."""

        return self.paths.store_root(self._name)

    def __repr__(self) -> str:
        return f"Datastore(name={self._name!r}, store={self.store!r})"

    # --- Publishing ---

    def publish_file(
        self,
        path: PathLike,
        group: str,
        name: str,
        version: int,
        overwrite: bool = False,
    ) -> Locator:
        """Upload the file at ``path`` as ``group``/``name`` ``version``."""

        return self.publish(path, Locator(group, name, version, directory=False), overwrite)

    def publish_directory(
        self,
        path: PathLike,
        group: str,
        name: str,
        version: int,
        overwrite: bool = False,
    ) -> Locator:
        """Pack the directory at ``path`` and upload it as ``group``/``name`` ``version``."""

        return self.publish(path, Locator(group, name, version, directory=True), overwrite)

    def publish(self, path: PathLike, locator: Locator, overwrite: bool = False) -> Locator:
        """Publish ``path`` under ``locator``.

        Raises:
            AlreadyExistsError: If the locator is already published and
                ``overwrite`` is false.
            FileNotFoundError: If ``path`` does not exist.
            IsADirectoryError / NotADirectoryError: If ``path`` does not match
                the locator's kind.
            TransferError: If the remote store fails.
        """

        source = Path(path)
        if not source.exists():
            raise FileNotFoundError(f"Nothing to publish at {source}")
        if locator.directory and not source.is_dir():
            raise NotADirectoryError(f"Not a directory: {source}")
        if not locator.directory and source.is_dir():
            raise IsADirectoryError(f"Use publish_directory for directories: {source}")

        object_id = locator.object_id
        # Serialise publishers of one key in this process; the store's
        # create-exclusive write settles races with other processes.
        with self.coordinator.registry.hold(object_id):
            if self._remote_exists(object_id):
                if not overwrite:
                    raise AlreadyExistsError(locator, store=self._name)
                logger.info(
                    "overwriting published object",
                    extra={"stage": "publish", "store": self._name, "object_id": object_id},
                )

            if locator.directory:
                with tempfile.TemporaryDirectory(prefix="datastore-pack-") as scratch:
                    archive = Path(scratch) / f"{locator.versioned_name}{ARCHIVE_SUFFIX}"
                    pack_directory(source, archive, logger=logger)
                    stored = self._upload(archive, locator, overwrite)
            else:
                stored = self._upload(source, locator, overwrite)

            if overwrite:
                self._evict(locator)
        logger.info(
            "published artifact",
            extra={
                "stage": "publish",
                "store": self._name,
                "object_id": object_id,
                "size_bytes": stored.size,
            },
        )
        return locator

    def _upload(self, local: Path, locator: Locator, overwrite: bool) -> StoredObject:
        object_id = locator.object_id
        try:
            return self.store.put_file(local, object_id, overwrite=overwrite)
        except FileExistsError as exc:
            raise AlreadyExistsError(locator, store=self._name) from exc
        except OSError as exc:
            raise TransferError(
                f"Failed to upload {object_id} to datastore '{self._name}': {exc}",
                object_id=object_id,
            ) from exc

    def _remote_exists(self, object_id: str) -> bool:
        try:
            return self.store.exists(object_id)
        except OSError as exc:
            raise TransferError(
                f"Failed to query {object_id} in datastore '{self._name}': {exc}",
                object_id=object_id,
            ) from exc

    # --- Fetching ---

    def file_path(self, group: str, name: str, version: int) -> Path:
        """Return a local path holding the published file, downloading it if needed."""

        return self.path(Locator(group, name, version, directory=False))

    def directory_path(self, group: str, name: str, version: int) -> Path:
        """Return a local directory holding the published tree, downloading it if needed."""

        return self.path(Locator(group, name, version, directory=True))

    def path(self, locator: Locator) -> Path:
        """Resolve ``locator`` to a complete local path.

        Raises:
            DoesNotExistError: If nothing is published under ``locator``.
            TransferError: If the remote store fails during the download.
            CorruptArchiveError: If a directory archive cannot be unpacked.
        """

        result = self.fetch(locator)
        if result.path is None:
            raise DoesNotExistError(
                locator, store=self._name, missing=self._diagnose_missing(locator)
            )
        return result.path

    def fetch(self, locator: Locator) -> FetchResult:
        """Run a coordinated fetch and report its outcome without raising for absence."""

        target = self.paths.resolve(self._name, locator)
        if locator.directory:
            materialize = partial(self._materialize_directory, locator)
        else:
            materialize = partial(self._materialize_file, locator)
        result = self.coordinator.fetch(locator.object_id, target, materialize)
        if result.outcome is FetchOutcome.CACHED:
            logger.debug(
                "cache hit",
                extra={"stage": "cache", "store": self._name, "object_id": locator.object_id},
            )
        return result

    def _download(self, object_id: str, destination: Path) -> bool:
        """Copy ``object_id`` to ``destination``; ``False`` when it is not published."""

        if not self._remote_exists(object_id):
            return False
        try:
            with self.store.open(object_id) as stream:
                copy_stream(stream, destination, chunk_size=self.settings.chunk_size_bytes)
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise TransferError(
                f"Failed to download {object_id} from datastore '{self._name}': {exc}",
                object_id=object_id,
            ) from exc
        return True

    def _materialize_file(self, locator: Locator, staging: Path) -> bool:
        return self._download(locator.object_id, staging)

    def _materialize_directory(self, locator: Locator, staging: Path) -> bool:
        archive = staging.with_name(staging.name + ARCHIVE_SUFFIX)
        try:
            if not self._download(locator.object_id, archive):
                return False
            unpack_archive(archive, staging, logger=logger)
        finally:
            remove_path(archive)
        return True

    def _diagnose_missing(self, locator: Locator) -> str:
        try:
            in_group = self._locators(locator.group)
        except OSError as exc:
            logger.warning(
                "could not list group while diagnosing missing artifact",
                extra={"stage": "fetch", "store": self._name, "error": str(exc)},
            )
            return "version"
        if not in_group:
            return "group"
        if not any(
            other.name == locator.name and other.directory == locator.directory
            for other in in_group
        ):
            return "name"
        return "version"

    def exists(self, locator: Locator) -> bool:
        """Return ``True`` when ``locator`` is published remotely."""

        return self._remote_exists(locator.object_id)

    def url(self, locator: Locator, relative_path: Optional[str] = None) -> str:
        """Return the ``datastore://`` URL addressing ``locator``."""

        url = f"{URL_SCHEME}://{self._name}/{locator.group}/{locator.versioned_name}"
        if relative_path:
            if not locator.directory:
                raise ValueError("relative paths only apply to directory artifacts")
            url += "/" + relative_path.strip("/")
        return url

    # --- Remote listings ---

    def _list_objects(self, group: Optional[str] = None) -> List[str]:
        prefix = f"{validate_component(group, 'group')}/" if group is not None else ""
        return self.store.list(prefix)

    def _locators(self, group: Optional[str] = None) -> List[Locator]:
        locators = []
        for key in self._list_objects(group):
            try:
                locators.append(Locator.from_object_id(key))
            except ValueError:
                logger.debug(
                    "ignoring foreign object",
                    extra={"stage": "list", "store": self._name, "object_id": key},
                )
        return locators

    def list_groups(self) -> List[str]:
        """Return the sorted groups holding at least one artifact."""

        return sorted({locator.group for locator in self._locators()})

    def list_files(self, group: str) -> List[Locator]:
        return sorted(
            (loc for loc in self._locators(group) if not loc.directory),
            key=lambda loc: (loc.name, loc.version),
        )

    def list_directories(self, group: str) -> List[Locator]:
        return sorted(
            (loc for loc in self._locators(group) if loc.directory),
            key=lambda loc: (loc.name, loc.version),
        )

    def list_versions(self, group: str, name: str, directory: bool = False) -> List[int]:
        """Return the sorted versions published for ``group``/``name``."""

        return sorted(
            loc.version
            for loc in self._locators(group)
            if loc.name == name and loc.directory == directory
        )

    def create_store_if_missing(self) -> None:
        self.store.ensure_container()

    # --- Cache administration ---

    def _evict(self, locator: Locator) -> None:
        target = self.paths.store_root(self._name).joinpath(*locator.cache_key.parts)
        remove_path(target)

    def wipe_cache(self) -> None:
        """Delete every local cache entry of this store; the remote store is untouched."""

        root = self.cache_root
        remove_path(root)
        logger.info("wiped cache", extra={"stage": "cache", "store": self._name, "path": str(root)})

    def cache_size(self) -> int:
        root = self.cache_root
        return directory_size(root) if root.exists() else 0
