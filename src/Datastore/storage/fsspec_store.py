"""fsspec-backed remote store for object storage and other filesystems."""

from __future__ import annotations

import logging
import os
import posixpath
from pathlib import Path
from typing import BinaryIO, List, Optional

import fsspec
from fsspec.implementations.local import LocalFileSystem

from ..locator import CachePathResolver, is_temporary_name
from ..settings import DatastoreSettings, load_settings
from .base import RemoteStore, StoredObject, validate_object_id
from .localfs import LocalFilesystemStore

__all__ = ["FsspecRemoteStore", "get_remote_store"]

logger = logging.getLogger("Datastore.storage")


class FsspecRemoteStore:
    """Remote store addressing any fsspec URL (``s3://``, ``gs://``, ``memory://``...)."""

    def __init__(self, url: str, **storage_options: object) -> None:
        fs, path = fsspec.core.url_to_fs(url, **storage_options)
        self.url = url
        self.fs = fs
        self.base_path = path.rstrip("/")

    def __repr__(self) -> str:
        return f"FsspecRemoteStore(url={self.url!r})"

    def _remote_path(self, object_id: str) -> str:
        validate_object_id(object_id)
        return posixpath.join(self.base_path, object_id) if self.base_path else object_id

    def _relative(self, entry: str) -> Optional[str]:
        entry = entry.rstrip("/")
        if not self.base_path:
            return entry.lstrip("/")
        if not entry.startswith(self.base_path + "/"):
            return None
        return entry[len(self.base_path) + 1 :]

    def base_url(self) -> str:
        return self.fs.unstrip_protocol(self.base_path)

    def ensure_container(self) -> None:
        self.fs.makedirs(self.base_path, exist_ok=True)

    def _prepare(self, object_id: str, overwrite: bool) -> str:
        remote = self._remote_path(object_id)
        if not overwrite and self.fs.isfile(remote):
            raise FileExistsError(f"object already stored: {object_id}")
        parent = posixpath.dirname(remote)
        if parent:
            self.fs.makedirs(parent, exist_ok=True)
        return remote

    def put_file(self, local: Path, object_id: str, *, overwrite: bool = True) -> StoredObject:
        """Upload ``local``; local filesystems stage a temporary object and move it.

        Object stores offer no conditional put through fsspec, so without
        ``overwrite`` they only check for an existing object before uploading.
        Local filesystems publish the staged object with a hard link, which
        refuses to replace a concurrent writer's object.
        """

        remote = self._prepare(object_id, overwrite)
        if isinstance(self.fs, LocalFileSystem):
            staging = CachePathResolver.temporary_sibling(Path(remote)).as_posix()
            try:
                self.fs.put_file(str(local), staging)
                if overwrite:
                    self.fs.mv(staging, remote)
                else:
                    os.link(staging, remote)
            finally:
                if self.fs.exists(staging):
                    self.fs.rm(staging)
        else:
            self.fs.put_file(str(local), remote)
        size = self.fs.size(remote)
        logger.debug(
            "stored object",
            extra={"stage": "publish", "object_id": object_id, "size_bytes": size},
        )
        return StoredObject(object_id=object_id, size=size, url=self.fs.unstrip_protocol(remote))

    def put_bytes(self, data: bytes, object_id: str, *, overwrite: bool = True) -> StoredObject:
        remote = self._prepare(object_id, overwrite)
        self.fs.pipe_file(remote, data)
        return StoredObject(
            object_id=object_id, size=len(data), url=self.fs.unstrip_protocol(remote)
        )

    def open(self, object_id: str) -> BinaryIO:
        remote = self._remote_path(object_id)
        if not self.fs.isfile(remote):
            raise FileNotFoundError(f"object not found: {object_id}")
        return self.fs.open(remote, "rb")

    def exists(self, object_id: str) -> bool:
        return bool(self.fs.isfile(self._remote_path(object_id)))

    def list(self, prefix: str = "") -> List[str]:
        """Return object ids under the namespace that start with ``prefix``."""

        directory = prefix.rsplit("/", 1)[0] if "/" in prefix else ""
        search_root = posixpath.join(self.base_path, directory) if directory else self.base_path
        try:
            entries = self.fs.find(search_root)
        except FileNotFoundError:
            entries = []
        results: List[str] = []
        for entry in entries:
            relative = self._relative(entry)
            if not relative or is_temporary_name(posixpath.basename(relative)):
                continue
            if relative.startswith(prefix):
                results.append(relative)
        return sorted(results)

    def delete(self, object_id: str) -> None:
        remote = self._remote_path(object_id)
        if self.fs.exists(remote):
            self.fs.rm(remote)


def get_remote_store(
    store_name: str, settings: Optional[DatastoreSettings] = None
) -> RemoteStore:
    """Instantiate the remote store for ``store_name`` from the URL template.

    Plain paths and ``file://`` URLs use :class:`LocalFilesystemStore`; every
    other scheme goes through fsspec.
    """

    settings = settings or load_settings()
    url = settings.remote_url(store_name)
    protocol, _, remainder = url.partition("://")
    if not remainder:
        return LocalFilesystemStore(Path(url))
    if protocol in {"file", "local"}:
        return LocalFilesystemStore(Path(remainder))
    return FsspecRemoteStore(url)
