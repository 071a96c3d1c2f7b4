# === NAVMAP v1 ===
# {
#   "module": "Datastore.storage.localfs",
#   "purpose": "Directory-backed remote store implementation.",
#   "sections": [
#     {
#       "id": "localfilesystemstore",
#       "name": "LocalFilesystemStore",
#       "anchor": "class-localfilesystemstore",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Directory-backed remote store implementation.

Implements the RemoteStore protocol on a plain directory, typically a shared
network mount or a test fixture.  Uploads are written to a temporary sibling,
fsynced, and renamed into place so readers never observe partial objects.
Without ``overwrite`` the staged file is hard-linked instead, which fails
rather than replacing an object another writer stored first.
"""

from __future__ import annotations

import io
import logging
import os
import shutil
from pathlib import Path
from typing import BinaryIO, List

from ..locator import CachePathResolver, is_temporary_name
from .base import StoredObject, validate_object_id

__all__ = ["LocalFilesystemStore"]

logger = logging.getLogger("Datastore.storage")

_COPY_CHUNK = 1024 * 1024


def _fsync_directory(path: Path) -> None:
    fd = os.open(str(path), os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


class LocalFilesystemStore:
    """Remote store rooted at a local directory.

    Attributes:
        root: Directory holding one subdirectory per group
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root).expanduser().resolve()

    def __repr__(self) -> str:
        return f"LocalFilesystemStore(root={str(self.root)!r})"

    def _abs(self, object_id: str) -> Path:
        validate_object_id(object_id)
        return self.root.joinpath(*object_id.split("/"))

    def base_url(self) -> str:
        return self.root.as_uri()

    def ensure_container(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def _write_atomic(self, dest: Path, source: BinaryIO, overwrite: bool) -> int:
        dest.parent.mkdir(parents=True, exist_ok=True)
        tmp = CachePathResolver.temporary_sibling(dest)
        try:
            with open(tmp, "wb") as wf:
                shutil.copyfileobj(source, wf, _COPY_CHUNK)
                wf.flush()
                os.fsync(wf.fileno())
            if overwrite:
                os.replace(tmp, dest)
            else:
                # link fails with FileExistsError instead of replacing
                os.link(tmp, dest)
        finally:
            tmp.unlink(missing_ok=True)
        _fsync_directory(dest.parent)
        return dest.stat().st_size

    def put_file(self, local: Path, object_id: str, *, overwrite: bool = True) -> StoredObject:
        """Copy ``local`` into the store with an atomic rename.

        Raises:
            FileExistsError: If ``overwrite`` is false and ``object_id`` is stored.
        """

        dest = self._abs(object_id)
        with open(local, "rb") as rf:
            size = self._write_atomic(dest, rf, overwrite)
        logger.debug(
            "stored object",
            extra={"stage": "publish", "object_id": object_id, "size_bytes": size},
        )
        return StoredObject(object_id=object_id, size=size, url=dest.as_uri())

    def put_bytes(self, data: bytes, object_id: str, *, overwrite: bool = True) -> StoredObject:
        dest = self._abs(object_id)
        size = self._write_atomic(dest, io.BytesIO(data), overwrite)
        return StoredObject(object_id=object_id, size=size, url=dest.as_uri())

    def open(self, object_id: str) -> BinaryIO:
        path = self._abs(object_id)
        if not path.is_file():
            raise FileNotFoundError(f"object not found: {object_id}")
        return open(path, "rb")

    def exists(self, object_id: str) -> bool:
        return self._abs(object_id).is_file()

    def list(self, prefix: str = "") -> List[str]:
        """List object ids below the store root whose key starts with ``prefix``."""

        if not self.root.exists():
            return []
        results: List[str] = []
        for path in self.root.rglob("*"):
            if not path.is_file() or is_temporary_name(path.name):
                continue
            object_id = path.relative_to(self.root).as_posix()
            if object_id.startswith(prefix):
                results.append(object_id)
        return sorted(results)

    def delete(self, object_id: str) -> None:
        self._abs(object_id).unlink(missing_ok=True)
