"""Remote store abstraction consumed by the datastore facade.

Provides the contract every durable backend (object storage, a shared local
directory, an in-memory fsspec filesystem) must satisfy.  Adapters are thin:
no caching and no retries.  Failures propagate verbatim so the facade can
decide how to surface them.

NAVMAP:
  - StoredObject: Result type for uploads
  - RemoteStore: Protocol defining the storage capability
  - Core Methods:
    * Writes: put_file, put_bytes (atomic where the backend allows,
      create-exclusive with overwrite=False)
    * Reads: open (streaming), exists, list
    * Deletes: delete (missing objects ignored)
    * Lifecycle: ensure_container
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, List, Optional, Protocol, runtime_checkable

__all__ = ["StoredObject", "RemoteStore", "validate_object_id"]


@dataclass(frozen=True)
class StoredObject:
    """Result of a successful upload.

    Attributes:
        object_id: Relative key inside the store namespace
        size: Object size in bytes (None if unknown)
        url: Absolute URL of the stored object
    """

    object_id: str
    size: Optional[int]
    url: str


def validate_object_id(object_id: str) -> str:
    """Reject object ids that would escape the store namespace."""

    if not object_id or object_id.startswith("/") or "\\" in object_id:
        raise ValueError(f"unsafe object id: {object_id!r}")
    if any(part in {"", ".", ".."} for part in object_id.split("/")):
        raise ValueError(f"unsafe object id: {object_id!r}")
    return object_id


@runtime_checkable
class RemoteStore(Protocol):
    """Durable object storage capability keyed by object id strings.

    Implementation Notes:
      - ``open`` must stream; callers copy in chunks and never require the
        whole object in memory
      - ``open`` raises ``FileNotFoundError`` for absent objects
      - ``list`` must hide in-progress temporary uploads
    """

    def base_url(self) -> str:
        """Return the URL of the store namespace."""
        ...

    def ensure_container(self) -> None:
        """Create the backing bucket/directory when it does not exist yet."""
        ...

    def put_file(self, local: Path, object_id: str, *, overwrite: bool = True) -> StoredObject:
        """Upload the file at ``local`` under ``object_id``.

        With ``overwrite`` false an existing object is left untouched and
        ``FileExistsError`` is raised.
        """
        ...

    def put_bytes(self, data: bytes, object_id: str, *, overwrite: bool = True) -> StoredObject:
        """Store ``data`` under ``object_id``; same ``overwrite`` contract as ``put_file``."""
        ...

    def open(self, object_id: str) -> BinaryIO:
        """Open ``object_id`` for streaming reads."""
        ...

    def exists(self, object_id: str) -> bool:
        """Return ``True`` when ``object_id`` is stored."""
        ...

    def list(self, prefix: str = "") -> List[str]:
        """Return sorted object ids whose key starts with ``prefix``."""
        ...

    def delete(self, object_id: str) -> None:
        """Remove ``object_id``; absent objects are ignored."""
        ...
