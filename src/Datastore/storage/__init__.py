"""Remote store adapters used by the datastore facade."""

from .base import RemoteStore, StoredObject, validate_object_id
from .fsspec_store import FsspecRemoteStore, get_remote_store
from .localfs import LocalFilesystemStore

__all__ = [
    "FsspecRemoteStore",
    "LocalFilesystemStore",
    "RemoteStore",
    "StoredObject",
    "get_remote_store",
    "validate_object_id",
]
