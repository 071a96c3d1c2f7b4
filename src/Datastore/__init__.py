"""Versioned artifact store with a transparent local cache.

Publish immutable files and directories under ``(group, name, version)``
coordinates, then resolve them from any process to a local path or open them
through ``datastore://`` URLs.  Each artifact is downloaded at most once per
cache root, however many threads ask for it at the same time.
"""

from __future__ import annotations

from .api import Datastore
from .coordinator import DownloadCoordinator, FetchOutcome, FetchResult, LockRegistry
from .errors import (
    AlreadyExistsError,
    ConfigError,
    CorruptArchiveError,
    DatastoreError,
    DoesNotExistError,
    InvalidLocatorError,
    TransferError,
)
from .locator import CachePathResolver, Locator
from .settings import DatastoreSettings, load_settings
from .storage import FsspecRemoteStore, LocalFilesystemStore, RemoteStore, get_remote_store
from .urls import DatastoreResolver, DatastoreURLHandler, install_url_handler, parse_url

__version__ = "0.3.0"

__all__ = [
    "AlreadyExistsError",
    "CachePathResolver",
    "ConfigError",
    "CorruptArchiveError",
    "Datastore",
    "DatastoreError",
    "DatastoreResolver",
    "DatastoreSettings",
    "DatastoreURLHandler",
    "DoesNotExistError",
    "DownloadCoordinator",
    "FetchOutcome",
    "FetchResult",
    "FsspecRemoteStore",
    "InvalidLocatorError",
    "LocalFilesystemStore",
    "Locator",
    "LockRegistry",
    "RemoteStore",
    "TransferError",
    "__version__",
    "get_remote_store",
    "install_url_handler",
    "load_settings",
    "parse_url",
]
