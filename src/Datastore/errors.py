"""Exception hierarchy shared across publishing, fetching, and URL resolution.

The datastore spans remote object-store transfers, local cache materialisation,
and archive packing.  Failures are grouped under :class:`DatastoreError` so
callers can react to broad categories while still reaching the specialised
subclasses (and their attributes) when finer-grained handling is required.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:  # pragma: no cover - import for static analysis only
    from .locator import Locator

__all__ = [
    "DatastoreError",
    "DoesNotExistError",
    "AlreadyExistsError",
    "TransferError",
    "CorruptArchiveError",
    "InvalidLocatorError",
    "ConfigError",
]


class DatastoreError(RuntimeError):
    """Base exception for datastore publish and fetch failures."""


class DoesNotExistError(DatastoreError):
    """Raised when a locator has no published object in the remote store.

    Attributes:
        locator: The locator that was requested.
        missing: Which coordinate is absent remotely: ``"group"`` when nothing
            was ever published under the group, ``"name"`` when the group exists
            but holds no artifact of that name and kind, ``"version"`` when other
            versions of the artifact exist but not the requested one.
    """

    def __init__(self, locator: "Locator", *, store: str, missing: str = "version") -> None:
        self.locator = locator
        self.store = store
        self.missing = missing
        kind = "directory" if locator.directory else "file"
        super().__init__(
            f"{kind} {locator.group}/{locator.name} version {locator.version} "
            f"does not exist in datastore '{store}' (missing {missing})"
        )


class AlreadyExistsError(DatastoreError):
    """Raised when publishing onto an existing locator without ``overwrite``."""

    def __init__(self, locator: "Locator", *, store: str) -> None:
        self.locator = locator
        self.store = store
        super().__init__(
            f"{locator.object_id} already exists in datastore '{store}'; "
            "pass overwrite=True to replace it"
        )


class TransferError(DatastoreError):
    """Raised when the remote store fails while uploading or downloading."""

    def __init__(self, message: str, *, object_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.object_id = object_id


class CorruptArchiveError(DatastoreError):
    """Raised when a directory archive cannot be unpacked safely."""


class InvalidLocatorError(DatastoreError, ValueError):
    """Raised when group/name/version coordinates or URLs are malformed."""


class ConfigError(DatastoreError):
    """Raised when settings or CLI inputs are invalid."""
