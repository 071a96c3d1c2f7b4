# === NAVMAP v1 ===
# {
#   "module": "Datastore.locator",
#   "purpose": "Artifact coordinates, remote object naming, and local cache path resolution",
#   "sections": [
#     {"id": "locator", "name": "Locator", "anchor": "class-locator", "kind": "class"},
#     {"id": "naming", "name": "Versioned Naming", "anchor": "NAM", "kind": "helpers"},
#     {"id": "cachepathresolver", "name": "CachePathResolver", "anchor": "class-cachepathresolver", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Artifact coordinates and the cache path resolver.

A :class:`Locator` names one immutable artifact by ``(group, name, version,
directory)``.  Remote object ids and local cache paths are both derived from the
same versioned name so the two layouts never drift apart:

* files insert ``-v<version>`` before the final extension (``a.bin`` v7 becomes
  ``a-v7.bin``),
* directories append ``-d<version>``; the remote object is a ``.zip`` archive and
  the cache holds the extracted tree without the suffix.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Optional, Tuple

from .errors import InvalidLocatorError

__all__ = [
    "ARCHIVE_SUFFIX",
    "Locator",
    "CachePathResolver",
    "is_temporary_name",
    "validate_component",
    "versioned_name",
    "parse_versioned_name",
]

ARCHIVE_SUFFIX = ".zip"
TEMP_SUFFIX = ".tmp"

_FILE_NAME_RE = re.compile(r"^(?P<base>.+)-v(?P<version>\d+)(?P<ext>\.[^.\-]*)?$")
_DIRECTORY_NAME_RE = re.compile(r"^(?P<base>.+)-d(?P<version>\d+)$")
_TEMP_NAME_RE = re.compile(r"^\..+\.[0-9a-f]{12}\.tmp$")


def is_temporary_name(name: str) -> bool:
    """Return ``True`` for staging names produced by :meth:`CachePathResolver.temporary_sibling`."""

    return bool(_TEMP_NAME_RE.match(name))


def validate_component(value: str, label: str) -> str:
    """Return ``value`` if usable as a single path segment, else raise."""

    if not isinstance(value, str) or not value:
        raise InvalidLocatorError(f"{label} must be a non-empty string")
    if "/" in value or "\\" in value:
        raise InvalidLocatorError(f"{label} must not contain path separators: {value!r}")
    if value in {".", ".."}:
        raise InvalidLocatorError(f"{label} must not be a relative path marker: {value!r}")
    return value


def _split_extension(name: str) -> Tuple[str, str]:
    # A leading dot marks a hidden file, not an extension; neither does a
    # suffix containing "-", which could be mistaken for a version marker.
    index = name.rfind(".")
    if index <= 0 or "-" in name[index:]:
        return name, ""
    return name[:index], name[index:]


def versioned_name(name: str, version: int, directory: bool) -> str:
    """Return the versioned artifact name used locally and remotely."""

    if directory:
        return f"{name}-d{version}"
    base, ext = _split_extension(name)
    return f"{base}-v{version}{ext}"


def parse_versioned_name(text: str, directory: Optional[bool] = None) -> Tuple[str, int, bool]:
    """Invert :func:`versioned_name`, returning ``(name, version, directory)``.

    When ``directory`` is known the matching form is enforced; otherwise the
    directory form is tried first.  Only names :func:`versioned_name` would
    produce are accepted, so every parse round-trips.
    """

    candidates = []
    if directory is not False:
        match = _DIRECTORY_NAME_RE.match(text)
        if match:
            candidates.append((match.group("base"), int(match.group("version")), True))
    if directory is not True:
        match = _FILE_NAME_RE.match(text)
        if match:
            name = match.group("base") + (match.group("ext") or "")
            candidates.append((name, int(match.group("version")), False))
    for name, version, is_directory in candidates:
        if versioned_name(name, version, is_directory) == text:
            return name, version, is_directory
    raise InvalidLocatorError(f"Not a versioned artifact name: {text!r}")


@dataclass(frozen=True)
class Locator:
    """Coordinates of one published artifact.

    Attributes:
        group: Namespace grouping related artifacts (e.g. ``org.example.models``).
        name: Artifact name, including any file extension.
        version: Non-negative version chosen by the publisher.
        directory: ``True`` for directory artifacts, ``False`` for files.
    """

    group: str
    name: str
    version: int
    directory: bool = False

    def __post_init__(self) -> None:
        validate_component(self.group, "group")
        if self.group.startswith("."):
            # dot-prefixed entries of a store root are reserved (lock files)
            raise InvalidLocatorError(f"group must not start with '.': {self.group!r}")
        validate_component(self.name, "name")
        if isinstance(self.version, bool) or not isinstance(self.version, int):
            raise InvalidLocatorError(f"version must be an integer, got {self.version!r}")
        if self.version < 0:
            raise InvalidLocatorError(f"version must be non-negative, got {self.version}")

    @property
    def versioned_name(self) -> str:
        return versioned_name(self.name, self.version, self.directory)

    @property
    def object_id(self) -> str:
        """Remote object id; directories are stored as zip archives."""

        suffix = ARCHIVE_SUFFIX if self.directory else ""
        return f"{self.group}/{self.versioned_name}{suffix}"

    @property
    def cache_key(self) -> PurePosixPath:
        """Relative cache location below a store's cache root."""

        return PurePosixPath(self.group, self.versioned_name)

    def with_version(self, version: int) -> "Locator":
        return Locator(self.group, self.name, version, self.directory)

    @classmethod
    def from_object_id(cls, object_id: str) -> "Locator":
        """Rebuild a locator from a remote object id."""

        group, sep, leaf = object_id.partition("/")
        if not sep or "/" in leaf:
            raise InvalidLocatorError(f"Not a datastore object id: {object_id!r}")
        if leaf.endswith(ARCHIVE_SUFFIX):
            stem = leaf[: -len(ARCHIVE_SUFFIX)]
            if _DIRECTORY_NAME_RE.match(stem):
                name, version, _ = parse_versioned_name(stem, True)
                return cls(group, name, version, True)
        name, version, _ = parse_versioned_name(leaf, False)
        return cls(group, name, version, False)


class CachePathResolver:
    """Map store names and locators onto paths below a cache root."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root).expanduser().resolve()

    def store_root(self, store_name: str) -> Path:
        validate_component(store_name, "store name")
        return self.root / store_name

    def resolve(self, store_name: str, locator: Locator) -> Path:
        """Return the cache path for ``locator``; creates parents, never the target."""

        target = self.store_root(store_name).joinpath(*locator.cache_key.parts)
        target.parent.mkdir(parents=True, exist_ok=True)
        return target

    @staticmethod
    def temporary_sibling(path: Path) -> Path:
        """Return a unique staging path next to ``path`` on the same filesystem."""

        return path.with_name(f".{path.name}.{uuid.uuid4().hex[:12]}{TEMP_SUFFIX}")
