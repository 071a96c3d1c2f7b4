# === NAVMAP v1 ===
# {
#   "module": "Datastore.coordinator",
#   "purpose": "Per-key download coordination with atomic cache publication",
#   "sections": [
#     {"id": "fetchoutcome", "name": "FetchOutcome", "anchor": "class-fetchoutcome", "kind": "class"},
#     {"id": "fetchresult", "name": "FetchResult", "anchor": "class-fetchresult", "kind": "class"},
#     {"id": "lockregistry", "name": "LockRegistry", "anchor": "class-lockregistry", "kind": "class"},
#     {"id": "downloadcoordinator", "name": "DownloadCoordinator", "anchor": "class-downloadcoordinator", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Download coordination for the local cache.

Responsibilities
----------------
- Guarantee at most one in-flight materialisation per object id inside a
  process, while unrelated object ids proceed fully in parallel.
- Publish cache entries only from a staging sibling, by hard link for files and
  rename for directories.  Neither replaces an existing entry, so concurrent
  readers (threads or other processes) either see nothing or the first
  complete entry.
- Report what happened as a :class:`FetchResult` instead of raising for the
  ordinary "already cached" and "not in the remote store" outcomes.

Design Notes
------------
- Per-key locks live in an explicit :class:`LockRegistry` owned by the
  coordinator; entries are reference counted and dropped once uncontended.
- Waiters block on the key's lock rather than polling and re-check the cache
  after acquiring it, so a download finished by another thread is observed
  without a second transfer.
- With ``interprocess_locks`` enabled the coordinator additionally holds a
  :mod:`filelock` lock file per key, deduplicating downloads across processes
  sharing one cache root.
"""

from __future__ import annotations

import contextlib
import enum
import hashlib
import logging
import os
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional

from filelock import FileLock

from .io.filesystem import remove_path
from .locator import CachePathResolver

__all__ = ["DownloadCoordinator", "FetchOutcome", "FetchResult", "LockRegistry"]

LOGGER = logging.getLogger("Datastore.coordinator")
logging.getLogger("filelock").setLevel(logging.INFO)

_LOCK_DIR_NAME = ".locks"

Materializer = Callable[[Path], bool]


class FetchOutcome(str, enum.Enum):
    """How a coordinated fetch was satisfied."""

    CACHED = "cached"
    """The entry already existed; no lock was taken."""

    JOINED = "joined"
    """Another caller completed the entry while this one waited."""

    DOWNLOADED = "downloaded"
    """This caller transferred and published the entry."""

    MISSING = "missing"
    """The remote store holds no object for the key; nothing was created."""


@dataclass(frozen=True)
class FetchResult:
    """Result of :meth:`DownloadCoordinator.fetch`.

    Attributes:
        object_id: Key the fetch was coordinated on
        outcome: How the request was satisfied
        path: Cache path of the complete entry, ``None`` when ``MISSING``
        wait_ms: Time spent waiting for the per-key lock
    """

    object_id: str
    outcome: FetchOutcome
    path: Optional[Path]
    wait_ms: float = 0.0

    @property
    def found(self) -> bool:
        return self.outcome is not FetchOutcome.MISSING


class _KeyLock:
    __slots__ = ("lock", "refcount")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.refcount = 0


class LockRegistry:
    """Map object ids to mutexes, discarding entries nobody holds or awaits."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, _KeyLock] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def keys(self) -> List[str]:
        with self._guard:
            return sorted(self._locks)

    @contextlib.contextmanager
    def hold(self, key: str) -> Iterator[float]:
        """Hold the lock for ``key``; yields the milliseconds spent waiting."""

        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = _KeyLock()
            entry.refcount += 1
        start = time.monotonic()
        entry.lock.acquire()
        try:
            yield max((time.monotonic() - start) * 1000.0, 0.0)
        finally:
            entry.lock.release()
            with self._guard:
                entry.refcount -= 1
                if entry.refcount == 0:
                    del self._locks[key]


class DownloadCoordinator:
    """Serialise materialisation per object id and publish entries atomically.

    Args:
        registry: Lock registry to use; a private one is created when omitted.
        interprocess_locks: Also take a lock file below the cache entry's store
            root so separate processes do not download the same key twice.
    """

    def __init__(
        self,
        registry: Optional[LockRegistry] = None,
        *,
        interprocess_locks: bool = False,
    ) -> None:
        self.registry = registry if registry is not None else LockRegistry()
        self.interprocess_locks = interprocess_locks

    def in_flight(self) -> List[str]:
        """Return object ids currently locked or awaited."""

        return self.registry.keys()

    @contextlib.contextmanager
    def _process_lock(self, object_id: str, target: Path) -> Iterator[None]:
        if not self.interprocess_locks:
            yield
            return
        lock_dir = _lock_dir_for(target, object_id)
        lock_dir.mkdir(parents=True, exist_ok=True)
        digest = hashlib.sha256(object_id.encode("utf-8")).hexdigest()[:24]
        with FileLock(str(lock_dir / f"{digest}.lock")):
            yield

    def fetch(self, object_id: str, target: Path, materialize: Materializer) -> FetchResult:
        """Return ``target``, materialising it at most once per concurrent burst.

        Args:
            object_id: Key to coordinate on.
            target: Final cache path (file or directory).
            materialize: Callable writing the complete entry to the staging path
                it receives; returns ``False`` when the remote object is absent.

        Returns:
            FetchResult describing the outcome.

        Raises:
            Exception: Whatever ``materialize`` raises; the staging path is
                removed and the lock released before propagating.
        """

        if target.exists():
            return FetchResult(object_id, FetchOutcome.CACHED, target)

        with self.registry.hold(object_id) as wait_ms:
            if target.exists():
                LOGGER.debug(
                    "joined in-flight download",
                    extra={"stage": "fetch", "object_id": object_id, "wait_ms": round(wait_ms, 3)},
                )
                return FetchResult(object_id, FetchOutcome.JOINED, target, wait_ms)
            with self._process_lock(object_id, target):
                if target.exists():
                    return FetchResult(object_id, FetchOutcome.JOINED, target, wait_ms)
                return self._materialize(object_id, target, materialize, wait_ms)

    def _materialize(
        self, object_id: str, target: Path, materialize: Materializer, wait_ms: float
    ) -> FetchResult:
        staging = CachePathResolver.temporary_sibling(target)
        start = time.monotonic()
        try:
            if not materialize(staging):
                return FetchResult(object_id, FetchOutcome.MISSING, None, wait_ms)
            try:
                _publish_entry(staging, target)
            except OSError:
                if not target.exists():
                    raise
                LOGGER.info(
                    "cache entry published concurrently by another process",
                    extra={"stage": "fetch", "object_id": object_id, "path": str(target)},
                )
                return FetchResult(object_id, FetchOutcome.JOINED, target, wait_ms)
        finally:
            remove_path(staging)
        LOGGER.info(
            "downloaded object",
            extra={
                "stage": "fetch",
                "object_id": object_id,
                "path": str(target),
                "elapsed_ms": round((time.monotonic() - start) * 1000.0, 3),
            },
        )
        return FetchResult(object_id, FetchOutcome.DOWNLOADED, target, wait_ms)


def _publish_entry(staging: Path, target: Path) -> None:
    """Move ``staging`` to ``target`` without replacing an existing entry."""

    if staging.is_dir():
        # rename refuses to replace a populated directory
        os.rename(staging, target)
        return
    try:
        os.link(staging, target)
    except FileExistsError:
        raise
    except OSError:
        # filesystems without hard links
        os.replace(staging, target)


def _lock_dir_for(target: Path, object_id: str) -> Path:
    # target lives at <store root>/<group>/<leaf>; one ".locks" per store root.
    depth = object_id.count("/") + 1
    root = target
    for _ in range(depth):
        root = root.parent
    return root / _LOCK_DIR_NAME
