"""``datastore://`` URL support.

URLs address published artifacts without the caller knowing about caching::

    datastore://<store>/<group>/<name>-v<version>[.<ext>]
    datastore://<store>/<group>/<name>-d<version>/<relative/path>

:class:`DatastoreResolver` maps store names onto :class:`~Datastore.api.Datastore`
facades and turns URLs into local paths or open streams.  Installing
:class:`DatastoreURLHandler` into :mod:`urllib.request` lets any consumer call
``urllib.request.urlopen("datastore://...")``.
"""

from __future__ import annotations

import email.utils
import logging
import mimetypes
import threading
import urllib.request
import urllib.response
from dataclasses import dataclass
from email.message import Message
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Callable, Dict, List, Optional
from urllib.parse import unquote, urlsplit

from .api import URL_SCHEME, Datastore
from .coordinator import DownloadCoordinator
from .errors import InvalidLocatorError
from .locator import Locator, parse_versioned_name, validate_component
from .settings import load_settings

__all__ = [
    "DatastoreResolver",
    "DatastoreURLHandler",
    "DatastoreUrl",
    "install_url_handler",
    "parse_url",
]

logger = logging.getLogger("Datastore.urls")


@dataclass(frozen=True)
class DatastoreUrl:
    """Parsed ``datastore://`` URL."""

    store: str
    locator: Locator
    relative_path: Optional[PurePosixPath] = None

    def format(self) -> str:
        url = f"{URL_SCHEME}://{self.store}/{self.locator.group}/{self.locator.versioned_name}"
        if self.relative_path is not None:
            url += f"/{self.relative_path.as_posix()}"
        return url

    def __str__(self) -> str:
        return self.format()


def _relative_path(segments: List[str], url: str) -> PurePosixPath:
    if any(part in {"", ".", ".."} for part in segments):
        raise InvalidLocatorError(f"Unsafe path inside directory URL: {url}")
    return PurePosixPath(*segments)


def parse_url(url: str) -> DatastoreUrl:
    """Parse ``url`` into store, locator, and optional path inside a directory.

    A trailing path after the artifact segment marks a directory URL.  Without
    one the file form is preferred and ``<name>-d<version>`` addresses the
    directory itself.

    Raises:
        InvalidLocatorError: If ``url`` is not a well-formed datastore URL.
    """

    parts = urlsplit(url)
    if parts.scheme != URL_SCHEME:
        raise InvalidLocatorError(f"Not a {URL_SCHEME}:// URL: {url}")
    if parts.query or parts.fragment:
        raise InvalidLocatorError(f"Query strings and fragments are not supported: {url}")
    store = validate_component(unquote(parts.netloc), "store name")
    segments = [unquote(segment) for segment in parts.path.split("/")[1:]]
    if len(segments) < 2:
        raise InvalidLocatorError(f"Expected <group>/<versioned name> in URL: {url}")
    group, leaf, rest = segments[0], segments[1], segments[2:]
    if rest:
        name, version, _ = parse_versioned_name(leaf, directory=True)
        locator = Locator(group, name, version, directory=True)
        return DatastoreUrl(store, locator, _relative_path(rest, url))
    try:
        name, version, directory = parse_versioned_name(leaf, directory=False)
    except InvalidLocatorError:
        name, version, directory = parse_versioned_name(leaf, directory=True)
    return DatastoreUrl(store, Locator(group, name, version, directory=directory))


class DatastoreResolver:
    """Registry of datastore facades keyed by store name.

    Args:
        factory: Builds a facade for a store name that was never registered;
            defaults to a facade configured from the environment that uses
            ``coordinator``.
        coordinator: Download coordinator shared by every facade the default
            factory builds, so stores over one cache root deduplicate their
            downloads.  A private one is created when omitted.
    """

    def __init__(
        self,
        factory: Optional[Callable[[str], Datastore]] = None,
        *,
        coordinator: Optional[DownloadCoordinator] = None,
    ) -> None:
        self.coordinator = coordinator or DownloadCoordinator(
            interprocess_locks=load_settings().interprocess_locks
        )
        self._factory = factory or self._default_factory
        self._stores: Dict[str, Datastore] = {}
        self._lock = threading.Lock()

    def _default_factory(self, name: str) -> Datastore:
        return Datastore(name, coordinator=self.coordinator)

    def register(self, datastore: Datastore) -> Datastore:
        with self._lock:
            self._stores[datastore.name] = datastore
        return datastore

    def get(self, name: str) -> Datastore:
        with self._lock:
            datastore = self._stores.get(name)
            if datastore is None:
                datastore = self._stores[name] = self._factory(name)
            return datastore

    def resolve(self, url: str) -> Path:
        """Return the local path ``url`` refers to, fetching it when needed."""

        parsed = parse_url(url)
        root = self.get(parsed.store).path(parsed.locator)
        if parsed.relative_path is None:
            return root
        target = root.joinpath(*parsed.relative_path.parts)
        if not target.exists():
            raise FileNotFoundError(f"{parsed.relative_path} not found in {parsed.locator.object_id}")
        return target

    def open(self, url: str) -> BinaryIO:
        """Open ``url`` for binary reading."""

        path = self.resolve(url)
        logger.debug("opening url", extra={"stage": "url", "url": url, "path": str(path)})
        return path.open("rb")


class DatastoreURLHandler(urllib.request.BaseHandler):
    """:mod:`urllib.request` handler for the ``datastore`` scheme."""

    def __init__(self, resolver: DatastoreResolver) -> None:
        self.resolver = resolver

    def datastore_open(self, request: urllib.request.Request) -> urllib.response.addinfourl:
        url = request.full_url
        path = self.resolver.resolve(url)
        if path.is_dir():
            raise IsADirectoryError(f"URL refers to a directory: {url}")
        info = path.stat()
        headers = Message()
        headers["Content-Type"] = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        headers["Content-Length"] = str(info.st_size)
        headers["Last-Modified"] = email.utils.formatdate(info.st_mtime, usegmt=True)
        return urllib.response.addinfourl(path.open("rb"), headers, url)


def install_url_handler(resolver: Optional[DatastoreResolver] = None) -> DatastoreResolver:
    """Install a global :mod:`urllib` opener that understands ``datastore://``."""

    resolver = resolver or DatastoreResolver()
    opener = urllib.request.build_opener(DatastoreURLHandler(resolver))
    urllib.request.install_opener(opener)
    return resolver
