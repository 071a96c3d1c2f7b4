"""Filesystem and archive helpers for the datastore."""

from .archives import directory_listing, pack_directory, unpack_archive
from .filesystem import copy_stream, directory_size, mask_sensitive_data, remove_path

__all__ = [
    "copy_stream",
    "directory_listing",
    "directory_size",
    "mask_sensitive_data",
    "pack_directory",
    "remove_path",
    "unpack_archive",
]
