"""Filesystem helpers shared by the cache, the packer, and logging.

Responsibilities include streaming copies with durable writes, measuring and
removing cache trees, and masking secrets before structured log records leave
the process.
"""

from __future__ import annotations

import os
import re
import shutil
import stat
from pathlib import Path
from typing import BinaryIO, Dict, Optional

__all__ = [
    "copy_stream",
    "directory_size",
    "mask_sensitive_data",
    "remove_path",
]


def copy_stream(source: BinaryIO, destination: Path, *, chunk_size: int = 1 << 20) -> int:
    """Stream ``source`` into ``destination`` and fsync, returning bytes written."""

    written = 0
    with destination.open("wb") as target:
        for chunk in iter(lambda: source.read(chunk_size), b""):
            target.write(chunk)
            written += len(chunk)
        target.flush()
        os.fsync(target.fileno())
    return written


def directory_size(path: Path) -> int:
    """Return the total size in bytes for files rooted at *path*."""

    total = 0
    for entry in path.rglob("*"):
        try:
            info = entry.stat()
        except OSError:
            continue
        if stat.S_ISREG(info.st_mode):
            total += info.st_size
    return total


def remove_path(path: Optional[Path]) -> None:
    """Delete a file or directory tree if it exists."""

    if path is None:
        return
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path, ignore_errors=True)
    else:
        path.unlink(missing_ok=True)


def mask_sensitive_data(payload: Dict[str, object]) -> Dict[str, object]:
    """Return a copy of ``payload`` with common secret fields masked."""

    sensitive_keys = {
        "authorization",
        "api_key",
        "apikey",
        "token",
        "secret",
        "password",
        "aws_secret_access_key",
    }
    token_pattern = re.compile(r"^[A-Za-z0-9+/=_-]{32,}$")

    def _mask_value(value: object, key_hint: Optional[str] = None) -> object:
        if isinstance(value, dict):
            return {
                sub_key: _mask_value(sub_value, str(sub_key).lower())
                for sub_key, sub_value in value.items()
            }
        if isinstance(value, (list, tuple)):
            return type(value)(_mask_value(item, key_hint) for item in value)
        if isinstance(value, str):
            lowered = value.lower()
            if key_hint in sensitive_keys:
                return "***masked***"
            if "apikey" in lowered or "bearer " in lowered:
                return "***masked***"
            if token_pattern.fullmatch(value):
                return "***masked***"
        return value

    masked: Dict[str, object] = {}
    for key, value in payload.items():
        lower = key.lower()
        if lower in sensitive_keys:
            masked[key] = "***masked***"
        else:
            masked[key] = _mask_value(value, lower)
    return masked
