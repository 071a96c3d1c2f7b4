# === NAVMAP v1 ===
# {
#   "module": "Datastore.io.archives",
#   "purpose": "Pack directory trees into zip archives and unpack them safely",
#   "sections": [
#     {"id": "listing", "name": "Directory Listing", "anchor": "LST", "kind": "helpers"},
#     {"id": "pack", "name": "Packing", "anchor": "PCK", "kind": "api"},
#     {"id": "unpack", "name": "Safe Unpacking", "anchor": "UNP", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Directory packer and unpacker.

Published directories travel as a single zip object.  Every directory gets an
explicit member so empty directories survive the round trip, and member names
are relative POSIX paths so the reconstructed tree is identical regardless of
the publishing platform.  Unpacking validates every member before writing
anything: absolute paths, ``..`` segments, and links are rejected.
"""

from __future__ import annotations

import logging
import shutil
import stat
import zipfile
from pathlib import Path, PurePosixPath
from typing import List, Optional, Tuple

from ..errors import CorruptArchiveError

__all__ = ["directory_listing", "pack_directory", "unpack_archive"]


def directory_listing(root: Path) -> List[str]:
    """Return sorted relative POSIX paths of every file and directory below ``root``."""

    return sorted(path.relative_to(root).as_posix() for path in root.rglob("*"))


def pack_directory(
    source: Path, archive_path: Path, *, logger: Optional[logging.Logger] = None
) -> int:
    """Write the tree under ``source`` to ``archive_path`` and return the member count."""

    if not source.is_dir():
        raise NotADirectoryError(f"Not a directory: {source}")
    members = 0
    with zipfile.ZipFile(archive_path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for relative in directory_listing(source):
            path = source / relative
            if path.is_symlink():
                raise ValueError(f"Refusing to publish symbolic link: {path}")
            if path.is_dir():
                archive.writestr(zipfile.ZipInfo(relative + "/"), b"")
            else:
                archive.write(path, arcname=relative)
            members += 1
    if logger:
        logger.info(
            "packed directory",
            extra={"stage": "publish", "source": str(source), "members": members},
        )
    return members


def _validate_member_path(member_name: str) -> PurePosixPath:
    """Validate archive member paths to prevent traversal attacks."""

    normalized = member_name.replace("\\", "/").rstrip("/")
    relative = PurePosixPath(normalized)
    if member_name.startswith(("/", "\\")) or relative.is_absolute():
        raise CorruptArchiveError(f"Unsafe absolute path detected in archive: {member_name}")
    if not relative.parts:
        raise CorruptArchiveError(f"Empty path detected in archive: {member_name}")
    if any(part in {"", ".", ".."} for part in relative.parts):
        raise CorruptArchiveError(f"Unsafe path detected in archive: {member_name}")
    return relative


def unpack_archive(
    archive_path: Path, destination: Path, *, logger: Optional[logging.Logger] = None
) -> List[Path]:
    """Extract ``archive_path`` into ``destination`` and return the extracted files.

    Raises:
        CorruptArchiveError: If the archive is unreadable or contains unsafe members.
    """

    destination.mkdir(parents=True, exist_ok=True)
    extracted: List[Path] = []
    try:
        with zipfile.ZipFile(archive_path) as archive:
            safe_members: List[Tuple[zipfile.ZipInfo, PurePosixPath]] = []
            for member in archive.infolist():
                member_path = _validate_member_path(member.filename)
                mode = (member.external_attr >> 16) & 0xFFFF
                if stat.S_IFMT(mode) == stat.S_IFLNK:
                    raise CorruptArchiveError(f"Unsafe link detected in archive: {member.filename}")
                safe_members.append((member, member_path))
            for member, member_path in safe_members:
                target_path = destination.joinpath(*member_path.parts)
                if member.is_dir():
                    target_path.mkdir(parents=True, exist_ok=True)
                    continue
                target_path.parent.mkdir(parents=True, exist_ok=True)
                with archive.open(member, "r") as source, target_path.open("wb") as target:
                    shutil.copyfileobj(source, target)
                extracted.append(target_path)
    except (zipfile.BadZipFile, zipfile.LargeZipFile, EOFError) as exc:
        raise CorruptArchiveError(f"Failed to extract archive {archive_path}: {exc}") from exc
    if logger:
        logger.info(
            "extracted archive",
            extra={"stage": "extract", "archive": str(archive_path), "files": len(extracted)},
        )
    return extracted
