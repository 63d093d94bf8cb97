"""Archive unpacking for source and prebuilt artifacts.

Supports every compression ``tarfile`` understands and zip.  Anything
else is treated as a single-file download and copied verbatim.  Tar
members are extracted with the ``data`` filter, so absolute paths, ``..``
components and device files are rejected.
"""

from __future__ import annotations

import logging
import os
import shutil
import tarfile
import zipfile
from pathlib import Path

logger = logging.getLogger(__name__)

_ARCHIVE_SUFFIXES = (".tar", ".tar.gz", ".tgz", ".tar.bz2", ".tbz", ".tar.xz", ".txz", ".zip")


class ArchiveError(ValueError):
    """The archive is corrupt or contains unsafe members."""


def unpack(archive: Path, dest: Path, *, strip_single_root: bool = True) -> Path:
    """Unpack ``archive`` into ``dest`` and return the tree root.

    With ``strip_single_root`` an archive whose only top-level member is a
    directory (the usual ``name-1.0/`` layout) returns that directory.
    """
    dest.mkdir(parents=True, exist_ok=True)
    logger.debug("Unpacking %s into %s", archive, dest)
    try:
        if zipfile.is_zipfile(archive):
            _unzip(archive, dest)
        elif tarfile.is_tarfile(archive):
            with tarfile.open(archive, "r:*") as tar:
                tar.extractall(dest, filter="data")
        elif archive.name.endswith(_ARCHIVE_SUFFIXES):
            raise ArchiveError(f"{archive} is not a readable archive")
        else:
            shutil.copy2(archive, dest / _download_name(archive))
    except (tarfile.TarError, zipfile.BadZipFile) as exc:
        raise ArchiveError(f"Could not unpack {archive}: {exc}") from exc

    if strip_single_root:
        children = list(dest.iterdir())
        if len(children) == 1 and children[0].is_dir() and not children[0].is_symlink():
            return children[0]
    return dest


def _unzip(archive: Path, dest: Path) -> None:
    root = dest.resolve()
    with zipfile.ZipFile(archive) as zf:
        for info in zf.infolist():
            target = (dest / info.filename).resolve()
            if not target.is_relative_to(root):
                raise ArchiveError(f"{archive}: member {info.filename!r} escapes the archive root")
            zf.extract(info, dest)
            # zipfile drops permission bits; executables need them back.
            mode = (info.external_attr >> 16) & 0o777
            if mode and not info.is_dir():
                os.chmod(target, mode)


def _download_name(archive: Path) -> str:
    # Cache files are named "<urlkey>--<basename>".
    _, sep, basename = archive.name.partition("--")
    return basename if sep else archive.name
