"""Store manager — atomic commit of staged trees and prefix linking.

Layout::

    <store_root>/<name>/<version-id>/        committed entry
    <store_root>/<name>/<version-id>/INSTALL_RECEIPT.json
    <store_root>/.tmp/                       staging (same filesystem)
    <prefix>/{bin,lib,...}/*                 symlinks into entries
    <prefix>/opt/<name>                      symlink to the linked entry

An entry becomes visible through a single ``os.rename`` of a staging
directory that already contains its receipt, so a path that exists
without a receipt is the leftover of an interrupted run and a path with
one is complete.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path

from filelock import FileLock, Timeout

from cellarforge import __version__
from cellarforge.config import InstallConfig
from cellarforge.errors import LinkConflictError, StagingError
from cellarforge.models.descriptor import PackageDescriptor
from cellarforge.models.plan import InstallStep
from cellarforge.models.store import RECEIPT_FILENAME, InstallReceipt, StoreEntry

logger = logging.getLogger(__name__)

# Entry subdirectories mirrored into the shared prefix.
LINKED_DIRS = ("bin", "sbin", "lib", "include", "share", "etc", "Frameworks")


class StoreManager:
    """Owns the store root and the shared prefix.

    Parameters
    ----------
    config:
        The active ``InstallConfig``.
    """

    def __init__(self, config: InstallConfig) -> None:
        self.root = Path(config.store_root).absolute()
        self.prefix = Path(config.prefix).absolute()
        self._staging_root = Path(config.staging_root).absolute()
        self._lock_timeout = config.lock_timeout_seconds

    # ------------------------------------------------------------------
    # Staging
    # ------------------------------------------------------------------

    def new_staging_dir(self, name: str) -> Path:
        """Create an empty private staging directory for ``name``."""
        self._staging_root.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix=f"{name}-stage-", dir=self._staging_root))

    @staticmethod
    def discard(staging: Path) -> None:
        shutil.rmtree(staging, ignore_errors=True)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def entry_path(self, name: str, version_id: str) -> Path:
        return self.root / name / version_id

    @staticmethod
    def is_committed(path: Path) -> bool:
        """Return whether ``path`` is a complete, committed entry."""
        return (path / RECEIPT_FILENAME).is_file()

    def find_installed(self, name: str, version_id: str) -> StoreEntry | None:
        """Return the committed entry for (name, version-id), if any."""
        path = self.entry_path(name, version_id)
        if not self.is_committed(path):
            return None
        return StoreEntry(
            name=name,
            version_id=version_id,
            path=path,
            linked=self._opt_link(name).resolve() == path.resolve(),
            already_installed=True,
        )

    def installed_versions(self, name: str) -> list[str]:
        """Version-ids of every committed entry of ``name``, sorted."""
        base = self.root / name
        if not base.is_dir():
            return []
        return sorted(p.name for p in base.iterdir() if self.is_committed(p))

    def read_receipt(self, path: Path) -> InstallReceipt:
        return InstallReceipt.model_validate_json((path / RECEIPT_FILENAME).read_text())

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    def commit(
        self,
        staging: Path,
        step: InstallStep,
        version_id: str,
        *,
        revision: str = "",
        debug_symbols: bool = False,
    ) -> StoreEntry:
        """Move ``staging`` into the store as (name, version-id).

        If a committed entry already exists, the staging directory is
        discarded and the existing entry is returned with
        ``already_installed=True``.  On failure the staging directory is
        removed and ``StagingError`` is raised; the store is unchanged.
        """
        name = step.name
        final = self.entry_path(name, version_id)
        receipt = InstallReceipt(
            name=name,
            version_id=version_id,
            kind=step.kind,
            options=sorted(step.options),
            revision=revision,
            restricted_linking=step.descriptor.restricted_linking,
            debug_symbols=debug_symbols,
            tool_version=__version__,
        )

        try:
            (staging / RECEIPT_FILENAME).write_text(receipt.model_dump_json(indent=2))
            final.parent.mkdir(parents=True, exist_ok=True)
            with FileLock(str(final.parent / f".{version_id}.lock"), timeout=self._lock_timeout):
                if self.is_committed(final):
                    logger.info("%s %s is already installed", name, version_id)
                    self.discard(staging)
                    return StoreEntry(
                        name=name, version_id=version_id, path=final, already_installed=True
                    )
                if final.exists() or final.is_symlink():
                    logger.warning("Removing incomplete store entry %s", final)
                    _remove(final)
                os.rename(staging, final)
        except Timeout as exc:
            self.discard(staging)
            raise StagingError(
                f"Timed out after {self._lock_timeout}s waiting to commit {name} {version_id}"
            ) from exc
        except OSError as exc:
            self.discard(staging)
            raise StagingError(f"Could not commit {name} {version_id} to {final}: {exc}") from exc

        logger.info("Committed %s", final)
        return StoreEntry(name=name, version_id=version_id, path=final)

    # ------------------------------------------------------------------
    # Linking
    # ------------------------------------------------------------------

    def link(self, entry: StoreEntry, descriptor: PackageDescriptor) -> StoreEntry:
        """Expose ``entry`` in the shared prefix.

        Restricted-linking packages are left alone.  Conflicts are detected
        before anything is touched; if a file appears between detection and
        linking, the links made so far are removed again and the previous
        version's links are put back.  Links of other versions are only
        removed once every new link is in place.
        """
        if descriptor.restricted_linking:
            reason = f": {descriptor.restricted_linking_reason}" if descriptor.restricted_linking_reason else ""
            logger.info("%s is keg-only and was not linked into %s%s", entry.name, self.prefix, reason)
            return entry

        links, conflicts = self._plan_links(entry)
        opt = self._opt_link(entry.name)
        if (opt.exists() or opt.is_symlink()) and not self._is_ours(opt, entry.name):
            conflicts.append(opt)
        if conflicts:
            raise LinkConflictError(entry.name, conflicts)

        created: list[Path] = []
        # Links of another version replaced in place, with their old target.
        replaced: list[tuple[Path, str]] = []
        try:
            for src, dest in links:
                dest.parent.mkdir(parents=True, exist_ok=True)
                if dest.is_symlink():
                    if _link_target(dest) == src:
                        continue
                    replaced.append((dest, os.readlink(dest)))
                    dest.unlink(missing_ok=True)
                if _symlink(dest, src):
                    created.append(dest)
            opt.parent.mkdir(parents=True, exist_ok=True)
            if opt.is_symlink() and _link_target(opt) != entry.path:
                replaced.append((opt, os.readlink(opt)))
                opt.unlink(missing_ok=True)
            if _symlink(opt, entry.path, target_is_directory=True):
                created.append(opt)
        except OSError as exc:
            self._rollback_links(created, replaced)
            if isinstance(exc, FileExistsError) and exc.filename:
                raise LinkConflictError(entry.name, [Path(exc.filename)]) from exc
            raise StagingError(f"Could not link {entry.name}: {exc}") from exc

        self.unlink_others(entry.name, keep=entry.path)
        logger.info("Linked %s (%d files)", entry.name, len(links))
        return entry.model_copy(update={"linked": True})

    @staticmethod
    def _rollback_links(created: list[Path], replaced: list[tuple[Path, str]]) -> None:
        for path in reversed(created):
            path.unlink(missing_ok=True)
        for path, target in reversed(replaced):
            if path.exists() or path.is_symlink():
                continue
            try:
                path.symlink_to(target)
            except OSError as exc:
                logger.warning("Could not restore %s -> %s: %s", path, target, exc)

    def unlink_others(self, name: str, keep: Path) -> int:
        """Remove prefix links into versions of ``name`` other than ``keep``."""
        removed = 0
        for top in (*LINKED_DIRS, "opt"):
            base = self.prefix / top
            if not base.is_dir():
                continue
            for dirpath, dirnames, filenames in os.walk(base):
                for entry_name in dirnames + filenames:
                    path = Path(dirpath) / entry_name
                    if not path.is_symlink() or not self._is_ours(path, name):
                        continue
                    if _is_within(_link_target(path), keep):
                        continue
                    path.unlink()
                    removed += 1
        if removed:
            logger.info("Unlinked %d file(s) of other %s versions", removed, name)
        return removed

    def _plan_links(self, entry: StoreEntry) -> tuple[list[tuple[Path, Path]], list[Path]]:
        links: list[tuple[Path, Path]] = []
        conflicts: list[Path] = []
        for top in LINKED_DIRS:
            src_dir = entry.path / top
            if not src_dir.is_dir():
                continue
            for dirpath, dirnames, filenames in os.walk(src_dir):
                dirnames.sort()
                base = Path(dirpath)
                target_dir = self.prefix / base.relative_to(entry.path)
                if target_dir.is_symlink() or (target_dir.exists() and not target_dir.is_dir()):
                    conflicts.append(target_dir)
                    dirnames[:] = []
                    continue
                # Symlinked directories are linked as a whole, never descended.
                names = filenames + [d for d in dirnames if (base / d).is_symlink()]
                dirnames[:] = [d for d in dirnames if not (base / d).is_symlink()]
                for item in sorted(names):
                    src, dest = base / item, target_dir / item
                    if dest.is_symlink() and self._is_ours(dest, entry.name):
                        links.append((src, dest))
                    elif dest.exists() or dest.is_symlink():
                        conflicts.append(dest)
                    else:
                        links.append((src, dest))
        return links, conflicts

    def _opt_link(self, name: str) -> Path:
        return self.prefix / "opt" / name

    def _is_ours(self, link: Path, name: str) -> bool:
        return link.is_symlink() and _is_within(_link_target(link), self.root / name)


def _link_target(link: Path) -> Path:
    return Path(os.path.normpath(link.parent / os.readlink(link)))


def _symlink(dest: Path, src: Path, *, target_is_directory: bool = False) -> bool:
    """Point ``dest`` at ``src``; False if another installer already did."""
    try:
        dest.symlink_to(src, target_is_directory=target_is_directory)
    except FileExistsError:
        if dest.is_symlink() and _link_target(dest) == src:
            return False
        raise
    return True


def _is_within(path: Path, base: Path) -> bool:
    return path == base or path.is_relative_to(base)


def _remove(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()
