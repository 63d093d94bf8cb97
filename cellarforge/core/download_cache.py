"""Persistent, checksum-verified download cache with single-flight fetches.

Storage layout: {cache_root}/{Namespace}/{package}/{sha256(url)[:12]}--{basename}

A cached file is reused only while it still hashes to the expected SHA-256;
anything else is discarded and fetched again.  Downloads land in an
``.incomplete`` sibling and are renamed into place after verification, so
a reader never sees a partial archive.

A file already verified for another package is linked (or copied) into
place instead of being downloaded again, so each (url, sha256) reaches
the network once per cache.

Two levels of mutual exclusion per key:
- threads of one process share a single ``Future`` per (namespace, url, sha256);
- processes serialize on a ``FileLock`` next to the cached file.
"""

from __future__ import annotations

import logging
import os
import shutil
import threading
from concurrent.futures import Future
from pathlib import Path
from urllib.parse import unquote, urlparse

from filelock import FileLock, Timeout

from cellarforge.config import InstallConfig
from cellarforge.core.fetchers import Fetcher, UrlFetcher
from cellarforge.core.hasher import sha256_file, url_key
from cellarforge.errors import DownloadError
from cellarforge.models.store import CacheEntry

logger = logging.getLogger(__name__)

SOURCES = "Sources"
BOTTLES = "Bottles"


class DownloadCache:
    """Cache of verified archives shared by every invocation.

    Parameters
    ----------
    config:
        The active ``InstallConfig`` (cache root and lock timeout).
    fetcher:
        Download backend; defaults to ``UrlFetcher``.
    """

    def __init__(self, config: InstallConfig, fetcher: Fetcher | None = None) -> None:
        self._root = Path(config.cache_root)
        self._lock_timeout = config.lock_timeout_seconds
        self._fetcher = fetcher or UrlFetcher()
        self._guard = threading.Lock()
        self._inflight: dict[tuple[str, str, str], Future[CacheEntry]] = {}
        # Every real fetch as (url, namespace), in the order it started.
        self.network_fetches: list[tuple[str, str]] = []

    # ------------------------------------------------------------------
    # Paths and lookup
    # ------------------------------------------------------------------

    def path_for(self, url: str, *, namespace: str, package: str) -> Path:
        """Compute the cache path for a URL."""
        basename = unquote(urlparse(url).path).rstrip("/").rsplit("/", 1)[-1]
        return self._root / namespace / package / f"{url_key(url)}--{basename or 'download'}"

    def lookup(
        self, url: str, sha256: str, *, namespace: str, package: str
    ) -> CacheEntry | None:
        """Return the cached entry if present and checksum-valid; never fetches."""
        path = self.path_for(url, namespace=namespace, package=package)
        if path.is_file() and sha256_file(path) == sha256:
            return CacheEntry(
                url=url, sha256=sha256, path=path, namespace=namespace, package=package
            )
        return None

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    def fetch(
        self, url: str, sha256: str, *, namespace: str, package: str
    ) -> tuple[CacheEntry, bool]:
        """Return a verified cache entry, fetching it at most once.

        Returns ``(entry, cache_hit)``.  Concurrent callers asking for the
        same (url, sha256) wait for the first caller's result instead of
        downloading again; a caller for another package then takes its own
        copy of the verified file.
        """
        key = (namespace, url, sha256)
        with self._guard:
            future = self._inflight.get(key)
            owner = future is None
            if future is None:
                future = Future()
                self._inflight[key] = future

        if not owner:
            logger.debug("Waiting for in-flight download of %s", url)
            shared = future.result()
            if shared.package == package:
                return shared, True
            entry, _ = self._fetch_exclusive(url, sha256, namespace=namespace, package=package)
            return entry, True

        try:
            entry, hit = self._fetch_exclusive(url, sha256, namespace=namespace, package=package)
        except BaseException as exc:
            future.set_exception(exc)
            raise
        else:
            future.set_result(entry)
            return entry, hit
        finally:
            with self._guard:
                self._inflight.pop(key, None)

    def _fetch_exclusive(
        self, url: str, sha256: str, *, namespace: str, package: str
    ) -> tuple[CacheEntry, bool]:
        path = self.path_for(url, namespace=namespace, package=package)
        path.parent.mkdir(parents=True, exist_ok=True)
        entry = CacheEntry(url=url, sha256=sha256, path=path, namespace=namespace, package=package)

        lock = FileLock(str(path) + ".lock", timeout=self._lock_timeout)
        try:
            with lock:
                if path.is_file():
                    if sha256_file(path) == sha256:
                        logger.info("Already downloaded: %s", path)
                        return entry, True
                    logger.warning("Cached %s does not match its checksum; fetching again", path)
                    path.unlink()

                partial = path.with_name(path.name + ".incomplete")
                partial.unlink(missing_ok=True)
                if self._reuse_verified_copy(path, sha256, partial):
                    return entry, True

                with self._guard:
                    self.network_fetches.append((url, namespace))
                try:
                    self._fetcher.fetch(url, partial)
                    actual = sha256_file(partial)
                except OSError as exc:
                    partial.unlink(missing_ok=True)
                    raise DownloadError(f"Download failed: {url}: {exc}") from exc
                except DownloadError:
                    partial.unlink(missing_ok=True)
                    raise

                if actual != sha256:
                    partial.unlink(missing_ok=True)
                    raise DownloadError(
                        f"SHA-256 mismatch for {url}\n"
                        f"Expected: {sha256}\n"
                        f"  Actual: {actual}"
                    )
                os.replace(partial, path)
                logger.info("Downloaded %s -> %s", url, path)
                return entry, False
        except Timeout as exc:
            raise DownloadError(
                f"Timed out after {self._lock_timeout}s waiting for another download of {url}"
            ) from exc

    def _reuse_verified_copy(self, path: Path, sha256: str, partial: Path) -> bool:
        """Fill ``path`` from another package's verified copy of the same URL.

        Cache file names depend only on the URL, so a sibling package
        directory holding the same name and checksum has the same bytes.
        """
        for package_dir in sorted(path.parent.parent.iterdir()):
            candidate = package_dir / path.name
            if candidate == path or not candidate.is_file():
                continue
            try:
                if sha256_file(candidate) != sha256:
                    continue
                try:
                    os.link(candidate, partial)
                except OSError:
                    shutil.copy2(candidate, partial)
                if sha256_file(partial) != sha256:
                    partial.unlink(missing_ok=True)
                    continue
            except OSError as exc:
                partial.unlink(missing_ok=True)
                logger.debug("Could not reuse %s: %s", candidate, exc)
                continue
            os.replace(partial, path)
            logger.info("Reusing %s for %s", candidate, path)
            return True
        return False
