"""URL fetchers — the only code that performs network I/O for archives.

``UrlFetcher`` streams http(s) URLs with requests and copies ``file://``
URLs from the local filesystem (used by mirrors on shared storage and by
the test-suite).  Every failure surfaces as ``DownloadError``.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Protocol, runtime_checkable
from urllib.parse import unquote, urlparse

import requests

from cellarforge.errors import DownloadError

logger = logging.getLogger(__name__)

_ALLOWED_SCHEMES = frozenset(("http", "https", "file"))


@runtime_checkable
class Fetcher(Protocol):
    """Protocol for download backends: write ``url``'s bytes to ``dest``."""

    def fetch(self, url: str, dest: Path) -> None:
        ...


class UrlFetcher:
    """Default fetcher for http, https and file URLs.

    Parameters
    ----------
    timeout:
        Connect/read timeout in seconds for http(s) requests.
    session:
        Optional ``requests.Session`` (connection pooling, custom headers).
    """

    def __init__(self, timeout: float = 60.0, session: requests.Session | None = None) -> None:
        self._timeout = timeout
        self._session = session or requests.Session()

    def fetch(self, url: str, dest: Path) -> None:
        scheme = urlparse(url).scheme
        if scheme not in _ALLOWED_SCHEMES:
            raise DownloadError(f"Unsupported URL scheme {scheme!r}: {url}")
        dest.parent.mkdir(parents=True, exist_ok=True)
        if scheme == "file":
            self._copy_local(url, dest)
        else:
            self._download(url, dest)

    def _download(self, url: str, dest: Path) -> None:
        logger.info("Downloading %s", url)
        try:
            with self._session.get(url, stream=True, timeout=self._timeout) as response:
                response.raise_for_status()
                with open(dest, "wb") as fh:
                    for chunk in response.iter_content(chunk_size=1024 * 64):
                        fh.write(chunk)
        except requests.exceptions.RequestException as exc:
            dest.unlink(missing_ok=True)
            raise DownloadError(f"Download failed: {url}: {exc}") from exc
        except OSError as exc:
            dest.unlink(missing_ok=True)
            raise DownloadError(f"Could not write {dest}: {exc}") from exc

    @staticmethod
    def _copy_local(url: str, dest: Path) -> None:
        source = Path(unquote(urlparse(url).path))
        logger.info("Copying %s", source)
        try:
            shutil.copyfile(source, dest)
        except OSError as exc:
            dest.unlink(missing_ok=True)
            raise DownloadError(f"Download failed: {url}: {exc}") from exc
