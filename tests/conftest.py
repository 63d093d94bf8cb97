"""Shared test fixtures for Cellarforge."""

from __future__ import annotations

import io
import os
import shutil
import tarfile
import threading
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path
from typing import Any

import pytest

from cellarforge.config import InstallConfig
from cellarforge.core.descriptor_loader import StaticLookup
from cellarforge.core.fetchers import UrlFetcher
from cellarforge.core.hasher import sha256_file
from cellarforge.core.runners import CommandResult, SubprocessRunner
from cellarforge.models.descriptor import ArtifactLocation, PackageDescriptor

HEAD_REVISION = "d5eb689" + "0" * 33


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep CELLARFORGE_* variables from the developer's shell out of tests."""
    for key in list(os.environ):
        if key.startswith("CELLARFORGE_"):
            monkeypatch.delenv(key)


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., InstallConfig]:
    """Factory fixture: an InstallConfig rooted in the test's tmp_path."""

    def _factory(**overrides: Any) -> InstallConfig:
        defaults: dict[str, Any] = {
            "store_root": tmp_path / "Cellar",
            "prefix": tmp_path / "prefix",
            "cache_root": tmp_path / "cache",
            "formula_path": tmp_path / "formulae",
            "platform_tag": "linux_x86_64",
            "debug_symbols_supported": False,
            "download_concurrency": 2,
            "lock_timeout_seconds": 30.0,
        }
        defaults.update(overrides)
        return InstallConfig(_env_file=None, **defaults)

    return _factory


@pytest.fixture
def config(make_config: Callable[..., InstallConfig]) -> InstallConfig:
    """Convenience: a ready-made InstallConfig with test defaults."""
    return make_config()


# ---------------------------------------------------------------------------
# Archives
# ---------------------------------------------------------------------------


@pytest.fixture
def make_tarball(tmp_path: Path) -> Callable[..., ArtifactLocation]:
    """Factory fixture: write a .tar.gz under tmp_path/archives.

    ``files`` maps member paths to text content; members listed in
    ``executable`` get mode 0755.  Returns the ``file://`` location with the
    archive's real checksum.
    """

    def _factory(
        filename: str,
        files: Mapping[str, str],
        *,
        executable: Sequence[str] = (),
    ) -> ArtifactLocation:
        path = tmp_path / "archives" / filename
        path.parent.mkdir(parents=True, exist_ok=True)
        with tarfile.open(path, "w:gz") as tar:
            for member, content in files.items():
                data = content.encode("utf-8")
                info = tarfile.TarInfo(member)
                info.size = len(data)
                info.mode = 0o755 if member in executable else 0o644
                tar.addfile(info, io.BytesIO(data))
        return ArtifactLocation(url=path.as_uri(), sha256=sha256_file(path))

    return _factory


# ---------------------------------------------------------------------------
# Descriptors
# ---------------------------------------------------------------------------


@pytest.fixture
def make_descriptor() -> Callable[..., PackageDescriptor]:
    """Factory fixture: build a PackageDescriptor with sensible defaults."""

    def _factory(name: str = "testball", version: str = "0.1", **overrides: Any) -> PackageDescriptor:
        defaults: dict[str, Any] = {"name": name, "version": version}
        defaults.update(overrides)
        return PackageDescriptor.model_validate(defaults)

    return _factory


@pytest.fixture
def bottle_package(
    make_tarball: Callable[..., ArtifactLocation],
    make_descriptor: Callable[..., PackageDescriptor],
) -> PackageDescriptor:
    """A package with only a prebuilt artifact: bin/helloworld."""
    bottle = make_tarball(
        "testball_bottle-0.1.all.bottle.tar.gz",
        {"testball_bottle/0.1/bin/helloworld": "#!/bin/sh\necho hello world\n"},
        executable=["testball_bottle/0.1/bin/helloworld"],
    )
    return make_descriptor("testball_bottle", "0.1", bottles={"all": bottle})


@pytest.fixture
def source_package(
    make_tarball: Callable[..., ArtifactLocation],
    make_descriptor: Callable[..., PackageDescriptor],
) -> PackageDescriptor:
    """A source package: installs bin/test, and foo/test with ``with-foo``."""
    source = make_tarball(
        "testball2-0.1.tar.gz",
        {"testball2-0.1/bin/test": "#!/bin/sh\necho test\n", "testball2-0.1/README": "readme\n"},
        executable=["testball2-0.1/bin/test"],
    )
    return make_descriptor(
        "testball2",
        "0.1",
        source=source,
        options=[{"name": "with-foo", "description": "Build with foo"}],
        build={
            "steps": [
                {"run": ["mkdir", "-p", "{prefix}/foo"], "only_with": "with-foo"},
                {"run": ["touch", "{prefix}/foo/test"], "only_with": "with-foo"},
            ],
            "install": ["bin"],
        },
    )


@pytest.fixture
def lookup_of() -> Callable[..., StaticLookup]:
    """Factory fixture: a StaticLookup over the given descriptors."""

    def _factory(*descriptors: PackageDescriptor) -> StaticLookup:
        return StaticLookup(list(descriptors))

    return _factory


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class CountingFetcher:
    """UrlFetcher wrapper that records every real fetch."""

    def __init__(self, delay: threading.Event | None = None) -> None:
        self._inner = UrlFetcher()
        self._lock = threading.Lock()
        self._gate = delay
        self.urls: list[str] = []

    @property
    def count(self) -> int:
        return len(self.urls)

    def fetch(self, url: str, dest: Path) -> None:
        with self._lock:
            self.urls.append(url)
        if self._gate is not None:
            self._gate.wait(timeout=10)
        self._inner.fetch(url, dest)


class FakeGitRunner:
    """Command runner that serves ``git clone`` from a local directory.

    The clone URL is a directory (or ``file://`` URL of one) whose contents
    become the checkout.  Paths resolve against ``cwd`` like real git, and
    ``rev-parse`` fails outside a checkout.  Every other command runs for
    real.
    """

    def __init__(self, revision: str = HEAD_REVISION) -> None:
        self.revision = revision
        self.calls: list[list[str]] = []
        self._real = SubprocessRunner()

    def run(self, argv: Sequence[str], *, cwd: Path, env: Mapping[str, str] | None = None) -> CommandResult:
        args = [str(a) for a in argv]
        self.calls.append(args)
        if args[:2] == ["git", "clone"]:
            src = Path(cwd) / args[-2].removeprefix("file://")
            if not src.is_dir():
                return CommandResult(argv=args, returncode=128, stderr="fatal: repository not found")
            shutil.copytree(src, Path(cwd) / args[-1], dirs_exist_ok=True)
            return CommandResult(argv=args, returncode=0)
        if args[:2] == ["git", "rev-parse"]:
            if not (Path(cwd) / ".git").is_dir():
                return CommandResult(argv=args, returncode=128, stderr="fatal: not a git repository")
            return CommandResult(argv=args, returncode=0, stdout=self.revision + "\n")
        return self._real.run(args, cwd=cwd, env=env)

    @property
    def clones(self) -> list[list[str]]:
        return [c for c in self.calls if c[:2] == ["git", "clone"]]


class FakeDsymExtractor:
    """Writes a dSYM bundle layout for every file in bin/ without dsymutil."""

    def __init__(self) -> None:
        self.calls = 0

    def extract(self, staging: Path) -> list[Path]:
        self.calls += 1
        produced = []
        for exe in sorted((staging / "bin").iterdir()):
            if exe.suffix == ".dSYM":
                continue
            dwarf = exe.with_name(exe.name + ".dSYM") / "Contents" / "Resources" / "DWARF"
            dwarf.mkdir(parents=True)
            (dwarf / exe.name).write_text("dwarf")
            produced.append(dwarf.parents[2])
        return produced


@pytest.fixture
def counting_fetcher() -> CountingFetcher:
    return CountingFetcher()


@pytest.fixture
def gated_fetcher() -> tuple[CountingFetcher, threading.Event]:
    """A counting fetcher whose fetches block until the event is set."""
    gate = threading.Event()
    return CountingFetcher(delay=gate), gate


@pytest.fixture
def fake_git() -> FakeGitRunner:
    return FakeGitRunner()


@pytest.fixture
def fake_dsym() -> FakeDsymExtractor:
    return FakeDsymExtractor()


@pytest.fixture
def head_repo(tmp_path: Path) -> Path:
    """A directory standing in for a remote repository."""
    repo = tmp_path / "repos" / "testball_head"
    (repo / "bin").mkdir(parents=True)
    (repo / ".git").mkdir()
    (repo / ".git" / "HEAD").write_text("ref: refs/heads/main\n")
    script = repo / "bin" / "helloworld"
    script.write_text("#!/bin/sh\necho head\n")
    script.chmod(0o755)
    return repo
