"""Adversarial tests — tampered downloads, cache entries and store entries.

These tests verify that:
1. An artifact that does not match its checksum is never installed
2. A tampered cache file is detected and fetched again
3. A half-written store entry is never mistaken for an installed one
4. Prefix files owned by someone else are never overwritten
"""

from __future__ import annotations

import pytest

from cellarforge.core.download_cache import BOTTLES, DownloadCache
from cellarforge.core.orchestrator import InstallOrchestrator
from cellarforge.errors import DownloadError, LinkConflictError
from cellarforge.models import ArtifactLocation, InstallRequest, StepOutcome


class TestChecksums:
    def test_mismatched_download_is_never_installed(self, config, lookup_of, make_descriptor, bottle_package):
        location = bottle_package.bottles["all"]
        forged = make_descriptor(
            "testball_bottle", "0.1",
            bottles={"all": ArtifactLocation(url=location.url, sha256="0" * 64)},
        )
        with pytest.raises(DownloadError, match="SHA-256 mismatch") as exc_info:
            InstallOrchestrator(config, lookup_of(forged)).install(InstallRequest(name="testball_bottle"))

        assert exc_info.value.exit_code == 5
        assert not (config.store_root / "testball_bottle").exists()
        assert not any(config.bottles_cache.rglob("*.tar.gz"))

    def test_tampered_cache_file_is_refetched(self, config, lookup_of, bottle_package, counting_fetcher):
        orch = InstallOrchestrator(config, lookup_of(bottle_package), fetcher=counting_fetcher)
        location = bottle_package.bottles["all"]
        cached = DownloadCache(config).path_for(location.url, namespace=BOTTLES, package="testball_bottle")
        cached.parent.mkdir(parents=True)
        cached.write_bytes(b"tampered")

        result = orch.install(InstallRequest(name="testball_bottle"))
        assert result.success
        assert counting_fetcher.count == 1
        assert (config.store_root / "testball_bottle" / "0.1" / "bin" / "helloworld").is_file()


class TestStoreIntegrity:
    def test_half_written_entry_is_reinstalled(self, config, lookup_of, bottle_package):
        leftover = config.store_root / "testball_bottle" / "0.1"
        (leftover / "bin").mkdir(parents=True)
        (leftover / "bin" / "garbage").write_text("from an interrupted run")

        result = InstallOrchestrator(config, lookup_of(bottle_package)).install(
            InstallRequest(name="testball_bottle")
        )
        assert result.steps[0].outcome == StepOutcome.INSTALLED
        assert (leftover / "bin" / "helloworld").is_file()
        assert not (leftover / "bin" / "garbage").exists()

    def test_foreign_prefix_file_is_not_overwritten(self, config, lookup_of, bottle_package):
        foreign = config.prefix / "bin" / "helloworld"
        foreign.parent.mkdir(parents=True)
        foreign.write_text("not ours")

        with pytest.raises(LinkConflictError) as exc_info:
            InstallOrchestrator(config, lookup_of(bottle_package)).install(
                InstallRequest(name="testball_bottle")
            )
        assert foreign.read_text() == "not ours"
        # The entry itself was committed before linking failed.
        assert (config.store_root / "testball_bottle" / "0.1" / "INSTALL_RECEIPT.json").is_file()
        assert exc_info.value.result.error_kind == "staging"

    def test_foreign_symlink_is_not_replaced(self, config, lookup_of, bottle_package, tmp_path):
        target = tmp_path / "elsewhere"
        target.write_text("other tool")
        link = config.prefix / "bin" / "helloworld"
        link.parent.mkdir(parents=True)
        link.symlink_to(target)

        with pytest.raises(LinkConflictError):
            InstallOrchestrator(config, lookup_of(bottle_package)).install(
                InstallRequest(name="testball_bottle")
            )
        assert link.resolve() == target.resolve()
