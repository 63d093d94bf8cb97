"""Tests for the frozen data models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from cellarforge.models import (
    ArtifactKind,
    ArtifactLocation,
    BuildCommand,
    InstallPlan,
    InstallResult,
    InstallState,
    InstallStep,
    PackageDescriptor,
)

SHA = "a" * 64


class TestArtifactLocation:
    def test_checksum_is_lowercased(self):
        loc = ArtifactLocation(url="https://example.com/a.tar.gz", sha256="A" * 64)
        assert loc.sha256 == "a" * 64

    @pytest.mark.parametrize("bad", ["", "abc", "g" * 64, "a" * 63])
    def test_malformed_checksum_rejected(self, bad: str):
        with pytest.raises(ValidationError):
            ArtifactLocation(url="https://example.com/a.tar.gz", sha256=bad)


class TestPackageDescriptor:
    def test_frozen(self, make_descriptor):
        d = make_descriptor()
        with pytest.raises(ValidationError):
            d.version = "0.2"

    @pytest.mark.parametrize("bad", ["../evil", "a/b", ".hidden", " padded"])
    def test_unsafe_names_rejected(self, bad: str):
        with pytest.raises(ValidationError):
            PackageDescriptor(name=bad, version="1.0")

    @pytest.mark.parametrize("bad", ["../../outside", "1.0/../..", "..", ".1", "1\\2", "1.0 "])
    def test_unsafe_versions_rejected(self, bad: str):
        with pytest.raises(ValidationError, match="invalid version"):
            PackageDescriptor(name="pkg", version=bad)

    @pytest.mark.parametrize("good", ["1.0", "2.3.4-rc1", "HEAD", "20240101_1"])
    def test_ordinary_versions_accepted(self, good: str):
        assert PackageDescriptor(name="pkg", version=good).version == good

    def test_bottle_for_prefers_exact_platform(self, make_descriptor):
        exact = ArtifactLocation(url="https://x/exact.tar.gz", sha256=SHA)
        generic = ArtifactLocation(url="https://x/all.tar.gz", sha256=SHA)
        d = make_descriptor(bottles={"linux_x86_64": exact, "all": generic})
        assert d.bottle_for("linux_x86_64") == exact
        assert d.bottle_for("macos_arm64") == generic

    def test_bottle_for_missing_platform(self, make_descriptor):
        d = make_descriptor(bottles={"macos_arm64": ArtifactLocation(url="https://x/a", sha256=SHA)})
        assert d.bottle_for("linux_x86_64") is None

    def test_recognizes_declared_options(self, make_descriptor):
        d = make_descriptor(options=[{"name": "with-foo"}])
        assert d.recognizes("with-foo")
        assert not d.recognizes("with-bar")

    def test_head_only_marker(self, make_descriptor):
        assert make_descriptor(version="HEAD").is_head_only
        assert not make_descriptor(version="1.0").is_head_only


class TestBuildCommand:
    def test_unconditional(self):
        assert BuildCommand(run=["make"]).applies_to(frozenset())

    def test_only_with(self):
        cmd = BuildCommand(run=["make", "foo"], only_with="with-foo")
        assert cmd.applies_to(frozenset({"with-foo"}))
        assert not cmd.applies_to(frozenset())

    def test_unless_with(self):
        cmd = BuildCommand(run=["make", "nofoo"], unless_with="with-foo")
        assert cmd.applies_to(frozenset())
        assert not cmd.applies_to(frozenset({"with-foo"}))

    def test_empty_argv_rejected(self):
        with pytest.raises(ValidationError):
            BuildCommand(run=[])


class TestPlanModels:
    def test_version_id_for_non_head_steps(self, make_descriptor):
        step = InstallStep(descriptor=make_descriptor(version="2.3"), kind=ArtifactKind.SOURCE)
        assert step.version_id == "2.3"
        assert step.name == "testball"

    def test_version_id_unknown_for_head_steps(self, make_descriptor):
        step = InstallStep(descriptor=make_descriptor(), kind=ArtifactKind.HEAD)
        assert step.version_id is None

    def test_plan_names_and_len(self, make_descriptor):
        steps = [
            InstallStep(descriptor=make_descriptor("dep"), kind=ArtifactKind.PREBUILT),
            InstallStep(descriptor=make_descriptor("top"), kind=ArtifactKind.SOURCE, is_target=True),
        ]
        plan = InstallPlan(target="top", steps=steps)
        assert plan.names == ["dep", "top"]
        assert len(plan) == 2


class TestInstallResult:
    def test_success_only_when_done(self):
        assert InstallResult(target="x", state=InstallState.DONE).success
        assert not InstallResult(target="x", state=InstallState.FAILED).success
