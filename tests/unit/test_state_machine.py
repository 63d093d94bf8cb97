"""Tests for the InstallMachine — valid transitions and recorded history."""

from __future__ import annotations

import pytest

from cellarforge.core.state_machine import InstallMachine
from cellarforge.errors import InvalidTransitionError
from cellarforge.models.states import InstallState

S = InstallState


class TestInstallMachine:
    def test_starts_in_forbid_check(self):
        assert InstallMachine("testball").state == S.FORBID_CHECK

    def test_source_install_path(self):
        machine = InstallMachine("testball")
        for state in (S.RESOLVE, S.ACQUIRE, S.BUILD, S.STAGE, S.DONE):
            machine.transition(state, package="testball")
        assert machine.state == S.DONE
        assert [t.to_state for t in machine.history] == [
            S.RESOLVE, S.ACQUIRE, S.BUILD, S.STAGE, S.DONE,
        ]

    def test_prebuilt_skips_build(self):
        machine = InstallMachine("testball")
        for state in (S.RESOLVE, S.ACQUIRE, S.STAGE, S.DONE):
            machine.transition(state)
        assert machine.state == S.DONE

    def test_multi_step_plan_loops_back_to_acquire(self):
        machine = InstallMachine("top")
        machine.transition(S.RESOLVE)
        machine.transition(S.ACQUIRE, package="dep")
        machine.transition(S.STAGE, package="dep")
        machine.transition(S.ACQUIRE, package="top")
        machine.transition(S.BUILD, package="top")
        machine.transition(S.STAGE, package="top")
        machine.transition(S.DONE)
        assert [t.package for t in machine.history] == ["top", "dep", "dep", "top", "top", "top", "top"]

    def test_confirm_path(self):
        machine = InstallMachine("testball")
        machine.transition(S.RESOLVE)
        machine.transition(S.CONFIRM)
        machine.transition(S.ACQUIRE)
        assert machine.state == S.ACQUIRE

    def test_cannot_skip_resolution(self):
        machine = InstallMachine("testball")
        with pytest.raises(InvalidTransitionError, match="forbid_check to acquire"):
            machine.transition(S.ACQUIRE)

    def test_build_must_stage(self):
        machine = InstallMachine("testball")
        machine.transition(S.RESOLVE)
        machine.transition(S.ACQUIRE)
        machine.transition(S.BUILD)
        with pytest.raises(InvalidTransitionError):
            machine.transition(S.DONE)

    def test_rejected_transition_leaves_state_untouched(self):
        machine = InstallMachine("testball")
        with pytest.raises(InvalidTransitionError):
            machine.transition(S.DONE)
        assert machine.state == S.FORBID_CHECK
        assert machine.history == []

    def test_fail_from_any_active_state(self):
        for path in ([], [S.RESOLVE], [S.RESOLVE, S.CONFIRM], [S.RESOLVE, S.ACQUIRE, S.BUILD]):
            machine = InstallMachine("testball")
            for state in path:
                machine.transition(state)
            record = machine.fail("boom")
            assert record is not None and record.detail == "boom"
            assert machine.state == S.FAILED

    def test_fail_is_noop_when_terminal(self):
        machine = InstallMachine("testball")
        machine.fail("first")
        assert machine.fail("second") is None
        assert len(machine.history) == 1

    def test_history_is_a_copy(self):
        machine = InstallMachine("testball")
        machine.transition(S.RESOLVE)
        machine.history.clear()
        assert len(machine.history) == 1
