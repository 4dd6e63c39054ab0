"""Listener chain tests."""

from __future__ import annotations

from unittest import mock

import pytest

from procexec.listeners import CompositeProcessListener, DestroyerListener, ProcessListener
from procexec.runtime.types import ProcessResult


class RecordingListener(ProcessListener):
    def __init__(self, name: str, events: list[str], fail_on: str | None = None) -> None:
        self.name = name
        self.events = events
        self.fail_on = fail_on

    def _record(self, hook: str) -> None:
        self.events.append(f"{self.name}.{hook}")
        if hook == self.fail_on:
            raise RuntimeError(f"{self.name} failed in {hook}")

    def before_start(self, executor) -> None:
        self._record("before_start")

    def after_start(self, process, executor) -> None:
        self._record("after_start")

    def after_finish(self, process, result) -> None:
        self._record("after_finish")

    def after_stop(self, process) -> None:
        self._record("after_stop")


class OtherListener(ProcessListener):
    pass


# =============================================================================
# Membership
# =============================================================================


class TestMembership:
    def test_add_remove(self):
        chain = CompositeProcessListener()
        first, second = ProcessListener(), ProcessListener()
        chain.add(first)
        chain.add(second)
        assert chain.children == (first, second)

        chain.remove(first)
        assert chain.children == (second,)
        # Removing an unknown listener is a no-op
        chain.remove(first)
        assert len(chain) == 1

    def test_remove_all_by_kind(self):
        chain = CompositeProcessListener([OtherListener(), ProcessListener(), OtherListener()])
        chain.remove_all(OtherListener)
        assert len(chain) == 1
        assert not isinstance(chain.children[0], OtherListener)

    def test_clear(self):
        chain = CompositeProcessListener([ProcessListener()])
        chain.clear()
        assert len(chain) == 0

    def test_clone_is_isolated(self):
        chain = CompositeProcessListener([ProcessListener()])
        clone = chain.clone()
        chain.add(ProcessListener())
        chain.clear()
        assert len(clone) == 1

    def test_mutation_during_iteration(self):
        events: list[str] = []
        chain = CompositeProcessListener()

        class SelfRemoving(ProcessListener):
            def after_stop(self, process) -> None:
                events.append("removing")
                chain.remove(self)
                chain.add(RecordingListener("late", events))

        chain.add(SelfRemoving())
        chain.add(RecordingListener("b", events))
        chain.after_stop(mock.Mock())

        # The running notification walks the snapshot taken when it began
        assert events == ["removing", "b.after_stop"]
        assert len(chain) == 2


# =============================================================================
# Failure policy
# =============================================================================


class TestFailurePolicy:
    """A failing observer must not silence the others."""

    def test_before_start_runs_all_then_raises_first(self):
        events: list[str] = []
        chain = CompositeProcessListener([
            RecordingListener("a", events, fail_on="before_start"),
            RecordingListener("b", events, fail_on="before_start"),
            RecordingListener("c", events),
        ])
        with pytest.raises(RuntimeError, match="a failed"):
            chain.before_start(mock.Mock())
        assert events == ["a.before_start", "b.before_start", "c.before_start"]

    def test_after_start_failure_logged(self):
        events: list[str] = []
        chain = CompositeProcessListener([
            RecordingListener("a", events, fail_on="after_start"),
            RecordingListener("b", events),
        ])
        chain.after_start(mock.Mock(), mock.Mock())
        assert events == ["a.after_start", "b.after_start"]

    def test_after_stop_failure_logged(self):
        events: list[str] = []
        chain = CompositeProcessListener([
            RecordingListener("a", events, fail_on="after_stop"),
            RecordingListener("b", events),
        ])
        chain.after_stop(mock.Mock())
        assert events == ["a.after_stop", "b.after_stop"]

    def test_after_finish_failure_propagates(self):
        events: list[str] = []
        chain = CompositeProcessListener([
            RecordingListener("a", events, fail_on="after_finish"),
            RecordingListener("b", events),
        ])
        with pytest.raises(RuntimeError, match="a failed in after_finish"):
            chain.after_finish(mock.Mock(), ProcessResult(exit_value=0))
        assert events == ["a.after_finish"]


# =============================================================================
# DestroyerListener
# =============================================================================


class TestDestroyerListener:
    def test_registers_between_start_and_stop(self):
        registry = mock.Mock()
        process = mock.Mock()
        listener = DestroyerListener(registry)

        listener.after_start(process, mock.Mock())
        registry.add.assert_called_once_with(process)

        listener.after_stop(process)
        registry.remove.assert_called_once_with(process)
