"""ProcessRegistry tests.

Test coverage:
- Shutdown hook armed on first add, disarmed when empty
- Shutdown destroys every registered process exactly once
- Adds during shutdown destroy immediately, removes are no-ops
"""

from __future__ import annotations

import threading
from unittest import mock

import pytest

from procexec.registry import ProcessRegistry, get_registry


def fake_process(pid: int = 100) -> mock.Mock:
    process = mock.Mock()
    process.pid = pid
    return process


@pytest.fixture
def atexit_mock():
    with mock.patch("procexec.registry.atexit") as patched:
        yield patched


@pytest.fixture
def registry(atexit_mock) -> ProcessRegistry:
    return ProcessRegistry()


class TestHookLifecycle:
    def test_armed_on_first_add(self, registry: ProcessRegistry, atexit_mock):
        registry.add(fake_process(1))
        registry.add(fake_process(2))
        atexit_mock.register.assert_called_once_with(registry.run_shutdown)
        assert registry.hook_armed
        assert registry.size == 2

    def test_disarmed_when_empty(self, registry: ProcessRegistry, atexit_mock):
        first, second = fake_process(1), fake_process(2)
        registry.add(first)
        registry.add(second)
        assert registry.remove(first)
        atexit_mock.unregister.assert_not_called()
        assert registry.remove(second)
        atexit_mock.unregister.assert_called_once_with(registry.run_shutdown)
        assert not registry.hook_armed

    def test_rearmed_after_disarm(self, registry: ProcessRegistry, atexit_mock):
        process = fake_process()
        registry.add(process)
        registry.remove(process)
        registry.add(process)
        assert atexit_mock.register.call_count == 2

    def test_remove_unknown(self, registry: ProcessRegistry):
        assert not registry.remove(fake_process())

    def test_add_twice_counts_once(self, registry: ProcessRegistry):
        process = fake_process()
        registry.add(process)
        registry.add(process)
        assert registry.size == 1


class TestShutdown:
    def test_destroys_all_once(self, registry: ProcessRegistry):
        processes = [fake_process(i) for i in range(3)]
        for process in processes:
            registry.add(process)

        assert registry.run_shutdown() == 3
        assert registry.run_shutdown() == 0

        for process in processes:
            process.kill.assert_called_once()
        assert registry.size == 0
        assert registry.is_shutting_down

    def test_add_during_shutdown_destroys_immediately(self, registry: ProcessRegistry):
        registry.run_shutdown()
        late = fake_process()
        assert registry.add(late) is False
        late.kill.assert_called_once()
        assert registry.size == 0

    def test_remove_during_shutdown_is_noop(self, registry: ProcessRegistry):
        process = fake_process()
        registry.add(process)
        registry.run_shutdown()
        assert registry.remove(process) is False

    def test_destroy_failures_do_not_stop_shutdown(self, registry: ProcessRegistry):
        failing, healthy = fake_process(1), fake_process(2)
        failing.kill.side_effect = PermissionError(1, "Operation not permitted")
        registry.add(failing)
        registry.add(healthy)

        assert registry.run_shutdown() == 2
        healthy.kill.assert_called_once()

    def test_concurrent_adds(self, registry: ProcessRegistry):
        processes = [fake_process(i) for i in range(50)]
        threads = [threading.Thread(target=registry.add, args=(p,)) for p in processes]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert registry.size == 50


class TestGlobalRegistry:
    def test_singleton(self):
        assert get_registry() is get_registry()
