"""Background (start) and asynchronous (execute_async) execution tests."""

from __future__ import annotations

import asyncio
import concurrent.futures
import threading
import time

import pytest

from procexec.errors import InvalidExitValueError, ProcessCancelledError, ProcessTimeoutError
from procexec.executor import ProcessExecutor
from procexec.listeners import ProcessListener
from procexec.runtime.waiter import WaitState


class StopListener(ProcessListener):
    def __init__(self) -> None:
        self.process = None
        self.stopped = threading.Event()

    def after_start(self, process, executor) -> None:
        self.process = process

    def after_stop(self, process) -> None:
        self.stopped.set()


# =============================================================================
# start()
# =============================================================================


class TestStart:
    """StartedProcess and ProcessFuture."""

    @pytest.mark.timeout(30)
    def test_result(self, cli):
        started = ProcessExecutor(cli("hello")).read_output(True).start()
        assert started.pid == started.process.pid

        result = started.future.result(timeout=20)
        assert result.output_utf8() == "Hello world!"
        assert started.future.done()
        assert not started.future.cancelled()

    @pytest.mark.timeout(30)
    def test_failure_delivered_through_future(self, cli):
        started = ProcessExecutor(cli("exit", "4")).exit_values(0).start()
        with pytest.raises(InvalidExitValueError):
            started.future.result(timeout=20)
        assert isinstance(started.future.exception(), InvalidExitValueError)

    @pytest.mark.timeout(30)
    def test_bounded_result_leaves_process_running(self, cli):
        started = ProcessExecutor(cli("loop", "--duration", "10", "--quiet")).start()
        try:
            with pytest.raises(concurrent.futures.TimeoutError):
                started.future.result(timeout=0.3)
            assert started.process.poll() is None
        finally:
            started.future.cancel()

    @pytest.mark.timeout(30)
    def test_cancel_stops_process(self, cli):
        listener = StopListener()
        started = (
            ProcessExecutor(cli("loop", "--duration", "10", "--quiet"))
            .add_listener(listener)
            .start()
        )
        assert started.future.cancel()
        assert started.future.cancelled()

        with pytest.raises(ProcessCancelledError, match="cancelled"):
            started.future.result(timeout=10)
        assert started.process.wait(timeout=5) != 0
        assert listener.stopped.wait(5)

    @pytest.mark.timeout(30)
    def test_cancel_after_finish(self, cli):
        started = ProcessExecutor(cli("exit", "0")).start()
        started.future.result(timeout=20)
        assert not started.future.cancel()
        assert not started.future.cancelled()

    @pytest.mark.timeout(30)
    def test_cancel_while_finishing_keeps_result(self, cli):
        finishing = threading.Event()
        release = threading.Event()

        class SlowFinish(ProcessListener):
            def after_finish(self, process, result) -> None:
                finishing.set()
                release.wait(10)

        started = ProcessExecutor(cli("exit", "0")).add_listener(SlowFinish()).start()
        try:
            assert finishing.wait(20)
            assert not started.future.cancel()
            assert not started.future.cancelled()
        finally:
            release.set()
        assert started.future.result(timeout=20).exit_value == 0

    @pytest.mark.timeout(30)
    def test_done_callback(self, cli):
        called = threading.Event()
        seen = []

        def on_done(future) -> None:
            seen.append(future)
            called.set()

        started = ProcessExecutor(cli("exit", "0")).start()
        started.future.add_done_callback(on_done)
        assert called.wait(20)
        assert seen == [started.future]

    @pytest.mark.timeout(30)
    def test_repr_shows_state(self, cli):
        started = ProcessExecutor(cli("exit", "0")).start()
        started.future.result(timeout=20)
        assert WaitState.FINISHED.value in repr(started.future)


# =============================================================================
# execute_async()
# =============================================================================


class TestExecuteAsync:
    """anyio-based asynchronous execution."""

    @pytest.mark.asyncio
    @pytest.mark.timeout(30)
    async def test_result(self, cli):
        result = await ProcessExecutor(cli("hello")).read_output(True).execute_async()
        assert result.output_utf8() == "Hello world!"

    @pytest.mark.asyncio
    @pytest.mark.timeout(30)
    async def test_invalid_exit(self, cli):
        with pytest.raises(InvalidExitValueError):
            await ProcessExecutor(cli("exit", "3")).exit_values(0).execute_async()

    @pytest.mark.asyncio
    @pytest.mark.timeout(30)
    async def test_timeout(self, cli):
        listener = StopListener()
        executor = (
            ProcessExecutor(cli("loop", "--duration", "10", "--quiet"))
            .timeout(0.5)
            .add_listener(listener)
        )
        with pytest.raises(ProcessTimeoutError, match="timeout: 0.5 seconds"):
            await executor.execute_async()

        # Cleanup finished before the failure was raised
        assert listener.stopped.is_set()
        assert listener.process.wait(timeout=5) != 0

    @pytest.mark.asyncio
    @pytest.mark.timeout(30)
    async def test_cancellation(self, cli):
        listener = StopListener()
        executor = ProcessExecutor(cli("loop", "--duration", "10", "--quiet")).add_listener(listener)

        task = asyncio.create_task(executor.execute_async())
        await asyncio.sleep(0.5)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert listener.stopped.is_set()
        assert listener.process.wait(timeout=5) != 0

    @pytest.mark.asyncio
    @pytest.mark.timeout(30)
    async def test_event_loop_not_blocked(self, cli):
        ticks = 0

        async def ticker() -> None:
            nonlocal ticks
            while True:
                ticks += 1
                await asyncio.sleep(0.05)

        tick_task = asyncio.create_task(ticker())
        try:
            command = cli("loop", "--duration", "0.5", "--interval", "0.1", "--quiet")
            await ProcessExecutor(command).execute_async()
        finally:
            tick_task.cancel()
        assert ticks > 3

    @pytest.mark.asyncio
    @pytest.mark.timeout(30)
    async def test_slow_start_does_not_block_loop(self, cli):
        ticks = 0

        class SlowStart(ProcessListener):
            def before_start(self, executor) -> None:
                time.sleep(0.5)

        async def ticker() -> None:
            nonlocal ticks
            while True:
                ticks += 1
                await asyncio.sleep(0.05)

        tick_task = asyncio.create_task(ticker())
        try:
            await ProcessExecutor(cli("exit", "0")).add_listener(SlowStart()).execute_async()
        finally:
            tick_task.cancel()
        assert ticks > 3

    @pytest.mark.timeout(30)
    def test_cleanup_when_waiter_never_ran(self, cli):
        listener = StopListener()
        executor = ProcessExecutor(cli("loop", "--duration", "10", "--quiet")).add_listener(listener)
        waiter = executor._start_internal()

        assert waiter.cancel()
        ProcessExecutor._finish_cancelled(waiter)

        assert waiter.done
        assert waiter.state is WaitState.DESTROYED_ON_CANCEL
        assert listener.stopped.is_set()
        assert listener.process.wait(timeout=5) != 0
