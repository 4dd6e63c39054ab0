"""Process executor.

This module provides:
- ProcessExecutor: fluent launch configuration with synchronous, background
  and asynchronous execution
- StartedProcess: a launched process together with its future outcome
- ProcessFuture: future resolving to the ProcessResult of one launch

Key design points:
- The configuration is snapshotted into ProcessAttributes right before
  spawning; later changes to the executor do not affect running launches
- Pumps are attached and started after the process exists and before the
  waiter blocks
- Without a deadline the waiter runs on the calling thread; with one it
  runs on a daemon thread and the caller waits on a bounded future
"""

from __future__ import annotations

import concurrent.futures
import io
import logging
import os
import shlex
import subprocess
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import anyio

from .config import MessageLevel, get_config
from .errors import (
    ProcessCancelledError,
    ProcessExecError,
    ProcessInitError,
    ProcessTimeoutError,
    parse_error_code,
)
from .listeners import CompositeProcessListener, DestroyerListener, ProcessListener
from .registry import ProcessRegistry, get_registry
from .runtime.closers import ProcessCloser, StandardProcessCloser, TimeoutProcessCloser
from .runtime.exit_check import add_exception_message_suffix, check_exit, format_seconds
from .runtime.pumps import ExecuteStreamHandler, PumpStreamHandler
from .runtime.stoppers import DESTROY_STOPPER, ProcessStopper
from .runtime.streams import NULL_SINK, LoggerSink
from .runtime.tasks import DaemonExecutor, bind_task_context
from .runtime.types import ProcessAttributes, ProcessResult
from .runtime.waiter import (
    MessageLogger,
    MessageLoggers,
    WaitForProcess,
    WaiterBusyError,
    describe_process,
)

__all__ = [
    "ProcessExecutor",
    "ProcessFuture",
    "StartedProcess",
]

logger = logging.getLogger(__name__)

# Seconds execute_async() waits for the stop/close sequence after cancellation
DEFAULT_CANCEL_CLEANUP_TIMEOUT = 10.0

_MESSAGE_LOGGERS = {
    MessageLevel.DEBUG: MessageLoggers.DEBUG,
    MessageLevel.INFO: MessageLoggers.INFO,
    MessageLevel.NONE: MessageLoggers.NOP,
}


class ProcessFuture:
    """Future outcome of a launch started with ProcessExecutor.start().

    Cancelling stops the process and closes its streams; the future then
    resolves to ProcessCancelledError.
    """

    def __init__(self, future: concurrent.futures.Future, waiter: WaitForProcess) -> None:
        self._future = future
        self._waiter = waiter
        self._cancelled = False

    def __repr__(self) -> str:
        return f"ProcessFuture({self._waiter!r}, state={self._waiter.state.value})"

    def result(self, timeout: float | None = None) -> ProcessResult:
        """Wait for the outcome.

        Raises:
            concurrent.futures.TimeoutError: If the launch did not finish in
                time (the process keeps running)
        """
        return self._future.result(timeout)

    def exception(self, timeout: float | None = None) -> BaseException | None:
        return self._future.exception(timeout)

    def cancel(self) -> bool:
        """Stop the process unless it has already finished.

        Returns:
            Whether the launch was cancelled; if so result() raises
            ProcessCancelledError
        """
        if self._future.done() or not self._waiter.cancel():
            return False
        self._cancelled = True
        return True

    def cancelled(self) -> bool:
        return self._cancelled

    def done(self) -> bool:
        return self._future.done()

    def add_done_callback(self, fn: Callable[[ProcessFuture], Any]) -> None:
        self._future.add_done_callback(lambda _: fn(self))


@dataclass(frozen=True)
class StartedProcess:
    """A started process and the future of its outcome.

    Attributes:
        process: The running process
        future: Resolves to the ProcessResult once the process finished
    """

    process: subprocess.Popen
    future: ProcessFuture

    @property
    def pid(self) -> int:
        return self.process.pid


class ProcessExecutor:
    """Configure and run external processes.

    Configuration methods return the executor itself so they can be chained.
    Defaults come from the PROCEXEC_* environment configuration.

    Example:
        ```python
        result = (
            ProcessExecutor("git", "status")
            .directory(repo)
            .read_output(True)
            .timeout(30)
            .exit_value_normal()
            .execute()
        )
        print(result.output_utf8())
        ```
    """

    def __init__(self, *command: str | os.PathLike | Iterable[str]) -> None:
        config = get_config()

        self._command: tuple[str, ...] = ()
        self._directory: Path | None = None
        self._environment: dict[str, str | None] = {}
        self._redirect_error_stream = config.redirect_error_stream
        self._allowed_exit_values: frozenset[int] | None = None
        self._timeout: float | None = None
        self._close_timeout: float | None = None
        self._stopper: ProcessStopper = DESTROY_STOPPER
        self._streams: ExecuteStreamHandler = PumpStreamHandler()
        self._read_output = False
        self._message_logger: MessageLogger = _MESSAGE_LOGGERS[config.message_level]
        self._listeners = CompositeProcessListener()

        if config.timeout is not None:
            self.timeout(config.timeout)
        if config.close_timeout is not None:
            self.close_timeout(config.close_timeout)
        if config.destroy_on_exit:
            self.destroy_on_exit()
        if command:
            self.command(*command)

    def __repr__(self) -> str:
        return f"ProcessExecutor({list(self._command)})"

    # =========================================================================
    # Command line, directory and environment
    # =========================================================================

    def command(self, *command: str | os.PathLike | Iterable[str]) -> ProcessExecutor:
        """Set the command line.

        Accepts either the arguments themselves or a single iterable of them.
        """
        if len(command) == 1 and not isinstance(command[0], (str, bytes, os.PathLike)):
            command = tuple(command[0])
        self._command = tuple(os.fspath(arg) for arg in command)
        return self

    def command_split(self, command_line: str) -> ProcessExecutor:
        """Set the command line by splitting it like a POSIX shell would."""
        return self.command(shlex.split(command_line))

    def directory(self, directory: str | os.PathLike | None) -> ProcessExecutor:
        """Set the working directory (None = inherit)."""
        self._directory = Path(directory) if directory is not None else None
        return self

    def environment(self, environment: Mapping[str, str | None]) -> ProcessExecutor:
        """Add variables to the environment overlay.

        A None value removes the variable from the inherited environment.
        """
        self._environment.update(environment)
        return self

    def environment_var(self, name: str, value: str | None) -> ProcessExecutor:
        self._environment[name] = value
        return self

    def redirect_error_stream(self, redirect: bool) -> ProcessExecutor:
        """Merge the child's stderr into its stdout."""
        self._redirect_error_stream = redirect
        return self

    # =========================================================================
    # Exit values and deadlines
    # =========================================================================

    def exit_value_any(self) -> ProcessExecutor:
        """Accept every exit value."""
        self._allowed_exit_values = None
        return self

    def exit_value_normal(self) -> ProcessExecutor:
        """Accept only exit value 0."""
        return self.exit_values(0)

    def exit_value(self, value: int | None) -> ProcessExecutor:
        """Accept a single exit value (None = any)."""
        if value is None:
            return self.exit_value_any()
        return self.exit_values(value)

    def exit_values(self, *values: int) -> ProcessExecutor:
        """Accept the given exit values (no values = any)."""
        self._allowed_exit_values = frozenset(values) if values else None
        return self

    def timeout(self, seconds: float | None) -> ProcessExecutor:
        """Set the deadline for execute() (None = wait forever).

        Raises:
            ValueError: If ``seconds`` is not positive
        """
        if seconds is not None and seconds <= 0:
            raise ValueError(f"Timeout must be positive, got {seconds}")
        self._timeout = seconds
        return self

    def close_timeout(self, seconds: float | None) -> ProcessExecutor:
        """Bound the time spent closing the streams (None = no bound)."""
        if seconds is not None and seconds <= 0:
            raise ValueError(f"Close timeout must be positive, got {seconds}")
        self._close_timeout = seconds
        return self

    def stopper(self, stopper: ProcessStopper | None) -> ProcessExecutor:
        """Set how the process is stopped on timeout or cancellation."""
        self._stopper = stopper if stopper is not None else DESTROY_STOPPER
        return self

    # =========================================================================
    # Streams
    # =========================================================================

    def streams(self, streams: ExecuteStreamHandler | None) -> ProcessExecutor:
        """Replace the stream handler (None = discard all output)."""
        self._streams = streams if streams is not None else PumpStreamHandler()
        return self

    def get_streams(self) -> ExecuteStreamHandler:
        return self._streams

    def _pumps(self) -> PumpStreamHandler:
        if not isinstance(self._streams, PumpStreamHandler):
            raise ValueError(
                f"Stream handler is not a PumpStreamHandler: {self._streams!r}"
            )
        return self._streams

    def redirect_input(self, source: Any) -> ProcessExecutor:
        """Feed ``source`` (a readable stream) to the child's stdin."""
        pumps = self._pumps()
        return self.streams(PumpStreamHandler(pumps.out, pumps.err, source))

    def redirect_output(self, sink: Any) -> ProcessExecutor:
        """Write the child's stdout to ``sink`` (None = discard)."""
        pumps = self._pumps()
        sink = sink if sink is not None else NULL_SINK
        return self.streams(PumpStreamHandler(sink, pumps.err, pumps.input))

    def redirect_error(self, sink: Any) -> ProcessExecutor:
        """Write the child's stderr to ``sink`` (None = discard).

        Turns off merging stderr into stdout.
        """
        pumps = self._pumps()
        sink = sink if sink is not None else NULL_SINK
        self.streams(PumpStreamHandler(pumps.out, sink, pumps.input))
        return self.redirect_error_stream(False)

    def redirect_output_also_to(self, sink: Any) -> ProcessExecutor:
        """Additionally write the child's stdout to ``sink``."""
        return self.streams(self._pumps().redirect_output_also_to(sink))

    def redirect_error_also_to(self, sink: Any) -> ProcessExecutor:
        """Additionally write the child's stderr to ``sink``.

        Turns off merging stderr into stdout.
        """
        self.streams(self._pumps().redirect_error_also_to(sink))
        return self.redirect_error_stream(False)

    def redirect_output_as_log(
        self, log: logging.Logger | None = None, level: int = logging.INFO
    ) -> ProcessExecutor:
        """Log each line of the child's stdout."""
        log = log or logger.getChild("stdout")
        return self.redirect_output(LoggerSink(log, level))

    def redirect_error_as_log(
        self, log: logging.Logger | None = None, level: int = logging.INFO
    ) -> ProcessExecutor:
        """Log each line of the child's stderr."""
        log = log or logger.getChild("stderr")
        return self.redirect_error(LoggerSink(log, level))

    def read_output(self, read: bool) -> ProcessExecutor:
        """Capture stdout into the ProcessResult."""
        self._read_output = read
        return self

    def message_logger(self, message_logger: MessageLogger) -> ProcessExecutor:
        self._message_logger = message_logger
        return self

    # =========================================================================
    # Listeners
    # =========================================================================

    def listener(self, listener: ProcessListener) -> ProcessExecutor:
        """Replace all listeners with ``listener``."""
        self._listeners.clear()
        return self.add_listener(listener)

    def add_listener(self, listener: ProcessListener) -> ProcessExecutor:
        self._listeners.add(listener)
        return self

    def remove_listener(self, listener: ProcessListener) -> ProcessExecutor:
        self._listeners.remove(listener)
        return self

    def remove_listeners(self, kind: type[ProcessListener]) -> ProcessExecutor:
        """Remove every listener of the given type."""
        self._listeners.remove_all(kind)
        return self

    def clear_listeners(self) -> ProcessExecutor:
        self._listeners.clear()
        return self

    def get_listeners(self) -> CompositeProcessListener:
        return self._listeners

    def destroyer(self, registry: ProcessRegistry) -> ProcessExecutor:
        """Destroy started processes when ``registry`` shuts down."""
        self.remove_listeners(DestroyerListener)
        return self.add_listener(DestroyerListener(registry))

    def destroy_on_exit(self) -> ProcessExecutor:
        """Destroy started processes when the Python interpreter exits."""
        return self.destroyer(get_registry())

    # =========================================================================
    # Execution
    # =========================================================================

    def attributes(self) -> ProcessAttributes:
        """Snapshot of the current configuration.

        Raises:
            ValueError: If no command has been set
        """
        return ProcessAttributes(
            command=self._command,
            directory=self._directory,
            environment=dict(self._environment),
            allowed_exit_values=self._allowed_exit_values,
        )

    def check_exit_value(self, result: ProcessResult) -> None:
        """Validate a result against the allowed exit values without launching.

        Raises:
            InvalidExitValueError: If the exit value is not allowed
        """
        check_exit(self.attributes(), result)

    def execute(self) -> ProcessResult:
        """Start the process and wait for it to finish.

        Returns:
            The process result

        Raises:
            ProcessInitError: If the process could not be started
            InvalidExitValueError: If the exit value is not allowed
            ProcessTimeoutError: If the deadline elapsed (the process has
                been asked to stop)
            ProcessCloseError: If the streams could not be closed
            KeyboardInterrupt: If interrupted while waiting (the process
                has been asked to stop)
        """
        waiter = self._start_internal()
        timeout = self._timeout
        if timeout is None:
            return waiter.call()

        executor = DaemonExecutor(f"WaitForProcess-{waiter.process.pid}")
        try:
            future = executor.submit(bind_task_context(waiter.call))
            try:
                return future.result(timeout=timeout)
            except concurrent.futures.TimeoutError:
                error = self._timeout_error(waiter, timeout)
                waiter.cancel(on_timeout=True)
                raise error from None
            except KeyboardInterrupt:
                waiter.cancel()
                raise
        finally:
            executor.shutdown(wait=False)

    def start(self) -> StartedProcess:
        """Start the process and wait for it in the background.

        The deadline is not applied; bound ``future.result()`` and cancel
        the future instead.

        Raises:
            ProcessInitError: If the process could not be started
        """
        waiter = self._start_internal()
        executor = DaemonExecutor(f"WaitForProcess-{waiter.process.pid}")
        try:
            future = executor.submit(bind_task_context(waiter.call))
        finally:
            executor.shutdown(wait=False)
        return StartedProcess(waiter.process, ProcessFuture(future, waiter))

    async def execute_async(self) -> ProcessResult:
        """Start the process and wait for it without blocking the event loop.

        Starting (including the before_start listeners) and waiting both run
        on worker threads. The deadline is applied with anyio.fail_after. On
        timeout or cancellation the process is stopped and its streams are
        closed before the exception propagates.

        Raises:
            ProcessTimeoutError: If the deadline elapsed
        """
        # Not abandoned on cancellation, so a started process always gets a waiter
        waiter = await anyio.to_thread.run_sync(bind_task_context(self._start_internal))
        timeout = self._timeout
        try:
            with anyio.fail_after(timeout):
                return await anyio.to_thread.run_sync(
                    bind_task_context(waiter.call), abandon_on_cancel=True
                )
        except TimeoutError:
            error = self._timeout_error(waiter, timeout)
            await self._clean_up_cancelled(waiter, on_timeout=True)
            raise error from None
        except anyio.get_cancelled_exc_class():
            await self._clean_up_cancelled(waiter, on_timeout=False)
            raise

    async def _clean_up_cancelled(self, waiter: WaitForProcess, on_timeout: bool) -> None:
        waiter.cancel(on_timeout=on_timeout)
        with anyio.CancelScope(shield=True):
            await anyio.to_thread.run_sync(bind_task_context(self._finish_cancelled), waiter)

    @staticmethod
    def _finish_cancelled(waiter: WaitForProcess) -> None:
        # The worker thread may never have entered call() if the task was
        # cancelled before it was handed over
        try:
            waiter.call()
        except WaiterBusyError:
            if not waiter.wait_done(DEFAULT_CANCEL_CLEANUP_TIMEOUT):
                logger.warning(
                    f"{waiter} did not finish within "
                    f"{format_seconds(DEFAULT_CANCEL_CLEANUP_TIMEOUT)} after cancellation"
                )
        except ProcessCancelledError:
            pass
        except ProcessExecError as e:
            logger.error(f"Failed to clean up cancelled {waiter}: {e}")

    def _timeout_error(self, waiter: WaitForProcess, timeout: float) -> ProcessTimeoutError:
        exit_value = waiter.exit_value()
        parts = [
            f"Timed out waiting for {waiter} to finish, timeout: {format_seconds(timeout)}"
        ]
        if exit_value is not None:
            parts.append(f", exit value: {exit_value}")
        add_exception_message_suffix(waiter.attributes, parts)
        return ProcessTimeoutError(
            "".join(parts),
            timeout,
            exit_value=exit_value,
            worker_stack=waiter.worker_stack(),
        )

    def _start_internal(self) -> WaitForProcess:
        # Listeners may still change this executor
        self._listeners.before_start(self)

        attributes = self.attributes()
        streams = self._streams
        out: io.BytesIO | None = None
        if self._read_output:
            if not isinstance(streams, PumpStreamHandler):
                raise ValueError(
                    f"Output can only be read with a PumpStreamHandler, got {streams!r}"
                )
            out = io.BytesIO()
            streams = streams.redirect_output_also_to(out)
        elif type(streams) is PumpStreamHandler:
            streams = streams.copy()

        self._message_logger.message(logger, self._executing_message(attributes))
        process = self._spawn(attributes, streams)
        self._message_logger.message(logger, f"Started {describe_process(process)}")

        try:
            streams.set_process_input_stream(process.stdin)
            streams.set_process_output_stream(process.stdout)
            if not self._redirect_error_stream:
                streams.set_process_error_stream(process.stderr)
            streams.start()
        except Exception:
            logger.error(f"Failed to attach streams of pid={process.pid}, destroying it")
            process.kill()
            process.wait()
            raise

        listeners = self._listeners.clone()
        closer: ProcessCloser
        if self._close_timeout is None:
            closer = StandardProcessCloser(streams)
        else:
            closer = TimeoutProcessCloser(streams, self._close_timeout)

        waiter = WaitForProcess(
            process,
            attributes,
            self._stopper,
            closer,
            out,
            listeners,
            self._message_logger,
        )
        listeners.after_start(process, self)
        return waiter

    def _spawn(
        self, attributes: ProcessAttributes, streams: ExecuteStreamHandler
    ) -> subprocess.Popen:
        try:
            return subprocess.Popen(
                list(attributes.command),
                bufsize=0,
                stdin=subprocess.PIPE if streams.wants_input else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT if self._redirect_error_stream else subprocess.PIPE,
                cwd=attributes.directory,
                env=self._build_env(attributes.environment),
            )
        except OSError as e:
            error_code = parse_error_code(e)
            if error_code is None:
                logger.error(f"Could not start process: {e!r}")
                raise
            directory = attributes.directory or Path.cwd()
            raise ProcessInitError(
                f"Could not execute {list(attributes.command)} in {directory}. "
                f"Error={error_code}, {e.strerror or e}",
                error_code,
            ) from e

    @staticmethod
    def _build_env(overlay: Mapping[str, str | None]) -> dict[str, str] | None:
        if not overlay:
            return None
        env = dict(os.environ)
        for name, value in overlay.items():
            if value is None:
                env.pop(name, None)
            else:
                env[name] = value
        return env

    @staticmethod
    def _executing_message(attributes: ProcessAttributes) -> str:
        parts = [f"Executing {list(attributes.command)}"]
        if attributes.directory is not None:
            parts.append(f" in {attributes.directory}")
        if attributes.environment:
            parts.append(f" with environment {dict(attributes.environment)}")
        parts.append(".")
        return "".join(parts)
