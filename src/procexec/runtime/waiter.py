"""Waiting for a launched process and assembling its outcome.

WaitForProcess drives one launch from "running" to exactly one outcome:

1. Block until the process exits (or the launch is cancelled)
2. On the way out, stop the process unless it finished, then always close
   its streams
3. Build the ProcessResult from the exit value and captured output
4. Validate the exit value
5. Notify after_finish (a failure here replaces the result)
6. Always notify after_stop

It runs inline on the caller's thread when no deadline is set, otherwise on
a background thread that the caller races against the deadline.
"""

from __future__ import annotations

import io
import logging
import subprocess
import sys
import threading
import traceback
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from ..errors import ProcessCancelledError
from .closers import ProcessCloser
from .exit_check import add_exception_message_suffix, check_exit
from .stoppers import ProcessStopper
from .types import ProcessAttributes, ProcessOutput, ProcessResult

if TYPE_CHECKING:
    from ..listeners import ProcessListener

__all__ = [
    "MessageLogger",
    "MessageLoggers",
    "WaitForProcess",
    "WaitState",
    "WaiterBusyError",
    "describe_process",
]

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.05  # seconds between cancellation checks while waiting


@dataclass(frozen=True)
class MessageLogger:
    """Logs lifecycle messages ("Executing ...", "... stopped with ...").

    Attributes:
        level: Logging level of the messages (None = silent)
    """

    level: int | None = logging.DEBUG

    def message(self, log: logging.Logger, msg: str) -> None:
        if self.level is not None:
            log.log(self.level, msg)


class MessageLoggers:
    """Predefined message loggers."""

    NOP = MessageLogger(None)
    DEBUG = MessageLogger(logging.DEBUG)
    INFO = MessageLogger(logging.INFO)


class WaitState(str, Enum):
    """Lifecycle state of a waited-for process."""

    RUNNING = "running"
    FINISHED = "finished"
    DESTROYED_ON_TIMEOUT = "destroyed_on_timeout"
    DESTROYED_ON_CANCEL = "destroyed_on_cancel"


class WaiterBusyError(RuntimeError):
    """call() was entered while another thread is already running it."""


def describe_process(process: subprocess.Popen) -> str:
    return f"Process(pid={process.pid})"


class WaitForProcess:
    """Wait for a process and turn its termination into one outcome.

    Attributes:
        process: The launched process
        attributes: Launch configuration snapshot
        stopper: Invoked when the process did not finish by itself
        closer: Invoked exactly once, on every path
        out: Captured output buffer (None if output is not read)
        listener: Listener chain frozen for this launch
        message_logger: Lifecycle message logger
    """

    def __init__(
        self,
        process: subprocess.Popen,
        attributes: ProcessAttributes,
        stopper: ProcessStopper,
        closer: ProcessCloser,
        out: io.BytesIO | None,
        listener: ProcessListener,
        message_logger: MessageLogger = MessageLoggers.DEBUG,
    ) -> None:
        self.process = process
        self.attributes = attributes
        self.stopper = stopper
        self.closer = closer
        self.out = out
        self.listener = listener
        self.message_logger = message_logger
        self.poll_interval = DEFAULT_POLL_INTERVAL

        self.state = WaitState.RUNNING
        self._cancel_requested = threading.Event()
        self._cancel_reason = WaitState.DESTROYED_ON_CANCEL
        self._done = threading.Event()
        self._state_lock = threading.Lock()
        self._entered = False
        self._worker: threading.Thread | None = None

    def __repr__(self) -> str:
        return describe_process(self.process)

    def cancel(self, on_timeout: bool = False) -> bool:
        """Ask the waiter to stop the process and finish.

        Args:
            on_timeout: Whether the cancellation comes from an elapsed deadline

        Returns:
            Whether the cancellation took effect; False once the process
            has been seen to finish
        """
        with self._state_lock:
            if self.state is not WaitState.RUNNING:
                return False
            if on_timeout:
                self._cancel_reason = WaitState.DESTROYED_ON_TIMEOUT
            self._cancel_requested.set()
            return True

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested.is_set()

    def call(self) -> ProcessResult:
        """Run the waiting sequence.

        Returns:
            The validated process result

        Raises:
            ProcessCancelledError: If the launch was cancelled
            InvalidExitValueError: If the exit value is not allowed
            ProcessCloseError: If the streams could not be closed
            WaiterBusyError: If call() has already been entered
            Exception: Whatever the after_finish listener raised
        """
        with self._state_lock:
            if self._entered:
                raise WaiterBusyError(f"{self} is already being waited for")
            self._entered = True
        self._worker = threading.current_thread()
        try:
            finished = False
            try:
                exit_value = self._wait_for_exit()
                with self._state_lock:
                    # A cancel that won the race against the exit decides the outcome
                    if self._cancel_requested.is_set():
                        raise self._cancelled_error()
                    finished = True
                    self.state = WaitState.FINISHED
                self.message_logger.message(
                    logger, f"{self} stopped with exit value {exit_value}"
                )
            finally:
                if not finished:
                    if self.state is WaitState.RUNNING:
                        self.state = self._cancel_reason
                    self.message_logger.message(logger, f"Stopping {self}...")
                    self.stopper.stop(self.process)
                self.closer.close(self.process)

            captured = None
            if self.out is not None:
                captured = ProcessOutput(data=self.out.getvalue())
            result = ProcessResult(exit_value=exit_value, captured=captured)
            check_exit(self.attributes, result)
            self.listener.after_finish(self.process, result)
            return result
        finally:
            # Listeners are notified whether the process finished or got cancelled
            try:
                self.listener.after_stop(self.process)
            finally:
                self._worker = None
                self._done.set()

    def wait_done(self, timeout: float | None = None) -> bool:
        """Block until call() has completed its sequence.

        Returns:
            Whether call() completed within ``timeout``
        """
        return self._done.wait(timeout)

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def _wait_for_exit(self) -> int:
        while True:
            try:
                return self.process.wait(timeout=self.poll_interval)
            except subprocess.TimeoutExpired:
                if self._cancel_requested.is_set():
                    raise self._cancelled_error() from None

    def _cancelled_error(self) -> ProcessCancelledError:
        parts = [f"Waiting for {self} was cancelled"]
        add_exception_message_suffix(self.attributes, parts)
        return ProcessCancelledError("".join(parts))

    def worker_stack(self) -> list[str] | None:
        """Formatted stack of the thread currently running call(), if any."""
        worker = self._worker
        if worker is None or worker.ident is None:
            return None
        frame = sys._current_frames().get(worker.ident)
        if frame is None:
            return None
        return traceback.format_stack(frame)

    def exit_value(self) -> int | None:
        """Exit value if the process has exited, else None."""
        return self.process.poll()
