"""Strategies for tearing down the streams of a finished process.

- StandardProcessCloser: stop the pumps, then close stdin, stdout and stderr
- TimeoutProcessCloser: the same, bounded by a grace period

Key design points:
- Every stream gets a close attempt even if an earlier one failed; the
  failures are aggregated into one ProcessCloseError
- BrokenPipeError while closing the child's stdin is benign: the buffered
  write failed because the process already exited and closed its end
- The timed variant logs a warning on expiry instead of failing, and still
  flushes the pump targets so data read so far is available
"""

from __future__ import annotations

import concurrent.futures
import logging
import subprocess
from abc import ABC, abstractmethod

from ..errors import ProcessCloseError
from .exit_check import format_seconds
from .pumps import ExecuteStreamHandler
from .tasks import DaemonExecutor, bind_task_context

__all__ = [
    "ProcessCloser",
    "StandardProcessCloser",
    "TimeoutProcessCloser",
]

logger = logging.getLogger(__name__)


class ProcessCloser(ABC):
    """Closes the streams of a process after it has stopped or finished."""

    @abstractmethod
    def close(self, process: subprocess.Popen) -> None:
        """Stop relaying and close the process streams.

        Raises:
            ProcessCloseError: If closing failed
        """


class StandardProcessCloser(ProcessCloser):
    """Stop the stream handler, then close the three process streams.

    Attributes:
        streams: Stream handler of the launch (None if the launch has none)
    """

    def __init__(self, streams: ExecuteStreamHandler | None) -> None:
        self.streams = streams

    def close(self, process: subprocess.Popen) -> None:
        if self.streams is not None:
            self.streams.stop()
        self._close_streams(process)

    def _close_streams(self, process: subprocess.Popen) -> None:
        errors: list[BaseException] = []

        if process.stdin is not None:
            try:
                process.stdin.close()
            except BrokenPipeError as e:
                logger.debug(f"Process input stream already closed by the process: {e!r}")
            except OSError as e:
                logger.error(f"Failed to close process input stream: {e!r}")
                errors.append(e)

        if process.stdout is not None:
            try:
                process.stdout.close()
            except OSError as e:
                logger.error(f"Failed to close process output stream: {e!r}")
                errors.append(e)

        if process.stderr is not None:
            try:
                process.stderr.close()
            except OSError as e:
                logger.error(f"Failed to close process error stream: {e!r}")
                errors.append(e)

        if errors:
            raise ProcessCloseError(
                f"Failed to close {len(errors)} stream(s) of process pid={process.pid}: "
                + "; ".join(repr(e) for e in errors),
                errors,
            ) from errors[0]


class TimeoutProcessCloser(StandardProcessCloser):
    """StandardProcessCloser bounded by a grace period.

    Attributes:
        timeout: Seconds to wait for the streams to close
    """

    def __init__(self, streams: ExecuteStreamHandler | None, timeout: float) -> None:
        super().__init__(streams)
        self.timeout = timeout

    def close(self, process: subprocess.Popen) -> None:
        executor = DaemonExecutor(f"ProcessCloser-{process.pid}")
        try:
            future = executor.submit(bind_task_context(super().close), process)
            future.result(timeout=self.timeout)
        except concurrent.futures.TimeoutError:
            logger.warning(
                f"Could not close streams of pid={process.pid} in {format_seconds(self.timeout)}"
            )
        except ProcessCloseError:
            raise
        except Exception as e:
            raise ProcessCloseError(f"Could not close streams of pid={process.pid}", [e]) from e
        finally:
            # Make data received so far available even if the pumps are stuck
            if self.streams is not None:
                self.streams.flush()
            executor.shutdown(wait=False)
