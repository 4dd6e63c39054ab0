"""procexec exception hierarchy.

All failures a launch can deliver derive from ProcessExecError:

- ProcessInitError: the process could not be spawned
- InvalidExitValueError: the process finished with a disallowed exit value
- ProcessTimeoutError: the deadline elapsed before the process finished
- ProcessCancelledError: the launch was cancelled through its future
- ProcessCloseError: one or more stream handles failed to close
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .runtime.types import ProcessResult

__all__ = [
    "ProcessExecError",
    "ProcessInitError",
    "InvalidResultError",
    "InvalidExitValueError",
    "InvalidOutputError",
    "ProcessTimeoutError",
    "ProcessCancelledError",
    "ProcessCloseError",
    "OutputNotReadError",
    "parse_error_code",
]

# "[Errno 2] No such file or directory" (Python) or "error=2, No such file" (JVM style)
_ERROR_CODE_PATTERNS = (
    re.compile(r"\[Errno (-?\d+)\]"),
    re.compile(r"error=(-?\d+),"),
)


class ProcessExecError(Exception):
    """Base exception for procexec."""
    pass


class ProcessInitError(ProcessExecError):
    """The process could not be started.

    Attributes:
        error_code: OS error code reported by the spawn primitive
    """

    def __init__(self, message: str, error_code: int) -> None:
        self.error_code = error_code
        super().__init__(message)


class InvalidResultError(ProcessExecError):
    """The process finished but its result was rejected.

    Attributes:
        result: The rejected process result
    """

    def __init__(self, message: str, result: ProcessResult) -> None:
        self.result = result
        super().__init__(message)

    @property
    def exit_value(self) -> int:
        return self.result.exit_value


class InvalidExitValueError(InvalidResultError):
    """The exit value was not in the allowed set."""
    pass


class InvalidOutputError(InvalidResultError):
    """The output was rejected (raised by listeners validating output)."""
    pass


class ProcessTimeoutError(ProcessExecError):
    """The process did not finish before the deadline.

    The process has been asked to stop when this is raised.

    Attributes:
        timeout: Declared deadline in seconds
        exit_value: Exit value if the process had already exited, else None
        worker_stack: Formatted stack of the waiting thread, if it was captured
    """

    def __init__(
        self,
        message: str,
        timeout: float,
        exit_value: int | None = None,
        worker_stack: list[str] | None = None,
    ) -> None:
        self.timeout = timeout
        self.exit_value = exit_value
        self.worker_stack = worker_stack
        super().__init__(message)


class ProcessCancelledError(ProcessExecError):
    """The launch was cancelled and the process has been asked to stop."""
    pass


class ProcessCloseError(ProcessExecError):
    """Closing the process streams failed.

    Attributes:
        errors: Every close failure, in the order the streams were closed
    """

    def __init__(self, message: str, errors: list[BaseException] | None = None) -> None:
        self.errors = list(errors or [])
        super().__init__(message)


class OutputNotReadError(ProcessExecError):
    """Output was requested from a result launched without output capture."""
    pass


def parse_error_code(error: BaseException) -> int | None:
    """Extract the OS error code of a spawn failure.

    Args:
        error: Exception raised by the spawn primitive

    Returns:
        The error code, or None if the failure does not carry one
    """
    errno = getattr(error, "errno", None)
    if isinstance(errno, int):
        return errno

    message = str(error)
    for pattern in _ERROR_CODE_PATTERNS:
        # The innermost cause is reported last
        matches = pattern.findall(message)
        if matches:
            return int(matches[-1])
    return None
