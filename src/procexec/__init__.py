"""procexec - run external processes with deadlines, stream relaying and exit checks.

Environment variables:
    PROCEXEC_TIMEOUT: Default deadline in seconds (default none)
    PROCEXEC_DESTROY_ON_EXIT: Destroy running processes on exit (default false)
    PROCEXEC_REDIRECT_ERROR_STREAM: Merge stderr into stdout (default true)

Usage:
    from procexec import ProcessExecutor

    result = ProcessExecutor("ls", "-l").read_output(True).execute()
"""

__version__ = "0.1.0"

from .errors import (
    InvalidExitValueError,
    InvalidOutputError,
    InvalidResultError,
    OutputNotReadError,
    ProcessCancelledError,
    ProcessCloseError,
    ProcessExecError,
    ProcessInitError,
    ProcessTimeoutError,
)
from .executor import ProcessExecutor, ProcessFuture, StartedProcess
from .listeners import CompositeProcessListener, DestroyerListener, ProcessListener
from .registry import ProcessRegistry, get_registry
from .runtime import (
    LoggerSink,
    MessageLoggers,
    NopProcessStopper,
    ProcessOutput,
    ProcessResult,
    PumpStreamHandler,
)

__all__ = [
    "__version__",
    "CompositeProcessListener",
    "DestroyerListener",
    "InvalidExitValueError",
    "InvalidOutputError",
    "InvalidResultError",
    "LoggerSink",
    "MessageLoggers",
    "NopProcessStopper",
    "OutputNotReadError",
    "ProcessCancelledError",
    "ProcessCloseError",
    "ProcessExecError",
    "ProcessExecutor",
    "ProcessFuture",
    "ProcessInitError",
    "ProcessListener",
    "ProcessOutput",
    "ProcessRegistry",
    "ProcessResult",
    "ProcessTimeoutError",
    "PumpStreamHandler",
    "StartedProcess",
    "get_registry",
]
