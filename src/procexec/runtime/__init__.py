"""Runtime components of a single launch.

Pumps relay the standard streams, the waiter drives the process to one
outcome, stoppers and closers tear it down.
"""

from __future__ import annotations

from .closers import ProcessCloser, StandardProcessCloser, TimeoutProcessCloser
from .pumps import ExecuteStreamHandler, InputStreamPump, PumpStreamHandler, StreamPump
from .stoppers import (
    DESTROY_STOPPER,
    NOP_STOPPER,
    DestroyProcessStopper,
    NopProcessStopper,
    ProcessStopper,
)
from .streams import NULL_SINK, LineSink, LoggerSink, NullSink, TeeSink, TextSink
from .types import ProcessAttributes, ProcessOutput, ProcessResult
from .waiter import MessageLogger, MessageLoggers, WaiterBusyError, WaitForProcess, WaitState

__all__ = [
    "DESTROY_STOPPER",
    "NOP_STOPPER",
    "NULL_SINK",
    "DestroyProcessStopper",
    "ExecuteStreamHandler",
    "InputStreamPump",
    "LineSink",
    "LoggerSink",
    "MessageLogger",
    "MessageLoggers",
    "NopProcessStopper",
    "NullSink",
    "ProcessAttributes",
    "ProcessCloser",
    "ProcessOutput",
    "ProcessResult",
    "ProcessStopper",
    "PumpStreamHandler",
    "StandardProcessCloser",
    "StreamPump",
    "TeeSink",
    "TextSink",
    "TimeoutProcessCloser",
    "WaitForProcess",
    "WaiterBusyError",
    "WaitState",
]
