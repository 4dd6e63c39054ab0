"""Background task helpers.

This module provides:
- DaemonExecutor: runs each submitted task on its own daemon thread
- bind_task_context: hands the caller's log context over to a background task
- LogContextFilter: renders the bound log context into log records

Key design points:
- Daemon threads never postpone interpreter shutdown, so the process
  registry's atexit hook still runs while a waiter is blocked
- The log context lives in structlog's contextvars store; new threads start
  with an empty context, so it is captured at hand-off and installed explicitly
"""

from __future__ import annotations

import functools
import logging
import threading
from collections.abc import Callable
from concurrent.futures import Executor, Future
from typing import Any, TypeVar

import structlog

__all__ = [
    "DaemonExecutor",
    "LogContextFilter",
    "bind_task_context",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")


def bind_task_context(fn: Callable[..., T]) -> Callable[..., T]:
    """Wrap a task so the caller's log context is visible inside it.

    The context map is captured now; the wrapper installs it before the task
    runs and clears it afterwards.

    Args:
        fn: Task to run on another thread

    Returns:
        Wrapped task
    """
    context = structlog.contextvars.get_contextvars()

    @functools.wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> T:
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(**context)
        try:
            return fn(*args, **kwargs)
        finally:
            structlog.contextvars.clear_contextvars()

    return wrapper


class LogContextFilter(logging.Filter):
    """Add the bound log context to each record as ``log_context``."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = structlog.contextvars.get_contextvars()
        if context:
            record.log_context = " " + " ".join(f"{k}={v}" for k, v in sorted(context.items()))
        else:
            record.log_context = ""
        return True


class DaemonExecutor(Executor):
    """Executor running every task on a dedicated daemon thread.

    Example:
        executor = DaemonExecutor("WaitForProcess-1234")
        try:
            future = executor.submit(task)
            result = future.result(timeout=5)
        finally:
            executor.shutdown(wait=False)
    """

    def __init__(self, name: str) -> None:
        self._name = name
        self._threads: list[threading.Thread] = []
        self._shutdown = False
        self._lock = threading.Lock()

    def submit(self, fn: Callable[..., T], /, *args: Any, **kwargs: Any) -> Future[T]:
        with self._lock:
            if self._shutdown:
                raise RuntimeError("cannot schedule new futures after shutdown")

            future: Future[T] = Future()
            thread = threading.Thread(
                target=self._work,
                args=(future, fn, args, kwargs),
                name=self._name if not self._threads else f"{self._name}-{len(self._threads)}",
                daemon=True,
            )
            self._threads.append(thread)
            thread.start()
            return future

    @staticmethod
    def _work(future: Future, fn: Callable[..., Any], args: tuple, kwargs: dict) -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            result = fn(*args, **kwargs)
        except BaseException as e:
            future.set_exception(e)
        else:
            future.set_result(result)

    def shutdown(self, wait: bool = True, *, cancel_futures: bool = False) -> None:
        """Refuse new tasks and optionally join the running ones.

        Running threads cannot be interrupted; tasks that need to end early
        must be stopped through their own cancellation mechanism.
        """
        with self._lock:
            self._shutdown = True
            threads = list(self._threads)
            self._threads.clear()

        if wait:
            for thread in threads:
                thread.join()

    @property
    def threads(self) -> list[threading.Thread]:
        with self._lock:
            return list(self._threads)
