"""Process lifecycle listeners.

Provides:
- ProcessListener: base class with no-op hooks
- CompositeProcessListener: thread-safe ordered chain of listeners
- DestroyerListener: registers launches with a ProcessRegistry

Hook points, in order: before_start, after_start, after_finish, after_stop.
"""

from __future__ import annotations

import logging
import subprocess
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .executor import ProcessExecutor
    from .registry import ProcessRegistry
    from .runtime.types import ProcessResult

__all__ = [
    "ProcessListener",
    "CompositeProcessListener",
    "DestroyerListener",
]

logger = logging.getLogger(__name__)


class ProcessListener:
    """Event handler for process lifecycle events.

    Subclasses override the hooks they are interested in.
    """

    def before_start(self, executor: ProcessExecutor) -> None:
        """Invoked before the process is started; may modify ``executor``."""

    def after_start(self, process: subprocess.Popen, executor: ProcessExecutor) -> None:
        """Invoked after the process has started.

        Changing ``executor`` no longer affects the started process.
        """

    def after_finish(self, process: subprocess.Popen, result: ProcessResult) -> None:
        """Invoked after the process finished successfully.

        Raising here replaces the result as the outcome of the launch.
        """

    def after_stop(self, process: subprocess.Popen) -> None:
        """Invoked after the process has finished or was stopped, on every path."""


class CompositeProcessListener(ProcessListener):
    """Ordered chain of listeners.

    Mutations replace the internal tuple under a lock, so iteration always
    walks a consistent snapshot even while listeners are added or removed
    from other threads.

    A failing listener in before_start, after_start or after_stop does not
    prevent the remaining listeners from running. before_start re-raises the
    first failure once every listener ran (the launch is aborted), the other
    two only log. after_finish failures propagate immediately.
    """

    def __init__(self, children: list[ProcessListener] | None = None) -> None:
        self._children: tuple[ProcessListener, ...] = tuple(children or ())
        self._lock = threading.Lock()

    @property
    def children(self) -> tuple[ProcessListener, ...]:
        return self._children

    def add(self, listener: ProcessListener) -> None:
        with self._lock:
            self._children = self._children + (listener,)

    def remove(self, listener: ProcessListener) -> None:
        with self._lock:
            children = list(self._children)
            if listener in children:
                children.remove(listener)
            self._children = tuple(children)

    def remove_all(self, kind: type[ProcessListener]) -> None:
        """Remove every listener that is an instance of ``kind``."""
        with self._lock:
            self._children = tuple(c for c in self._children if not isinstance(c, kind))

    def clear(self) -> None:
        with self._lock:
            self._children = ()

    def clone(self) -> CompositeProcessListener:
        """Copy of this chain that is unaffected by later mutations."""
        return CompositeProcessListener(list(self._children))

    def __len__(self) -> int:
        return len(self._children)

    def __iter__(self):
        return iter(self._children)

    def before_start(self, executor: ProcessExecutor) -> None:
        first_error: Exception | None = None
        for child in self._children:
            try:
                child.before_start(executor)
            except Exception as e:
                logger.error(f"Listener {child!r} failed in before_start: {e!r}")
                if first_error is None:
                    first_error = e
        if first_error is not None:
            raise first_error

    def after_start(self, process: subprocess.Popen, executor: ProcessExecutor) -> None:
        for child in self._children:
            try:
                child.after_start(process, executor)
            except Exception as e:
                logger.error(f"Listener {child!r} failed in after_start: {e!r}")

    def after_finish(self, process: subprocess.Popen, result: ProcessResult) -> None:
        for child in self._children:
            child.after_finish(process, result)

    def after_stop(self, process: subprocess.Popen) -> None:
        for child in self._children:
            try:
                child.after_stop(process)
            except Exception as e:
                logger.error(f"Listener {child!r} failed in after_stop: {e!r}")


class DestroyerListener(ProcessListener):
    """Keep started processes in a registry until they stop.

    Attributes:
        registry: Registry destroying the processes on host shutdown
    """

    def __init__(self, registry: ProcessRegistry) -> None:
        self.registry = registry

    def after_start(self, process: subprocess.Popen, executor: ProcessExecutor) -> None:
        self.registry.add(process)

    def after_stop(self, process: subprocess.Popen) -> None:
        self.registry.remove(process)

    def __repr__(self) -> str:
        return f"DestroyerListener({self.registry!r})"
