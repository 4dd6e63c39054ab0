"""Strategies for stopping a process on timeout or cancellation.

- DestroyProcessStopper: kill the process (default)
- NopProcessStopper: leave the process running

A stopper only requests termination: it never waits for the process to die
and never raises for a process that has already exited.
"""

from __future__ import annotations

import logging
import subprocess
from abc import ABC, abstractmethod

__all__ = [
    "ProcessStopper",
    "DestroyProcessStopper",
    "NopProcessStopper",
    "DESTROY_STOPPER",
    "NOP_STOPPER",
]

logger = logging.getLogger(__name__)


class ProcessStopper(ABC):
    """Stops a running process."""

    @abstractmethod
    def stop(self, process: subprocess.Popen) -> None:
        """Request termination of ``process``."""


class DestroyProcessStopper(ProcessStopper):
    """Forcefully kill the process without waiting for it to exit."""

    def stop(self, process: subprocess.Popen) -> None:
        try:
            process.kill()
            logger.debug(f"Sent kill to pid={process.pid}")
        except ProcessLookupError:
            # Process already exited
            logger.debug(f"Process already exited pid={process.pid}")
        except OSError as e:
            logger.warning(f"Error killing process pid={process.pid}: {e}")

    def __repr__(self) -> str:
        return "DestroyProcessStopper()"


class NopProcessStopper(ProcessStopper):
    """Leave the process running."""

    def stop(self, process: subprocess.Popen) -> None:
        pass

    def __repr__(self) -> str:
        return "NopProcessStopper()"


DESTROY_STOPPER = DestroyProcessStopper()
NOP_STOPPER = NopProcessStopper()
