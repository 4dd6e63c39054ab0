"""进程注册表：解释器退出时销毁仍在运行的进程。

- 首个进程登记时注册 atexit 钩子
- 最后一个进程注销时撤销钩子，从未使用 destroy-on-exit 的程序不会注册钩子
"""

from __future__ import annotations

import atexit
import logging
import subprocess
import threading

__all__ = ["ProcessRegistry", "get_registry"]

logger = logging.getLogger(__name__)


class ProcessRegistry:
    """宿主进程退出时需要销毁的进程集合（加锁保护）。

    Example:
        ```python
        registry = get_registry()
        registry.add(process)
        ...
        registry.remove(process)
        ```

    关闭开始后，新登记的进程会被立即销毁，注销操作被忽略。
    """

    def __init__(self) -> None:
        self._processes: list[subprocess.Popen] = []
        self._lock = threading.Lock()
        self._hook_armed = False
        self._shutting_down = False

    def __repr__(self) -> str:
        return f"ProcessRegistry(size={self.size}, shutting_down={self._shutting_down})"

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._processes)

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down

    @property
    def hook_armed(self) -> bool:
        return self._hook_armed

    def add(self, process: subprocess.Popen) -> bool:
        """登记进程。

        Returns:
            True 表示已登记；False 表示正在关闭，进程已被立即销毁
        """
        with self._lock:
            if not self._shutting_down:
                if not self._processes:
                    self._arm()
                if process not in self._processes:
                    self._processes.append(process)
                return True

        logger.warning(f"Shutdown in progress, destroying pid={process.pid} immediately")
        self._destroy(process)
        return False

    def remove(self, process: subprocess.Popen) -> bool:
        """注销进程。

        Returns:
            进程之前是否已登记
        """
        with self._lock:
            if self._shutting_down:
                return False
            try:
                self._processes.remove(process)
            except ValueError:
                return False
            if not self._processes:
                self._disarm()
            return True

    def run_shutdown(self) -> int:
        """销毁所有已登记的进程。

        只有第一次调用会执行。

        Returns:
            被销毁的进程数量
        """
        with self._lock:
            if self._shutting_down:
                return 0
            self._shutting_down = True
            processes = list(self._processes)
            self._processes.clear()

        if processes:
            logger.info(f"Destroying {len(processes)} running process(es)")
        for process in processes:
            self._destroy(process)
        return len(processes)

    def _arm(self) -> None:
        if not self._hook_armed:
            atexit.register(self.run_shutdown)
            self._hook_armed = True

    def _disarm(self) -> None:
        if self._hook_armed:
            atexit.unregister(self.run_shutdown)
            self._hook_armed = False

    @staticmethod
    def _destroy(process: subprocess.Popen) -> None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
        except Exception as e:
            logger.error(f"Failed to destroy pid={process.pid}: {e!r}")


# 全局注册表实例（延迟创建）
_registry: ProcessRegistry | None = None
_registry_lock = threading.Lock()


def get_registry() -> ProcessRegistry:
    """获取全局注册表实例。"""
    global _registry
    with _registry_lock:
        if _registry is None:
            _registry = ProcessRegistry()
        return _registry
