"""procexec 环境变量配置管理。

环境变量:
    PROCEXEC_TIMEOUT: 默认超时时间（秒）
        - 未设置/空/无效 = 不限时 (默认)

    PROCEXEC_CLOSE_TIMEOUT: 关闭进程流的宽限时间（秒）
        - 未设置/空/无效 = 一直等到流关闭 (默认)

    PROCEXEC_DESTROY_ON_EXIT: Python 退出时销毁仍在运行的进程
        - true/1/yes = 开启
        - false/0/no = 关闭 (默认)

    PROCEXEC_REDIRECT_ERROR_STREAM: 将 stderr 合并到 stdout
        - true/1/yes = 开启 (默认)
        - false/0/no = 关闭

    PROCEXEC_MESSAGE_LEVEL: 生命周期消息的日志级别
        - debug (默认) / info / none

    PROCEXEC_LOG_DEBUG: 日志调试模式
        - true/1/yes = 开启 (以 DEBUG 级别输出到临时文件)
        - false/0/no = 关闭 (默认，日志输出到 stderr)
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path

__all__ = ["Config", "MessageLevel", "load_config", "get_config", "reload_config"]


class MessageLevel(Enum):
    """生命周期消息的日志级别。"""

    DEBUG = "debug"
    INFO = "info"
    NONE = "none"

    @classmethod
    def from_string(cls, value: str) -> "MessageLevel":
        """解析日志级别，无效值返回 DEBUG。"""
        value = value.lower().strip()
        for level in cls:
            if level.value == value:
                return level
        return cls.DEBUG


def _parse_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_seconds(value: str | None) -> float | None:
    """解析正数秒数，其他值视为未设置。"""
    if not value or not value.strip():
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    if seconds <= 0:
        return None
    return seconds


@dataclass
class Config:
    """procexec 配置。

    Attributes:
        timeout: 默认超时时间（秒，None = 不限时）
        close_timeout: 关闭流的宽限时间（秒，None = 不限时）
        destroy_on_exit: 是否将启动的进程登记到进程注册表
        redirect_error_stream: 是否将 stderr 合并到 stdout
        message_level: 生命周期消息的日志级别
        log_debug: 日志调试模式（输出到临时文件）
        log_file: 日志文件路径（log_debug 开启时设置）
    """

    timeout: float | None = None
    close_timeout: float | None = None
    destroy_on_exit: bool = False
    redirect_error_stream: bool = True
    message_level: MessageLevel = MessageLevel.DEBUG
    log_debug: bool = False
    log_file: str | None = None

    def __repr__(self) -> str:
        return (
            f"Config(timeout={self.timeout}, "
            f"close_timeout={self.close_timeout}, "
            f"destroy_on_exit={self.destroy_on_exit}, "
            f"redirect_error_stream={self.redirect_error_stream}, "
            f"message_level={self.message_level.value}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file})"
        )


def _generate_log_file_path() -> str:
    """生成日志文件路径。

    Returns:
        临时目录下带时间戳的日志文件绝对路径
    """
    # 使用系统临时目录下的 procexec 子目录
    log_dir = Path(tempfile.gettempdir()) / "procexec"
    log_dir.mkdir(parents=True, exist_ok=True)

    # 生成带时间戳的文件名
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"procexec_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """从环境变量加载配置。"""
    log_debug = _parse_bool(os.environ.get("PROCEXEC_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        timeout=_parse_seconds(os.environ.get("PROCEXEC_TIMEOUT")),
        close_timeout=_parse_seconds(os.environ.get("PROCEXEC_CLOSE_TIMEOUT")),
        destroy_on_exit=_parse_bool(os.environ.get("PROCEXEC_DESTROY_ON_EXIT"), default=False),
        redirect_error_stream=_parse_bool(
            os.environ.get("PROCEXEC_REDIRECT_ERROR_STREAM"), default=True
        ),
        message_level=MessageLevel.from_string(os.environ.get("PROCEXEC_MESSAGE_LEVEL") or ""),
        log_debug=log_debug,
        log_file=log_file,
    )


# 全局配置实例（延迟加载）
_config: Config | None = None


def get_config() -> Config:
    """获取全局配置实例。"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """重新加载配置（用于测试）。"""
    global _config
    _config = load_config()
    return _config
