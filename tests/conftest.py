"""Pytest 配置和 fixtures。"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from unittest import mock

import pytest

# 项目根目录
PROJECT_ROOT = Path(__file__).parent.parent

# 添加 src 目录到 Python 路径（开发时）
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

FIXTURES_DIR = Path(__file__).parent / "fixtures"
FAKE_CLI = FIXTURES_DIR / "fake_cli.py"


def fake_cli(*args: str) -> list[str]:
    """以 ``args`` 模式运行假子进程的命令行。"""
    return [sys.executable, str(FAKE_CLI), *args]


@pytest.fixture(autouse=True)
def clean_config():
    """每个测试都使用默认配置运行。"""
    from procexec.config import reload_config

    env = {k: v for k, v in os.environ.items() if not k.startswith("PROCEXEC_")}
    with mock.patch.dict(os.environ, env, clear=True):
        reload_config()
        yield
    reload_config()


@pytest.fixture
def project_root() -> Path:
    return PROJECT_ROOT


@pytest.fixture
def src_dir() -> Path:
    return SRC_DIR


@pytest.fixture
def cli():
    """假子进程命令行构造器: ``cli("exit", "3")``。"""
    return fake_cli
