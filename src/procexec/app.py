"""procexec 命令行入口。

运行一条命令，并将其 stdout/stderr 转发到当前进程:

    procexec --timeout 30 --exit-value 0 -- make test

退出码: 子进程的退出值；超时为 124；命令无法启动为 127；退出值不被允许为 1。
"""

from __future__ import annotations

import argparse
import logging
import sys

from .config import Config, get_config
from .errors import InvalidExitValueError, ProcessInitError, ProcessTimeoutError
from .executor import ProcessExecutor
from .runtime.stoppers import NOP_STOPPER
from .runtime.tasks import LogContextFilter

__all__ = ["configure_logging", "build_parser", "run", "main"]

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s%(log_context)s"

EXIT_TIMEOUT = 124
EXIT_CANNOT_EXECUTE = 127
EXIT_INVALID = 1


def configure_logging(config: Config) -> None:
    """配置日志输出。

    root logger（第三方库）保持 WARNING，只对 procexec 命名空间启用配置的级别。
    """
    if config.log_debug and config.log_file:
        # LOG_DEBUG 模式：输出到临时文件
        handler: logging.Handler = logging.FileHandler(config.log_file, encoding="utf-8")
        log_level = logging.DEBUG
    else:
        handler = logging.StreamHandler(sys.stderr)
        log_level = logging.INFO

    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(LogContextFilter())

    logging.basicConfig(
        level=logging.WARNING,
        handlers=[handler],
    )
    logging.getLogger("procexec").setLevel(log_level)


def _parse_env(value: str) -> tuple[str, str]:
    name, sep, env_value = value.partition("=")
    if not sep or not name:
        raise argparse.ArgumentTypeError(f"expected NAME=VALUE, got {value!r}")
    return name, env_value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="procexec",
        description="Run a command with a deadline and exit value check.",
    )
    parser.add_argument("--timeout", type=float, help="seconds before the command is stopped")
    parser.add_argument(
        "--close-timeout", type=float, help="seconds to wait for the output streams to close"
    )
    parser.add_argument(
        "--exit-value",
        type=int,
        action="append",
        dest="exit_values",
        help="allowed exit value (repeatable, default: any)",
    )
    parser.add_argument("--cwd", help="working directory of the command")
    parser.add_argument(
        "--env", type=_parse_env, action="append", default=[], metavar="NAME=VALUE"
    )
    parser.add_argument("--unset", action="append", default=[], metavar="NAME")
    parser.add_argument(
        "--no-destroy", action="store_true", help="leave the command running on timeout"
    )
    parser.add_argument(
        "--destroy-on-exit",
        action="store_true",
        help="destroy the command if procexec itself exits",
    )
    parser.add_argument("command", nargs=argparse.REMAINDER)
    return parser


def build_executor(args: argparse.Namespace) -> ProcessExecutor:
    command = list(args.command)
    if command and command[0] == "--":
        command = command[1:]

    executor = (
        ProcessExecutor(command)
        .redirect_output(sys.stdout)
        .redirect_error(sys.stderr)
        .exit_values(*(args.exit_values or ()))
        .directory(args.cwd)
    )
    if args.timeout is not None:
        executor.timeout(args.timeout)
    if args.close_timeout is not None:
        executor.close_timeout(args.close_timeout)
    for name, value in args.env:
        executor.environment_var(name, value)
    for name in args.unset:
        executor.environment_var(name, None)
    if args.no_destroy:
        executor.stopper(NOP_STOPPER)
    if args.destroy_on_exit:
        executor.destroy_on_exit()
    return executor


def run(argv: list[str] | None = None) -> int:
    """解析命令行并运行命令，返回退出码。"""
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command or args.command == ["--"]:
        parser.error("no command given")

    executor = build_executor(args)
    try:
        result = executor.execute()
    except ProcessInitError as e:
        logger.error(str(e))
        return EXIT_CANNOT_EXECUTE
    except ProcessTimeoutError as e:
        logger.error(str(e))
        return EXIT_TIMEOUT
    except InvalidExitValueError as e:
        logger.error(str(e))
        return EXIT_INVALID

    if result.exit_value < 0:
        # 被信号终止
        return 128 - result.exit_value
    return result.exit_value


def main() -> None:
    """主入口点。"""
    configure_logging(get_config())
    sys.exit(run())


if __name__ == "__main__":
    main()
