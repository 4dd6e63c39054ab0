"""Command-line entry point tests."""

from __future__ import annotations

import logging
import os
from unittest import mock

import pytest

from procexec.app import (
    EXIT_CANNOT_EXECUTE,
    EXIT_INVALID,
    EXIT_TIMEOUT,
    build_executor,
    build_parser,
    configure_logging,
    run,
)
from procexec.config import Config
from procexec.listeners import DestroyerListener
from procexec.runtime.stoppers import NOP_STOPPER
from procexec.runtime.tasks import LogContextFilter


class TestParser:
    def test_options(self):
        args = build_parser().parse_args([
            "--timeout", "3",
            "--exit-value", "0",
            "--exit-value", "2",
            "--env", "A=1",
            "--unset", "B",
            "--no-destroy",
            "--destroy-on-exit",
            "--", "make", "-j", "4",
        ])
        executor = build_executor(args)
        attributes = executor.attributes()

        assert attributes.command == ("make", "-j", "4")
        assert attributes.allowed_exit_values == frozenset({0, 2})
        assert dict(attributes.environment) == {"A": "1", "B": None}
        assert executor._timeout == 3.0
        assert executor._stopper is NOP_STOPPER
        assert any(isinstance(l, DestroyerListener) for l in executor.get_listeners())

    def test_invalid_env(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--env", "novalue", "--", "ls"])

    def test_no_command(self):
        with pytest.raises(SystemExit):
            run([])


class TestRun:
    """Exit statuses of the command-line runner."""

    @pytest.mark.timeout(30)
    def test_child_exit_value(self, cli):
        assert run(["--", *cli("exit", "7")]) == 7

    @pytest.mark.timeout(30)
    def test_invalid_exit(self, cli):
        assert run(["--exit-value", "0", "--", *cli("exit", "7")]) == EXIT_INVALID

    @pytest.mark.timeout(30)
    def test_timeout(self, cli):
        command = cli("loop", "--duration", "10", "--quiet")
        assert run(["--timeout", "0.5", "--", *command]) == EXIT_TIMEOUT

    @pytest.mark.timeout(30)
    def test_cannot_execute(self, tmp_path):
        assert run(["--", str(tmp_path / "missing")]) == EXIT_CANNOT_EXECUTE

    @pytest.mark.timeout(30)
    def test_output_relayed(self, cli, capfd):
        assert run(["--", *cli("streams")]) == 0
        captured = capfd.readouterr()
        assert "out line" in captured.out
        assert "err line" in captured.err


class TestConfigureLogging:
    def test_stderr_handler(self):
        with mock.patch("procexec.app.logging.basicConfig") as basic_config:
            configure_logging(Config())

        kwargs = basic_config.call_args.kwargs
        try:
            assert kwargs["level"] == logging.WARNING
            handler = kwargs["handlers"][0]
            assert isinstance(handler, logging.StreamHandler)
            assert any(isinstance(f, LogContextFilter) for f in handler.filters)
            assert logging.getLogger("procexec").level == logging.INFO
        finally:
            logging.getLogger("procexec").setLevel(logging.NOTSET)

    def test_debug_file_handler(self, tmp_path):
        log_file = tmp_path / "debug.log"
        with mock.patch("procexec.app.logging.basicConfig") as basic_config:
            configure_logging(Config(log_debug=True, log_file=str(log_file)))

        handler = basic_config.call_args.kwargs["handlers"][0]
        try:
            assert isinstance(handler, logging.FileHandler)
            assert os.path.realpath(handler.baseFilename) == os.path.realpath(log_file)
            assert logging.getLogger("procexec").level == logging.DEBUG
        finally:
            handler.close()
            logging.getLogger("procexec").setLevel(logging.NOTSET)
