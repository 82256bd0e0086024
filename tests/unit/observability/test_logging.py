"""Tests for structured logging."""

from __future__ import annotations

import json
import logging
import sys

from pushstore.observability.logging import (
    ConsoleFormatter,
    JsonFormatter,
    LogContext,
    account_id_var,
    configure_logging,
    operation_var,
    request_id_var,
)


def _record(message: str = "Committed v3", **extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        name="pushstore.releases",
        level=logging.INFO,
        pathname=__file__,
        lineno=10,
        msg=message,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJsonFormatter:
    def test_basic_fields(self) -> None:
        data = json.loads(JsonFormatter().format(_record()))
        assert data["level"] == "INFO"
        assert data["logger"] == "pushstore.releases"
        assert data["message"] == "Committed v3"
        assert "request_id" not in data

    def test_includes_context(self) -> None:
        with LogContext(request_id="req-1", account_id="acct-1", operation="promote"):
            data = json.loads(JsonFormatter().format(_record()))
        assert data["request_id"] == "req-1"
        assert data["account_id"] == "acct-1"
        assert data["operation"] == "promote"

    def test_extra_fields(self) -> None:
        data = json.loads(JsonFormatter().format(_record(deployment_id="dep-1", blob=object())))
        assert data["deployment_id"] == "dep-1"
        assert isinstance(data["blob"], str)

    def test_exception(self) -> None:
        try:
            raise ValueError("boom")
        except ValueError:
            record = _record()
            record.exc_info = sys.exc_info()
        data = json.loads(JsonFormatter().format(record))
        assert data["exception"]["type"] == "ValueError"
        assert data["exception"]["message"] == "boom"


class TestConsoleFormatter:
    def test_context_suffix(self) -> None:
        with LogContext(request_id="abcdefghijkl", operation="rollback"):
            line = ConsoleFormatter(use_colors=False).format(_record())
        assert "pushstore.releases | Committed v3" in line
        assert line.endswith("| req=abcdefgh op=rollback")


class TestLogContext:
    def test_resets_on_exit(self) -> None:
        with LogContext(operation="outer"):
            with LogContext(operation="inner", account_id="a"):
                assert operation_var.get() == "inner"
            assert operation_var.get() == "outer"
            assert account_id_var.get() == ""
        assert operation_var.get() == ""

    def test_empty_values_ignored(self) -> None:
        with LogContext(request_id=None, account_id=""):
            assert request_id_var.get() == ""
            assert account_id_var.get() == ""


def test_configure_logging() -> None:
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        configure_logging(json_format=True, level="DEBUG")
        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[-1].formatter, JsonFormatter)
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
