from __future__ import annotations

import logging

import pytest
from loguru import logger

import nexflow.logging_utils as logging_utils
from nexflow.logging_utils import InterceptHandler, parse_log_filter


class _FakeLogger:
    def __init__(self) -> None:
        self.removed = 0
        self.added: list[dict] = []

    def remove(self, *_args) -> None:
        self.removed += 1

    def add(self, _sink, **kwargs) -> int:
        self.added.append(kwargs)
        return len(self.added)


def test_parse_log_filter_global_and_module_levels() -> None:
    level, modules = parse_log_filter("WARNING,nexflow.events=debug,telegram=false")

    assert level == "warning"
    assert modules == {"nexflow.events": "DEBUG", "telegram": False}


def test_parse_log_filter_reads_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("NEXFLOW_LOG_FILTER", "debug")

    assert parse_log_filter() == ("debug", {})


def test_parse_log_filter_defaults_to_info(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("NEXFLOW_LOG_FILTER", raising=False)

    assert parse_log_filter() == ("info", {})
    assert parse_log_filter(" , ") == ("info", {})


def test_intercept_handler_forwards_stdlib_records() -> None:
    messages: list[str] = []
    sink_id = logger.add(lambda m: messages.append(m.record["message"]), level="DEBUG")
    stdlib_logger = logging.getLogger("nexflow.test.intercept")
    stdlib_logger.addHandler(InterceptHandler())
    stdlib_logger.setLevel(logging.INFO)
    stdlib_logger.propagate = False
    try:
        stdlib_logger.info("hello %s", "world")
    finally:
        logger.remove(sink_id)
        stdlib_logger.handlers.clear()

    assert messages == ["hello world"]


def test_configure_logging_is_idempotent_per_profile(monkeypatch: pytest.MonkeyPatch) -> None:
    fake_logger = _FakeLogger()
    monkeypatch.setattr(logging_utils, "_CONFIGURED_PROFILE", None)
    monkeypatch.setattr(logging_utils, "logger", fake_logger)
    monkeypatch.setattr(logging_utils.logging, "basicConfig", lambda **kwargs: None)

    logging_utils.configure_logging(profile="json")
    logging_utils.configure_logging(profile="json")
    logging_utils.configure_logging(profile="console")

    assert fake_logger.removed == 2
    assert [kwargs["serialize"] for kwargs in fake_logger.added if "serialize" in kwargs] == [True]
    assert logging_utils._CONFIGURED_PROFILE == "console"
