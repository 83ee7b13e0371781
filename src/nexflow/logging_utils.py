"""Runtime logging helpers."""

from __future__ import annotations

import inspect
import logging
import os
import sys
from typing import Literal

from loguru import logger
from rich import get_console
from rich.logging import RichHandler

LogProfile = Literal["default", "json", "console"]

LOG_FILTER_ENV = "NEXFLOW_LOG_FILTER"
_DEFAULT_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<7} | {name}:{function}:{line} | {message}"
_CONFIGURED_PROFILE: LogProfile | None = None


class InterceptHandler(logging.Handler):
    """Handler that forwards stdlib logging messages to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = inspect.currentframe(), 0
        while frame:
            filename = frame.f_code.co_filename
            is_logging = filename == logging.__file__
            is_frozen = "importlib" in filename and "_bootstrap" in filename
            if depth > 0 and not (is_logging or is_frozen):
                break
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def parse_log_filter(value: str | None = None) -> tuple[str, dict[str | None, str | int | bool]]:
    """Parse a log filter such as ``"info,nexflow.events=debug,telegram=false"``.

    The bare entry is the global level; ``module=level`` entries override it
    per module and ``module=false`` silences a module.
    """
    raw = (value if value is not None else os.getenv(LOG_FILTER_ENV, "info")).lower()
    filter_dict: dict[str | None, str | int | bool] = {}
    global_level = "info"
    for part in (p.strip() for p in raw.split(",")):
        if not part:
            continue
        if "=" in part:
            module, level = (s.strip() for s in part.split("=", 1))
            filter_dict[module] = False if level == "false" else level.upper()
        else:
            global_level = part
    return global_level, filter_dict


def configure_logging(*, profile: LogProfile = "default") -> None:
    """Configure process-level logging once per profile.

    The level and per-module overrides come from ``NEXFLOW_LOG_FILTER``.
    """
    global _CONFIGURED_PROFILE
    if profile == _CONFIGURED_PROFILE:
        return

    global_level, module_filter = parse_log_filter()
    logger.remove()
    if profile == "console":
        logger.add(
            RichHandler(console=get_console(), show_time=False, show_path=False, markup=False, rich_tracebacks=False),
            level=global_level.upper(),
            format="{message}",
            backtrace=False,
            diagnose=False,
            filter=module_filter,
        )
    else:
        logger.add(
            sys.stderr,
            level=global_level.upper(),
            format=_DEFAULT_FORMAT,
            serialize=profile == "json",
            backtrace=False,
            diagnose=False,
            filter=module_filter,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    _CONFIGURED_PROFILE = profile
