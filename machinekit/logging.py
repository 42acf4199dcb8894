"""loguru setup for test harnesses.

The library logs through loguru but stays silent until a harness turns it
on. Records carry the binding of the module that emitted them (``driver``,
``component``), so a file log of a failed batch can be grepped per layer.

Example:
    from machinekit.logging import LogConfig, logging_enabled

    with logging_enabled(LogConfig.from_env()):
        machines = await get_test_machines(config, 3)
"""

from __future__ import annotations

import os
import sys
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Literal, cast

from loguru import logger

logger.disable("machinekit")

type LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]

LEVEL_ENV = "MACHINEKIT_LOG_LEVEL"
FILE_ENV = "MACHINEKIT_LOG_FILE"

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[scope]}</cyan> - <level>{message}</level>"
)

FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[scope]} | {name}:{line} - {message}"


def _scope(record: dict) -> bool:
    """Only machinekit records; tag each with its bound layer."""
    if not record["name"] or not record["name"].startswith("machinekit"):
        return False
    extra = record["extra"]
    extra["scope"] = extra.get("driver") or extra.get("component") or record["name"]
    return True


@dataclass(frozen=True, slots=True)
class LogConfig:
    """Where harness logs go.

    Attributes:
        level: Console threshold. The file, when set, always gets DEBUG.
        file: Log file path, typically one per CI job.
        console: Whether to write to stderr.
        rotation: loguru rotation policy for the file.
    """

    level: LogLevel = "INFO"
    file: str | None = None
    console: bool = True
    rotation: str = "50 MB"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> LogConfig:
        env = os.environ if environ is None else environ
        level = env.get(LEVEL_ENV, "INFO").upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR"):
            level = "INFO"
        return cls(level=cast(LogLevel, level), file=env.get(FILE_ENV) or None)


def setup_logging(config: LogConfig) -> list[int]:
    """Enable machinekit logs and return the handler ids added."""
    logger.enable("machinekit")
    handler_ids: list[int] = []

    if config.console:
        handler_ids.append(logger.add(
            sys.stderr,
            level=config.level,
            format=CONSOLE_FORMAT,
            colorize=True,
            filter=_scope,
        ))

    if config.file:
        handler_ids.append(logger.add(
            config.file,
            level="DEBUG",
            format=FILE_FORMAT,
            rotation=config.rotation,
            diagnose=False,  # keeps key paths and tokens out of tracebacks
            enqueue=True,
            filter=_scope,
        ))

    return handler_ids


def teardown_logging(handler_ids: list[int]) -> None:
    """Remove the given handlers and silence the library again."""
    for hid in handler_ids:
        logger.remove(hid)
    logger.disable("machinekit")


@contextmanager
def logging_enabled(config: LogConfig) -> Iterator[None]:
    handler_ids = setup_logging(config)
    try:
        yield
    finally:
        teardown_logging(handler_ids)
