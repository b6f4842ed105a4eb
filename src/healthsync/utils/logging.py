"""
Logging setup for the ``healthsync`` logger tree.

Every module logs through ``get_logger("healthsync.<area>")``; handlers live
only on the ``healthsync`` logger, which stops propagation to root. Console
output is rendered by rich, file output is plain text.
"""

import logging
import sys
import traceback
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.logging import RichHandler

ROOT_LOGGER = "healthsync"

FILE_FORMAT = "%(asctime)s [%(levelname)-8s] %(name)s: %(message)s"
PLAIN_CONSOLE_FORMAT = "%(levelname)s: %(asctime)s - %(name)s - %(message)s"

_LEVEL_NAMES = {name: getattr(logging, name) for name in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")}
_LEVEL_NAMES["WARN"] = logging.WARNING


class FileFormatter(logging.Formatter):
    """One line per record; tracebacks follow on the next lines."""

    def __init__(self) -> None:
        super().__init__(fmt=FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        if record.exc_info and not record.exc_text:
            line += "\n" + "".join(traceback.format_exception(*record.exc_info))
        return line


def _parse_level(level: str | int) -> int:
    """Level name (any case, surrounding spaces allowed) or number; unknown names mean INFO."""
    if isinstance(level, int):
        return level
    return _LEVEL_NAMES.get(str(level).strip().upper(), logging.INFO)


def _console_handler(level: int, console: Console | None, use_rich: bool, format_string: str | None) -> logging.Handler:
    if use_rich:
        return RichHandler(
            level=level,
            console=console or Console(stderr=True),
            show_path=False,
            markup=False,
            rich_tracebacks=True,
            log_time_format="[%X]",
        )
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(format_string or PLAIN_CONSOLE_FORMAT))
    return handler


def setup_logging(
    level: str | int = logging.INFO,
    log_file: str | Path | None = None,
    format_string: str | None = None,
    file_mode: str = "a",
    console: Console | None = None,
    console_enabled: bool = True,
    use_rich: bool = True,
) -> logging.Logger:
    """
    (Re)configure the ``healthsync`` logger and return it.

    Calling it again replaces the handlers installed by the previous call.
    The file handler, when ``log_file`` is set, records everything the
    logger level lets through; ``format_string`` only applies to the plain
    console handler.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    numeric = _parse_level(level)
    logger.setLevel(numeric)

    if console_enabled:
        logger.addHandler(_console_handler(numeric, console, use_rich, format_string))

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, mode=file_mode)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(FileFormatter())
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger


def setup_logging_from_config(config: dict[str, Any], project_dir: Path | None = None) -> logging.Logger:
    """
    Apply the ``logging`` config section.

    Keys: ``level``, ``file`` (relative paths resolve against
    ``project_dir``), ``file_mode``, ``format``, ``console_enabled`` and
    ``console_type`` (``rich`` or ``plain``).
    """
    section = config.get("logging") or {}

    log_file = section.get("file")
    if log_file and project_dir and not Path(log_file).is_absolute():
        log_file = Path(project_dir) / log_file

    return setup_logging(
        level=section.get("level", logging.INFO),
        log_file=log_file,
        format_string=section.get("format"),
        file_mode=section.get("file_mode", "a"),
        console_enabled=section.get("console_enabled", True),
        use_rich=section.get("console_type", "rich") == "rich",
    )


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    return logging.getLogger(name)
