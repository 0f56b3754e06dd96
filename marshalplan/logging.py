"""Logging for marshalplan.

Library modules call ``get_logger(__name__)`` and never install handlers;
the command line calls ``configure_logging`` once. Records about one type or
use site carry ``type_name`` and ``site_id`` (see ``context_logger``), which
both the console and the JSON Lines output render.
"""
import datetime as _dt
import json
import logging as _logging
import os
import sys
from dataclasses import dataclass
from typing import Any, Optional

ROOT_LOGGER_NAME = "marshalplan"

_TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(context)s%(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"

_LEVEL_COLORS = {
    _logging.DEBUG: "\033[36m",
    _logging.WARNING: "\033[33m",
    _logging.ERROR: "\033[31m",
    _logging.CRITICAL: "\033[41m",
}
_RESET = "\033[0m"


@dataclass
class LoggingState:
    log_dir: Optional[str]
    text_log_path: Optional[str]
    jsonl_log_path: Optional[str]
    console_level: int
    file_level: int
    jsonl_enabled: bool


_state: Optional[LoggingState] = None


def get_logger(name: Optional[str] = None) -> _logging.Logger:
    if not name or name == ROOT_LOGGER_NAME:
        return _logging.getLogger(ROOT_LOGGER_NAME)
    if name.startswith(ROOT_LOGGER_NAME + "."):
        return _logging.getLogger(name)
    return _logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


class ContextAdapter(_logging.LoggerAdapter):
    """Attach the type and use site a record is about."""

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs


def context_logger(logger: _logging.Logger, type_name: str, site_id: Optional[str] = None) -> ContextAdapter:
    return ContextAdapter(logger, {"type_name": type_name, "site_id": site_id})


def _context_prefix(record: _logging.LogRecord) -> str:
    type_name = getattr(record, "type_name", None)
    if not type_name:
        return ""
    site_id = getattr(record, "site_id", None)
    return f"[{type_name} @ {site_id}] " if site_id else f"[{type_name}] "


class _TextFormatter(_logging.Formatter):
    def __init__(self, use_color: bool = False) -> None:
        super().__init__(_TEXT_FORMAT, _DATEFMT)
        self.use_color = use_color

    def format(self, record: _logging.LogRecord) -> str:
        record.context = _context_prefix(record)
        text = super().format(record)
        color = _LEVEL_COLORS.get(record.levelno) if self.use_color else None
        return f"{color}{text}{_RESET}" if color else text


class _JsonLinesFormatter(_logging.Formatter):
    def format(self, record: _logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, _DATEFMT),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "type_name": getattr(record, "type_name", None),
            "site_id": getattr(record, "site_id", None),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _parse_level(value, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, int):
        return value
    text = str(value).strip().upper()
    if text.isdigit():
        return int(text)
    level = _logging.getLevelName(text)
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {value}")
    return level


def _console_handlers(level: int, use_color: bool) -> list[_logging.Handler]:
    # errors go to stderr only, everything below to stdout
    stdout_handler = _logging.StreamHandler(sys.stdout)
    stdout_handler.setLevel(level)
    stdout_handler.addFilter(lambda record: record.levelno < _logging.ERROR)
    stdout_handler.setFormatter(_TextFormatter(use_color and sys.stdout.isatty()))

    stderr_handler = _logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(max(level, _logging.ERROR))
    stderr_handler.setFormatter(_TextFormatter(use_color and sys.stderr.isatty()))
    return [stdout_handler, stderr_handler]


def _file_handler(path: str, level: int, formatter: _logging.Formatter) -> _logging.Handler:
    handler = _logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def configure_logging(
    config: dict,
    *,
    console_level: Optional[str] = None,
    file_level: Optional[str] = None,
    log_dir: Optional[str] = None,
    color: bool = True,
    jsonl: Optional[bool] = None,
    reconfigure: bool = False,
) -> LoggingState:
    """Install handlers on the ``marshalplan`` logger from the ``[logging]`` table.

    Keyword arguments override the table. Files are written only when a log
    directory is configured. An already configured logger is left alone
    unless ``reconfigure`` is set.
    """
    global _state

    root = get_logger()
    if root.handlers and not reconfigure and _state is not None:
        return _state

    cfg = (config or {}).get("logging", {})
    console = _parse_level(console_level, _parse_level(cfg.get("console_level"), _logging.INFO))
    files = _parse_level(file_level, _parse_level(cfg.get("file_level"), _logging.DEBUG))
    jsonl_enabled = cfg.get("jsonl", False) if jsonl is None else jsonl
    directory = log_dir or cfg.get("dir")
    directory = os.path.abspath(directory) if directory else None

    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.propagate = False
    root.setLevel(min(console, files) if directory else console)
    for handler in _console_handlers(console, color and cfg.get("color", True)):
        root.addHandler(handler)

    text_log_path = jsonl_log_path = None
    if directory:
        os.makedirs(directory, exist_ok=True)
        stamp = _dt.datetime.now().strftime(cfg.get("timestamp_format", "%Y%m%dT%H%M%S"))
        text_log_path = os.path.join(
            directory, cfg.get("filename_pattern", "marshalplan-{timestamp}.log").format(timestamp=stamp))
        root.addHandler(_file_handler(text_log_path, files, _TextFormatter()))
        if jsonl_enabled:
            jsonl_log_path = os.path.splitext(text_log_path)[0] + ".jsonl"
            root.addHandler(_file_handler(jsonl_log_path, files, _JsonLinesFormatter()))

    _state = LoggingState(
        log_dir=directory,
        text_log_path=text_log_path,
        jsonl_log_path=jsonl_log_path,
        console_level=console,
        file_level=files,
        jsonl_enabled=bool(jsonl_enabled),
    )
    return _state


def get_logging_state() -> Optional[LoggingState]:
    return _state


def is_configured() -> bool:
    return bool(get_logger().handlers)
