# FILE: calllog/logging.py
from __future__ import annotations

import datetime as _dt
import logging
import os
import sys
import time
from typing import Any, Callable, Optional, TypeVar, Union

from .formatting import (
    FORMAT_FAILURE_PLACEHOLDER,
    ErrorInfo,
    LogFormatter,
    LogRecord,
    SOURCE_WIDTH,
    line_banner,
)
from .serializer import SafeSerializer, to_plain
from .utils import dumps_json, simple_type_name

T = TypeVar("T")

# ---------- Module-level config (env-driven, safe defaults) ----------
ROOT_LOGGER_NAME = "calllog"

_LOG_LEVEL = os.environ.get("CALLLOG_LOG_LEVEL", "INFO")
_LOG_COLOR = os.environ.get("CALLLOG_LOG_COLOR", "0").strip().lower() in ("1", "true", "yes", "on")
_configured = False

# stdlib level names -> the five-character vocabulary of the line format
_LEVEL_NAMES = {
    "WARNING": "WARN",
    "CRITICAL": "ERROR",
    "NOTSET": "TRACE",
}


def _level_no(level: Union[int, str, None]) -> int:
    if isinstance(level, int):
        return level
    name = (level or "INFO").strip().upper()
    if name == "WARN":
        name = "WARNING"
    lvl = logging.getLevelName(name)
    return lvl if isinstance(lvl, int) else logging.INFO


# ---------- Formatter bridge ----------
def to_log_record(record: logging.LogRecord) -> LogRecord:
    """
    Translate a stdlib LogRecord into the renderer's record.

      - level: WARNING -> WARN, CRITICAL -> ERROR;
      - thread label: the asyncio task name when logging from a task,
        the thread name otherwise;
      - source label: an explicit `call_source` extra (the instrumented
        callable's qualified name), else the logger name.
    """
    thread_label = getattr(record, "taskName", None) or record.threadName or "main"
    source = getattr(record, "call_source", None) or record.name

    cause = None
    if record.exc_info and record.exc_info[1] is not None:
        cause = ErrorInfo.from_exception(record.exc_info[1])

    return LogRecord(
        timestamp_millis=int(record.created * 1000),
        level=_LEVEL_NAMES.get(record.levelname, record.levelname),
        thread_label=str(thread_label),
        source_label=str(source),
        message=record.getMessage(),
        cause=cause,
    )


class CallLogFormatter(logging.Formatter):
    """
    logging.Formatter that renders the fixed call-log line layout.

    The handler appends the line terminator, so the trailing newline the
    renderer produces is dropped here.
    """

    def __init__(
        self,
        *,
        color: bool = False,
        source_width: int = SOURCE_WIDTH,
        tz: Optional[_dt.tzinfo] = None,
    ):
        super().__init__()
        self.renderer = LogFormatter(color=color, source_width=source_width, tz=tz)

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        try:
            text = self.renderer.format(to_log_record(record))
        except Exception:
            return FORMAT_FAILURE_PLACEHOLDER
        return text[:-1] if text.endswith("\n") else text


# ---------- Handler setup ----------
def _clear_handlers(logger: logging.Logger) -> None:
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()


def configure_logging(
    level: Union[int, str] = "INFO",
    *,
    stream: Any = None,
    color: Optional[bool] = None,
    source_width: int = SOURCE_WIDTH,
    tz: Optional[_dt.tzinfo] = None,
) -> logging.Logger:
    """
    Configure the `calllog` logger tree for the call-log line format.

    The tree is isolated (propagate=False) so application root handlers do
    not print every record twice. Calling again replaces the handler.
    """
    lvl = _level_no(level)
    stream = stream or sys.stdout
    if color is None:
        color = _LOG_COLOR

    h = logging.StreamHandler(stream=stream)
    h.setFormatter(CallLogFormatter(color=color, source_width=source_width, tz=tz))
    h.setLevel(lvl)

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(lvl)
    _clear_handlers(root)
    root.addHandler(h)
    root.propagate = False

    global _configured
    _configured = True
    return root


def set_log_level(level: Union[int, str]) -> None:
    lvl = _level_no(level)
    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(lvl)
    for h in root.handlers:
        h.setLevel(lvl)


def add_file_logger(path: str, *, level: Union[int, str, None] = None) -> logging.FileHandler:
    """Also write call-log lines (uncolored) to `path`; returns the handler."""
    root = get_logger()
    h = logging.FileHandler(path, encoding="utf-8")
    h.setFormatter(CallLogFormatter(color=False))
    h.setLevel(_level_no(level) if level is not None else root.level)
    root.addHandler(h)
    return h


# ---------- Convenience: module-level logger ----------
def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """
    Return a logger under the `calllog` tree.

    First call installs the default stdout handler if nothing configured
    the tree yet.
    """
    if not _configured and not logging.getLogger(ROOT_LOGGER_NAME).handlers:
        configure_logging(level=_LOG_LEVEL)
    if name != ROOT_LOGGER_NAME and not name.startswith(ROOT_LOGGER_NAME + "."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


# ---------- Facade helpers ----------
def line_log(
    title: Optional[str] = None,
    *,
    level: Union[int, str] = logging.INFO,
    logger: Optional[logging.Logger] = None,
) -> None:
    (logger or get_logger()).log(_level_no(level), line_banner(title))


def log_header(title: str, *, logger: Optional[logging.Logger] = None) -> None:
    """Separator, title centered with spaces, separator."""
    lg = logger or get_logger()
    separator = line_banner()
    lg.info(separator)
    padding = (len(separator) - len(title)) // 2
    lg.info(" " * padding + title if padding > 0 else title)
    lg.info(separator)


_facade_serializer = SafeSerializer()


def super_log(
    obj: Any,
    *,
    level: Union[int, str] = logging.INFO,
    show_class_name: bool = True,
    logger: Optional[logging.Logger] = None,
) -> None:
    """
    Log any object as JSON between two banners.

    The object goes through the safe serializer first, so open files,
    uploads and cyclic structures are described instead of read.
    """
    lg = logger or get_logger()
    lvl = _level_no(level)
    if obj is None:
        lg.log(lvl, line_banner("NULL OBJECT"))
        lg.log(lvl, "Object is null")
        lg.log(lvl, line_banner())
        return

    lg.log(lvl, line_banner(simple_type_name(obj) if show_class_name else None))
    lg.log(lvl, "%s", dumps_json(to_plain(_facade_serializer.serialize(obj)), pretty=True))
    lg.log(lvl, line_banner())


def info_json(message: str, obj: Any, *, logger: Optional[logging.Logger] = None) -> None:
    (logger or get_logger()).info(
        "%s\n%s", message, dumps_json(to_plain(_facade_serializer.serialize(obj)), pretty=True)
    )


def time_log(
    task: Callable[[], T],
    *,
    name: Optional[str] = None,
    logger: Optional[logging.Logger] = None,
) -> T:
    """
    Run `task`, then log its wall time under a banner.

    A failing task is logged at ERROR and re-raised unchanged.
    """
    lg = logger or get_logger()
    label = name or getattr(task, "__qualname__", None) or getattr(task, "__name__", "task")
    t0 = time.perf_counter()
    try:
        return task()
    except Exception as exc:
        lg.error("[%s] failed: %s", label, exc)
        raise
    finally:
        elapsed_ms = (time.perf_counter() - t0) * 1000.0
        lg.info(line_banner(f"[{label}] took {elapsed_ms:.0f} ms"))


__all__ = [
    "ROOT_LOGGER_NAME",
    "CallLogFormatter",
    "to_log_record",
    "configure_logging",
    "set_log_level",
    "add_file_logger",
    "get_logger",
    "line_log",
    "log_header",
    "super_log",
    "info_json",
    "time_log",
]
