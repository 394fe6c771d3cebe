# FILE: calllog/formatting.py
"""
Text rendering of log records.

Line layout (one record, one or more lines):

    <timestamp> <level:>5> [<thread:>15>] <source:<40> : <message>

followed, when the record carries an error, by the cause chain:

    <Type>: <message>
        at <frame>
    Caused by: <Type>: <message>
        at <frame>

Frame lines are tab-indented.

The timestamp is ISO-8601 with milliseconds and a numeric offset
(`2025-09-19T10:30:15.123+09:00`, `Z` for UTC).
"""
from __future__ import annotations

import datetime as _dt
import traceback
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .utils import safe_str, type_name

RESET = "\u001b[0m"
RED = "\u001b[31m"
GREEN = "\u001b[32m"
YELLOW = "\u001b[33m"
BLUE = "\u001b[34m"
CYAN = "\u001b[36m"

LEVEL_COLORS: Dict[str, str] = {
    "ERROR": RED,
    "FATAL": RED,
    "WARN": YELLOW,
    "INFO": GREEN,
    "DEBUG": BLUE,
}

LEVEL_WIDTH = 5
THREAD_WIDTH = 15
SOURCE_WIDTH = 40

BANNER_WIDTH = 60
BANNER_CHAR = "="

# Cause chains longer than this are cut; guards against self-referencing
# __cause__/__context__ links as well.
_MAX_CHAIN = 16

FORMAT_FAILURE_PLACEHOLDER = "[log record could not be formatted]"


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ErrorInfo:
    """One link of an error chain: type, message, frames, and its cause."""

    type_name: str
    message: str
    frames: Tuple[str, ...] = ()
    cause: Optional["ErrorInfo"] = None

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ErrorInfo":
        chain: List[BaseException] = []
        seen = set()
        cur: Optional[BaseException] = exc
        while cur is not None and id(cur) not in seen and len(chain) < _MAX_CHAIN:
            seen.add(id(cur))
            chain.append(cur)
            nxt = cur.__cause__
            if nxt is None and not cur.__suppress_context__:
                nxt = cur.__context__
            cur = nxt

        # chain always starts with `exc`; build it from the innermost cause out
        info = cls(type_name=type_name(chain[-1]), message=safe_str(chain[-1]), frames=_frames(chain[-1]))
        for e in reversed(chain[:-1]):
            info = cls(
                type_name=type_name(e),
                message=safe_str(e),
                frames=_frames(e),
                cause=info,
            )
        return info

    def links(self) -> List["ErrorInfo"]:
        out: List[ErrorInfo] = []
        cur: Optional[ErrorInfo] = self
        while cur is not None and len(out) < _MAX_CHAIN:
            out.append(cur)
            cur = cur.cause
        return out


def _frames(exc: BaseException) -> Tuple[str, ...]:
    tb = exc.__traceback__
    if tb is None:
        return ()
    return tuple(
        f"{fs.name}({fs.filename}:{fs.lineno})" for fs in traceback.extract_tb(tb)
    )


@dataclass(frozen=True)
class LogRecord:
    timestamp_millis: int
    level: str
    thread_label: str
    source_label: str
    message: str
    cause: Optional[ErrorInfo] = None


# ---------------------------------------------------------------------------
# Primitives
# ---------------------------------------------------------------------------


def abbreviate_source(name: str) -> str:
    """
    `alpha.beta.gamma.Widget` -> `a.b.g.Widget`.

    Every dotted segment but the last is reduced to its first character;
    empty segments are dropped. A name without dots is returned unchanged.
    """
    if not name:
        return "Unknown"
    parts = [p for p in str(name).split(".") if p]
    if len(parts) <= 1:
        return str(name)
    return ".".join([p[0] for p in parts[:-1]] + [parts[-1]])


def line_banner(title: Optional[str] = None, width: int = BANNER_WIDTH, char: str = BANNER_CHAR) -> str:
    """
    Fixed-width separator with an optional centered title.

    `line_banner()` is `width` separator characters. With a title, the
    title is wrapped in single spaces and centered between two runs of
    separators; an odd remainder gets one extra separator on the right.
    A title too long to fit comes back bare.
    """
    if title is None:
        return char * width
    title = str(title)
    if len(title) + 2 >= width:
        return title
    side = char * ((width - len(title) - 2) // 2)
    line = f"{side} {title} {side}"
    if len(line) < width:
        line += char
    return line


def colorize(text: str, color: str) -> str:
    return f"{color}{text}{RESET}"


def format_timestamp(timestamp_millis: int, tz: Optional[_dt.tzinfo] = None) -> str:
    secs, millis = divmod(int(timestamp_millis), 1000)
    if tz is None:
        when = _dt.datetime.fromtimestamp(secs).astimezone()
    else:
        when = _dt.datetime.fromtimestamp(secs, tz)
    offset = when.strftime("%z")
    if offset in ("+0000", "-0000", ""):
        suffix = "Z"
    else:
        suffix = f"{offset[:3]}:{offset[3:]}"
    return f"{when.strftime('%Y-%m-%dT%H:%M:%S')}.{millis:03d}{suffix}"


# ---------------------------------------------------------------------------
# Formatter
# ---------------------------------------------------------------------------


class LogFormatter:
    """
    Renders LogRecord instances into text lines.

    Padding is computed on the plain text and colors are wrapped around the
    padded fields, so removing the escape sequences gives exactly the
    uncolored line.
    """

    def __init__(
        self,
        *,
        color: bool = False,
        source_width: int = SOURCE_WIDTH,
        thread_width: int = THREAD_WIDTH,
        tz: Optional[_dt.tzinfo] = None,
    ) -> None:
        self.color = bool(color)
        self.source_width = max(1, int(source_width))
        self.thread_width = max(1, int(thread_width))
        self.tz = tz

    def format(self, record: LogRecord) -> str:
        try:
            lines = [self._head(record)]
        except Exception:
            return FORMAT_FAILURE_PLACEHOLDER + "\n"
        if record.cause is not None:
            try:
                lines.extend(self._chain(record.cause))
            except Exception:
                lines.append(FORMAT_FAILURE_PLACEHOLDER)
        return "\n".join(lines) + "\n"

    def _head(self, record: LogRecord) -> str:
        ts = format_timestamp(record.timestamp_millis, self.tz)

        level = str(record.level).upper().rjust(LEVEL_WIDTH)
        thread = str(record.thread_label)[: self.thread_width].rjust(self.thread_width)
        source = abbreviate_source(record.source_label).ljust(self.source_width)

        if self.color:
            level = colorize(level, LEVEL_COLORS.get(str(record.level).upper(), CYAN))
            source = colorize(source, CYAN)

        return f"{ts} {level} [{thread}] {source} : {record.message}"

    def _chain(self, info: ErrorInfo) -> List[str]:
        lines: List[str] = []
        for i, link in enumerate(info.links()):
            prefix = "" if i == 0 else "Caused by: "
            lines.append(f"{prefix}{link.type_name}: {link.message}")
            lines.extend(f"\tat {frame}" for frame in link.frames)
        return lines


__all__ = [
    "ErrorInfo",
    "LogRecord",
    "LogFormatter",
    "abbreviate_source",
    "line_banner",
    "colorize",
    "format_timestamp",
    "LEVEL_COLORS",
    "FORMAT_FAILURE_PLACEHOLDER",
    "RESET",
]
