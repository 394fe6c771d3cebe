# calllog/tests/test_formatting.py
import datetime as dt
import re

from calllog.formatting import (
    FORMAT_FAILURE_PLACEHOLDER,
    ErrorInfo,
    LogFormatter,
    LogRecord,
    abbreviate_source,
    format_timestamp,
    line_banner,
)

ANSI_RE = re.compile(r"\x1b\[[0-9;]*m")

UTC = dt.timezone.utc
KST = dt.timezone(dt.timedelta(hours=9))

# 2025-09-19T01:30:15.123Z
TS = int(dt.datetime(2025, 9, 19, 1, 30, 15, tzinfo=UTC).timestamp() * 1000) + 123


def _record(**kw):
    base = dict(
        timestamp_millis=TS,
        level="INFO",
        thread_label="main",
        source_label="alpha.beta.gamma.Widget",
        message="hello",
    )
    base.update(kw)
    return LogRecord(**base)


def test_abbreviate_source():
    assert abbreviate_source("alpha.beta.gamma.Widget") == "a.b.g.Widget"
    assert abbreviate_source("Widget") == "Widget"
    assert abbreviate_source("") == "Unknown"


def test_timestamp_offsets():
    assert format_timestamp(TS, UTC) == "2025-09-19T01:30:15.123Z"
    assert format_timestamp(TS, KST) == "2025-09-19T10:30:15.123+09:00"


def test_line_layout_is_exact():
    line = LogFormatter(tz=UTC).format(_record())
    expected = (
        "2025-09-19T01:30:15.123Z"
        + "  INFO"
        + " [           main]"
        + " " + "a.b.g.Widget".ljust(40)
        + " : hello\n"
    )
    assert line == expected


def test_long_thread_label_is_cut():
    line = LogFormatter(tz=UTC).format(_record(thread_label="ThreadPoolExecutor-0_12"))
    assert "[ThreadPoolExecu]" in line


def test_source_width_is_configurable():
    line = LogFormatter(tz=UTC, source_width=10).format(_record(source_label="a.Widget"))
    assert "a.Widget   : hello" in line


def test_color_does_not_change_text():
    plain = LogFormatter(tz=UTC).format(_record(level="ERROR"))
    colored = LogFormatter(tz=UTC, color=True).format(_record(level="ERROR"))
    assert colored != plain
    assert "\u001b[31mERROR\u001b[0m" in colored
    assert ANSI_RE.sub("", colored) == plain


def test_error_chain():
    try:
        try:
            raise KeyError("inner")
        except KeyError as e:
            raise RuntimeError("outer") from e
    except RuntimeError as exc:
        info = ErrorInfo.from_exception(exc)

    text = LogFormatter(tz=UTC).format(_record(level="ERROR", cause=info))
    lines = text.splitlines()
    assert lines[1] == "RuntimeError: outer"
    assert lines[2].startswith("\tat test_error_chain(")
    assert any(l == "Caused by: KeyError: 'inner'" for l in lines)


def test_cyclic_cause_chain_terminates():
    a = ValueError("a")
    b = ValueError("b")
    a.__cause__ = b
    b.__cause__ = a
    info = ErrorInfo.from_exception(a)
    assert [link.message for link in info.links()] == ["a", "b"]


def test_formatting_failure_gives_placeholder():
    class Unprintable:
        def __str__(self):
            raise RuntimeError("boom")

    line = LogFormatter(tz=UTC).format(_record(level=Unprintable()))
    assert line == FORMAT_FAILURE_PLACEHOLDER + "\n"


def test_banner_plain():
    assert line_banner() == "=" * 60


def test_banner_centered_title():
    b = line_banner("CALL")
    assert len(b) == 60
    assert b == "=" * 27 + " CALL " + "=" * 27


def test_banner_odd_padding():
    b = line_banner("ODD")
    assert len(b) == 60
    assert b.startswith("=" * 27 + " ODD ")
    assert b.endswith("=" * 28)


def test_banner_too_long_title_is_bare():
    title = "x" * 58
    assert line_banner(title) == title


def test_single_error_has_no_cause():
    info = ErrorInfo.from_exception(ValueError("only"))
    assert info.type_name.endswith("ValueError")
    assert info.message == "only"
    assert info.cause is None
