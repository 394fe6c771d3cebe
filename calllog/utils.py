# FILE: calllog/utils.py
from __future__ import annotations

import json
import math
from typing import Any, Dict, Iterable, Mapping, Optional

# ---------------------------------------------------------------------------
# String helpers
# ---------------------------------------------------------------------------

_MAX_STR_LEN = 8192


def type_name(value: Any) -> str:
    """Fully qualified `module.QualName` of a value's type; builtins stay short."""
    tp = type(value)
    module = getattr(tp, "__module__", "") or ""
    qual = getattr(tp, "__qualname__", None) or getattr(tp, "__name__", "object")
    if module in ("builtins", "__builtin__"):
        return qual
    return f"{module}.{qual}"


def simple_type_name(value: Any) -> str:
    return getattr(type(value), "__name__", "object")


def truncate(s: str, max_len: int = _MAX_STR_LEN) -> str:
    if len(s) > max_len:
        return s[:max_len] + "...<truncated>"
    return s


def safe_str(value: Any, max_len: int = _MAX_STR_LEN) -> str:
    """
    `str(value)` that never raises.

    A failing `__str__` falls back to `repr`, then to a fixed placeholder
    naming the type. The result is truncated to `max_len`.
    """
    try:
        return truncate(str(value), max_len)
    except Exception:
        pass
    try:
        return truncate(repr(value), max_len)
    except Exception:
        return f"<unprintable {simple_type_name(value)}>"


# ---------------------------------------------------------------------------
# Numeric / JSON sanitization helpers
# ---------------------------------------------------------------------------

_SANITIZE_MAX_DEPTH = 64


def sanitize_floats(obj: Any, *, _depth: int = 0) -> Any:
    """
    Recursively replace NaN / +/-inf floats with their string spelling so
    the result is strict JSON.

      - For plain float: finite values unchanged, others become "NaN",
        "Infinity" or "-Infinity".
      - For dict: values are sanitized recursively.
      - For list / tuple: elements are sanitized recursively; tuples become
        lists.
      - For other types: returned unchanged.
    """
    if _depth > _SANITIZE_MAX_DEPTH:
        return obj

    if isinstance(obj, float):
        if math.isnan(obj):
            return "NaN"
        if math.isinf(obj):
            return "Infinity" if obj > 0 else "-Infinity"
        return obj

    if isinstance(obj, Mapping):
        return {k: sanitize_floats(v, _depth=_depth + 1) for k, v in obj.items()}

    if isinstance(obj, (list, tuple)):
        return [sanitize_floats(x, _depth=_depth + 1) for x in obj]

    return obj


def dumps_json(obj: Any, *, pretty: bool = True) -> str:
    """
    Render builtins as JSON for log output.

    Key order is preserved (argument order is meaningful in call logs).
    Non-JSON leaves are rendered through `safe_str`.
    """
    data = sanitize_floats(obj)
    if pretty:
        return json.dumps(data, ensure_ascii=False, indent=2, default=safe_str)
    return json.dumps(data, ensure_ascii=False, separators=(",", ":"), default=safe_str)


def render_body(body: Any, *, max_size: int, pretty: bool = False) -> str:
    """
    Render a raw response body for logging.

    - bytes are decoded as UTF-8 (undecodable input is described by size);
    - JSON text is re-indented when `pretty` is set, left as-is otherwise;
    - a rendered body longer than `max_size` is replaced by a size note.
    """
    if isinstance(body, (bytes, bytearray, memoryview)):
        raw = bytes(body)
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError:
            return f"[Binary content - {len(raw)} bytes]"
    else:
        text = safe_str(body, max_len=max(max_size, 1) * 4)

    if pretty:
        try:
            text = json.dumps(json.loads(text), ensure_ascii=False, indent=2)
        except (ValueError, TypeError):
            pass

    size = len(text.encode("utf-8", errors="ignore"))
    if size > max_size:
        return f"[Too large to log - {size} bytes, max: {max_size}]"
    return text


def first_attr(obj: Any, names: tuple, default: Optional[Any] = None) -> Any:
    """
    Read the first accessor found on `obj` among `names`.

    Accessors may be plain attributes or zero-argument methods. Raises
    AttributeError when none exists; an accessor that raises propagates.
    """
    for name in names:
        try:
            attr = getattr(obj, name)
        except AttributeError:
            continue
        if callable(attr):
            return attr()
        return attr
    raise AttributeError(f"none of {names!r} on {simple_type_name(obj)}")


def has_any_attr(obj: Any, names: tuple) -> bool:
    for name in names:
        try:
            if hasattr(obj, name):
                return True
        except Exception:
            continue
    return False


def is_excluded_path(path: str, patterns: Iterable[str]) -> bool:
    """Substring match of a request path against exclude patterns."""
    if not path:
        return False
    return any(p and p in path for p in patterns)


def header_items(headers: Any) -> Dict[str, str]:
    """
    Flatten a header container (dict, starlette Headers, list of pairs) into
    a plain str -> str dict; the last value wins for repeated names.
    """
    if headers is None:
        return {}
    items: Any
    if hasattr(headers, "items"):
        items = headers.items()
    else:
        items = headers
    out: Dict[str, str] = {}
    for pair in items:
        try:
            k, v = pair
        except (TypeError, ValueError):
            continue
        if isinstance(k, bytes):
            k = k.decode("latin1")
        if isinstance(v, bytes):
            v = v.decode("latin1")
        out[str(k)] = safe_str(v)
    return out


__all__ = [
    "type_name",
    "simple_type_name",
    "truncate",
    "safe_str",
    "sanitize_floats",
    "dumps_json",
    "render_body",
    "first_attr",
    "has_any_attr",
    "header_items",
    "is_excluded_path",
]
