# FILE: calllog/serializer.py
"""
Safe conversion of arbitrary runtime values into loggable trees.

`serialize()` never raises, never reads or consumes a resource it is handed,
and always terminates: containers are walked with a hard depth bound and a
per-call set of the objects currently on the walk path.

Values the walker should not expand generically are detected by structural
capability through an ordered registry of `(predicate, extractor)` pairs:
open streams, upload-like objects, geometry-like objects, paths, iterators
and so on. Callers may register additional extractors.
"""
from __future__ import annotations

import collections
import collections.abc as abc
import dataclasses
import datetime as _dt
import inspect
import io
import itertools
import logging
import os
import uuid
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from pathlib import PurePath
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Set, Tuple, Union

from .utils import first_attr, has_any_attr, safe_str, simple_type_name, type_name

_log = logging.getLogger("calllog.internal")

DEFAULT_MAX_DEPTH = 10
# Containers longer than this are cut, with a marker counting the rest.
DEFAULT_MAX_ITEMS = 512


# ---------------------------------------------------------------------------
# Node types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScalarNode:
    value: Any


@dataclass(frozen=True)
class MappingNode:
    entries: Tuple[Tuple[str, "SerializedNode"], ...] = ()

    def get(self, key: str, default: Any = None) -> Any:
        for k, v in self.entries:
            if k == key:
                return v
        return default

    def keys(self) -> List[str]:
        return [k for k, _ in self.entries]

    def __len__(self) -> int:
        return len(self.entries)


@dataclass(frozen=True)
class SequenceNode:
    items: Tuple["SerializedNode", ...] = ()

    def __len__(self) -> int:
        return len(self.items)


@dataclass(frozen=True)
class OpaqueNode:
    """A value represented only by a type name and cheap, safe metadata."""

    type_name: str
    attributes: Tuple[Tuple[str, Any], ...] = ()

    @property
    def attrs(self) -> Dict[str, Any]:
        return dict(self.attributes)


@dataclass(frozen=True)
class ErrorNode:
    class_name: str
    message: str


SerializedNode = Union[ScalarNode, MappingNode, SequenceNode, OpaqueNode, ErrorNode]

MAX_DEPTH_REACHED = "_MAX_DEPTH_REACHED"
CIRCULAR_REFERENCE = "_CIRCULAR_REFERENCE"
EXCLUDED_CLASS = "EXCLUDED_CLASS"
TRUNCATED = "_TRUNCATED"
RENDERED_KEY = "_toString"

_SCALAR_TYPES = (
    bool,
    int,
    float,
    str,
    Decimal,
    _dt.date,
    _dt.time,
    _dt.timedelta,
    uuid.UUID,
    Enum,
)


def _plain(v: Any) -> Any:
    """Coerce an accessor result into something an OpaqueNode may carry."""
    if v is None or isinstance(v, (bool, int, float, str)):
        return v
    return safe_str(v)


def _guarded(fn: Callable[[], Any], default: Any) -> Any:
    try:
        return _plain(fn())
    except Exception:
        return default


def _accessor(obj: Any, names: Tuple[str, ...], default: Any) -> Any:
    return _guarded(lambda: first_attr(obj, names), default)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


Predicate = Callable[[Any], bool]
Extract = Callable[[Any], SerializedNode]


@dataclass(frozen=True)
class Extractor:
    name: str
    predicate: Predicate
    extract: Extract


class SerializerRegistry:
    """
    Ordered list of special-case extractors; the first matching predicate
    wins. A predicate that raises is treated as "no match".
    """

    def __init__(self, entries: Iterable[Extractor] = ()) -> None:
        self._entries: List[Extractor] = list(entries)

    def register(
        self,
        name: str,
        predicate: Predicate,
        extract: Extract,
        *,
        before: Optional[str] = None,
    ) -> None:
        entry = Extractor(name=name, predicate=predicate, extract=extract)
        self._entries = [e for e in self._entries if e.name != name]
        if before is not None:
            for i, e in enumerate(self._entries):
                if e.name == before:
                    self._entries.insert(i, entry)
                    return
        self._entries.append(entry)

    def unregister(self, name: str) -> None:
        self._entries = [e for e in self._entries if e.name != name]

    def match(self, value: Any) -> Optional[Extractor]:
        for entry in self._entries:
            try:
                if entry.predicate(value):
                    return entry
            except Exception:
                continue
        return None

    def names(self) -> List[str]:
        return [e.name for e in self._entries]

    def copy(self) -> "SerializerRegistry":
        return SerializerRegistry(self._entries)

    def __iter__(self) -> Iterator[Extractor]:
        return iter(list(self._entries))


# ---- built-in extractors --------------------------------------------------

_UPLOAD_NAME_ATTRS = ("filename", "original_filename", "getOriginalFilename")
_UPLOAD_TYPE_ATTRS = ("content_type", "contentType", "mimetype", "getContentType")
_UPLOAD_SIZE_ATTRS = ("size", "content_length", "getSize")
_UPLOAD_EMPTY_ATTRS = ("is_empty", "isEmpty", "empty")

_GEOM_WKT_ATTRS = ("wkt", "toText", "to_wkt")
_GEOM_SHAPE_ATTRS = ("srid", "getSRID", "x", "getX", "geom_type", "is_valid", "isValid")


def is_upload_like(value: Any) -> bool:
    return has_any_attr(value, _UPLOAD_NAME_ATTRS) and has_any_attr(value, _UPLOAD_TYPE_ATTRS)


def extract_upload(value: Any) -> SerializedNode:
    size = _accessor(value, _UPLOAD_SIZE_ATTRS, -1)
    if size is None:
        size = -1
    is_empty = _accessor(value, _UPLOAD_EMPTY_ATTRS, None)
    if is_empty is None:
        is_empty = (size == 0) if isinstance(size, int) and size >= 0 else "unknown"
    return OpaqueNode(
        "MultipartFile",
        (
            ("fileName", _accessor(value, _UPLOAD_NAME_ATTRS, "unknown")),
            ("contentType", _accessor(value, _UPLOAD_TYPE_ATTRS, "unknown")),
            ("size", size),
            ("isEmpty", is_empty),
        ),
    )


def is_resource_handle(value: Any) -> bool:
    if isinstance(value, io.IOBase):
        return True
    if not callable(getattr(value, "read", None)):
        return False
    if not has_any_attr(value, ("fileno", "closed")):
        return False
    # proxies such as werkzeug's FileStorage forward read/closed to their
    # stream but carry upload metadata worth keeping
    return not is_upload_like(value)


def _stream_size(value: Any) -> Any:
    if isinstance(value, io.BytesIO):
        with value.getbuffer() as buf:
            return buf.nbytes
    return os.fstat(value.fileno()).st_size


def extract_resource(value: Any) -> SerializedNode:
    name = _guarded(lambda: getattr(value, "name"), None)
    closed = _guarded(lambda: bool(getattr(value, "closed")), "unknown")
    attrs: List[Tuple[str, Any]] = [
        ("_class", type_name(value)),
        ("name", name),
        ("mode", _guarded(lambda: getattr(value, "mode"), None)),
        ("closed", closed),
    ]
    if closed is not True:
        attrs.append(("size", _guarded(lambda: _stream_size(value), -1)))
    if isinstance(name, str):
        attrs.append(("exists", _guarded(lambda: os.path.exists(name), "unknown")))
    return OpaqueNode(simple_type_name(value), tuple(attrs))


def is_geometry_like(value: Any) -> bool:
    return has_any_attr(value, _GEOM_WKT_ATTRS) and has_any_attr(value, _GEOM_SHAPE_ATTRS)


def extract_geometry(value: Any) -> SerializedNode:
    return OpaqueNode(
        "Geometry",
        (
            ("_class", simple_type_name(value)),
            ("x", _accessor(value, ("x", "getX"), "unknown")),
            ("y", _accessor(value, ("y", "getY"), "unknown")),
            ("srid", _accessor(value, ("srid", "getSRID"), "unknown")),
            ("wkt", _accessor(value, _GEOM_WKT_ATTRS, "unknown")),
            ("isEmpty", _accessor(value, ("is_empty", "isEmpty"), "unknown")),
            ("isValid", _accessor(value, ("is_valid", "isValid"), "unknown")),
        ),
    )


def extract_path(value: PurePath) -> SerializedNode:
    def _stat() -> os.stat_result:
        return os.stat(value)

    exists = _guarded(lambda: os.path.exists(value), False)
    return OpaqueNode(
        "File",
        (
            ("name", value.name),
            ("path", str(value)),
            ("absolutePath", _guarded(lambda: os.path.abspath(value), "unknown")),
            ("exists", exists),
            ("isFile", _guarded(lambda: os.path.isfile(value), False)),
            ("isDirectory", _guarded(lambda: os.path.isdir(value), False)),
            ("length", _guarded(lambda: _stat().st_size, -1) if exists is True else -1),
            (
                "lastModified",
                _guarded(lambda: int(_stat().st_mtime * 1000), -1) if exists is True else -1,
            ),
        ),
    )


def _is_bytes(value: Any) -> bool:
    return isinstance(value, (bytes, bytearray, memoryview))


def _extract_bytes(value: Any) -> SerializedNode:
    return OpaqueNode(simple_type_name(value), (("length", _guarded(lambda: len(value), -1)),))


def _is_exception(value: Any) -> bool:
    return isinstance(value, BaseException)


def _extract_exception(value: BaseException) -> SerializedNode:
    return ErrorNode(type_name(value), safe_str(value))


def _is_one_shot(value: Any) -> bool:
    return (
        isinstance(value, (abc.Iterator, abc.AsyncIterator))
        or inspect.isawaitable(value)
    )


def _extract_one_shot(value: Any) -> SerializedNode:
    kind = "Awaitable" if inspect.isawaitable(value) else "Iterator"
    return OpaqueNode(kind, (("_class", type_name(value)),))


def _is_code_object(value: Any) -> bool:
    return inspect.ismodule(value) or inspect.isclass(value) or inspect.isroutine(value)


def _extract_code_object(value: Any) -> SerializedNode:
    if inspect.ismodule(value):
        kind = "module"
        name = getattr(value, "__name__", "?")
    elif inspect.isclass(value):
        kind = "type"
        name = f"{value.__module__}.{value.__qualname__}"
    else:
        kind = "function"
        name = getattr(value, "__qualname__", None) or getattr(value, "__name__", "?")
        module = getattr(value, "__module__", None)
        if module:
            name = f"{module}.{name}"
    return OpaqueNode(kind, (("name", safe_str(name)),))


def default_registry() -> SerializerRegistry:
    """Built-in extractors, in dispatch order."""
    return SerializerRegistry(
        [
            Extractor("resource", is_resource_handle, extract_resource),
            Extractor("upload", is_upload_like, extract_upload),
            Extractor("geometry", is_geometry_like, extract_geometry),
            Extractor("exception", _is_exception, _extract_exception),
            Extractor("bytes", _is_bytes, _extract_bytes),
            Extractor("path", lambda v: isinstance(v, PurePath), extract_path),
            Extractor("one_shot", _is_one_shot, _extract_one_shot),
            Extractor("code", _is_code_object, _extract_code_object),
        ]
    )


# ---------------------------------------------------------------------------
# Walker
# ---------------------------------------------------------------------------


class _Walk:
    """
    State for one `serialize` call. Holds the identities of the containers
    currently being expanded; never shared between calls.
    """

    def __init__(
        self,
        registry: SerializerRegistry,
        excluded: Tuple[str, ...],
        max_depth: int,
        max_items: int = DEFAULT_MAX_ITEMS,
    ) -> None:
        self.registry = registry
        self.excluded = excluded
        self.max_depth = max_depth
        self.max_items = max_items
        self.active: Set[int] = set()

    # ---- entry ------------------------------------------------------------

    def walk(self, value: Any, depth: int) -> SerializedNode:
        try:
            return self._dispatch(value, depth)
        except Exception as exc:
            _log.debug("serialization of %s failed: %s", simple_type_name(value), exc)
            return self._fallback(value, depth)

    # ---- dispatch (ordered, first match wins) -----------------------------

    def _dispatch(self, value: Any, depth: int) -> SerializedNode:
        if value is None:
            return ScalarNode(None)

        if self.excluded and self._is_excluded(value):
            return OpaqueNode(
                EXCLUDED_CLASS,
                (("_class", type_name(value)), (RENDERED_KEY, safe_str(value))),
            )

        entry = self.registry.match(value)
        if entry is not None:
            try:
                return entry.extract(value)
            except Exception as exc:
                _log.debug("extractor %s failed on %s: %s", entry.name, simple_type_name(value), exc)
                return self._fallback(value, depth)

        if isinstance(value, _SCALAR_TYPES):
            return ScalarNode(value)

        if isinstance(value, abc.Mapping):
            return self._guard(value, depth, self._mapping)

        if isinstance(value, (abc.Sequence, abc.Set, abc.MappingView, collections.deque)):
            return self._guard(value, depth, self._sequence)

        return self._fallback(value, depth)

    def _is_excluded(self, value: Any) -> bool:
        tn = type_name(value)
        for name in self.excluded:
            if name and (tn == name or name in tn):
                return True
        return False

    def _guard(
        self,
        value: Any,
        depth: int,
        expand: Callable[[Any, int], SerializedNode],
    ) -> SerializedNode:
        if depth > self.max_depth:
            return OpaqueNode(MAX_DEPTH_REACHED, (("_class", type_name(value)),))
        key = id(value)
        if key in self.active:
            return OpaqueNode(CIRCULAR_REFERENCE, (("_class", type_name(value)),))
        self.active.add(key)
        try:
            return expand(value, depth)
        finally:
            self.active.discard(key)

    # ---- containers -------------------------------------------------------

    def _mapping(self, value: abc.Mapping, depth: int) -> SerializedNode:
        entries: List[Tuple[str, SerializedNode]] = []
        seen: Set[str] = set()
        for k, v in itertools.islice(value.items(), self.max_items):
            entries.append((_unique_key(k, seen), self.walk(v, depth + 1)))
        remaining = self._remaining(value, len(entries))
        if remaining:
            entries.append((TRUNCATED, OpaqueNode(TRUNCATED, (("remaining", remaining),))))
        return MappingNode(tuple(entries))

    def _sequence(self, value: Iterable[Any], depth: int) -> SerializedNode:
        items = [self.walk(v, depth + 1) for v in itertools.islice(value, self.max_items)]
        remaining = self._remaining(value, len(items))
        if remaining:
            items.append(OpaqueNode(TRUNCATED, (("remaining", remaining),)))
        return SequenceNode(tuple(items))

    def _remaining(self, value: Any, taken: int) -> int:
        if taken < self.max_items:
            return 0
        try:
            return max(0, len(value) - taken)
        except Exception:
            return 0

    # ---- fallback chain ---------------------------------------------------
    #
    # Each step returns a node or None; the chain stops at the first node.
    # A step that raises counts as None. `str()` is the last resort and
    # cannot fail (safe_str).

    def _fallback(self, value: Any, depth: int) -> SerializedNode:
        return self._guard(value, depth, self._fallback_chain)

    def _fallback_chain(self, value: Any, depth: int) -> SerializedNode:
        for step in (self._described, self._reflected):
            node = self._attempt(step, value, depth)
            if node is not None:
                return node
        return ScalarNode(safe_str(value))

    @staticmethod
    def _attempt(
        step: Callable[[Any, int], Optional[SerializedNode]],
        value: Any,
        depth: int,
    ) -> Optional[SerializedNode]:
        try:
            return step(value, depth)
        except Exception as exc:
            _log.debug("fallback %s failed on %s: %s", step.__name__, simple_type_name(value), exc)
            return None

    def _described(self, value: Any, depth: int) -> Optional[SerializedNode]:
        describe = getattr(value, "describe_for_log", None)
        if not callable(describe):
            return None
        described = describe()
        if not isinstance(described, abc.Mapping):
            return None
        return self._object_map(value, depth, list(described.items()))

    def _reflected(self, value: Any, depth: int) -> Optional[SerializedNode]:
        fields: List[Tuple[str, Any]] = []
        for name in _field_names(value):
            try:
                fields.append((name, getattr(value, name)))
            except Exception as exc:
                fields.append((name, _Inaccessible(exc)))
        return self._object_map(value, depth, fields)

    def _object_map(
        self,
        value: Any,
        depth: int,
        fields: List[Tuple[Any, Any]],
    ) -> SerializedNode:
        entries: List[Tuple[str, SerializedNode]] = [
            ("_class", ScalarNode(type_name(value))),
            (RENDERED_KEY, ScalarNode(safe_str(value))),
        ]
        for name, field_value in fields:
            if isinstance(field_value, _Inaccessible):
                node: SerializedNode = ScalarNode(field_value.describe())
            else:
                node = self.walk(field_value, depth + 1)
            entries.append((safe_str(name), node))
        return MappingNode(tuple(entries))


def _unique_key(key: Any, seen: Set[str]) -> str:
    """
    String form of a mapping key, suffixed when it collides with one already
    used (`{1: "a", "1": "b"}` gives `"1"` and `"1 (str)"`).
    """
    name = safe_str(key)
    if name in seen:
        base = f"{name} ({simple_type_name(key)})"
        name, n = base, 2
        while name in seen:
            name = f"{base} #{n}"
            n += 1
    seen.add(name)
    return name


class _Inaccessible:
    def __init__(self, exc: BaseException) -> None:
        self.exc = exc

    def describe(self) -> str:
        return f"[inaccessible: {type(self.exc).__name__}: {safe_str(self.exc, 256)}]"


def _field_names(value: Any) -> List[str]:
    """Public field names, in declaration order where the type records one."""
    tp = type(value)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return [f.name for f in dataclasses.fields(value)]

    model_fields = getattr(tp, "model_fields", None)
    if isinstance(model_fields, dict):
        return [str(k) for k in model_fields]

    names: List[str] = []
    seen: Set[str] = set()
    instance_dict = getattr(value, "__dict__", None)
    if isinstance(instance_dict, dict):
        for k in instance_dict:
            if isinstance(k, str) and not k.startswith("_") and k not in seen:
                names.append(k)
                seen.add(k)
    for klass in getattr(tp, "__mro__", ()):
        slots = klass.__dict__.get("__slots__", ())
        if isinstance(slots, str):
            slots = (slots,)
        for k in slots:
            if isinstance(k, str) and not k.startswith("_") and k not in seen:
                names.append(k)
                seen.add(k)
    return names


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


class SafeSerializer:
    """
    Converts values to SerializedNode trees.

    Instances are stateless between calls and safe to share across threads;
    each `serialize` call builds its own walk state.
    """

    def __init__(
        self,
        *,
        max_depth: int = DEFAULT_MAX_DEPTH,
        max_items: int = DEFAULT_MAX_ITEMS,
        registry: Optional[SerializerRegistry] = None,
    ) -> None:
        self.max_depth = int(max_depth)
        self.max_items = max(1, int(max_items))
        self.registry = registry if registry is not None else default_registry()

    def serialize(
        self,
        value: Any,
        excluded_type_names: Iterable[str] = (),
        depth: int = 0,
        *,
        max_depth: Optional[int] = None,
    ) -> SerializedNode:
        excluded = tuple(str(n) for n in (excluded_type_names or ()) if n)
        walk = _Walk(
            self.registry,
            excluded,
            self.max_depth if max_depth is None else int(max_depth),
            self.max_items,
        )
        try:
            return walk.walk(value, depth)
        except Exception:
            # RecursionError from pathological __str__/__getattr__ and the like
            return ScalarNode(safe_str(value))


_default = SafeSerializer()


def serialize(
    value: Any,
    excluded_type_names: Iterable[str] = (),
    depth: int = 0,
    *,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> SerializedNode:
    return _default.serialize(value, excluded_type_names, depth, max_depth=max_depth)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _plain_scalar(value: Any) -> Any:
    if isinstance(value, Enum):
        inner = value.value
        return inner if isinstance(inner, (bool, int, float, str)) else value.name
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (_dt.datetime, _dt.date, _dt.time)):
        return value.isoformat()
    if isinstance(value, _dt.timedelta):
        return value.total_seconds()
    return safe_str(value)


def to_plain(node: SerializedNode) -> Any:
    """Convert a node tree to JSON-ready builtins, preserving key order."""
    if isinstance(node, ScalarNode):
        return _plain_scalar(node.value)
    if isinstance(node, MappingNode):
        return {k: to_plain(v) for k, v in node.entries}
    if isinstance(node, SequenceNode):
        return [to_plain(v) for v in node.items]
    if isinstance(node, OpaqueNode):
        out: Dict[str, Any] = {"_type": node.type_name}
        for k, v in node.attributes:
            out[k] = v
        return out
    if isinstance(node, ErrorNode):
        return {"_type": "Error", "_class": node.class_name, "message": node.message}
    return safe_str(node)


__all__ = [
    "ScalarNode",
    "MappingNode",
    "SequenceNode",
    "OpaqueNode",
    "ErrorNode",
    "SerializedNode",
    "Extractor",
    "SerializerRegistry",
    "SafeSerializer",
    "default_registry",
    "serialize",
    "to_plain",
    "is_upload_like",
    "is_geometry_like",
    "is_resource_handle",
    "MAX_DEPTH_REACHED",
    "CIRCULAR_REFERENCE",
    "EXCLUDED_CLASS",
    "TRUNCATED",
    "RENDERED_KEY",
    "DEFAULT_MAX_DEPTH",
    "DEFAULT_MAX_ITEMS",
]
