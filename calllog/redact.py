# FILE: calllog/redact.py
from __future__ import annotations

from typing import Any, Dict, FrozenSet, Iterable, Optional, Tuple

from .serializer import RENDERED_KEY, MappingNode, ScalarNode, SequenceNode, SerializedNode
from .utils import header_items

DEFAULT_MASK_TOKEN = "****"

# Always-sensitive header names (case-insensitive containment). Used when
# masking is on and no explicit header keyword list is configured.
_DEFAULT_SENSITIVE_HEADERS: FrozenSet[str] = frozenset(
    {
        "authorization",
        "proxy-authorization",
        "cookie",
        "set-cookie",
        "token",
        "api-key",
        "apikey",
        "secret",
        "password",
        "signature",
    }
)


def _keywords(raw: Optional[Iterable[str]]) -> Tuple[str, ...]:
    out = []
    for k in raw or ():
        s = str(k).strip().lower()
        if s and s not in out:
            out.append(s)
    return tuple(out)


def key_matches(key: Any, keywords: Iterable[str]) -> bool:
    """True when `key`, lowercased, contains any (already lowercased) keyword."""
    lk = str(key).lower()
    for kw in keywords:
        if kw and kw in lk:
            return True
    return False


# ---------------------------------------------------------------------------
# Field masking (serialized trees)
# ---------------------------------------------------------------------------


def mask_fields(
    node: SerializedNode,
    keywords: Iterable[str],
    mask_token: str = DEFAULT_MASK_TOKEN,
    *,
    enabled: bool = True,
) -> SerializedNode:
    """
    Replace the value of every mapping entry whose key matches a keyword.

    - matching is case-insensitive containment (`userPasswordHash` matches
      `password`);
    - the whole value is replaced, whatever its shape;
    - sequences and nested mappings are descended into;
    - opaque and error nodes carry no user keys and pass through;
    - a mapping with anything masked at or below it also loses its
      `_toString` rendering, which repeats the field values;
    - idempotent: masking an already masked tree changes nothing.

    Disabled masking, or an empty keyword set, returns `node` unchanged.
    """
    kws = _keywords(keywords)
    if not enabled or not kws:
        return node
    return _mask_node(node, kws, ScalarNode(mask_token))[0]


def _mask_node(
    node: SerializedNode, kws: Tuple[str, ...], token: ScalarNode
) -> Tuple[SerializedNode, bool]:
    """Masked copy of `node`, and whether anything at or below it was masked."""
    if isinstance(node, MappingNode):
        entries = []
        masked = False
        for k, v in node.entries:
            if key_matches(k, kws):
                entries.append((k, token))
                masked = True
            else:
                child, hit = _mask_node(v, kws, token)
                entries.append((k, child))
                masked = masked or hit
        if masked:
            entries = [(k, token) if k == RENDERED_KEY else (k, v) for k, v in entries]
        return MappingNode(tuple(entries)), masked
    if isinstance(node, SequenceNode):
        items = [_mask_node(v, kws, token) for v in node.items]
        return SequenceNode(tuple(n for n, _ in items)), any(hit for _, hit in items)
    return node, False


# ---------------------------------------------------------------------------
# Header masking / selection
# ---------------------------------------------------------------------------


def effective_header_keywords(keywords: Optional[Iterable[str]]) -> Tuple[str, ...]:
    kws = _keywords(keywords)
    return kws or tuple(sorted(_DEFAULT_SENSITIVE_HEADERS))


def mask_headers(
    headers: Any,
    keywords: Optional[Iterable[str]] = None,
    mask_token: str = DEFAULT_MASK_TOKEN,
    *,
    enabled: bool = True,
) -> Dict[str, str]:
    """
    Mask header values by name.

    An empty `keywords` falls back to the built-in sensitive set, so leaving
    the list unset never exposes `Authorization` or cookies; only
    `enabled=False` turns masking off. Names keep their original case.
    """
    flat = header_items(headers)
    if not enabled:
        return flat
    kws = effective_header_keywords(keywords)
    return {k: (mask_token if key_matches(k, kws) else v) for k, v in flat.items()}


def filter_headers(headers: Any, header_policy: Any) -> Dict[str, str]:
    """
    Select the headers to log.

    `include_all` keeps everything; otherwise only names listed in
    `include_headers` (case-insensitive, exact) are kept. With neither set
    the result is empty.
    """
    flat = header_items(headers)
    if getattr(header_policy, "include_all", False):
        return flat
    wanted = {str(h).strip().lower() for h in (getattr(header_policy, "include_headers", ()) or ())}
    wanted.discard("")
    if not wanted:
        return {}
    return {k: v for k, v in flat.items() if k.lower() in wanted}


__all__ = [
    "DEFAULT_MASK_TOKEN",
    "key_matches",
    "mask_fields",
    "mask_headers",
    "filter_headers",
    "effective_header_keywords",
]
