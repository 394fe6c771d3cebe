# FILE: calllog/context.py
from __future__ import annotations

import contextvars
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from .utils import header_items


@dataclass(frozen=True)
class RequestContext:
    """
    Already-extracted attributes of the request being served.

    Bound per coroutine / thread by the ASGI middleware (or by host code via
    `bind_request`); the invocation logger only ever reads it.
    """

    method: str = ""
    path: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)
    request_id: Optional[str] = None


_request_ctx: contextvars.ContextVar[Optional[RequestContext]] = contextvars.ContextVar(
    "calllog_request_ctx", default=None
)


def bind_request(
    *,
    method: str = "",
    path: str = "",
    headers: Any = None,
    request_id: Optional[str] = None,
) -> contextvars.Token:
    """Bind the current request; pass the returned token to `reset_request`."""
    ctx = RequestContext(
        method=str(method or ""),
        path=str(path or ""),
        headers=header_items(headers),
        request_id=request_id,
    )
    return _request_ctx.set(ctx)


def reset_request(token: contextvars.Token) -> None:
    _request_ctx.reset(token)


def current_request() -> Optional[RequestContext]:
    return _request_ctx.get()


def ensure_request_id(headers: Optional[Dict[str, str]] = None) -> str:
    """
    Reuse an incoming request id header when present, else create one.

    Header lookup is case-insensitive; the value is treated as opaque.
    """
    if headers:
        lowered = {str(k).lower(): v for k, v in headers.items()}
        for k in ("x-request-id", "x-correlation-id", "x-amzn-trace-id"):
            rid = lowered.get(k)
            if rid:
                return str(rid)
    return uuid.uuid4().hex[:16]


__all__ = [
    "RequestContext",
    "bind_request",
    "reset_request",
    "current_request",
    "ensure_request_id",
]
