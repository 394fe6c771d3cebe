# FILE: calllog/middleware.py
from __future__ import annotations

import logging
from typing import Any, List, Optional, Tuple, Union

from starlette.datastructures import Headers
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from .config import ConfigHandle, GlobalConfig, as_config_handle
from .context import bind_request, ensure_request_id, reset_request
from .formatting import line_banner
from .logging import get_logger
from .utils import is_excluded_path, render_body

_internal = logging.getLogger("calllog.internal")

# Static resources never get their bodies logged.
_STATIC_PREFIXES: Tuple[str, ...] = ("/static/", "/css/", "/js/", "/images/")
_STATIC_SUFFIXES: Tuple[str, ...] = (".ico", ".png", ".jpg", ".css", ".js")


def is_static_path(path: str) -> bool:
    return path.startswith(_STATIC_PREFIXES) or path.endswith(_STATIC_SUFFIXES)


class CallLogMiddleware:
    """
    ASGI middleware that binds the request context for call logging and logs
    successful response bodies.

    Per HTTP request:
      - binds RequestContext(method, path, headers, request_id) in a
        contextvar so instrumented callables can log request info;
      - for a 2xx response with a non-empty body, logs URI, method, status
        and the body (size-limited, optionally pretty-printed JSON);
      - static resources and paths matching `exclude_patterns` are not
        body-logged.

    The response is streamed through untouched; at most a bounded copy of
    the body is kept for logging. Logging failures never affect the
    response.

    Usage:
        app.add_middleware(CallLogMiddleware, config=handle)
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        config: Union[ConfigHandle, GlobalConfig, None] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.app = app
        self.config = as_config_handle(config)
        self.log = logger or get_logger("http")

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        cfg = self.config.get()
        method = scope.get("method", "")
        path = scope.get("path", "")
        headers = Headers(scope=scope)
        rid = ensure_request_id(dict(headers.items()))

        token = bind_request(method=method, path=path, headers=headers, request_id=rid)
        try:
            if not cfg.enabled or is_static_path(path) or is_excluded_path(path, cfg.exclude_patterns):
                await self.app(scope, receive, send)
                return

            capture = _BodyCapture(limit=cfg.max_response_body_size * 4 + 1024)

            async def _send_wrapper(message: Message) -> None:
                capture.observe(message)
                await send(message)

            await self.app(scope, receive, _send_wrapper)
            self._log_response(cfg, method, path, capture)
        finally:
            reset_request(token)

    def _log_response(self, cfg: GlobalConfig, method: str, path: str, capture: "_BodyCapture") -> None:
        try:
            status = capture.status
            if status is None or not (200 <= status < 300) or capture.total == 0:
                return
            max_size = cfg.max_response_body_size
            if capture.overflowed:
                body = f"[Too large to log - {capture.total} bytes, max: {max_size}]"
            else:
                body = render_body(capture.body(), max_size=max_size, pretty=cfg.pretty_print_json)
            self.log.info(line_banner("RESPONSE LOGGING"))
            self.log.info("URI: %s", path)
            self.log.info("Method: %s", method)
            self.log.info("Status: %s", status)
            self.log.info("Response Body: %s", body)
            self.log.info(line_banner())
        except Exception as exc:
            _internal.debug("response logging failed for %s %s: %s", method, path, exc)


class _BodyCapture:
    """Status plus a bounded copy of the response body chunks."""

    def __init__(self, limit: int) -> None:
        self.limit = max(0, int(limit))
        self.status: Optional[int] = None
        self.total = 0
        self.overflowed = False
        self._chunks: List[bytes] = []
        self._kept = 0

    def observe(self, message: Message) -> None:
        if message["type"] == "http.response.start":
            self.status = message.get("status")
        elif message["type"] == "http.response.body":
            chunk: Any = message.get("body", b"") or b""
            self.total += len(chunk)
            if self.overflowed:
                return
            if self._kept + len(chunk) > self.limit:
                self.overflowed = True
                self._chunks = []
                return
            self._chunks.append(bytes(chunk))
            self._kept += len(chunk)

    def body(self) -> bytes:
        return b"".join(self._chunks)


__all__ = [
    "CallLogMiddleware",
    "is_static_path",
]
