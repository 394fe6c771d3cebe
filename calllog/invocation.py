# FILE: calllog/invocation.py
"""
Call/result logging around instrumented callables.

Per call:

    IDLE -> ENTERED -> EXECUTING -> EXITED_SUCCESS | EXITED_FAILURE

`InvocationLogger.before()` resolves the policy and logs the call banner,
parameters and request info; `after()` logs the result or the error. The
wrapped call itself is never touched: its return value is handed back as
is and its exception is re-raised as the same instance. A failure inside
the logging path is reported on `calllog.internal` at DEBUG and dropped.

`log_call`, `log_time` and `log_monitor` are the decorators host code uses;
they accept both plain and `async def` callables.
"""
from __future__ import annotations

import functools
import inspect
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Tuple, TypeVar, Union

from .config import ConfigHandle, GlobalConfig, as_config_handle
from .context import RequestContext, current_request
from .formatting import line_banner
from .logging import get_logger
from .policy import CallOverride, PolicyDecision, TriState, resolve
from .redact import filter_headers, mask_fields, mask_headers
from .serializer import SafeSerializer, to_plain
from .utils import dumps_json, first_attr, has_any_attr, is_excluded_path, render_body, safe_str, simple_type_name

F = TypeVar("F", bound=Callable[..., Any])

_internal = logging.getLogger("calllog.internal")

_BOUND_RECEIVERS = ("self", "cls")


class InvocationState(str, Enum):
    IDLE = "idle"
    ENTERED = "entered"
    EXECUTING = "executing"
    EXITED_SUCCESS = "exited_success"
    EXITED_FAILURE = "exited_failure"


# ---------------------------------------------------------------------------
# Call description
# ---------------------------------------------------------------------------


def display_name(func: Callable[..., Any]) -> str:
    """`Owner.method` for methods, the bare name for functions."""
    qual = getattr(func, "__qualname__", None) or getattr(func, "__name__", None) or simple_type_name(func)
    return str(qual).split("<locals>.")[-1]


@dataclass(frozen=True)
class CallContext:
    """What the call wrapper knows about one invocation."""

    func: Callable[..., Any]
    args: Tuple[Any, ...] = ()
    kwargs: Mapping[str, Any] = field(default_factory=dict)
    override: Optional[CallOverride] = None
    signature: Optional[inspect.Signature] = None

    @property
    def name(self) -> str:
        return display_name(self.func)

    @property
    def source(self) -> str:
        module = getattr(self.func, "__module__", None)
        return f"{module}.{self.name}" if module else self.name

    def arguments(self) -> Dict[str, Any]:
        """
        Arguments by parameter name, in declaration order.

        `self` / `cls` are dropped. Arguments that do not bind (the call is
        about to fail with TypeError anyway) are reported positionally.
        """
        sig = self.signature
        if sig is None:
            try:
                sig = inspect.signature(self.func)
            except (TypeError, ValueError):
                sig = None
        if sig is not None:
            try:
                bound = sig.bind_partial(*self.args, **self.kwargs)
            except TypeError:
                bound = None
            if bound is not None:
                out: Dict[str, Any] = OrderedDict()
                for i, (name, value) in enumerate(bound.arguments.items()):
                    if i == 0 and name in _BOUND_RECEIVERS:
                        continue
                    out[name] = value
                return out

        out = OrderedDict((f"arg{i}", v) for i, v in enumerate(self.args))
        out.update(self.kwargs)
        return out


@dataclass
class CallState:
    """Per-call bookkeeping handed from `before()` to `after()`."""

    ctx: CallContext
    config: GlobalConfig
    decision: PolicyDecision
    request: Optional[RequestContext] = None
    state: InvocationState = InvocationState.IDLE


# ---------------------------------------------------------------------------
# Response-like results
# ---------------------------------------------------------------------------

_STATUS_ATTRS = ("status_code", "status")
_BODY_ATTRS = ("body", "body_iterator")

_SIMPLE_BODY_TYPES = (str, bytes, bytearray, int, float, bool)


def is_response_like(value: Any) -> bool:
    """Exposes a status, headers and a body (starlette responses and the like)."""
    if value is None or isinstance(value, (str, bytes, Mapping)):
        return False
    return (
        has_any_attr(value, _STATUS_ATTRS)
        and has_any_attr(value, ("headers",))
        and has_any_attr(value, _BODY_ATTRS)
    )


def _is_complex_body(body: Any) -> bool:
    if body is None or isinstance(body, _SIMPLE_BODY_TYPES):
        return False
    return not isinstance(body, (Mapping, list, tuple))


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class InvocationLogger:
    """
    Logs call entry and exit for instrumented callables.

    Dependencies are injected:
      - config: ConfigHandle (read once per call; swaps apply to the next
        call), a bare GlobalConfig, or None to load from the environment;
      - logger: stdlib logger the lines go to (default `calllog.call`);
      - serializer: SafeSerializer used for parameters and results;
      - context_provider: returns the current RequestContext or None.

    Thread-safe: all per-call state lives in the CallState returned by
    `before()`.
    """

    def __init__(
        self,
        config: Union[ConfigHandle, GlobalConfig, None] = None,
        *,
        logger: Optional[logging.Logger] = None,
        serializer: Optional[SafeSerializer] = None,
        context_provider: Callable[[], Optional[RequestContext]] = current_request,
    ) -> None:
        self.config = as_config_handle(config)
        self._logger = logger
        self.serializer = serializer or SafeSerializer()
        self.context_provider = context_provider

    @property
    def log(self) -> logging.Logger:
        if self._logger is None:
            self._logger = get_logger("call")
        return self._logger

    # ---- entry ------------------------------------------------------------

    def before(self, ctx: CallContext) -> Optional[CallState]:
        """
        Resolve the policy and log the call. Returns None when nothing is to
        be logged for this call (disabled, excluded path, internal failure).
        """
        try:
            cfg = self.config.get()
            if not cfg.enabled:
                return None
            request = self._request()
            if request is not None and is_excluded_path(request.path, cfg.exclude_patterns):
                return None

            state = CallState(ctx=ctx, config=cfg, decision=resolve(cfg, ctx.override), request=request)
            state.state = InvocationState.ENTERED
            self._log_entry(state)
            state.state = InvocationState.EXECUTING
            return state
        except Exception as exc:
            _internal.debug("call logging failed before %s: %s", _safe_name(ctx), exc)
            return None

    def _log_entry(self, state: CallState) -> None:
        ctx, cfg, decision = state.ctx, state.config, state.decision
        src = ctx.source
        self._emit(logging.INFO, src, line_banner(f"[{ctx.name}] CALL"))

        if decision.log_params:
            arguments = ctx.arguments()
            if arguments:
                node = self.serializer.serialize(arguments, cfg.excluded_classes, max_depth=cfg.max_depth)
                node = mask_fields(
                    node, decision.mask_fields, cfg.masking.mask_value, enabled=decision.mask_enabled
                )
                self._emit_block(src, "CALL PARAMETER", to_plain(node))

        if decision.log_headers and state.request is not None:
            self._emit_block(src, "HTTP REQUEST INFO", self._request_info(state, state.request))

    def _request_info(self, state: CallState, req: RequestContext) -> Dict[str, Any]:
        cfg = state.config
        headers = mask_headers(
            filter_headers(req.headers, cfg.header),
            cfg.masking.mask_headers,
            cfg.masking.mask_value,
            enabled=state.decision.mask_enabled,
        )
        info: Dict[str, Any] = {"method": req.method, "URI": req.path}
        if headers:
            info["headers"] = headers
        if req.request_id:
            info["requestId"] = req.request_id
        return info

    # ---- exit -------------------------------------------------------------

    def after(
        self,
        state: Optional[CallState],
        result: Any = None,
        error: Optional[BaseException] = None,
    ) -> None:
        """Log the outcome. Never raises, never changes `result` or `error`."""
        if state is None:
            return
        try:
            if error is not None:
                state.state = InvocationState.EXITED_FAILURE
                self._log_failure(state, error)
            else:
                state.state = InvocationState.EXITED_SUCCESS
                self._log_success(state, result)
        except Exception as exc:
            _internal.debug("call logging failed after %s: %s", _safe_name(state.ctx), exc)

    def _log_success(self, state: CallState, result: Any) -> None:
        ctx = state.ctx
        self._emit(logging.INFO, ctx.source, line_banner(f"[{ctx.name}] RESULT"))
        if not state.decision.log_result or result is None:
            return
        if is_response_like(result):
            payload = self._response_summary(state, result)
        else:
            cfg = state.config
            node = self.serializer.serialize(result, cfg.excluded_classes, max_depth=cfg.max_depth)
            node = mask_fields(
                node, state.decision.mask_fields, cfg.masking.mask_value, enabled=state.decision.mask_enabled
            )
            payload = to_plain(node)
        self._emit_block(ctx.source, None, payload)

    def _response_summary(self, state: CallState, response: Any) -> Dict[str, Any]:
        """
        Status, masked headers and body of a response-like result.

        The body is never iterated: raw text/bytes go through the size limit,
        plain containers are serialized and masked, anything else is
        described by type only.
        """
        cfg, decision = state.config, state.decision
        summary: Dict[str, Any] = {}
        try:
            summary["statusCode"] = first_attr(response, _STATUS_ATTRS)
        except Exception:
            summary["statusCode"] = "unknown"
        try:
            summary["headers"] = mask_headers(
                getattr(response, "headers"),
                cfg.masking.mask_headers,
                cfg.masking.mask_value,
                enabled=decision.mask_enabled,
            )
        except Exception:
            summary["headers"] = {}

        try:
            body = first_attr(response, _BODY_ATTRS)
        except Exception:
            body = None

        if body is None:
            return summary
        if _is_complex_body(body):
            summary["bodyType"] = simple_type_name(body)
            summary["bodyInfo"] = "Complex object - logged separately by response middleware"
        elif isinstance(body, (str, bytes, bytearray)):
            summary["body"] = render_body(
                body, max_size=cfg.max_response_body_size, pretty=cfg.pretty_print_json
            )
        else:
            node = self.serializer.serialize(body, cfg.excluded_classes, max_depth=cfg.max_depth)
            node = mask_fields(node, decision.mask_fields, cfg.masking.mask_value, enabled=decision.mask_enabled)
            summary["body"] = to_plain(node)
        return summary

    def _log_failure(self, state: CallState, error: BaseException) -> None:
        src = state.ctx.source
        self._emit(logging.ERROR, src, line_banner(f"[ERROR][X] {state.ctx.name} exception"))
        self._emit(logging.ERROR, src, f"Exception: {simple_type_name(error)}: {safe_str(error)}")

    # ---- timing -----------------------------------------------------------

    def log_duration(self, ctx: CallContext, elapsed_ms: float) -> None:
        try:
            if not self.config.get().enabled:
                return
            self._emit(logging.INFO, ctx.source, line_banner(f"[TIME]: {ctx.name} : {int(elapsed_ms)} ms"))
        except Exception as exc:
            _internal.debug("timing log failed for %s: %s", _safe_name(ctx), exc)

    # ---- helpers ----------------------------------------------------------

    def _request(self) -> Optional[RequestContext]:
        try:
            return self.context_provider()
        except Exception:
            return None

    def _emit(self, level: int, source: str, message: str) -> None:
        self.log.log(level, "%s", message, extra={"call_source": source})

    def _emit_block(self, source: str, title: Optional[str], payload: Any) -> None:
        if title is not None:
            self._emit(logging.INFO, source, line_banner(title))
        pretty = dumps_json(payload, pretty=True)
        self._emit(logging.INFO, source, line_banner())
        self._emit(logging.INFO, source, pretty)
        self._emit(logging.INFO, source, line_banner())


def _safe_name(ctx: Any) -> str:
    try:
        return ctx.name
    except Exception:
        return "?"


# ---------------------------------------------------------------------------
# Default instance
# ---------------------------------------------------------------------------

_default_lock = threading.Lock()
_default_logger: Optional[InvocationLogger] = None


def _build_default() -> InvocationLogger:
    # a broken config file must not fail the decorated call; log with defaults
    try:
        return InvocationLogger()
    except Exception as exc:
        _internal.warning("call logging configuration could not be loaded, using defaults: %s", exc)
        return InvocationLogger(GlobalConfig())


def default_invocation_logger() -> InvocationLogger:
    """Process-wide logger used by decorators without an explicit one."""
    global _default_logger
    if _default_logger is None:
        with _default_lock:
            if _default_logger is None:
                _default_logger = _build_default()
    return _default_logger


def set_default_invocation_logger(logger: Optional[InvocationLogger]) -> None:
    """Install the logger decorators use by default (None: rebuild lazily)."""
    global _default_logger
    with _default_lock:
        _default_logger = logger


# ---------------------------------------------------------------------------
# Decorators
# ---------------------------------------------------------------------------


def _signature(func: Callable[..., Any]) -> Optional[inspect.Signature]:
    try:
        return inspect.signature(func)
    except (TypeError, ValueError):
        return None


def log_call(
    func: Optional[F] = None,
    *,
    header: Union[TriState, bool, str, None] = None,
    mask: Union[TriState, bool, str, None] = None,
    params: Union[TriState, bool, str, None] = None,
    result: Union[TriState, bool, str, None] = None,
    mask_fields: Optional[Iterable[str]] = None,
    invocation_logger: Optional[InvocationLogger] = None,
) -> Any:
    """
    Log calls to the decorated function: parameters, request info, result
    or exception.

        @log_call
        def find(user_id): ...

        @log_call(header=True, mask_fields=["ssn"])
        async def create(payload): ...

    `header` / `mask` / `params` / `result` accept TriState, a bool (force
    on / off) or None (follow the global configuration). `mask_fields`
    extends the global keyword list for this call site.
    """
    override = CallOverride.build(
        header=header, mask=mask, params=params, result=result, mask_fields=mask_fields
    )

    def decorate(fn: F) -> F:
        sig = _signature(fn)

        def _ctx(args: Tuple[Any, ...], kwargs: Dict[str, Any]) -> CallContext:
            return CallContext(func=fn, args=args, kwargs=kwargs, override=override, signature=sig)

        if inspect.iscoroutinefunction(fn):

            @functools.wraps(fn)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                il = invocation_logger or default_invocation_logger()
                state = il.before(_ctx(args, kwargs))
                try:
                    out = await fn(*args, **kwargs)
                except Exception as exc:
                    il.after(state, error=exc)
                    raise
                il.after(state, result=out)
                return out

            return async_wrapper  # type: ignore[return-value]

        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            il = invocation_logger or default_invocation_logger()
            state = il.before(_ctx(args, kwargs))
            try:
                out = fn(*args, **kwargs)
            except Exception as exc:
                il.after(state, error=exc)
                raise
            il.after(state, result=out)
            return out

        return wrapper  # type: ignore[return-value]

    if func is not None:
        return decorate(func)
    return decorate


def log_time(func: Optional[F] = None, *, invocation_logger: Optional[InvocationLogger] = None) -> Any:
    """Log `[TIME]: Owner.method : <n> ms` after every call, successful or not."""

    def decorate(fn: F) -> F:
        if inspect.iscoroutinefunction(fn):

            @functools.wraps(fn)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                t0 = time.perf_counter()
                try:
                    return await fn(*args, **kwargs)
                finally:
                    il = invocation_logger or default_invocation_logger()
                    il.log_duration(CallContext(func=fn), (time.perf_counter() - t0) * 1000.0)

            return async_wrapper  # type: ignore[return-value]

        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            t0 = time.perf_counter()
            try:
                return fn(*args, **kwargs)
            finally:
                il = invocation_logger or default_invocation_logger()
                il.log_duration(CallContext(func=fn), (time.perf_counter() - t0) * 1000.0)

        return wrapper  # type: ignore[return-value]

    if func is not None:
        return decorate(func)
    return decorate


def log_monitor(func: Optional[F] = None, **options: Any) -> Any:
    """`log_call` and `log_time` together; accepts the `log_call` options."""
    invocation_logger = options.get("invocation_logger")

    def decorate(fn: F) -> F:
        return log_time(log_call(**options)(fn), invocation_logger=invocation_logger)

    if func is not None:
        return decorate(func)
    return decorate


__all__ = [
    "InvocationState",
    "CallContext",
    "CallState",
    "InvocationLogger",
    "is_response_like",
    "display_name",
    "default_invocation_logger",
    "set_default_invocation_logger",
    "log_call",
    "log_time",
    "log_monitor",
]
