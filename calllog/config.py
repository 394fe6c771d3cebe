# FILE: calllog/config.py
from __future__ import annotations

import logging
import os
import re
import threading
from typing import Any, Dict, Optional, Tuple, Union

try:
    import yaml  # type: ignore
except Exception:  # pragma: no cover
    yaml = None

from pydantic import BaseModel, ConfigDict, Field, field_validator


_log = logging.getLogger("calllog.internal")


# ---------------------------------------------------------------------------
# Env helpers
# ---------------------------------------------------------------------------


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    v = raw.strip().lower()
    return v in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except Exception:
        return default


def _env_list(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return tuple(p.strip() for p in raw.split(",") if p.strip())


_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def _snake(key: str) -> str:
    return _CAMEL_RE.sub("_", str(key)).replace("-", "_").lower()


def _normalize_keys(doc: Any) -> Any:
    """
    Accept kebab-case and camelCase keys (`max-response-body-size`,
    `maskFields`) alongside snake_case.
    """
    if isinstance(doc, dict):
        return {_snake(k): _normalize_keys(v) for k, v in doc.items()}
    return doc


def _load_yaml_mapping(path: str) -> Dict[str, Any]:
    """
    Load the configuration mapping from YAML.

    Constraints:
      - Ignore if path missing or YAML not available.
      - Only accept dict at top-level.
      - A top-level `calllog` key, when present, is used as the root.
    """
    if not path or yaml is None:
        return {}
    if not os.path.exists(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            doc = yaml.safe_load(f)
    except Exception:
        _log.warning("failed to load YAML config from %s", path, exc_info=True)
        return {}
    if not isinstance(doc, dict):
        return {}
    doc = _normalize_keys(doc)
    root = doc.get("calllog")
    if isinstance(root, dict):
        return root
    return doc


def _deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(base)
    for k, v in overlay.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


# ---------------------------------------------------------------------------
# Configuration models
# ---------------------------------------------------------------------------


class HeaderPolicy(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    # Global header logging switch; call sites may force it either way.
    enabled: bool = False
    # Log every request header (still subject to masking).
    include_all: bool = False
    # Header names (case-insensitive) logged when include_all is False.
    include_headers: Tuple[str, ...] = ()


class MaskingPolicy(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    enabled: bool = True
    mask_value: str = "****"
    # Field-name keywords; a key containing one of these is masked.
    mask_fields: Tuple[str, ...] = ()
    # Header-name keywords; empty means the built-in sensitive set.
    mask_headers: Tuple[str, ...] = ()

    @field_validator("mask_value")
    @classmethod
    def _mask_value_not_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("mask_value must be a non-empty string")
        return v


class GlobalConfig(BaseModel):
    """
    Process-wide, immutable snapshot of the call logging configuration.

    A snapshot is never mutated; reconfiguration builds a new instance and
    swaps it into a `ConfigHandle`.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    enabled: bool = True
    header: HeaderPolicy = Field(default_factory=HeaderPolicy)
    masking: MaskingPolicy = Field(default_factory=MaskingPolicy)

    # Type names (exact or substring of `module.QualName`) never expanded.
    excluded_classes: Tuple[str, ...] = ()
    # Request paths (substring match) for which nothing is logged.
    exclude_patterns: Tuple[str, ...] = ()

    max_response_body_size: int = Field(default=4096, ge=0)
    pretty_print_json: bool = False

    # Defaults the per-call params/result flags fall back to.
    log_params: bool = True
    log_result: bool = True

    # Serializer recursion bound.
    max_depth: int = Field(default=10, ge=1)

    config_origin: str = "defaults"


# ---------------------------------------------------------------------------
# Loading / merging
# ---------------------------------------------------------------------------


def load_config() -> GlobalConfig:
    """
    Load GlobalConfig from defaults, optional YAML, and environment variables.

    Priority:
      1. GlobalConfig defaults (in-code).
      2. YAML file pointed to by CALLLOG_CONFIG_PATH.
      3. Environment variables (CALLLOG_*).
    """
    merged: Dict[str, Any] = GlobalConfig().model_dump()
    origin = "defaults"

    # 1) YAML overlay
    yaml_path = os.environ.get("CALLLOG_CONFIG_PATH", "").strip()
    yaml_doc = _load_yaml_mapping(yaml_path)
    if yaml_doc:
        # extra="forbid": unknown keys in the file raise here, at load time
        merged = GlobalConfig(**_deep_merge(merged, yaml_doc)).model_dump()
        origin = "yaml"

    # 2) Environment overrides
    header = dict(merged["header"])
    masking = dict(merged["masking"])

    merged["enabled"] = _env_bool("CALLLOG_ENABLED", merged["enabled"])

    header["enabled"] = _env_bool("CALLLOG_HEADER_ENABLED", header["enabled"])
    header["include_all"] = _env_bool("CALLLOG_HEADER_INCLUDE_ALL", header["include_all"])
    header["include_headers"] = _env_list("CALLLOG_HEADER_INCLUDE", tuple(header["include_headers"]))

    masking["enabled"] = _env_bool("CALLLOG_MASKING_ENABLED", masking["enabled"])
    mask_value = os.environ.get("CALLLOG_MASK_VALUE", "")
    if mask_value:
        masking["mask_value"] = mask_value
    masking["mask_fields"] = _env_list("CALLLOG_MASK_FIELDS", tuple(masking["mask_fields"]))
    masking["mask_headers"] = _env_list("CALLLOG_MASK_HEADERS", tuple(masking["mask_headers"]))

    merged["header"] = header
    merged["masking"] = masking

    merged["excluded_classes"] = _env_list("CALLLOG_EXCLUDED_CLASSES", tuple(merged["excluded_classes"]))
    merged["exclude_patterns"] = _env_list("CALLLOG_EXCLUDE_PATTERNS", tuple(merged["exclude_patterns"]))

    body_size = _env_int("CALLLOG_MAX_RESPONSE_BODY_SIZE", merged["max_response_body_size"])
    if body_size >= 0:
        merged["max_response_body_size"] = body_size

    merged["pretty_print_json"] = _env_bool("CALLLOG_PRETTY_PRINT_JSON", merged["pretty_print_json"])

    depth = _env_int("CALLLOG_MAX_DEPTH", merged["max_depth"])
    if 1 <= depth <= 64:
        merged["max_depth"] = depth

    merged["config_origin"] = origin

    return GlobalConfig(**merged)


# ---------------------------------------------------------------------------
# Swappable handle
# ---------------------------------------------------------------------------


class ConfigHandle:
    """
    Holder for the current GlobalConfig snapshot.

    Properties:
      - get(): lock-free read of the current immutable snapshot.
      - swap(): replaces the snapshot in one reference assignment.
      - update(): derives a new snapshot from the current one (nested keys
                  merge) and swaps it in.
      - refresh(): reloads from YAML / environment and swaps it in.

    Writers serialize on a lock so read-modify-write updates do not race;
    readers never take it and always see a complete snapshot.
    """

    def __init__(self, initial: Optional[GlobalConfig] = None) -> None:
        self._lock = threading.Lock()
        self._config = initial if initial is not None else load_config()

    def get(self) -> GlobalConfig:
        return self._config

    def swap(self, new: GlobalConfig) -> GlobalConfig:
        if not isinstance(new, GlobalConfig):
            raise TypeError(f"expected GlobalConfig, got {type(new).__name__}")
        with self._lock:
            old = self._config
            self._config = new
        _log.debug("call logging configuration replaced (origin=%s)", new.config_origin)
        return old

    def update(self, **changes: Any) -> GlobalConfig:
        """
        Apply in-memory overrides, e.g. `update(masking={"enabled": False})`.

        Invalid values raise pydantic.ValidationError and leave the current
        snapshot in place.
        """
        with self._lock:
            data = self._config.model_dump()
            data = _deep_merge(data, _normalize_keys(changes))
            data["config_origin"] = "runtime"
            updated = GlobalConfig(**data)
            self._config = updated
            return updated

    def refresh(self) -> GlobalConfig:
        new = load_config()
        self.swap(new)
        return new


def make_config_handle() -> ConfigHandle:
    return ConfigHandle(load_config())


def as_config_handle(config: Union[ConfigHandle, GlobalConfig, None]) -> ConfigHandle:
    """Accept a handle, a bare snapshot (wrapped), or None (load from env)."""
    if isinstance(config, ConfigHandle):
        return config
    if isinstance(config, GlobalConfig):
        return ConfigHandle(config)
    if config is None:
        return make_config_handle()
    raise TypeError(f"expected ConfigHandle or GlobalConfig, got {type(config).__name__}")


__all__ = [
    "HeaderPolicy",
    "MaskingPolicy",
    "GlobalConfig",
    "ConfigHandle",
    "load_config",
    "make_config_handle",
    "as_config_handle",
]
