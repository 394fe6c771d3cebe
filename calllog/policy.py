# FILE: calllog/policy.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, FrozenSet, Iterable, Optional, Union

if TYPE_CHECKING:  # pragma: no cover
    from .config import GlobalConfig


class TriState(str, Enum):
    """
    Three-valued call-site flag.

      - INHERIT:   follow the global configuration;
      - FORCE_ON:  enable regardless of the global configuration;
      - FORCE_OFF: disable regardless of the global configuration.
    """

    INHERIT = "inherit"
    FORCE_ON = "on"
    FORCE_OFF = "off"

    @classmethod
    def coerce(cls, value: Union["TriState", bool, str, None]) -> "TriState":
        """
        Accept the shapes call sites actually pass.

        Booleans map to FORCE_ON / FORCE_OFF, None maps to INHERIT, strings
        are matched case-insensitively against the member values and names.
        Anything unrecognized is treated as INHERIT.
        """
        if isinstance(value, TriState):
            return value
        if value is None:
            return cls.INHERIT
        if isinstance(value, bool):
            return cls.FORCE_ON if value else cls.FORCE_OFF
        if isinstance(value, str):
            v = value.strip().lower()
            for member in cls:
                if v == member.value or v == member.name.lower():
                    return member
            if v in ("default", "basic"):
                return cls.INHERIT
            if v in ("enabled", "true"):
                return cls.FORCE_ON
            if v in ("disabled", "false"):
                return cls.FORCE_OFF
        return cls.INHERIT

    def resolve(self, fallback: bool) -> bool:
        if self is TriState.FORCE_ON:
            return True
        if self is TriState.FORCE_OFF:
            return False
        return bool(fallback)


@dataclass(frozen=True)
class CallOverride:
    """
    Per-call-site customization attached by `log_call` and friends.

    `mask_fields` is additive: it extends the global keyword list and can
    never remove an entry from it.
    """

    header: TriState = TriState.INHERIT
    mask: TriState = TriState.INHERIT
    params: TriState = TriState.INHERIT
    result: TriState = TriState.INHERIT
    mask_fields: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def build(
        cls,
        *,
        header: Union[TriState, bool, str, None] = None,
        mask: Union[TriState, bool, str, None] = None,
        params: Union[TriState, bool, str, None] = None,
        result: Union[TriState, bool, str, None] = None,
        mask_fields: Optional[Iterable[str]] = None,
    ) -> "CallOverride":
        return cls(
            header=TriState.coerce(header),
            mask=TriState.coerce(mask),
            params=TriState.coerce(params),
            result=TriState.coerce(result),
            mask_fields=frozenset(str(f) for f in (mask_fields or ()) if f),
        )


@dataclass(frozen=True)
class PolicyDecision:
    """Fully resolved, boolean-only logging behaviour for one call."""

    log_headers: bool
    log_params: bool
    log_result: bool
    mask_enabled: bool
    mask_fields: FrozenSet[str]


def resolve(global_cfg: "GlobalConfig", override: Optional[CallOverride] = None) -> PolicyDecision:
    """
    Merge the global configuration with an optional call-site override.

    Precedence per flag: FORCE_ON / FORCE_OFF on the override wins, otherwise
    the global boolean applies. Mask keywords are the union of both sides.

    `global_cfg.enabled` is not consulted here; the invocation logger checks
    it before calling the resolver.
    """
    ov = override or CallOverride()

    global_fields = frozenset(str(f) for f in (global_cfg.masking.mask_fields or ()) if f)

    return PolicyDecision(
        log_headers=TriState.coerce(ov.header).resolve(global_cfg.header.enabled),
        log_params=TriState.coerce(ov.params).resolve(global_cfg.log_params),
        log_result=TriState.coerce(ov.result).resolve(global_cfg.log_result),
        mask_enabled=TriState.coerce(ov.mask).resolve(global_cfg.masking.enabled),
        mask_fields=global_fields | frozenset(ov.mask_fields or ()),
    )


__all__ = [
    "TriState",
    "CallOverride",
    "PolicyDecision",
    "resolve",
]
