"""
bangchat/plugins/params.py - Plugin Parameter Strings

Plugin constructors receive an opaque "key=value,key2=value2" string. These
helpers split it into a dict and read typed values out of it. Pieces without
"=" are skipped with a warning, as are empty keys.
"""

from __future__ import annotations

from typing import Iterable, Optional

from bangchat.observability.logger import get_logger

log = get_logger(__name__)

PARAM_SEPARATOR = ","

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def parse_params(text: Optional[str]) -> dict[str, str]:
    """
    Split "k=v,k2=v2" into {"k": "v", "k2": "v2"}.

    Later keys override earlier ones. The value may itself contain "=".
    """
    params: dict[str, str] = {}
    if not text:
        return params
    for piece in text.split(PARAM_SEPARATOR):
        piece = piece.strip()
        if not piece:
            continue
        key, sep, value = piece.partition("=")
        key = key.strip()
        if not sep or not key:
            log.warning("params.malformed", piece=piece)
            continue
        params[key] = value.strip()
    return params


def param_str(params: dict[str, str], key: str, default: Optional[str] = None) -> Optional[str]:
    value = params.get(key)
    return value if value else default


def param_int(params: dict[str, str], key: str, default: int) -> int:
    if key not in params:
        return default
    try:
        return int(params[key])
    except ValueError:
        raise ValueError(f"parameter '{key}' must be an integer, got {params[key]!r}") from None


def param_float(params: dict[str, str], key: str, default: float) -> float:
    if key not in params:
        return default
    try:
        return float(params[key])
    except ValueError:
        raise ValueError(f"parameter '{key}' must be a number, got {params[key]!r}") from None


def param_bool(params: dict[str, str], key: str, default: bool) -> bool:
    if key not in params:
        return default
    value = params[key].lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"parameter '{key}' must be a boolean, got {params[key]!r}")


def warn_unknown(params: dict[str, str], known: Iterable[str], plugin: str) -> None:
    """Log a warning for every parameter the plugin does not understand."""
    unknown = sorted(set(params) - set(known))
    if unknown:
        log.warning("params.unknown", plugin=plugin, keys=unknown)
