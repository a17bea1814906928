from __future__ import annotations

import json
from typing import Any, Dict, Optional

from .types import LogEntry
from .values import Array, Scalar, Struct, to_native

KNOWN_CONSTANTS = {
    "0x0000000000000000000000000000000000000000": "ZERO_ADDR",
    "0x0000000000000000000000000000000000000000000000000000000000000000": "ZERO",
    "0xffffffffffffffffffffffffffffffffffffffffffffffffffffffffffffffff": "MAX_UINT256",
}

DEFAULT_MAX_LENGTH = 20


def limit_length(text: str, limit: int = DEFAULT_MAX_LENGTH) -> str:
    if len(text) <= limit:
        return text
    half = limit // 2
    return text[:half] + ".." + text[-half:]


def stringify_value(value: Any, limit: int = DEFAULT_MAX_LENGTH) -> str:
    """Compact one-line rendering used in headings and diagram labels."""
    if isinstance(value, (Scalar, Array, Struct)):
        value = to_native(value)
    if isinstance(value, str):
        constant = KNOWN_CONSTANTS.get(value.lower())
        return constant if constant is not None else limit_length(value, limit)
    if isinstance(value, bool) or value is None:
        return stringify_value(json.dumps(value), limit)
    if isinstance(value, int):
        return stringify_value(str(value), limit)
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(stringify_value(item, limit) for item in value) + "]"
    if isinstance(value, dict):
        return "{" + ", ".join(f"{key}: {stringify_value(item, limit)}" for key, item in value.items()) + "}"
    return stringify_value(str(value), limit)


def stringify_multiline(value: Any) -> str:
    if isinstance(value, (Scalar, Array, Struct)):
        value = to_native(value)
    return json.dumps(value, indent=2, default=str)


def arguments_verbose(entry: LogEntry, limit: int = DEFAULT_MAX_LENGTH) -> str:
    """Named call arguments as an indented JSON object of compact strings."""
    result: Dict[str, str] = {name: stringify_value(value, limit) for name, value in entry.named_args().items()}
    return json.dumps(result, indent=2)


def format_units(value: int, decimals: Optional[int]) -> str:
    """Render an integer amount with ``decimals`` fractional digits, without floats."""
    if not decimals:
        return str(value)
    sign = "-" if value < 0 else ""
    whole, fraction = divmod(abs(value), 10**decimals)
    if not fraction:
        return f"{sign}{whole}"
    digits = str(fraction).rjust(decimals, "0").rstrip("0")
    return f"{sign}{whole}.{digits}"


def format_delta(current: int, previous: Optional[int], decimals: Optional[int] = None) -> str:
    if previous is None or current == previous:
        return ""
    delta = current - previous
    return ("+" if delta > 0 else "") + format_units(delta, decimals)
