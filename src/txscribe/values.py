"""Closed value model for decoded ABI arguments.

Every decoded argument is one of three shapes:

- ``Scalar``: an int, str, bool or ``None`` leaf (bytes are carried as ``0x`` hex);
- ``Array``: an ordered sequence of decoded values;
- ``Struct``: an ordered, field-keyed record of decoded values.

Floats are rejected at the boundary so no floating-point value ever reaches a
recorded log entry.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Iterator, Mapping, Tuple, Union

ScalarValue = Union[int, str, bool, None]


@dataclass(frozen=True)
class Scalar:
    value: ScalarValue


@dataclass(frozen=True)
class Array:
    items: Tuple["DecodedValue", ...] = ()

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator["DecodedValue"]:
        return iter(self.items)


@dataclass(frozen=True)
class Struct:
    fields: Tuple[Tuple[str, "DecodedValue"], ...] = ()

    def __len__(self) -> int:
        return len(self.fields)

    def keys(self) -> Tuple[str, ...]:
        return tuple(name for name, _ in self.fields)

    def values(self) -> Tuple["DecodedValue", ...]:
        return tuple(value for _, value in self.fields)

    def get(self, name: str, default: "DecodedValue | None" = None) -> "DecodedValue | None":
        for key, value in self.fields:
            if key == name:
                return value
        return default


DecodedValue = Union[Scalar, Array, Struct]


def from_native(value: Any) -> DecodedValue:
    """Convert a decoder's native Python value into the closed value model."""
    if isinstance(value, (Scalar, Array, Struct)):
        return value
    if isinstance(value, bool) or value is None:
        return Scalar(value)
    if isinstance(value, int):
        return Scalar(int(value))
    if isinstance(value, str):
        return Scalar(str(value))
    if isinstance(value, (bytes, bytearray)):
        return Scalar("0x" + bytes(value).hex())
    if isinstance(value, Decimal):
        return Scalar(str(value))
    if isinstance(value, float):
        raise TypeError("Floating-point values are not allowed in decoded arguments")
    if isinstance(value, Mapping):
        return Struct(tuple((str(key), from_native(item)) for key, item in value.items()))
    if isinstance(value, (list, tuple)):
        return Array(tuple(from_native(item) for item in value))
    raise TypeError(f"Unsupported decoded value type: {type(value).__name__}")


def to_native(value: DecodedValue) -> Any:
    """JSON-compatible rendering: Scalar -> leaf, Array -> list, Struct -> dict."""
    if isinstance(value, Scalar):
        return value.value
    if isinstance(value, Array):
        return [to_native(item) for item in value.items]
    if isinstance(value, Struct):
        return {name: to_native(item) for name, item in value.fields}
    raise TypeError(f"Not a decoded value: {type(value).__name__}")


def map_leaves(value: DecodedValue, transform: Callable[[ScalarValue], ScalarValue]) -> DecodedValue:
    """Apply ``transform`` to every scalar leaf while preserving structure."""
    if isinstance(value, Scalar):
        return Scalar(transform(value.value))
    if isinstance(value, Array):
        return Array(tuple(map_leaves(item, transform) for item in value.items))
    if isinstance(value, Struct):
        return Struct(tuple((name, map_leaves(item, transform)) for name, item in value.fields))
    raise TypeError(f"Not a decoded value: {type(value).__name__}")
