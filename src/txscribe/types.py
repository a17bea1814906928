"""Typed data contracts shared by the registry, resolver, recorder and renderers.

Log entries are immutable once created. Their serialized form (``to_dict``) is
the value compared against stored snapshots, so every field in it must be
JSON-compatible and free of floats.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Literal, Mapping, Optional, Tuple, TypedDict, Union

from .values import DecodedValue, Struct, from_native, to_native

AddressSource = Union[str, Awaitable[str], Callable[[], Union[str, Awaitable[str]]]]
Extractor = Callable[["Receipt"], Any]
Balances = Dict[str, Dict[str, int]]


class EntryKind(str, Enum):
    METHOD_CALL = "methodCall"
    INITIAL_STATE = "initialState"


@dataclass(frozen=True)
class Param:
    name: str
    type: str


@dataclass(frozen=True)
class MethodDescriptor:
    """Decoded method identity: name plus the typed parameter list."""

    name: str
    inputs: Tuple[Param, ...] = ()

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(param.type for param in self.inputs)})"

    def to_dict(self) -> "MethodPayload":
        return {"name": self.name, "inputs": [{"name": p.name, "type": p.type} for p in self.inputs]}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MethodDescriptor":
        inputs = tuple(Param(str(item.get("name", "")), str(item.get("type", ""))) for item in data.get("inputs", []))
        return cls(name=str(data["name"]), inputs=inputs)


@dataclass(frozen=True)
class EventRecord:
    contract: str
    name: str
    args: Struct = field(default_factory=Struct)

    def positional(self) -> Tuple[DecodedValue, ...]:
        return self.args.values()

    def to_dict(self) -> "EventPayload":
        return {"contract": self.contract, "name": self.name, "args": to_native(self.args)}


@dataclass(frozen=True)
class PendingCall:
    """An intercepted outgoing call that has not been confirmed yet."""

    tx_hash: str
    sender: Optional[str]
    to: Optional[str]
    data: Any


@dataclass(frozen=True)
class Receipt:
    """Confirmation record of an included transaction.

    ``logs`` are handed back verbatim to contract interfaces for decoding and
    ``raw`` keeps the provider's own receipt object for custom-state extractors.
    """

    tx_hash: str
    block_hash: str
    block_number: Optional[int] = None
    status: Optional[int] = None
    logs: Tuple[Any, ...] = ()
    raw: Any = None


@dataclass(frozen=True)
class LogEntry:
    kind: EntryKind
    method: Optional[MethodDescriptor]
    caller: str
    contract: str
    args: Tuple[DecodedValue, ...] = ()
    balances: Balances = field(default_factory=dict)
    events: Tuple[EventRecord, ...] = ()
    custom_state: Optional[Dict[str, Any]] = None
    tx_hash: Optional[str] = None

    @property
    def method_name(self) -> str:
        return self.method.name if self.method else ""

    def named_args(self) -> Dict[str, DecodedValue]:
        """Map parameter names to values; unnamed parameters fall back to their index."""
        names = [param.name for param in self.method.inputs] if self.method else []
        result: Dict[str, DecodedValue] = {}
        for index, value in enumerate(self.args):
            name = names[index] if index < len(names) and names[index] else str(index)
            result[name] = value
        return result

    def to_dict(self) -> "LogEntryPayload":
        return {
            "kind": self.kind.value,
            "method": self.method.to_dict() if self.method else None,
            "caller": self.caller,
            "contract": self.contract,
            "args": [to_native(arg) for arg in self.args],
            "balances": {token: dict(holders) for token, holders in self.balances.items()},
            "events": [event.to_dict() for event in self.events],
            "custom_state": self.custom_state,
            "tx_hash": self.tx_hash,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LogEntry":
        validate_log_entry_payload(data)
        method = data.get("method")
        events = []
        for event in data.get("events", []):
            args = from_native(event.get("args", {}))
            if not isinstance(args, Struct):
                raise ValueError("Event args must be a JSON object")
            events.append(EventRecord(contract=str(event["contract"]), name=str(event["name"]), args=args))
        return cls(
            kind=EntryKind(data["kind"]),
            method=MethodDescriptor.from_dict(method) if method else None,
            caller=str(data.get("caller", "")),
            contract=str(data.get("contract", "")),
            args=tuple(from_native(arg) for arg in data.get("args", [])),
            balances={token: {holder: int(v) for holder, v in holders.items()} for token, holders in data.get("balances", {}).items()},
            events=tuple(events),
            custom_state=data.get("custom_state"),
            tx_hash=data.get("tx_hash"),
        )


@dataclass(frozen=True)
class ScenarioConfig:
    """What a scenario tracks: named accounts, contracts, tokens and extractors."""

    accounts: Mapping[str, AddressSource] = field(default_factory=dict)
    contracts: Mapping[str, Any] = field(default_factory=dict)
    tokens: Mapping[str, Any] = field(default_factory=dict)
    custom_state: Mapping[str, Extractor] = field(default_factory=dict)
    name: Optional[str] = None


@dataclass(frozen=True)
class ScenarioRecord:
    """Read-only view of a finished scenario handed to snapshots and renderers."""

    name: str
    entries: Tuple[LogEntry, ...]
    tokens: Tuple[str, ...] = ()
    decimals: Dict[str, Optional[int]] = field(default_factory=dict)

    @property
    def calls(self) -> Tuple[LogEntry, ...]:
        return tuple(entry for entry in self.entries if entry.kind is EntryKind.METHOD_CALL)


class MethodPayload(TypedDict):
    name: str
    inputs: List[Dict[str, str]]


class EventPayload(TypedDict):
    contract: str
    name: str
    args: Dict[str, Any]


class LogEntryPayload(TypedDict):
    """Serialized log entry.

    Invariant:
    - ``kind`` is ``methodCall`` or ``initialState``.
    - ``method`` is present for ``methodCall`` entries.
    - balances are integers keyed by token then holder alias.
    """

    kind: Literal["methodCall", "initialState"]
    method: Optional[MethodPayload]
    caller: str
    contract: str
    args: List[Any]
    balances: Dict[str, Dict[str, int]]
    events: List[EventPayload]
    custom_state: Optional[Dict[str, Any]]
    tx_hash: Optional[str]


class ScenarioPayload(TypedDict, total=False):
    tokens: List[str]
    decimals: Dict[str, Optional[int]]
    entries: List[LogEntryPayload]


class SnapshotFile(TypedDict):
    """Versioned persisted snapshot of every scenario recorded in one test file."""

    format_version: int
    engine_version: str
    scenarios: Dict[str, ScenarioPayload]


def validate_log_entry_payload(data: Any) -> LogEntryPayload:
    """Validate a serialized log entry at load boundaries.

    Raises:
        ValueError: if required keys are missing or have invalid types.
    """

    if not isinstance(data, Mapping):
        raise ValueError("Log entry must be a JSON object")
    kind = data.get("kind")
    if kind not in {EntryKind.METHOD_CALL.value, EntryKind.INITIAL_STATE.value}:
        raise ValueError(f"Invalid log entry kind: {kind!r}")
    if kind == EntryKind.METHOD_CALL.value:
        method = data.get("method")
        if not isinstance(method, Mapping) or not isinstance(method.get("name"), str):
            raise ValueError("Method call entry missing required object field: method.name")
    balances = data.get("balances", {})
    if not isinstance(balances, Mapping):
        raise ValueError("Log entry field 'balances' must be an object")
    for token, holders in balances.items():
        if not isinstance(holders, Mapping):
            raise ValueError(f"Balances of token '{token}' must be an object")
        for holder, value in holders.items():
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"Balance of '{holder}' in '{token}' must be an integer")
    if not isinstance(data.get("events", []), list):
        raise ValueError("Log entry field 'events' must be a list")
    if not isinstance(data.get("args", []), list):
        raise ValueError("Log entry field 'args' must be a list")
    return data  # type: ignore[return-value]


class DiffChange(TypedDict, total=False):
    """Single structured diff change item."""

    path: str
    change_type: str
    severity: Literal["low", "medium", "high"]
    baseline: Any
    current: Any
    baseline_type: str
    current_type: str
