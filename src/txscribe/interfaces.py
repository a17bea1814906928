"""Boundaries to the collaborators txscribe observes but does not own.

Decoding results are explicit tagged values: a contract interface answers with
``CallMatch``/``EventMatch`` when it recognises a payload and with ``NO_MATCH``
otherwise, so callers never probe result shapes at runtime.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional, Protocol, Sequence, Tuple, Union, runtime_checkable

from .types import MethodDescriptor, PendingCall, Receipt


class NoMatch:
    _instance: Optional["NoMatch"] = None

    def __new__(cls) -> "NoMatch":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NO_MATCH"


NO_MATCH = NoMatch()


@dataclass(frozen=True)
class CallMatch:
    method: MethodDescriptor
    args: Tuple[Any, ...] = ()


@dataclass(frozen=True)
class EventMatch:
    name: str
    args: Mapping[str, Any] = field(default_factory=dict)


CallDecoding = Union[CallMatch, NoMatch]
EventDecoding = Union[EventMatch, NoMatch]

# (positional args, keyword args, submission result) -> pending call, or None when
# the submission was not a state-changing transaction.
SubmissionExtractor = Callable[[Tuple[Any, ...], Mapping[str, Any], Any], Optional[PendingCall]]


@dataclass(frozen=True)
class SubmissionPoint:
    """The shared callable every outgoing transaction passes through."""

    owner: Any
    attribute: str
    extract: SubmissionExtractor


@runtime_checkable
class ContractInterface(Protocol):
    @property
    def address(self) -> Any: ...

    def decode_call(self, payload: Any) -> CallDecoding: ...

    def decode_event(self, log: Any) -> EventDecoding: ...

    def encode_call(self, name: str, args: Sequence[Any]) -> Any: ...


@runtime_checkable
class ChainProvider(Protocol):
    def submission_point(self) -> SubmissionPoint: ...

    async def get_receipt(self, tx_hash: str) -> Optional[Receipt]: ...

    async def historical_call(self, to: str, payload: Any, block_hash: str) -> bytes: ...

    async def latest_block_hash(self) -> str: ...


def log_emitter(log: Any) -> Optional[str]:
    """Best-effort emitting address of a receipt log (mapping or attribute style)."""
    if isinstance(log, Mapping):
        address = log.get("address")
    else:
        address = getattr(log, "address", None)
    return str(address) if address is not None else None
