"""txscribe: record, snapshot and narrate on-chain test scenarios."""

__version__ = "0.1.0"

from .recorder import Scenario, ScenarioBook, ScenarioState
from .registry import AddressRegistry, normalize_address
from .types import EntryKind, EventRecord, LogEntry, MethodDescriptor, ScenarioConfig

__all__ = [
    "AddressRegistry",
    "EntryKind",
    "EventRecord",
    "LogEntry",
    "MethodDescriptor",
    "Scenario",
    "ScenarioBook",
    "ScenarioConfig",
    "ScenarioState",
    "__version__",
    "normalize_address",
]
