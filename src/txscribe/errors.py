"""Structured txscribe error taxonomy used for deterministic, auditable failures."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence


class TxScribeError(Exception):
    """Base class for all txscribe domain exceptions."""

    def __init__(self, error_code: str, category: str, explanation: str, actionable: bool = True):
        self.error_code = error_code
        self.category = category
        self.explanation = explanation
        self.actionable = actionable
        super().__init__(f"[{self.category}:{self.error_code}] {self.explanation}")


class CallDecodeError(TxScribeError):
    """An intercepted call could not be matched to a tracked contract method."""

    def __init__(self, explanation: str, tx_hash: str | None = None):
        self.tx_hash = tx_hash
        super().__init__("DECODE_FAILURE", "RESOLUTION", explanation, True)


class ReceiptUnavailableError(TxScribeError):
    def __init__(self, explanation: str, tx_hash: str | None = None):
        self.tx_hash = tx_hash
        super().__init__("RECEIPT_UNAVAILABLE", "RESOLUTION", explanation, True)


class ExtractorError(TxScribeError):
    def __init__(self, extractor: str, explanation: str):
        self.extractor = extractor
        super().__init__("CUSTOM_STATE_EXTRACTOR", "RESOLUTION", explanation, True)


class ScenarioUsageError(TxScribeError):
    """Scenario lifecycle was driven out of order by the surrounding harness."""

    def __init__(self, explanation: str):
        super().__init__("SCENARIO_USAGE", "LIFECYCLE", explanation, True)


class ScenarioFinalizationError(TxScribeError):
    """One or more in-flight resolutions failed while a scenario was being closed."""

    def __init__(self, scenario: str, failures: Sequence[BaseException]):
        self.scenario = scenario
        self.failures: List[BaseException] = list(failures)
        details = "; ".join(str(failure) for failure in self.failures)
        super().__init__(
            "FINALIZATION",
            "LIFECYCLE",
            f"Scenario '{scenario}' failed to finalize ({len(self.failures)} failure(s)): {details}",
            True,
        )


class SnapshotFormatError(TxScribeError):
    def __init__(self, explanation: str, actionable: bool = True):
        super().__init__("SNAPSHOT_FORMAT", "SNAPSHOT", explanation, actionable)


class DiffContractError(TxScribeError):
    def __init__(self, explanation: str, actionable: bool = True):
        super().__init__("DIFF_CONTRACT", "DIFF", explanation, actionable)


@dataclass
class SnapshotMismatchError(AssertionError, TxScribeError):
    """Raised when a recorded scenario no longer matches its stored snapshot."""

    message: str
    scenario_id: str
    reason_code: str = "SNAPSHOT_MISMATCH"

    def __post_init__(self) -> None:
        TxScribeError.__init__(self, self.reason_code, "SNAPSHOT", self.message, True)
        AssertionError.__init__(self, self.message)

    def __str__(self) -> str:
        return self.message
