"""Machine snapshots: one JSON file per test file, one section per scenario."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, List, Optional

from . import __version__ as ENGINE_VERSION
from .config import Config, get_config
from .diff import DiffPolicy, compare_logs, explain_differences
from .errors import SnapshotFormatError, SnapshotMismatchError
from .types import LogEntry, ScenarioPayload, ScenarioRecord, SnapshotFile

logger = logging.getLogger(__name__)

SNAPSHOT_FORMAT_VERSION = 1


def snapshot_path(test_file: str | os.PathLike[str], settings: Optional[Config] = None) -> Path:
    settings = settings or get_config()
    source = Path(test_file)
    return source.parent / settings.snapshot_dir / f"{source.stem}.json"


def scenario_payload(record: ScenarioRecord) -> ScenarioPayload:
    return {
        "tokens": list(record.tokens),
        "decimals": dict(record.decimals),
        "entries": [entry.to_dict() for entry in record.entries],
    }


def empty_snapshot() -> SnapshotFile:
    return {"format_version": SNAPSHOT_FORMAT_VERSION, "engine_version": ENGINE_VERSION, "scenarios": {}}


def _validate_snapshot(raw: Any, path: Path) -> SnapshotFile:
    if not isinstance(raw, dict):
        raise SnapshotFormatError(f"Snapshot file '{path}' must contain a JSON object at top level")
    version = raw.get("format_version")
    if version != SNAPSHOT_FORMAT_VERSION:
        raise SnapshotFormatError(
            f"Unsupported snapshot format version {version!r} in '{path}'; expected {SNAPSHOT_FORMAT_VERSION}. "
            "Re-record with --txscribe-update."
        )
    scenarios = raw.get("scenarios")
    if not isinstance(scenarios, dict):
        raise SnapshotFormatError(f"Snapshot file '{path}' is missing the 'scenarios' object")
    for name, scenario in scenarios.items():
        if not isinstance(scenario, dict) or not isinstance(scenario.get("entries"), list):
            raise SnapshotFormatError(f"Scenario '{name}' in '{path}' must be an object with an 'entries' list")
    return raw  # type: ignore[return-value]


def load_snapshot_file(path: str | os.PathLike[str], settings: Optional[Config] = None) -> SnapshotFile:
    settings = settings or get_config()
    path = Path(path)
    file_size = path.stat().st_size
    if file_size > settings.max_snapshot_size:
        raise SnapshotFormatError(
            f"Snapshot file exceeds maximum allowed size ({settings.max_snapshot_size} bytes): {path}"
        )
    with open(path, "r", encoding="utf-8") as handle:
        try:
            raw = json.load(handle)
        except json.JSONDecodeError as exc:
            raise SnapshotFormatError(f"Invalid JSON in snapshot file '{path}': {exc}") from exc
    return _validate_snapshot(raw, path)


def save_snapshot_file(path: str | os.PathLike[str], data: SnapshotFile) -> None:
    # Field order inside entries is positional; only the scenario table is sorted.
    ordered = dict(data)
    ordered["scenarios"] = dict(sorted(data["scenarios"].items()))
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as handle:
        json.dump(ordered, handle, indent=2)
        handle.write("\n")


def records_from_snapshot(data: SnapshotFile) -> List[ScenarioRecord]:
    """Rebuild scenario records from a loaded snapshot, in stored order."""
    records = []
    for name, scenario in data["scenarios"].items():
        try:
            entries = tuple(LogEntry.from_dict(entry) for entry in scenario.get("entries", []))
        except (KeyError, ValueError) as exc:
            raise SnapshotFormatError(f"Scenario '{name}' has an invalid entry: {exc}") from exc
        records.append(
            ScenarioRecord(
                name=name,
                entries=entries,
                tokens=tuple(scenario.get("tokens", [])),
                decimals=dict(scenario.get("decimals", {})),
            )
        )
    return records


def assert_matches_snapshot(
    path: str | os.PathLike[str],
    record: ScenarioRecord,
    *,
    update: bool = False,
    settings: Optional[Config] = None,
) -> bool:
    """Compare ``record`` with its stored section, writing it when absent or updating.

    Returns ``True`` when the snapshot file was written.

    Raises:
        SnapshotMismatchError: if the stored entries differ from the recorded ones.
    """
    settings = settings or get_config()
    path = Path(path)
    data = load_snapshot_file(path, settings) if path.exists() else empty_snapshot()
    current = scenario_payload(record)
    stored = data["scenarios"].get(record.name)

    if stored is None or update or settings.update_snapshots:
        data["scenarios"][record.name] = current
        data["engine_version"] = ENGINE_VERSION
        save_snapshot_file(path, data)
        logger.info("txscribe: Snapshot for scenario '%s' written to %s", record.name, path)
        return True

    policy = DiffPolicy.from_config(settings)
    changes = compare_logs(stored["entries"], current["entries"], policy)
    if changes:
        raise SnapshotMismatchError(
            message=(
                f"Scenario '{record.name}' does not match snapshot {path}.\n"
                f"{explain_differences(stored['entries'], current['entries'], changes, policy)}\n"
                "Run pytest with --txscribe-update to accept the new behavior."
            ),
            scenario_id=record.name,
        )
    return False
