"""Structural comparison of serialized scenario logs.

Change kinds and their severity:
- ``type_changed``, ``added`` and ``removed`` are high;
- ``value_changed`` and ``length_changed`` are medium.

Logs are compared entry by entry, so every path starts with the entry index
(``$[1].balances.USDC.bob``) and a change can be traced back to the call that
produced it. Suppression is explicit and comes only from ``DiffPolicy``.
"""

from __future__ import annotations

import json
import re
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional, Sequence

from .config import Config, get_config
from .errors import DiffContractError
from .types import DiffChange

MAX_DEPTH = 200

SEVERITY = {
    "type_changed": "high",
    "added": "high",
    "removed": "high",
    "length_changed": "medium",
    "value_changed": "medium",
}

_ENTRY_PATH = re.compile(r"^\$\[(\d+)\](?:\.(\w+))?")


def _clean(items: Iterable[Any]) -> FrozenSet[str]:
    return frozenset(str(item).strip() for item in items if str(item).strip())


def _matches(path: str, configured: FrozenSet[str]) -> bool:
    return path in configured or path[1:].lstrip(".") in configured


@dataclass(frozen=True)
class DiffPolicy:
    """Fields and paths left out of comparison, and lists compared as multisets."""

    ignored_fields: FrozenSet[str] = frozenset({"tx_hash"})
    ignored_paths: FrozenSet[str] = frozenset()
    list_sort_paths: FrozenSet[str] = frozenset()

    @classmethod
    def from_config(cls, settings: Optional[Config] = None) -> "DiffPolicy":
        configured = (settings or get_config()).diff_policy
        return cls(
            ignored_fields=frozenset(field.lower() for field in _clean(configured.get("ignored_fields", ()))),
            ignored_paths=_clean(configured.get("ignored_paths", ())),
            list_sort_paths=_clean(configured.get("list_sort_paths", ())),
        )


def _check_depth(depth: int) -> None:
    if depth > MAX_DEPTH:
        raise DiffContractError(f"Scenario log nests deeper than {MAX_DEPTH} levels")


def apply_diff_policy(data: Any, policy: Optional[DiffPolicy] = None) -> Any:
    """Copy of ``data`` without the fields and paths ``policy`` ignores."""
    policy = policy or DiffPolicy.from_config()
    if _matches("$", policy.ignored_paths):
        return None

    def _walk(value: Any, path: str, depth: int) -> Any:
        _check_depth(depth)
        if isinstance(value, Mapping):
            kept = {}
            for key, child in value.items():
                child_path = f"{path}.{key}"
                if str(key).lower() in policy.ignored_fields or _matches(child_path, policy.ignored_paths):
                    continue
                kept[key] = _walk(child, child_path, depth + 1)
            return kept
        if isinstance(value, (list, tuple)):
            return [
                _walk(item, f"{path}[{index}]", depth + 1)
                for index, item in enumerate(value)
                if not _matches(f"{path}[{index}]", policy.ignored_paths)
            ]
        return value

    return _walk(data, "$", 0)


def _canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def normalize_for_compare(data: Any, policy: Optional[DiffPolicy] = None) -> Any:
    """Sort mapping keys and configured lists; floats never belong in a log."""
    policy = policy or DiffPolicy.from_config()

    def _walk(value: Any, path: str, depth: int) -> Any:
        _check_depth(depth)
        if isinstance(value, float):
            raise DiffContractError(f"Floating-point value at {path}; logs carry integers and strings only")
        if isinstance(value, Mapping):
            return {key: _walk(value[key], f"{path}.{key}", depth + 1) for key in sorted(value, key=str)}
        if isinstance(value, (list, tuple)):
            items = [_walk(item, f"{path}[{index}]", depth + 1) for index, item in enumerate(value)]
            return sorted(items, key=_canonical) if _matches(path, policy.list_sort_paths) else items
        return value

    return _walk(data, "$", 0)


def _change(path: str, kind: str, baseline: Any, current: Any, **extra: Any) -> DiffChange:
    change: DiffChange = {
        "path": path,
        "change_type": kind,
        "severity": SEVERITY[kind],
        "baseline": baseline,
        "current": current,
    }
    change.update(extra)  # type: ignore[typeddict-item]
    return change


def _walk_diff(baseline: Any, current: Any, path: str, depth: int) -> Iterator[DiffChange]:
    _check_depth(depth)
    if type(baseline) is not type(current):
        yield _change(
            path,
            "type_changed",
            baseline,
            current,
            baseline_type=type(baseline).__name__,
            current_type=type(current).__name__,
        )
    elif isinstance(baseline, dict):
        for key in sorted(set(baseline) | set(current), key=str):
            child = f"{path}.{key}"
            if key not in current:
                yield _change(child, "removed", baseline[key], None)
            elif key not in baseline:
                yield _change(child, "added", None, current[key])
            else:
                yield from _walk_diff(baseline[key], current[key], child, depth + 1)
    elif isinstance(baseline, list):
        for index, (old, new) in enumerate(zip(baseline, current)):
            yield from _walk_diff(old, new, f"{path}[{index}]", depth + 1)
        if len(baseline) != len(current):
            yield _change(path, "length_changed", len(baseline), len(current))
    elif baseline != current:
        yield _change(path, "value_changed", baseline, current)


def build_structured_diff(baseline: Any, current: Any) -> List[DiffChange]:
    """Every path-addressed difference between two JSON-like values."""
    return list(_walk_diff(baseline, current, "$", 0))


def entry_index(path: str) -> Optional[int]:
    match = _ENTRY_PATH.match(path)
    return int(match.group(1)) if match else None


def entry_label(entry: Mapping[str, Any]) -> str:
    if entry.get("kind") == "initialState":
        return "initial state"
    method = (entry.get("method") or {}).get("name", "?")
    return f"{entry.get('caller', '?')} calls {entry.get('contract', '?')}.{method}"


def summarize_changes(changes: Sequence[DiffChange]) -> str:
    """One line: how many changes, in which parts of which entries, how severe."""
    if not changes:
        return "No differences detected."

    fields = Counter()
    entries = set()
    for change in changes:
        match = _ENTRY_PATH.match(change["path"])
        if match:
            entries.add(int(match.group(1)))
            fields[match.group(2) or "entry"] += 1
        else:
            fields["log"] += 1
    severities = Counter(change["severity"] for change in changes)
    fields_text = ", ".join(f"{name}={count}" for name, count in sorted(fields.items()))
    severity_text = ", ".join(f"{name}={count}" for name, count in sorted(severities.items()))
    where = f" in {len(entries)} entr{'y' if len(entries) == 1 else 'ies'}" if entries else ""
    return f"Detected {len(changes)} difference(s){where}: {fields_text}; severity: {severity_text}."


def _format_change(change: DiffChange) -> str:
    kind, path, severity = change["change_type"], change["path"], change["severity"]
    if kind == "value_changed":
        return f"~ [{severity}] {path}: {change['baseline']!r} -> {change['current']!r}"
    if kind == "type_changed":
        return (
            f"~ [{severity}] {path}: type {change['baseline_type']} -> {change['current_type']} "
            f"({change['baseline']!r} -> {change['current']!r})"
        )
    if kind == "added":
        return f"+ [{severity}] {path}: {change['current']!r}"
    if kind == "removed":
        return f"- [{severity}] {path}: {change['baseline']!r}"
    return f"~ [{severity}] {path}: length {change['baseline']} -> {change['current']}"


def format_human_diff(changes: Sequence[DiffChange], entries: Optional[Sequence[Mapping[str, Any]]] = None) -> str:
    """Readable diff; with the baseline ``entries`` it is grouped under each call."""
    if not changes:
        return "No differences."
    if entries is None:
        return "\n".join(_format_change(change) for change in changes)

    groups: Dict[Optional[int], List[DiffChange]] = {}
    for change in changes:
        groups.setdefault(entry_index(change["path"]), []).append(change)
    lines = []
    for index in sorted(groups, key=lambda item: -1 if item is None else item):
        if index is None:
            lines.append("log:")
        elif index < len(entries):
            lines.append(f"entry {index + 1} ({entry_label(entries[index])}):")
        else:
            lines.append(f"entry {index + 1} (not in snapshot):")
        lines.extend(f"  {_format_change(change)}" for change in groups[index])
    return "\n".join(lines)


def reordered_lists(baseline: Any, current: Any, path: str = "$") -> List[str]:
    """Paths of lists holding the same items in a different order."""
    if isinstance(baseline, dict) and isinstance(current, dict):
        found: List[str] = []
        for key in sorted(set(baseline) & set(current), key=str):
            found.extend(reordered_lists(baseline[key], current[key], f"{path}.{key}"))
        return found
    if not (isinstance(baseline, list) and isinstance(current, list)) or len(baseline) != len(current):
        return []
    if baseline != current and sorted(map(_canonical, baseline)) == sorted(map(_canonical, current)):
        return [path]
    found = []
    for index, (old, new) in enumerate(zip(baseline, current)):
        found.extend(reordered_lists(old, new, f"{path}[{index}]"))
    return found


def reorder_hint(paths: Sequence[str]) -> str:
    if not paths:
        return ""
    quoted = ", ".join(f'"{path}"' for path in paths)
    return (
        "Hint: the same items were recorded in a different order. Entries follow confirmation order, "
        "so calls mined in the same block may swap between runs.\n"
        "If order does not matter, add to [tool.txscribe.diff_policy] in pyproject.toml:\n"
        f"  list_sort_paths = [{quoted}]"
    )


def compare_logs(baseline: Sequence[Any], current: Sequence[Any], policy: Optional[DiffPolicy] = None) -> List[DiffChange]:
    """Diff two serialized entry lists after policy filtering and normalization."""
    policy = policy or DiffPolicy.from_config()
    return build_structured_diff(
        normalize_for_compare(apply_diff_policy(list(baseline), policy), policy),
        normalize_for_compare(apply_diff_policy(list(current), policy), policy),
    )


def explain_differences(
    baseline: Sequence[Any], current: Sequence[Any], changes: Sequence[DiffChange], policy: Optional[DiffPolicy] = None
) -> str:
    """Summary, grouped diff and, when only order moved, a reorder hint."""
    policy = policy or DiffPolicy.from_config()
    parts = [summarize_changes(changes), format_human_diff(changes, baseline)]
    hint = reorder_hint(reordered_lists(apply_diff_policy(list(baseline), policy), apply_diff_policy(list(current), policy)))
    if hint:
        parts.append(hint)
    return "\n".join(parts)
