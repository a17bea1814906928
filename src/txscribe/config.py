from __future__ import annotations

import os
import sys
from dataclasses import MISSING, dataclass, field, fields
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Dict, List

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


DEFAULT_DIFF_POLICY: Dict[str, Any] = {
    "ignored_fields": ["tx_hash"],
    "ignored_paths": [],
    "list_sort_paths": [],
}


@dataclass(frozen=True)
class Config:
    snapshot_dir: str = "__snapshots__"
    human_snapshot_dir: str = "__snapshots__humans__"
    update_snapshots: bool = False
    human_snapshots: bool = True
    strict_receipts: bool = False
    record_initial_state: bool = True
    match_event_emitter: bool = False
    receipt_timeout: float = 10.0
    max_string_length: int = 20
    max_snapshot_size: int = 50 * 1024 * 1024
    diff_policy: Dict[str, Any] = field(default_factory=lambda: dict(DEFAULT_DIFF_POLICY))


_ENV_PREFIX = "TXSCRIBE_"

# Values below these floors are clamped up.
_FLOORS: Dict[str, float] = {"receipt_timeout": 0.0, "max_string_length": 4, "max_snapshot_size": 1}

_BOOL_WORDS = {"1": True, "true": True, "yes": True, "on": True, "0": False, "false": False, "no": False, "off": False}


def _as_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return _BOOL_WORDS.get(value.strip().lower(), default)
    return default


def _as_number(kind: Callable[[Any], Any]) -> Callable[[Any, Any], Any]:
    def coerce(value: Any, default: Any) -> Any:
        if isinstance(value, bool):
            return default
        try:
            return kind(value)
        except (TypeError, ValueError):
            return default

    return coerce


_COERCERS: Dict[type, Callable[[Any, Any], Any]] = {
    bool: _as_bool,
    int: _as_number(int),
    float: _as_number(float),
    str: lambda value, default: str(value),
}


def _as_paths(value: Any) -> List[str]:
    """Comma-separated string or TOML array, as a list of stripped strings."""
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, (list, tuple)):
        return []
    return [str(item).strip() for item in value if str(item).strip()]


def _pyproject_for(start_dir: Path) -> Path | None:
    return next(
        (directory / "pyproject.toml" for directory in (start_dir, *start_dir.parents) if (directory / "pyproject.toml").is_file()),
        None,
    )


def _tool_section(pyproject: Path) -> Dict[str, Any]:
    with open(pyproject, "rb") as handle:
        parsed = tomllib.load(handle)
    section = parsed.get("tool", {}).get("txscribe", {})
    return section if isinstance(section, dict) else {}


def _diff_policy(raw: Any) -> Dict[str, Any]:
    policy = dict(DEFAULT_DIFF_POLICY)
    if isinstance(raw, dict):
        policy.update(raw)
    env_ignored = os.getenv(f"{_ENV_PREFIX}DIFF_IGNORED_FIELDS")
    if env_ignored is not None:
        policy["ignored_fields"] = env_ignored
    for key in DEFAULT_DIFF_POLICY:
        policy[key] = _as_paths(policy.get(key))
    return policy


def _from_sources(raw: Dict[str, Any]) -> Config:
    values: Dict[str, Any] = {}
    for option in fields(Config):
        if option.default is MISSING:
            continue
        default = option.default
        value = os.getenv(f"{_ENV_PREFIX}{option.name.upper()}", raw.get(option.name, default))
        value = _COERCERS[type(default)](value, default)
        if option.name in _FLOORS:
            value = max(type(default)(_FLOORS[option.name]), value)
        values[option.name] = value
    return Config(diff_policy=_diff_policy(raw.get("diff_policy")), **values)


@lru_cache(maxsize=32)
def load_config(start_dir: str | os.PathLike[str] | None = None) -> Config:
    """Settings from the nearest ``[tool.txscribe]`` table, overridden by ``TXSCRIBE_*`` variables."""
    pyproject = _pyproject_for(Path(start_dir or os.getcwd()).resolve())
    return _from_sources(_tool_section(pyproject) if pyproject else {})


def get_config() -> Config:
    return load_config(os.getcwd())


def refresh_config(start_dir: str | os.PathLike[str] | None = None) -> Config:
    load_config.cache_clear()
    return load_config(start_dir)
