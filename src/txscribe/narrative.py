"""Markdown narrative of recorded scenarios, rendered with Jinja2."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from jinja2 import Environment, PackageLoader, StrictUndefined

from .config import Config, get_config
from .diagram import render_sequence_diagram
from .formatting import arguments_verbose, format_delta, format_units, stringify_multiline, stringify_value
from .types import EntryKind, LogEntry, ScenarioRecord

logger = logging.getLogger(__name__)

TEMPLATE_NAME = "human_snapshot.md.j2"


def build_environment(limit: int) -> Environment:
    env = Environment(
        loader=PackageLoader("txscribe", "templates"),
        autoescape=False,
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
        undefined=StrictUndefined,
    )
    env.filters["stringify_inline"] = lambda value: stringify_value(value, limit)
    env.filters["stringify_multiline"] = stringify_multiline
    env.filters["arguments_verbose"] = lambda entry: arguments_verbose(entry, limit)
    env.filters["mermaid"] = lambda record: render_sequence_diagram(record, limit)
    return env


def _balance_rows(
    entry: LogEntry, previous: Optional[LogEntry], decimals: Dict[str, Optional[int]]
) -> List[Dict[str, str]]:
    rows = []
    for token, holders in entry.balances.items():
        before = previous.balances.get(token, {}) if previous else {}
        for holder, amount in holders.items():
            rows.append(
                {
                    "token": token,
                    "holder": holder,
                    "balance": format_units(amount, decimals.get(token)),
                    "change": format_delta(amount, before.get(holder), decimals.get(token)),
                }
            )
    return rows


def scenario_view(record: ScenarioRecord) -> Dict[str, Any]:
    """Template context for one scenario: entries paired with their balance changes."""
    entries = []
    previous: Optional[LogEntry] = None
    for entry in record.entries:
        rows = _balance_rows(entry, previous, record.decimals)
        entries.append(
            {
                "entry": entry,
                "is_call": entry.kind is EntryKind.METHOD_CALL,
                "balances": rows,
                "changed": [row for row in rows if row["change"]],
            }
        )
        previous = entry
    return {"record": record, "name": record.name, "entries": entries}


def render_human_snapshot(test_title: str, records: Sequence[ScenarioRecord], settings: Optional[Config] = None) -> str:
    settings = settings or get_config()
    template = build_environment(settings.max_string_length).get_template(TEMPLATE_NAME)
    return template.render(test_title=test_title, scenarios=[scenario_view(record) for record in records])


def human_snapshot_path(test_file: str | os.PathLike[str], settings: Optional[Config] = None) -> Path:
    settings = settings or get_config()
    source = Path(test_file)
    return source.parent / settings.human_snapshot_dir / f"{source.stem}.md"


def write_human_snapshot(
    test_file: str | os.PathLike[str], records: Sequence[ScenarioRecord], settings: Optional[Config] = None
) -> Path:
    settings = settings or get_config()
    path = human_snapshot_path(test_file, settings)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_human_snapshot(Path(test_file).stem, records, settings), encoding="utf-8")
    logger.debug("txscribe: Wrote %d scenario narrative(s) to %s", len(records), path)
    return path
