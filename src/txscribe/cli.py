import json
import logging
import sys
from pathlib import Path

import click

from . import __version__ as VERSION
from .config import refresh_config
from .diagram import render_sequence_diagram
from .diff import compare_logs, explain_differences
from .errors import TxScribeError
from .narrative import render_human_snapshot
from .snapshots import load_snapshot_file, records_from_snapshot

logger = logging.getLogger(__name__)


@click.group(invoke_without_command=True)
@click.pass_context
@click.option("--version", is_flag=True, help="Show the version and exit.")
def main(ctx, version):
    """txscribe: smart-contract scenario snapshots"""
    ctx.obj = {"config": refresh_config()}

    if version:
        click.echo(f"txscribe version {VERSION}")
        return
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


def _emit_structured_error(message: str, *, code: str, category: str, as_json: bool = False, exit_code: int = 2):
    payload = {
        "ok": False,
        "error": {
            "code": code,
            "category": category,
            "message": message,
        },
    }
    if as_json:
        click.echo(json.dumps(payload, indent=2, sort_keys=True))
    else:
        prefix = "txscribe internal error" if code == "INTERNAL" else "txscribe error"
        click.echo(f"{prefix} [{category}:{code}]: {message}")
    sys.exit(exit_code)


def _load_records(path, as_json=False):
    try:
        return records_from_snapshot(load_snapshot_file(path))
    except TxScribeError as exc:
        _emit_structured_error(exc.explanation, code=exc.error_code, category=exc.category, as_json=as_json)


def _select(records, scenario):
    if scenario is None:
        return records
    selected = [record for record in records if record.name == scenario]
    if not selected:
        _emit_structured_error(f"Scenario '{scenario}' not found", code="SCENARIO_NOT_FOUND", category="SNAPSHOT")
    return selected


@main.command("list")
@click.argument("snapshot", type=click.Path(exists=True, dir_okay=False))
def list_scenarios(snapshot):
    """List scenarios stored in a snapshot file."""
    for record in _load_records(snapshot):
        click.echo(f"{record.name} calls={len(record.calls)} entries={len(record.entries)}")


@main.command()
@click.argument("snapshot", type=click.Path(exists=True, dir_okay=False))
@click.option("--scenario", help="Only this scenario")
def diagram(snapshot, scenario):
    """Print the Mermaid sequence diagram of stored scenarios."""
    limit = refresh_config().max_string_length
    for record in _select(_load_records(snapshot), scenario):
        click.echo(f"%% {record.name}")
        click.echo(render_sequence_diagram(record, limit))


@main.command()
@click.argument("snapshot", type=click.Path(exists=True, dir_okay=False))
@click.option("--output", type=click.Path(dir_okay=False), help="Write the narrative here instead of stdout")
def render(snapshot, output):
    """Render the markdown narrative of a snapshot file."""
    records = _load_records(snapshot)
    text = render_human_snapshot(Path(snapshot).stem, records, refresh_config())
    if output:
        Path(output).parent.mkdir(parents=True, exist_ok=True)
        Path(output).write_text(text, encoding="utf-8")
        click.echo(f"Wrote {len(records)} scenario(s) to {output}")
    else:
        click.echo(text, nl=False)


def _scenario_rows(old_records, new_records):
    old = {record.name: record for record in old_records}
    new = {record.name: record for record in new_records}
    rows = []
    for name in sorted(set(old) | set(new)):
        if name not in new:
            rows.append({"scenario": name, "status": "removed", "changes": []})
            continue
        if name not in old:
            rows.append({"scenario": name, "status": "added", "changes": []})
            continue
        baseline = [entry.to_dict() for entry in old[name].entries]
        current = [entry.to_dict() for entry in new[name].entries]
        changes = compare_logs(baseline, current)
        row = {"scenario": name, "status": "fail" if changes else "pass", "changes": changes}
        if changes:
            row["explanation"] = explain_differences(baseline, current, changes)
        rows.append(row)
    return rows


@main.command()
@click.argument("old", type=click.Path(exists=True, dir_okay=False))
@click.argument("new", type=click.Path(exists=True, dir_okay=False))
@click.option("--json", "json_output", is_flag=True, help="Emit machine-readable diff report")
def diff(old, new, json_output):
    """Compare two snapshot files scenario by scenario."""
    try:
        rows = _scenario_rows(_load_records(old, json_output), _load_records(new, json_output))
    except TxScribeError as exc:
        _emit_structured_error(exc.explanation, code=exc.error_code, category=exc.category, as_json=json_output)
    except Exception as exc:  # last-resort guard so CI always sees a structured error
        logger.exception("Unhandled txscribe diff error")
        _emit_structured_error(str(exc), code="INTERNAL", category="SYSTEM", as_json=json_output)

    differing = [row for row in rows if row["status"] != "pass"]
    exit_code = 1 if differing else 0
    if json_output:
        payload = {"ok": True, "version": VERSION, "scenarios": rows, "exit_code": exit_code}
        click.echo(json.dumps(payload, indent=2, sort_keys=True, default=str))
    else:
        for row in rows:
            click.echo(f"{row['scenario']}: {row['status']}")
            for line in row.get("explanation", "").splitlines():
                click.echo(f"  {line}")
        click.echo(f"{len(differing)} of {len(rows)} scenario(s) differ.")
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
