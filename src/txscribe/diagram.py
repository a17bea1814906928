"""Deterministic sequence-diagram synthesis from a finished scenario log.

The output is Mermaid ``sequenceDiagram`` text. Declarations are sorted so two
renders of the same log are byte-identical regardless of encounter order.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Sequence, Set, Tuple

from .formatting import DEFAULT_MAX_LENGTH, stringify_value
from .types import EntryKind, EventRecord, LogEntry, ScenarioRecord

__all__ = ["Transfer", "collect_entities", "render_sequence_diagram", "sequence_diagram_lines"]

CALL_BLOCK_COLOR = "rgb(230,255,230)"


@dataclass(frozen=True)
class Transfer:
    token: str
    sender: str
    recipient: str
    amount: str


def sanitize_label(text: str) -> str:
    return str(text).replace('"', "'")


def as_transfer(event: EventRecord, tokens: Set[str], limit: int = DEFAULT_MAX_LENGTH) -> Transfer | None:
    """A value-flow arrow only for ``Transfer`` events of tracked tokens with from, to, amount."""
    if event.name != "Transfer" or event.contract not in tokens:
        return None
    positional = event.positional()
    if len(positional) < 3:
        return None
    sender, recipient, amount = positional[:3]
    return Transfer(
        token=event.contract,
        sender=stringify_value(sender, limit),
        recipient=stringify_value(recipient, limit),
        amount=stringify_value(amount, limit),
    )


def _calls(entries: Iterable[LogEntry]) -> List[LogEntry]:
    return [entry for entry in entries if entry.kind is EntryKind.METHOD_CALL]


def collect_entities(
    entries: Sequence[LogEntry], tokens: Iterable[str], limit: int = DEFAULT_MAX_LENGTH
) -> Tuple[List[str], List[str]]:
    """Return sorted (actors, participants); an actor is never also a participant."""
    token_set = set(tokens)
    actors: Set[str] = set()
    participants: Set[str] = set()
    for entry in _calls(entries):
        actors.add(str(entry.caller))
        if entry.contract:
            participants.add(str(entry.contract))
        for event in entry.events:
            transfer = as_transfer(event, token_set, limit)
            if transfer is None:
                continue
            participants.update(name for name in (transfer.sender, transfer.recipient) if name)
    participants -= actors
    return sorted(actors), sorted(participants)


def sequence_diagram_lines(
    entries: Sequence[LogEntry], tokens: Iterable[str], limit: int = DEFAULT_MAX_LENGTH
) -> List[str]:
    token_set = set(tokens)
    actors, participants = collect_entities(entries, token_set, limit)
    lines = ["sequenceDiagram"]
    lines.extend(f"  actor {sanitize_label(actor)}" for actor in actors)
    lines.extend(f"  participant {sanitize_label(participant)}" for participant in participants)

    for entry in _calls(entries):
        caller = sanitize_label(entry.caller)
        contract = sanitize_label(entry.contract)
        lines.append(f"  rect {CALL_BLOCK_COLOR}")
        lines.append(f"    {caller}->>{contract}: {caller} calls {contract}.{sanitize_label(entry.method_name)}")
        for event in entry.events:
            transfer = as_transfer(event, token_set, limit)
            if transfer is not None:
                sender = sanitize_label(transfer.sender)
                recipient = sanitize_label(transfer.recipient)
                amount = sanitize_label(transfer.amount)
                lines.append(
                    f"    {sender}-->>{recipient}: {transfer.token}.Transfer: {sender} -> {recipient} ({amount})"
                )
            else:
                lines.append(f"    Note over {sanitize_label(event.contract)}: {sanitize_label(f'{event.contract}.{event.name}')}")
        lines.append("  end")
    return lines


def render_sequence_diagram(record: ScenarioRecord, limit: int = DEFAULT_MAX_LENGTH) -> str:
    return "\n".join(sequence_diagram_lines(record.entries, record.tokens, limit))
