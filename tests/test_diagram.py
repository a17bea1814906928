from txscribe.diagram import collect_entities, render_sequence_diagram, sequence_diagram_lines
from txscribe.types import EntryKind, EventRecord, LogEntry, MethodDescriptor, ScenarioRecord
from txscribe.values import Scalar, Struct


def _transfer(token, sender, recipient, amount):
    return EventRecord(
        contract=token,
        name="Transfer",
        args=Struct((("from", Scalar(sender)), ("to", Scalar(recipient)), ("value", Scalar(amount)))),
    )


def _call(caller, contract, method, events=()):
    return LogEntry(
        kind=EntryKind.METHOD_CALL,
        method=MethodDescriptor(method),
        caller=caller,
        contract=contract,
        events=tuple(events),
    )


INITIAL = LogEntry(kind=EntryKind.INITIAL_STATE, method=None, caller="", contract="")


def test_single_transfer_diagram():
    entries = [INITIAL, _call("alice", "USDC", "transfer", [_transfer("USDC", "alice", "bob", 250)])]

    assert sequence_diagram_lines(entries, ["USDC"]) == [
        "sequenceDiagram",
        "  actor alice",
        "  participant USDC",
        "  participant bob",
        "  rect rgb(230,255,230)",
        "    alice->>USDC: alice calls USDC.transfer",
        "    alice-->>bob: USDC.Transfer: alice -> bob (250)",
        "  end",
    ]


def test_non_transfer_events_become_notes():
    deposited = EventRecord(contract="Vault", name="Deposited", args=Struct((("amount", Scalar(1)),)))
    lines = sequence_diagram_lines([_call("alice", "Vault", "deposit", [deposited])], ["USDC"])

    assert "    Note over Vault: Vault.Deposited" in lines


def test_transfer_of_untracked_token_is_a_note():
    event = _transfer("Pool", "alice", "bob", 1)
    lines = sequence_diagram_lines([_call("alice", "Pool", "swap", [event])], ["USDC"])

    assert "    Note over Pool: Pool.Transfer" in lines
    assert not any("-->>" in line for line in lines)


def test_short_transfer_of_tracked_token_is_a_note():
    event = EventRecord(contract="USDC", name="Transfer", args=Struct((("from", Scalar("alice")), ("to", Scalar("bob")))))
    lines = sequence_diagram_lines([_call("alice", "USDC", "transfer", [event])], ["USDC"])

    assert "    Note over USDC: USDC.Transfer" in lines
    assert not any("-->>" in line for line in lines)


def test_actors_and_participants_are_sorted_and_disjoint():
    entries = [
        _call("carol", "Vault", "deposit", [_transfer("USDC", "carol", "Vault", 5)]),
        _call("alice", "USDC", "transfer", [_transfer("USDC", "alice", "carol", 1)]),
    ]

    actors, participants = collect_entities(entries, ["USDC"])

    assert actors == ["alice", "carol"]
    assert participants == ["USDC", "Vault"]
    assert not set(actors) & set(participants)


def test_diagram_is_deterministic_regardless_of_encounter_order():
    first = _call("bob", "USDC", "transfer", [_transfer("USDC", "bob", "alice", 1)])
    second = _call("alice", "Vault", "deposit")

    one = sequence_diagram_lines([first, second], ["USDC"])
    two = sequence_diagram_lines([second, first], ["USDC"])

    assert one[:5] == two[:5]
    assert render_sequence_diagram(ScenarioRecord("s", (first, second), ("USDC",))) == "\n".join(one)


def test_labels_are_sanitized_and_long_values_shortened():
    long_recipient = "0x" + "ab" * 20
    event = _transfer("USDC", 'we"ird', long_recipient, 10**30)
    lines = sequence_diagram_lines([_call('we"ird', "USDC", "transfer", [event])], ["USDC"])

    assert "  actor we'ird" in lines
    assert "    we'ird-->>0xabababab..ababababab: USDC.Transfer: we'ird -> 0xabababab..ababababab (1000000000..0000000000)" in lines
