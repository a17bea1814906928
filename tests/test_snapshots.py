import json

import pytest

from txscribe import __version__
from txscribe.config import Config
from txscribe.errors import SnapshotFormatError, SnapshotMismatchError
from txscribe.snapshots import (
    SNAPSHOT_FORMAT_VERSION,
    assert_matches_snapshot,
    load_snapshot_file,
    records_from_snapshot,
    snapshot_path,
)
from txscribe.types import EntryKind, EventRecord, LogEntry, MethodDescriptor, Param, ScenarioRecord
from txscribe.values import Array, Scalar, Struct


def _record(bob=250, tx_hash="0x01", name="pays bob"):
    call = LogEntry(
        kind=EntryKind.METHOD_CALL,
        method=MethodDescriptor("transfer", (Param("to", "address"), Param("amount", "uint256"))),
        caller="alice",
        contract="USDC",
        args=(Scalar("bob"), Scalar(bob)),
        balances={"USDC": {"alice": 1000 - bob, "bob": bob}},
        events=(EventRecord("USDC", "Transfer", Struct((("to", Scalar("bob")), ("path", Array((Scalar(1),)))))),),
        tx_hash=tx_hash,
    )
    return ScenarioRecord(name=name, entries=(call,), tokens=("USDC",), decimals={"USDC": 6})


def test_snapshot_path_sits_next_to_test_file(tmp_path):
    assert snapshot_path(tmp_path / "test_pay.py", Config()) == tmp_path / "__snapshots__" / "test_pay.json"


def test_first_run_writes_snapshot(tmp_path):
    path = tmp_path / "__snapshots__" / "test_pay.json"

    written = assert_matches_snapshot(path, _record(), settings=Config())

    assert written is True
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["format_version"] == SNAPSHOT_FORMAT_VERSION
    assert data["engine_version"] == __version__
    scenario = data["scenarios"]["pays bob"]
    assert scenario["tokens"] == ["USDC"]
    assert scenario["decimals"] == {"USDC": 6}
    assert scenario["entries"][0]["balances"] == {"USDC": {"alice": 750, "bob": 250}}


def test_matching_record_passes_even_with_new_tx_hash(tmp_path):
    path = tmp_path / "snap.json"
    assert_matches_snapshot(path, _record(tx_hash="0x01"), settings=Config())

    assert assert_matches_snapshot(path, _record(tx_hash="0x02"), settings=Config()) is False


def test_mismatch_raises_assertion_with_readable_diff(tmp_path):
    path = tmp_path / "snap.json"
    assert_matches_snapshot(path, _record(bob=250), settings=Config())

    with pytest.raises(SnapshotMismatchError) as excinfo:
        assert_matches_snapshot(path, _record(bob=300), settings=Config())

    error = excinfo.value
    assert isinstance(error, AssertionError)
    assert error.scenario_id == "pays bob"
    assert "$[0].balances.USDC.bob: 250 -> 300" in str(error)
    assert "--txscribe-update" in str(error)


def test_update_rewrites_snapshot(tmp_path):
    path = tmp_path / "snap.json"
    assert_matches_snapshot(path, _record(bob=250), settings=Config())

    assert assert_matches_snapshot(path, _record(bob=300), update=True, settings=Config()) is True
    assert assert_matches_snapshot(path, _record(bob=300), settings=Config()) is False


def test_scenarios_share_one_file(tmp_path):
    path = tmp_path / "snap.json"
    assert_matches_snapshot(path, _record(name="first"), settings=Config())
    assert_matches_snapshot(path, _record(name="second", bob=1), settings=Config())

    records = records_from_snapshot(load_snapshot_file(path, Config()))

    assert [record.name for record in records] == ["first", "second"]
    assert records[1].entries[0].balances["USDC"]["bob"] == 1


def test_records_round_trip_through_snapshot(tmp_path):
    path = tmp_path / "snap.json"
    original = _record()
    assert_matches_snapshot(path, original, settings=Config())

    (loaded,) = records_from_snapshot(load_snapshot_file(path, Config()))

    assert loaded.entries == original.entries
    assert loaded.tokens == original.tokens
    assert loaded.decimals == original.decimals


def test_invalid_json_is_a_format_error(tmp_path):
    path = tmp_path / "snap.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(SnapshotFormatError, match="Invalid JSON"):
        load_snapshot_file(path, Config())


def test_unknown_format_version_is_rejected(tmp_path):
    path = tmp_path / "snap.json"
    path.write_text(json.dumps({"format_version": 99, "scenarios": {}}), encoding="utf-8")

    with pytest.raises(SnapshotFormatError, match="Unsupported snapshot format version"):
        load_snapshot_file(path, Config())


def test_oversized_snapshot_is_rejected(tmp_path):
    path = tmp_path / "snap.json"
    assert_matches_snapshot(path, _record(), settings=Config())

    with pytest.raises(SnapshotFormatError, match="maximum allowed size"):
        load_snapshot_file(path, Config(max_snapshot_size=10))


def test_invalid_entry_is_reported_with_scenario(tmp_path):
    path = tmp_path / "snap.json"
    path.write_text(
        json.dumps(
            {
                "format_version": SNAPSHOT_FORMAT_VERSION,
                "engine_version": "0",
                "scenarios": {"broken": {"entries": [{"kind": "methodCall", "balances": {}}]}},
            }
        ),
        encoding="utf-8",
    )

    with pytest.raises(SnapshotFormatError, match="Scenario 'broken'"):
        records_from_snapshot(load_snapshot_file(path, Config()))
