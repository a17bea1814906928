from decimal import Decimal

import pytest

from txscribe.values import Array, Scalar, Struct, from_native, map_leaves, to_native


def test_from_native_builds_tagged_values():
    value = from_native({"owner": "0xabc", "amounts": [1, 2], "flag": True, "blob": b"\x01\xff", "ratio": Decimal("1.5")})

    assert isinstance(value, Struct)
    assert value.keys() == ("owner", "amounts", "flag", "blob", "ratio")
    assert value.get("amounts") == Array((Scalar(1), Scalar(2)))
    assert value.get("blob") == Scalar("0x01ff")
    assert value.get("ratio") == Scalar("1.5")
    assert value.get("missing") is None


def test_floats_are_rejected():
    with pytest.raises(TypeError, match="Floating-point"):
        from_native([1, 2.5])


def test_to_native_round_trip():
    native = {"a": [1, {"b": None}], "c": "x"}
    assert to_native(from_native(native)) == native


def test_map_leaves_keeps_structure():
    value = from_native({"values": [1, 2, 3], "name": "pool"})

    doubled = map_leaves(value, lambda leaf: leaf * 2 if isinstance(leaf, int) else leaf)

    assert to_native(doubled) == {"values": [2, 4, 6], "name": "pool"}
    assert len(doubled) == 2
    assert list(doubled.get("values")) == [Scalar(2), Scalar(4), Scalar(6)]


def test_tuples_become_arrays():
    assert from_native((1, "a")) == Array((Scalar(1), Scalar("a")))
