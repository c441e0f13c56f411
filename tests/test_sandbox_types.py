from __future__ import annotations

import pytest

from src.sandboxes.types import (
    SCHEMA_VERSION,
    SandboxRecord,
    is_valid_record,
    normalize_id,
    record_from_value,
)


def test_record_to_dict_carries_schema_version_and_ctime() -> None:
    d = SandboxRecord(id="a", content="x", mtime=10).to_dict()
    assert d == {"schema_version": SCHEMA_VERSION, "id": "a", "content": "x", "mtime": 10, "ctime": 10}


def test_legacy_shape_without_version_is_accepted() -> None:
    rec = record_from_value("a", {"id": "a", "content": "hi", "mtime": 5})
    assert rec == SandboxRecord(id="a", content="hi", mtime=5, ctime=5)


@pytest.mark.parametrize(
    "value",
    [
        None,
        "not a dict",
        {"id": "", "content": "x", "mtime": 1},
        {"id": 3, "content": "x", "mtime": 1},
        {"id": "a", "content": None, "mtime": 1},
        {"id": "a", "content": "x", "mtime": 0},
        {"id": "a", "content": "x", "mtime": -5},
        {"id": "a", "content": "x", "mtime": "123"},
        {"id": "a", "content": "x", "mtime": True},
        {"id": "a", "content": "x"},
        {"schema_version": SCHEMA_VERSION + 1, "id": "a", "content": "x", "mtime": 1},
    ],
)
def test_invalid_values_are_treated_as_absent(value) -> None:
    assert is_valid_record(value) is False
    assert record_from_value("a", value) is None


def test_float_mtime_is_a_valid_number() -> None:
    rec = record_from_value("a", {"id": "a", "content": "", "mtime": 1700000000000.0})
    assert rec is not None
    assert rec.mtime == 1700000000000


def test_normalize_id_rejects_empty() -> None:
    assert normalize_id(" g1 ") == "g1"
    with pytest.raises(ValueError):
        normalize_id("   ")


def test_fractional_mtime_below_one_is_invalid() -> None:
    value = {"id": "a", "content": "x", "mtime": 0.5}
    assert is_valid_record(value) is False
    assert record_from_value("a", value) is None


def test_record_stored_under_another_key_is_absent() -> None:
    value = {"id": "b", "content": "x", "mtime": 5}
    assert is_valid_record(value) is True
    assert record_from_value("a", value) is None
    assert record_from_value("b", value) is not None
