from __future__ import annotations

import pytest

from careconnect.core.sync import Filter, Where, subscription_key, tag_records


ROWS = [
    {"id": 1, "status": "pending", "hours": 4},
    {"id": 2, "status": "approved", "hours": 8},
    {"id": 3, "status": "rejected"},
]


def test_conjunction():
    flt = Filter.where("status", "in", ["pending", "approved"]).and_where("hours", ">", 5)
    assert [r["id"] for r in flt.apply(ROWS)] == [2]


def test_missing_field_and_type_mismatch_do_not_match():
    assert Filter.where("hours", ">=", 1).apply(ROWS) == ROWS[:2]
    assert Filter.where("status", "<", 3).apply(ROWS) == []


def test_params_rendering():
    flt = Filter.where("carer", "==", 7).and_where("date", ">=", "2024-01-01").and_where("status", "in", ["a", "b"])
    assert flt.to_params() == {"carer": "7", "date__gte": "2024-01-01", "status__in": "a,b"}
    assert Filter.where("read", "==", False).to_params() == {"read": "false"}


def test_invalid_clauses():
    with pytest.raises(ValueError):
        Where("status", "~=", "x")
    with pytest.raises(ValueError):
        Where("", "==", "x")
    with pytest.raises(ValueError):
        Where("status", "in", "pending")


def test_subscription_key_distinguishes_filters():
    a = subscription_key("leave", Filter.where("status", "==", "pending"))
    b = subscription_key("leave", Filter.where("status", "==", "approved"))
    assert a != b
    assert a == subscription_key("leave", Filter.where("status", "==", "pending"))
    assert subscription_key("leave", None) == ("leave", ())


def test_tag_records_keeps_native_ids():
    out = tag_records([{"id": 5, "x": 1}, {"x": 2}])
    assert out[0]["id"] == 5
    assert isinstance(out[1]["id"], str) and len(out[1]["id"]) == 16
