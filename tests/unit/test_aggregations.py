from __future__ import annotations

from iamp.aggregations import count_by, format_int, format_pct, group_sum, ratio, top_items


def test_count_by_uses_placeholder_for_blank_keys():
    rows = [{"d": "Zahle"}, {"d": ""}, {"d": "Zahle"}, {"d": None}]
    assert count_by(rows, lambda r: r["d"]) == {"Zahle": 2, "—": 2}


def test_group_sum_treats_missing_values_as_zero():
    rows = [("Arsal", 10), ("Arsal", None), ("", 4), ("Zahle", 1.5)]
    assert group_sum(rows, lambda r: r[0], lambda r: r[1]) == {"Arsal": 10, "—": 4, "Zahle": 1.5}


def test_top_items_descending_and_stable():
    data = {"a": 1, "b": 5, "c": 5, "d": 3}
    assert top_items(data) == [("b", 5), ("c", 5), ("d", 3), ("a", 1)]
    assert top_items(data, 2) == [("b", 5), ("c", 5)]
    assert top_items({}, 10) == []


def test_ratio_and_formatting():
    assert ratio(1, 2) == 0.5
    assert ratio(3, 0) == 0.0
    assert format_pct(0.5) == "50.0%"
    assert format_pct(1 / 3) == "33.3%"
    assert format_pct(float("nan")) == "—"
    assert format_pct(None) == "—"
    assert format_int(1234.4) == "1,234"
    assert format_int(None) == "0"


def test_empty_and_single_inputs():
    assert count_by([], lambda r: r) == {}
    assert group_sum([], lambda r: r, lambda r: 1) == {}
    assert count_by(["Zahle"], lambda r: r) == {"Zahle": 1}
    assert group_sum([("Aley", 7)], lambda r: r[0], lambda r: r[1]) == {"Aley": 7}
