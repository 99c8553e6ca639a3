from decimal import Decimal

import pytest

from backend.app.costing import (
    fmt_adjustment,
    fmt_money,
    is_complete_change,
    recipe_lines,
    recipe_total_cost,
    supply_derived_fields,
    variation_cost_adjustment,
)

SUPPLY = [
    {"id": "s1", "name": "Flour", "price_per_product": 1.08},
    {"id": "s2", "name": "Almond Milk", "price_per_product": 2.5},
    {"id": "s3", "name": "Milk", "price_per_product": 1.0},
]


def test_supply_derived_fields_apply_gst():
    d = supply_derived_fields("100", "1000", "10", "0.08")
    assert d["price_with_gst"] == Decimal("108.00")
    assert d["products_per_unit"] == Decimal("100")
    assert d["price_per_product"] == Decimal("1.08")


@pytest.mark.parametrize("size,measure", [(0, 10), (1000, 0), (-1, 10)])
def test_supply_derived_fields_reject_non_positive_sizes(size, measure):
    with pytest.raises(ValueError):
        supply_derived_fields(100, size, measure, 0.08)


def test_recipe_lines_match_names_case_insensitively_and_skip_unknowns():
    lines = recipe_lines(
        [
            {"name": "flour", "measure": 2},
            {"name": "Eggs", "measure": 1},
            {"name": "Milk", "measure": ""},
            {"item_name": "MILK", "measure": "0.5"},
        ],
        SUPPLY,
    )
    assert [ln["item_id"] for ln in lines] == ["s1", "s3"]
    assert lines[0]["cost"] == Decimal("2.16")
    assert recipe_total_cost(lines) == Decimal("2.66")


def test_incomplete_variation_changes_are_ignored():
    assert is_complete_change({"action": "add", "new_item": "Milk", "measure": 1})
    assert not is_complete_change({"action": "add", "new_item": "", "measure": 1})
    assert not is_complete_change({"action": "remove", "original_item": "Milk", "measure": 0})
    assert not is_complete_change({"action": "substitute", "original_item": "Milk", "measure": 1})
    assert not is_complete_change({"action": "swap", "original_item": "Milk", "new_item": "Flour", "measure": 1})


def test_variation_cost_adjustment_per_action():
    changes = [
        {"action": "substitute", "original_item": "Milk", "new_item": "Almond Milk", "measure": 2},
        {"action": "add", "new_item": "Flour", "measure": 1},
        {"action": "remove", "original_item": "Milk", "measure": 0.5},
    ]
    # (2.5 - 1.0) * 2 + 1.08 - 0.5
    assert variation_cost_adjustment(changes, SUPPLY) == Decimal("3.58")


def test_substitution_with_unknown_item_adds_nothing():
    changes = [{"action": "substitute", "original_item": "Milk", "new_item": "Oat Milk", "measure": 2}]
    assert variation_cost_adjustment(changes, SUPPLY) == Decimal("0")


def test_money_formatting():
    assert fmt_money("2.005") == "2.01"
    assert fmt_money(None) == "0.00"
    assert fmt_adjustment("1.5") == "+1.50"
    assert fmt_adjustment("-0.75") == "-0.75"
