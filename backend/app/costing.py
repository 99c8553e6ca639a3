from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, Optional

Q2 = Decimal("0.01")
ZERO = Decimal("0")


def to_dec(v, default: Decimal = ZERO) -> Decimal:
    if v is None or v == "":
        return default
    try:
        return Decimal(str(v))
    except (InvalidOperation, ValueError):
        return default


def q2(v: Decimal) -> Decimal:
    return v.quantize(Q2, rounding=ROUND_HALF_UP)


def fmt_money(v) -> str:
    return f"{q2(to_dec(v)):.2f}"


def fmt_adjustment(v) -> str:
    d = q2(to_dec(v))
    return ("+" if d >= 0 else "") + f"{d:.2f}"


def supply_derived_fields(price, size, measure_per_product, gst_rate) -> dict[str, Decimal]:
    """
    price_with_gst = price * (1 + gst)
    products_per_unit = size / measure_per_product
    price_per_product = price_with_gst / products_per_unit
    """
    p = to_dec(price)
    s = to_dec(size)
    m = to_dec(measure_per_product)
    if s <= 0 or m <= 0:
        raise ValueError("size and measure per product must be > 0")
    price_with_gst = p * (Decimal("1") + to_dec(gst_rate))
    products_per_unit = s / m
    return {
        "price_with_gst": price_with_gst,
        "products_per_unit": products_per_unit,
        "price_per_product": price_with_gst / products_per_unit,
    }


def find_supply_by_name(supply_items: Iterable[dict], name: Optional[str]) -> Optional[dict]:
    needle = (name or "").strip().lower()
    if not needle:
        return None
    for s in supply_items or []:
        if str(s.get("name") or "").strip().lower() == needle:
            return s
    return None


def unit_cost(supply_item: Optional[dict]) -> Decimal:
    if not supply_item:
        return ZERO
    return to_dec(supply_item.get("price_per_product"))


def recipe_lines(ingredients: Iterable[dict], supply_items: list[dict]) -> list[dict]:
    """
    Resolve ingredient rows ({"name", "measure"}) against supply items by case-insensitive name.
    Rows with an unknown name or a missing measure are skipped.
    """
    lines = []
    for ing in ingredients or []:
        measure = to_dec(ing.get("measure"))
        if measure <= 0:
            continue
        s = find_supply_by_name(supply_items, ing.get("name") or ing.get("item_name"))
        if not s:
            continue
        lines.append(
            {
                "item_id": s.get("id"),
                "item_name": s.get("name"),
                "measure": measure,
                "cost": unit_cost(s) * measure,
            }
        )
    return lines


def recipe_total_cost(lines: Iterable[dict]) -> Decimal:
    return sum((to_dec(ln.get("cost")) for ln in lines or []), ZERO)


def is_complete_change(change: dict) -> bool:
    action = (change.get("action") or "").strip().lower()
    measure = to_dec(change.get("measure"))
    if measure <= 0:
        return False
    if action == "substitute":
        return bool(change.get("original_item")) and bool(change.get("new_item"))
    if action == "add":
        return bool(change.get("new_item"))
    if action == "remove":
        return bool(change.get("original_item"))
    return False


def variation_cost_adjustment(changes: Iterable[dict], supply_items: list[dict]) -> Decimal:
    total = ZERO
    for ch in changes or []:
        if not is_complete_change(ch):
            continue
        action = ch["action"].strip().lower()
        measure = to_dec(ch.get("measure"))
        if action == "substitute":
            original = find_supply_by_name(supply_items, ch.get("original_item"))
            new = find_supply_by_name(supply_items, ch.get("new_item"))
            # Both sides must resolve; a half-known substitution adds nothing.
            if original and new:
                total += (unit_cost(new) - unit_cost(original)) * measure
        elif action == "add":
            new = find_supply_by_name(supply_items, ch.get("new_item"))
            if new:
                total += unit_cost(new) * measure
        elif action == "remove":
            original = find_supply_by_name(supply_items, ch.get("original_item"))
            if original:
                total -= unit_cost(original) * measure
    return total


def profit(selling_price, total_cost) -> Decimal:
    return to_dec(selling_price) - to_dec(total_cost)
