from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Iterable, Optional

from .costing import (
    fmt_adjustment,
    fmt_money,
    is_complete_change,
    profit,
    recipe_lines,
    recipe_total_cost,
    supply_derived_fields,
    to_dec,
    variation_cost_adjustment,
)


class InventoryError(Exception):
    pass


class RecordNotFoundError(InventoryError):
    pass


_STARTS_WITH_DIGIT = re.compile(r"^\d")


def _now_iso(now: Optional[datetime] = None) -> str:
    return (now or datetime.now(timezone.utc)).isoformat()


def name_sort_key(name: Optional[str]):
    # Names starting with a digit come first, then case-insensitive alphabetical.
    n = (name or "").strip().lower()
    return (0 if _STARTS_WITH_DIGIT.match(n) else 1, n)


def title_case_words(value: Optional[str]) -> str:
    return " ".join(w[:1].upper() + w[1:].lower() if w else w for w in (value or "").split(" "))


def _find(records: Iterable[dict], record_id: str, label: str) -> dict:
    for r in records or []:
        if r.get("id") == record_id:
            return r
    raise RecordNotFoundError(f"{label} not found")


# Supply items.


def build_supply_record(name: str, price, size, measure_per_product, gst_rate, now: Optional[datetime] = None) -> dict:
    derived = supply_derived_fields(price, size, measure_per_product, gst_rate)
    return {
        "name": (name or "").strip(),
        "price": float(to_dec(price)),
        "size": float(to_dec(size)),
        "measure_per_product": float(to_dec(measure_per_product)),
        "price_with_gst": float(derived["price_with_gst"]),
        "products_per_unit": float(derived["products_per_unit"]),
        "price_per_product": float(derived["price_per_product"]),
        "created_at": _now_iso(now),
    }


def sorted_supply(items: list[dict]) -> list[dict]:
    return sorted(items or [], key=lambda s: name_sort_key(s.get("name")))


def list_supply(manager) -> list[dict]:
    return sorted_supply(manager.read("supply"))


def get_supply_item(manager, record_id: str) -> dict:
    return _find(manager.read("supply"), record_id, "supply item")


def save_supply_item(manager, fields: dict, gst_rate, record_id: Optional[str] = None):
    record = build_supply_record(
        fields.get("name"),
        fields.get("price"),
        fields.get("size"),
        fields.get("measure_per_product"),
        gst_rate,
    )
    if record_id:
        get_supply_item(manager, record_id)
        return manager.write("supply", "update", record, record_id)
    return manager.write("supply", "create", record)


def delete_supply_item(manager, record_id: str):
    get_supply_item(manager, record_id)
    return manager.write("supply", "delete", None, record_id)


# Stock.


def sorted_stock(items: list[dict]) -> list[dict]:
    return sorted(items or [], key=lambda s: name_sort_key(s.get("supply_item_name")))


def list_stock(manager) -> list[dict]:
    return sorted_stock(manager.read("stock"))


def get_stock_item(manager, record_id: str) -> dict:
    return _find(manager.read("stock"), record_id, "stock item")


def add_stock(manager, supply_item_id: str, amount, now: Optional[datetime] = None):
    qty = to_dec(amount)
    if qty <= 0:
        raise InventoryError("amount must be > 0")
    supply = next((s for s in manager.read("supply") if s.get("id") == supply_item_id), None)
    if not supply:
        raise InventoryError("Supply item not found")

    ts = _now_iso(now)
    entry = {"action": "added", "amount": float(qty), "date": ts, "note": f"Added {float(qty):g} units"}
    existing = next((s for s in manager.read("stock") if s.get("supply_item_id") == supply_item_id), None)
    if existing:
        return manager.write(
            "stock",
            "update",
            {
                "amount_in_stock": float(to_dec(existing.get("amount_in_stock")) + qty),
                "last_updated": ts,
                "change_log": list(existing.get("change_log") or []) + [entry],
            },
            existing["id"],
        )
    return manager.write(
        "stock",
        "create",
        {
            "supply_item_id": supply_item_id,
            "supply_item_name": supply.get("name"),
            "amount_in_stock": float(qty),
            "amount_used": 0.0,
            "created_at": ts,
            "last_updated": ts,
            "change_log": [entry],
        },
    )


def decrease_stock(manager, record_id: str, amount, now: Optional[datetime] = None):
    qty = to_dec(amount)
    if qty <= 0:
        raise InventoryError("amount must be > 0")
    item = get_stock_item(manager, record_id)
    in_stock = to_dec(item.get("amount_in_stock"))
    if qty > in_stock:
        raise InventoryError("Cannot decrease more than available stock")

    ts = _now_iso(now)
    entry = {"action": "used", "amount": float(qty), "date": ts, "note": f"Used {float(qty):g} units"}
    return manager.write(
        "stock",
        "update",
        {
            "amount_in_stock": float(in_stock - qty),
            "amount_used": float(to_dec(item.get("amount_used")) + qty),
            "last_updated": ts,
            "change_log": list(item.get("change_log") or []) + [entry],
        },
        record_id,
    )


def delete_stock_item(manager, record_id: str):
    get_stock_item(manager, record_id)
    return manager.write("stock", "delete", None, record_id)


def stock_log_text(item: dict) -> str:
    log = item.get("change_log") or []
    if not log:
        return "No log entries found for this item."
    lines = [f"Stock Log for: {item.get('supply_item_name') or ''}", ""]
    for i, entry in enumerate(log, start=1):
        lines.append(f"{i}. {entry.get('note') or ''} on {entry.get('date') or ''}")
    return "\n".join(lines)


# Recipes.


def build_variation(name: str, selling_price, changes: Iterable[dict], base_cost, supply_items: list[dict]) -> Optional[dict]:
    if not (name or "").strip() or to_dec(selling_price) <= 0:
        return None
    kept = []
    for ch in changes or []:
        if not is_complete_change(ch):
            continue
        kept.append(
            {
                "action": ch["action"].strip().lower(),
                "original_item": ch.get("original_item") or "",
                "new_item": ch.get("new_item") or "",
                "measure": float(to_dec(ch.get("measure"))),
            }
        )
    adjustment = variation_cost_adjustment(kept, supply_items)
    return {
        "name": name.strip(),
        "selling_price": float(to_dec(selling_price)),
        "cost_adjustment": float(adjustment),
        "total_cost": float(to_dec(base_cost) + adjustment),
        "changes": kept,
    }


def build_recipe_record(fields: dict, supply_items: list[dict], now: Optional[datetime] = None) -> dict:
    lines = recipe_lines(fields.get("items") or [], supply_items)
    total = recipe_total_cost(lines)
    variations = []
    for v in fields.get("variations") or []:
        built = build_variation(v.get("name"), v.get("selling_price"), v.get("changes") or [], total, supply_items)
        if built:
            variations.append(built)
    return {
        "name": title_case_words((fields.get("name") or "").strip()),
        "category": (fields.get("category") or "").strip(),
        "selling_price": float(to_dec(fields.get("selling_price"))),
        "total_cost": float(total),
        "items": [
            {
                "item_id": ln["item_id"],
                "item_name": ln["item_name"],
                "measure": float(ln["measure"]),
                "cost": float(ln["cost"]),
            }
            for ln in lines
        ],
        "variations": variations,
        "created_at": _now_iso(now),
    }


def preview_recipe_costs(fields: dict, supply_items: list[dict]) -> dict:
    record = build_recipe_record(fields, supply_items)
    return {
        "total_cost": fmt_money(record["total_cost"]),
        "profit": fmt_money(profit(record["selling_price"], record["total_cost"])),
        "items": record["items"],
        "variations": [
            {
                "name": v["name"],
                "cost_adjustment": fmt_adjustment(v["cost_adjustment"]),
                "total_cost": fmt_money(v["total_cost"]),
            }
            for v in record["variations"]
        ],
    }


def list_recipes(manager) -> list[dict]:
    return manager.read("recipes")


def get_recipe(manager, record_id: str) -> dict:
    return _find(manager.read("recipes"), record_id, "recipe")


def save_recipe(manager, fields: dict, record_id: Optional[str] = None):
    record = build_recipe_record(fields, manager.read("supply"))
    if not record["name"]:
        raise InventoryError("recipe name is required")
    if record_id:
        get_recipe(manager, record_id)
        return manager.write("recipes", "update", record, record_id)
    return manager.write("recipes", "create", record)


def delete_recipe(manager, record_id: str):
    get_recipe(manager, record_id)
    return manager.write("recipes", "delete", None, record_id)


def existing_categories(recipes: list[dict]) -> list[str]:
    cats = {str(r.get("category") or "").strip() for r in recipes or []}
    return sorted(c for c in cats if c)


def category_suggestions(recipes: list[dict], query: Optional[str] = "") -> list[str]:
    q = (query or "").strip().lower()
    matches = [c for c in existing_categories(recipes) if q in c.lower()]
    # Nothing to suggest when the only match is exactly what was typed.
    if len(matches) == 1 and matches[0].lower() == q:
        return []
    return matches


def products_table(recipes: list[dict]) -> list[dict]:
    rows = []
    for r in recipes or []:
        p = profit(r.get("selling_price"), r.get("total_cost"))
        rows.append(
            {
                "id": r.get("id"),
                "name": r.get("name"),
                "total_cost": fmt_money(r.get("total_cost")),
                "selling_price": fmt_money(r.get("selling_price")),
                "profit": fmt_money(p),
                "profitable": p >= 0,
            }
        )
    return rows
