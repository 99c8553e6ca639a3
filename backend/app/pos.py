from __future__ import annotations

import html
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from .config import settings as app_settings
from .costing import fmt_money, profit, q2, to_dec
from .local_store import STORAGE_KEYS
from .logs import json_log
from .record_ids import now_ms

ORDERS_COLLECTION = "pos-orders"

DEFAULT_SETTINGS = {
    "tax_rate": 12.0,
    "receipt_footer": "Thank you for dining with Knox Restaurant!",
    "auto_print": True,
}


class CheckoutError(Exception):
    pass


def sellable_recipes(recipes: list[dict]) -> list[dict]:
    return [r for r in recipes or [] if to_dec(r.get("selling_price")) > 0]


def build_menu(recipes: list[dict], query: Optional[str] = "") -> list[dict]:
    """Sellable recipes grouped by category, categories and names sorted alphabetically."""
    q = (query or "").strip().lower()
    by_cat: dict[str, list[dict]] = {}
    for r in sellable_recipes(recipes):
        if q and q not in str(r.get("name") or "").lower():
            continue
        by_cat.setdefault(r.get("category") or "Other", []).append(r)
    out = []
    for cat in sorted(by_cat):
        items = sorted(by_cat[cat], key=lambda r: str(r.get("name") or "").lower())
        out.append(
            {
                "category": cat,
                "items": [
                    {
                        "id": r.get("id"),
                        "name": r.get("name"),
                        "price": fmt_money(r.get("selling_price")),
                        "profit": fmt_money(profit(r.get("selling_price"), r.get("total_cost"))),
                    }
                    for r in items
                ],
            }
        )
    return out


@dataclass
class CartLine:
    id: str
    name: str
    price: Decimal
    quantity: int = 1

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


@dataclass
class Cart:
    tax_rate: Decimal = Decimal("12")
    lines: list[CartLine] = field(default_factory=list)

    def _line(self, recipe_id: str) -> Optional[CartLine]:
        return next((ln for ln in self.lines if ln.id == recipe_id), None)

    def add(self, recipe: dict) -> CartLine:
        existing = self._line(recipe.get("id"))
        if existing:
            existing.quantity += 1
            return existing
        ln = CartLine(id=recipe.get("id"), name=recipe.get("name") or "", price=to_dec(recipe.get("selling_price")))
        self.lines.append(ln)
        return ln

    def update_quantity(self, recipe_id: str, change: int) -> None:
        ln = self._line(recipe_id)
        if not ln:
            return
        ln.quantity += int(change)
        if ln.quantity <= 0:
            self.lines = [x for x in self.lines if x.id != recipe_id]

    def clear(self) -> None:
        self.lines = []

    @property
    def is_empty(self) -> bool:
        return not self.lines

    def totals(self) -> dict[str, Decimal]:
        subtotal = sum((ln.line_total for ln in self.lines), Decimal("0"))
        tax = subtotal * (to_dec(self.tax_rate) / Decimal("100"))
        return {"subtotal": subtotal, "tax": tax, "total": subtotal + tax}


def cart_from_lines(lines: list[dict], recipes: list[dict], tax_rate) -> Cart:
    """Rebuild a cart from [{"recipe_id", "quantity"}]; unknown or unsellable recipes are rejected."""
    by_id = {r.get("id"): r for r in sellable_recipes(recipes)}
    cart = Cart(tax_rate=to_dec(tax_rate))
    for ln in lines or []:
        rid = ln.get("recipe_id")
        qty = int(ln.get("quantity") or 0)
        recipe = by_id.get(rid)
        if not recipe:
            raise CheckoutError(f"recipe not on the menu: {rid}")
        if qty <= 0:
            continue
        cart.add(recipe)
        cart.update_quantity(rid, qty - 1)
    return cart


def build_order(cart: Cart, now_ts_ms: Optional[int] = None) -> dict:
    ts = now_ts_ms if now_ts_ms is not None else now_ms()
    t = cart.totals()
    return {
        "timestamp": ts,
        "date": datetime.fromtimestamp(ts / 1000, tz=timezone.utc).isoformat(),
        "items": [
            {"id": ln.id, "name": ln.name, "price": float(ln.price), "quantity": ln.quantity}
            for ln in cart.lines
        ],
        "subtotal": float(t["subtotal"]),
        "tax": float(t["tax"]),
        "tax_rate": float(to_dec(cart.tax_rate)),
        "total": float(t["total"]),
        "status": "completed",
    }


def order_number(order_id: str) -> str:
    return str(order_id or "")[-8:].upper()


def checkout(remote, cart: Cart, now_ts_ms: Optional[int] = None) -> dict:
    """Persist the order remotely. Orders are never queued offline."""
    if cart.is_empty:
        raise CheckoutError("Cart is empty!")
    order = build_order(cart, now_ts_ms)
    try:
        order_id = remote.create(ORDERS_COLLECTION, order)
    except Exception as ex:
        json_log("error", "pos.order_save_failed", error=str(ex), total=order["total"])
        raise CheckoutError("Error processing order. Please try again.") from ex
    order["id"] = str(order_id)
    json_log("info", "pos.order_saved", order_id=order["id"], total=order["total"])
    return order


def receipt_html(order: dict, footer: str) -> str:
    e = lambda v: html.escape(str(v or ""))
    when = datetime.fromtimestamp(int(order.get("timestamp") or 0) / 1000, tz=timezone.utc)
    rows = "".join(
        f'<div class="receipt-item"><span class="receipt-item-name">{e(it.get("name"))}</span>'
        f'<span class="receipt-item-qty">x{int(it.get("quantity") or 0)}</span>'
        f'<span class="receipt-item-total">&#8369;{fmt_money(to_dec(it.get("price")) * int(it.get("quantity") or 0))}</span></div>'
        for it in order.get("items") or []
    )
    tax_rate = q2(to_dec(order.get("tax_rate"))).normalize()
    return (
        '<div class="receipt-header">'
        '<div class="receipt-title">KNOX RESTAURANT</div>'
        '<div class="receipt-address">Point of Sale Receipt</div>'
        f'<div class="receipt-date">{e(when.strftime("%Y-%m-%d %H:%M:%S"))}</div>'
        f'<div class="receipt-order">Order #: {e(order_number(order.get("id")))}</div>'
        "</div>"
        f'<div class="receipt-items">{rows}</div>'
        '<div class="receipt-summary">'
        f'<div class="receipt-summary-row"><span>Subtotal:</span><span>&#8369;{fmt_money(order.get("subtotal"))}</span></div>'
        f'<div class="receipt-summary-row"><span>Tax ({tax_rate:f}%):</span><span>&#8369;{fmt_money(order.get("tax"))}</span></div>'
        f'<div class="receipt-summary-row receipt-total"><span>TOTAL:</span><span>&#8369;{fmt_money(order.get("total"))}</span></div>'
        "</div>"
        f'<div class="receipt-footer">{e(footer)}<br><br>Powered by Knox POS System</div>'
    )


def order_history(remote) -> list[dict]:
    orders = []
    for oid, payload in remote.read_all(ORDERS_COLLECTION):
        orders.append({**(payload or {}), "id": oid})
    orders.sort(key=lambda o: int(o.get("timestamp") or 0), reverse=True)
    return orders


def load_settings(storage) -> dict:
    out = {**DEFAULT_SETTINGS, "tax_rate": float(app_settings.pos_tax_rate)}
    try:
        raw = storage.get_item(STORAGE_KEYS["pos_settings"])
        saved = json.loads(raw) if raw else {}
    except Exception as ex:
        json_log("warning", "pos.settings_unreadable", error=str(ex))
        saved = {}
    if isinstance(saved, dict):
        out.update({k: v for k, v in saved.items() if k in DEFAULT_SETTINGS})
    return out


def save_settings(storage, tax_rate=None, receipt_footer=None, auto_print=None) -> dict:
    current = load_settings(storage)
    if tax_rate is not None:
        rate = to_dec(tax_rate, default=Decimal("0"))
        # A blank or zero rate falls back to the default.
        current["tax_rate"] = float(rate) if rate > 0 else float(app_settings.pos_tax_rate)
    if receipt_footer is not None:
        current["receipt_footer"] = str(receipt_footer)
    if auto_print is not None:
        current["auto_print"] = bool(auto_print)
    storage.set_item(STORAGE_KEYS["pos_settings"], json.dumps(current))
    return current
