import json
from decimal import Decimal

import pytest

from backend.app.local_store import STORAGE_KEYS, LocalStorage
from backend.app.pos import (
    ORDERS_COLLECTION,
    Cart,
    CheckoutError,
    build_menu,
    cart_from_lines,
    checkout,
    load_settings,
    order_history,
    order_number,
    receipt_html,
    save_settings,
)
from backend.app.remote_store import RemoteUnavailableError

RECIPES = [
    {"id": "r1", "name": "Pancakes", "category": "Breakfast", "selling_price": 120, "total_cost": 45},
    {"id": "r2", "name": "Iced Tea", "category": "Drinks", "selling_price": 60, "total_cost": 10},
    {"id": "r3", "name": "Adobo", "category": "", "selling_price": 180, "total_cost": 90},
    {"id": "r4", "name": "Staff Meal", "category": "Other", "selling_price": 0, "total_cost": 30},
    {"id": "r5", "name": "Bacon & Eggs", "category": "Breakfast", "selling_price": 150, "total_cost": 60},
]


class _FakeRemote:
    def __init__(self, fail=False):
        self.fail = fail
        self.created = []

    def create(self, collection, payload):
        if self.fail:
            raise RemoteUnavailableError("offline")
        self.created.append((collection, payload))
        return "-NabcdEFGH12345xyz"

    def read_all(self, collection):
        assert collection == ORDERS_COLLECTION
        return [("o1", {"timestamp": 1}), ("o2", {"timestamp": 3}), ("o3", {"timestamp": 2})]


def test_menu_groups_sellable_recipes_by_category():
    menu = build_menu(RECIPES)
    assert [c["category"] for c in menu] == ["Breakfast", "Drinks", "Other"]
    assert [i["name"] for i in menu[0]["items"]] == ["Bacon & Eggs", "Pancakes"]
    assert [i["name"] for i in menu[2]["items"]] == ["Adobo"]
    assert menu[0]["items"][1]["price"] == "120.00"
    assert menu[0]["items"][1]["profit"] == "75.00"


def test_menu_search_is_case_insensitive():
    menu = build_menu(RECIPES, "TEA")
    assert [(c["category"], [i["id"] for i in c["items"]]) for c in menu] == [("Drinks", ["r2"])]


def test_cart_quantities_and_totals():
    cart = Cart(tax_rate=Decimal("12"))
    cart.add(RECIPES[0])
    cart.add(RECIPES[0])
    cart.add(RECIPES[1])
    assert [ln.quantity for ln in cart.lines] == [2, 1]

    cart.update_quantity("r2", -1)
    assert [ln.id for ln in cart.lines] == ["r1"]

    t = cart.totals()
    assert t["subtotal"] == Decimal("240")
    assert t["tax"] == Decimal("28.8")
    assert t["total"] == Decimal("268.8")

    cart.clear()
    assert cart.is_empty


def test_cart_from_lines_rejects_unsellable_recipes():
    cart = cart_from_lines([{"recipe_id": "r1", "quantity": 3}, {"recipe_id": "r2", "quantity": 0}], RECIPES, 12)
    assert [(ln.id, ln.quantity) for ln in cart.lines] == [("r1", 3)]
    with pytest.raises(CheckoutError):
        cart_from_lines([{"recipe_id": "r4", "quantity": 1}], RECIPES, 12)


def test_checkout_pushes_completed_order():
    remote = _FakeRemote()
    cart = cart_from_lines([{"recipe_id": "r1", "quantity": 1}], RECIPES, 12)

    order = checkout(remote, cart, now_ts_ms=1_700_000_000_000)

    collection, payload = remote.created[0]
    assert collection == "pos-orders"
    assert payload["status"] == "completed"
    assert payload["subtotal"] == pytest.approx(120)
    assert payload["tax"] == pytest.approx(14.4)
    assert payload["total"] == pytest.approx(134.4)
    assert payload["items"] == [{"id": "r1", "name": "Pancakes", "price": 120.0, "quantity": 1}]
    assert order["id"] == "-NabcdEFGH12345xyz"
    assert order_number(order["id"]) == "12345XYZ"


def test_checkout_rejects_empty_cart_and_remote_failure():
    with pytest.raises(CheckoutError, match="Cart is empty"):
        checkout(_FakeRemote(), Cart())
    cart = cart_from_lines([{"recipe_id": "r2", "quantity": 1}], RECIPES, 12)
    with pytest.raises(CheckoutError):
        checkout(_FakeRemote(fail=True), cart)


def test_receipt_html_escapes_names_and_shows_footer():
    order = {
        "id": "-Nabcdefgh",
        "timestamp": 1_700_000_000_000,
        "items": [{"name": "Bacon & Eggs", "price": 150, "quantity": 2}],
        "subtotal": 300,
        "tax": 36,
        "tax_rate": 12,
        "total": 336,
    }
    out = receipt_html(order, "<b>Salamat!</b>")
    assert "KNOX RESTAURANT" in out
    assert "Bacon &amp; Eggs" in out
    assert "x2" in out
    assert "Tax (12%)" in out
    assert "336.00" in out
    assert "&lt;b&gt;Salamat!&lt;/b&gt;" in out
    assert "Powered by Knox POS System" in out
    assert "Order #: ABCDEFGH" in out


def test_order_history_is_newest_first():
    assert [o["id"] for o in order_history(_FakeRemote())] == ["o2", "o3", "o1"]


def test_settings_defaults_and_updates():
    storage = LocalStorage(":memory:")
    assert load_settings(storage) == {
        "tax_rate": 12.0,
        "receipt_footer": "Thank you for dining with Knox Restaurant!",
        "auto_print": True,
    }

    save_settings(storage, tax_rate="10", receipt_footer="Come again", auto_print=False)
    assert load_settings(storage) == {"tax_rate": 10.0, "receipt_footer": "Come again", "auto_print": False}

    save_settings(storage, receipt_footer="Bye")
    assert load_settings(storage)["tax_rate"] == 10.0

    save_settings(storage, tax_rate="")
    assert load_settings(storage)["tax_rate"] == 12.0


def test_unreadable_settings_fall_back_to_defaults():
    storage = LocalStorage(":memory:")
    storage.set_item(STORAGE_KEYS["pos_settings"], "{broken")
    assert load_settings(storage)["auto_print"] is True
    storage.set_item(STORAGE_KEYS["pos_settings"], json.dumps({"tax_rate": 5, "unknown": 1}))
    assert load_settings(storage) == {
        "tax_rate": 5,
        "receipt_footer": "Thank you for dining with Knox Restaurant!",
        "auto_print": True,
    }
