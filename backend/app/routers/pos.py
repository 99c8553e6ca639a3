from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import HTMLResponse
from pydantic import BaseModel, Field

from ..deps import get_manager, get_remote, get_storage
from ..inventory import list_recipes
from ..logs import json_log
from ..pos import (
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

router = APIRouter(prefix="/pos", tags=["pos"])


class CartLineIn(BaseModel):
    recipe_id: str = Field(min_length=1)
    quantity: int = Field(default=1, ge=0)


class CheckoutIn(BaseModel):
    lines: List[CartLineIn]


class PosSettingsIn(BaseModel):
    tax_rate: Optional[float] = None
    receipt_footer: Optional[str] = None
    auto_print: Optional[bool] = None


def _totals_out(cart) -> dict:
    t = cart.totals()
    return {k: f"{v:.2f}" for k, v in t.items()}


@router.get("/menu")
def get_menu(q: Optional[str] = None, manager=Depends(get_manager)):
    return {"categories": build_menu(list_recipes(manager), q)}


@router.post("/cart/totals")
def cart_totals(data: CheckoutIn, manager=Depends(get_manager), storage=Depends(get_storage)):
    pos_settings = load_settings(storage)
    try:
        cart = cart_from_lines([ln.model_dump() for ln in data.lines], list_recipes(manager), pos_settings["tax_rate"])
    except CheckoutError as ex:
        raise HTTPException(status_code=400, detail=str(ex))
    return {"lines": len(cart.lines), **_totals_out(cart)}


@router.post("/checkout")
def checkout_cart(
    data: CheckoutIn,
    manager=Depends(get_manager),
    storage=Depends(get_storage),
    remote=Depends(get_remote),
):
    pos_settings = load_settings(storage)
    try:
        cart = cart_from_lines([ln.model_dump() for ln in data.lines], list_recipes(manager), pos_settings["tax_rate"])
    except CheckoutError as ex:
        raise HTTPException(status_code=400, detail=str(ex))
    if cart.is_empty:
        raise HTTPException(status_code=400, detail="Cart is empty!")
    if not manager.connectivity.online:
        raise HTTPException(status_code=503, detail="Orders can only be placed while online")
    try:
        order = checkout(remote, cart)
    except CheckoutError as ex:
        raise HTTPException(status_code=503, detail=str(ex))
    return {
        "order": order,
        "order_number": order_number(order["id"]),
        "auto_print": bool(pos_settings.get("auto_print")),
        "receipt_html": receipt_html(order, pos_settings.get("receipt_footer") or ""),
    }


@router.get("/orders")
def list_orders(remote=Depends(get_remote)):
    try:
        orders = order_history(remote)
    except Exception as ex:
        json_log("warning", "pos.order_history_failed", error=str(ex))
        raise HTTPException(status_code=503, detail="Order history is unavailable")
    return {
        "orders": [
            {**o, "order_number": order_number(o.get("id")), "item_count": len(o.get("items") or [])}
            for o in orders
        ]
    }


@router.get("/orders/{order_id}/receipt", response_class=HTMLResponse)
def get_receipt(order_id: str, remote=Depends(get_remote), storage=Depends(get_storage)):
    try:
        orders = order_history(remote)
    except Exception as ex:
        json_log("warning", "pos.order_history_failed", error=str(ex))
        raise HTTPException(status_code=503, detail="Order history is unavailable")
    order = next((o for o in orders if o.get("id") == order_id), None)
    if not order:
        raise HTTPException(status_code=404, detail="order not found")
    return HTMLResponse(receipt_html(order, load_settings(storage).get("receipt_footer") or ""))


@router.get("/settings")
def get_settings(storage=Depends(get_storage)):
    return {"settings": load_settings(storage)}


@router.put("/settings")
def update_settings(data: PosSettingsIn, storage=Depends(get_storage)):
    return {
        "settings": save_settings(
            storage,
            tax_rate=data.tax_rate,
            receipt_footer=data.receipt_footer,
            auto_print=data.auto_print,
        )
    }
