from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..deps import get_manager
from ..inventory import (
    InventoryError,
    RecordNotFoundError,
    add_stock,
    decrease_stock,
    delete_stock_item,
    get_stock_item,
    list_stock,
    stock_log_text,
)

router = APIRouter(prefix="/stock", tags=["stock"])


class StockAddIn(BaseModel):
    supply_item_id: str = Field(min_length=1)
    amount: float = Field(gt=0)


class StockDecreaseIn(BaseModel):
    amount: float = Field(gt=0)


def _raise_http(ex: InventoryError):
    if isinstance(ex, RecordNotFoundError):
        raise HTTPException(status_code=404, detail=str(ex))
    raise HTTPException(status_code=400, detail=str(ex))


@router.get("")
def list_stock_items(manager=Depends(get_manager)):
    return {"items": list_stock(manager)}


@router.post("")
def add_stock_amount(data: StockAddIn, manager=Depends(get_manager)):
    try:
        res = add_stock(manager, data.supply_item_id, data.amount)
    except InventoryError as ex:
        _raise_http(ex)
    return res.to_dict()


@router.post("/{item_id}/decrease")
def decrease_stock_amount(item_id: str, data: StockDecreaseIn, manager=Depends(get_manager)):
    try:
        res = decrease_stock(manager, item_id, data.amount)
    except InventoryError as ex:
        _raise_http(ex)
    return res.to_dict()


@router.get("/{item_id}/log")
def stock_log(item_id: str, manager=Depends(get_manager)):
    try:
        item = get_stock_item(manager, item_id)
    except InventoryError as ex:
        _raise_http(ex)
    return {"entries": item.get("change_log") or [], "text": stock_log_text(item)}


@router.delete("/{item_id}")
def remove_stock_item(item_id: str, manager=Depends(get_manager)):
    try:
        res = delete_stock_item(manager, item_id)
    except InventoryError as ex:
        _raise_http(ex)
    return res.to_dict()
