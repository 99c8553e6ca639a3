from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..config import settings
from ..costing import supply_derived_fields
from ..deps import get_manager
from ..inventory import (
    RecordNotFoundError,
    delete_supply_item,
    get_supply_item,
    list_supply,
    save_supply_item,
)
from ..validation import ItemName

router = APIRouter(prefix="/supply", tags=["supply"])


class SupplyItemIn(BaseModel):
    name: ItemName
    price: float = Field(ge=0)
    size: float = Field(gt=0)
    measure_per_product: float = Field(gt=0)


@router.get("")
def list_supply_items(manager=Depends(get_manager)):
    return {"items": list_supply(manager)}


@router.get("/preview")
def preview_supply_costs(price: float = 0, size: float = 0, measure_per_product: float = 0):
    # Live derived values while the form is being filled in.
    try:
        derived = supply_derived_fields(price, size, measure_per_product, settings.gst_rate)
    except ValueError as ex:
        raise HTTPException(status_code=400, detail=str(ex))
    return {k: f"{v:.2f}" for k, v in derived.items()}


@router.get("/{item_id}")
def get_supply(item_id: str, manager=Depends(get_manager)):
    try:
        return {"item": get_supply_item(manager, item_id)}
    except RecordNotFoundError as ex:
        raise HTTPException(status_code=404, detail=str(ex))


@router.post("")
def create_supply_item(data: SupplyItemIn, manager=Depends(get_manager)):
    res = save_supply_item(manager, data.model_dump(), settings.gst_rate)
    return res.to_dict()


@router.put("/{item_id}")
def update_supply_item(item_id: str, data: SupplyItemIn, manager=Depends(get_manager)):
    try:
        res = save_supply_item(manager, data.model_dump(), settings.gst_rate, record_id=item_id)
    except RecordNotFoundError as ex:
        raise HTTPException(status_code=404, detail=str(ex))
    return res.to_dict()


@router.delete("/{item_id}")
def remove_supply_item(item_id: str, manager=Depends(get_manager)):
    try:
        res = delete_supply_item(manager, item_id)
    except RecordNotFoundError as ex:
        raise HTTPException(status_code=404, detail=str(ex))
    return res.to_dict()
