from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..deps import get_manager
from ..inventory import (
    InventoryError,
    RecordNotFoundError,
    category_suggestions,
    delete_recipe,
    existing_categories,
    get_recipe,
    list_recipes,
    preview_recipe_costs,
    products_table,
    save_recipe,
)
from ..validation import VariationAction

router = APIRouter(prefix="/recipes", tags=["recipes"])


class IngredientIn(BaseModel):
    name: str = ""
    measure: float = 0


class VariationChangeIn(BaseModel):
    action: VariationAction
    original_item: str = ""
    new_item: str = ""
    measure: float = 0


class VariationIn(BaseModel):
    name: str = ""
    selling_price: float = 0
    changes: List[VariationChangeIn] = Field(default_factory=list)


class RecipeIn(BaseModel):
    name: str = ""
    category: str = ""
    selling_price: float = Field(default=0, ge=0)
    items: List[IngredientIn] = Field(default_factory=list)
    variations: List[VariationIn] = Field(default_factory=list)


@router.get("")
def list_all_recipes(manager=Depends(get_manager)):
    return {"recipes": list_recipes(manager)}


@router.get("/categories")
def list_categories(q: Optional[str] = None, manager=Depends(get_manager)):
    recipes = list_recipes(manager)
    if q is None:
        return {"categories": existing_categories(recipes)}
    return {"categories": category_suggestions(recipes, q)}


@router.get("/products")
def list_products(manager=Depends(get_manager)):
    return {"products": products_table(list_recipes(manager))}


@router.post("/costing")
def preview_costs(data: RecipeIn, manager=Depends(get_manager)):
    return preview_recipe_costs(data.model_dump(), manager.read("supply"))


@router.get("/{recipe_id}")
def get_one_recipe(recipe_id: str, manager=Depends(get_manager)):
    try:
        return {"recipe": get_recipe(manager, recipe_id)}
    except RecordNotFoundError as ex:
        raise HTTPException(status_code=404, detail=str(ex))


@router.post("")
def create_recipe(data: RecipeIn, manager=Depends(get_manager)):
    try:
        res = save_recipe(manager, data.model_dump())
    except InventoryError as ex:
        raise HTTPException(status_code=400, detail=str(ex))
    return res.to_dict()


@router.put("/{recipe_id}")
def update_recipe(recipe_id: str, data: RecipeIn, manager=Depends(get_manager)):
    try:
        res = save_recipe(manager, data.model_dump(), record_id=recipe_id)
    except RecordNotFoundError as ex:
        raise HTTPException(status_code=404, detail=str(ex))
    except InventoryError as ex:
        raise HTTPException(status_code=400, detail=str(ex))
    return res.to_dict()


@router.delete("/{recipe_id}")
def remove_recipe(recipe_id: str, manager=Depends(get_manager)):
    try:
        res = delete_recipe(manager, recipe_id)
    except RecordNotFoundError as ex:
        raise HTTPException(status_code=404, detail=str(ex))
    return res.to_dict()
