import pytest
from pydantic import BaseModel, ValidationError

from backend.app.validation import ChangeOperation, CollectionName, ItemName, VariationAction


class _M(BaseModel):
    collection: CollectionName
    operation: ChangeOperation
    action: VariationAction
    name: ItemName


def test_validation_types_normalize_case():
    m = _M(collection=" Supply ", operation="CREATE", action="Substitute", name="  Flour  ")
    assert m.collection == "supply"
    assert m.operation == "create"
    assert m.action == "substitute"
    assert m.name == "Flour"


def test_unknown_collection_is_rejected():
    with pytest.raises(ValidationError):
        _M(collection="orders", operation="create", action="add", name="x")


def test_blank_item_name_is_rejected():
    # strip runs before the length check
    with pytest.raises(ValidationError):
        _M(collection="stock", operation="update", action="remove", name="   ")
