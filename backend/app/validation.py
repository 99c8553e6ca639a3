from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BeforeValidator, StringConstraints


def _to_lower_str(v):
    if v is None:
        return v
    return str(v).strip().lower()


def _strip_str(v):
    if v is None:
        return v
    return str(v).strip()


# Collections mirrored in the local cache; keys of the remote document store.
COLLECTIONS = ("supply", "stock", "recipes")

CollectionName = Annotated[Literal["supply", "stock", "recipes"], BeforeValidator(_to_lower_str)]
ChangeOperation = Annotated[Literal["create", "update", "delete"], BeforeValidator(_to_lower_str)]
VariationAction = Annotated[Literal["substitute", "add", "remove"], BeforeValidator(_to_lower_str)]

# Free-text names typed by staff (supply items, recipes, categories).
ItemName = Annotated[
    str,
    BeforeValidator(_strip_str),
    StringConstraints(min_length=1, max_length=120),
]
