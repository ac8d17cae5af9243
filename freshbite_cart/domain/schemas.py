# freshbite_cart/domain/schemas.py
from typing import List

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def _reject_bool(v):
    # JSON true/false would pass as 1/0 in lax mode
    if isinstance(v, bool):
        raise ValueError("Must be a number, not a boolean")
    return v


class CamelModel(BaseModel):
    """camelCase on the wire and in the stored items column."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        coerce_numbers_to_str=True,
    )


class CartItemDraft(CamelModel):
    """Line item as sent by "add to cart", display fields are a snapshot."""

    dish_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    price: float = Field(..., ge=0, allow_inf_nan=False)
    quantity: int = Field(..., gt=0)
    image_src: str | None = None
    variant_id: str | None = None
    variant_name: str | None = None
    # deprecated, superseded by variant_id / variant_name
    size: str | None = None

    @field_validator("price", "quantity", mode="before")
    @classmethod
    def reject_bool(cls, v):
        return _reject_bool(v)


class CartLineItem(CartItemDraft):
    id: str


class UpdateQuantityIn(CamelModel):
    item_id: str = Field(..., min_length=1)
    quantity: int = Field(..., gt=0)

    @field_validator("quantity", mode="before")
    @classmethod
    def reject_bool(cls, v):
        return _reject_bool(v)


class CartOut(CamelModel):
    cart: List[CartLineItem]
    success: bool | None = None


class CartCountOut(BaseModel):
    count: int


class ErrorOut(BaseModel):
    error: str
    code: str
