from __future__ import annotations

from pydantic import BaseModel, Field


class CartItemAdd(BaseModel):
    customer_id: str = Field(..., min_length=1)
    product_id: str = Field(..., min_length=1)


class CartQuantityUpdate(BaseModel):
    customer_id: str = Field(..., min_length=1)
    # 0 or less removes the line.
    quantity: int


class CartLineOut(BaseModel):
    product_id: str
    name: str
    price: int
    quantity: int
    line_total: int


class CartOut(BaseModel):
    customer_id: str
    items: list[CartLineOut] = Field(default_factory=list)
    total: int = 0
    count: int = 0


class ProductOut(BaseModel):
    id: str
    name: str
    price: int
    stock: int
