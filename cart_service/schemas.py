from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from decimal import Decimal
from datetime import datetime
from shared.security_config import sanitize_input
from cart_service.models import Cart, PopulatedCart

class AddItemRequest(BaseModel):
    product_id: str = Field(..., min_length=1)
    quantity: int = Field(1, le=10000)

    @field_validator('product_id')
    def sanitize_product_id(cls, v):
        v = sanitize_input(v)
        if not v:
            raise ValueError("product_id cannot be empty")
        return v

class SetQuantityRequest(BaseModel):
    quantity: int = Field(..., le=10000)

class CartItemResponse(BaseModel):
    product_id: str
    quantity: int
    price: Decimal
    name: str

class CartResponse(BaseModel):
    user_id: str
    items: List[CartItemResponse]
    updated_at: datetime
    total: Decimal
    revision: int

    @classmethod
    def from_cart(cls, cart: Cart) -> "CartResponse":
        return cls(
            user_id=cart.owner,
            items=[
                CartItemResponse(
                    product_id=item.product_id,
                    quantity=item.quantity,
                    price=item.unit_price,
                    name=item.name,
                )
                for item in cart.items
            ],
            updated_at=cart.updated_at,
            total=cart.total,
            revision=cart.revision,
        )

class ProductView(BaseModel):
    id: str
    name: str
    price: Decimal
    description: str
    image_url: Optional[str] = None

class PopulatedItemResponse(BaseModel):
    product_id: str
    product: ProductView
    quantity: int

class PopulatedCartResponse(BaseModel):
    user_id: str
    items: List[PopulatedItemResponse]
    total: Decimal
    updated_at: Optional[datetime] = None

    @classmethod
    def from_populated(cls, cart: PopulatedCart) -> "PopulatedCartResponse":
        return cls(
            user_id=cart.owner,
            items=[
                PopulatedItemResponse(
                    product_id=item.product.id,
                    product=ProductView(**item.product.model_dump()),
                    quantity=item.quantity,
                )
                for item in cart.items
            ],
            total=cart.total,
            updated_at=cart.updated_at,
        )
