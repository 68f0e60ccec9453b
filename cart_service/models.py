from datetime import datetime
from typing import Optional, List
from decimal import Decimal
from pydantic import BaseModel, Field


def line_total(items) -> Decimal:
    return sum((item.unit_price * item.quantity for item in items), Decimal(0))


class Product(BaseModel):
    id: str
    name: str
    price: Decimal
    description: str = ""
    image_url: Optional[str] = None


class LineItem(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    unit_price: Decimal  # Snapshot
    name: str  # Snapshot

    @classmethod
    def from_product(cls, product: Product, quantity: int) -> "LineItem":
        return cls(
            product_id=product.id,
            quantity=quantity,
            unit_price=product.price,
            name=product.name,
        )


class Cart(BaseModel):
    """One cart per owner.

    ``total`` is derived from ``items`` and is only ever assigned through
    :meth:`with_items`. ``revision`` counts successful writes and is
    maintained by the store.
    """
    owner: str
    items: List[LineItem] = []
    updated_at: datetime
    total: Decimal = Decimal(0)
    revision: int = 0

    def find(self, product_id: str) -> Optional[LineItem]:
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None

    def with_items(self, items: List[LineItem], updated_at: datetime) -> "Cart":
        return self.model_copy(update={
            "items": items,
            "total": line_total(items),
            "updated_at": updated_at,
        })

    @classmethod
    def create(cls, owner: str, items: List[LineItem], updated_at: datetime) -> "Cart":
        return cls(owner=owner, items=items, total=line_total(items), updated_at=updated_at)


class PopulatedItem(BaseModel):
    product: Product  # live catalog entry
    quantity: int


class PopulatedCart(BaseModel):
    owner: str
    items: List[PopulatedItem] = []
    # stored snapshot total, not the sum of the live prices above
    total: Decimal = Decimal(0)
    updated_at: Optional[datetime] = None
