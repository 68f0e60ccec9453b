"""Cart state transitions.

The engine loads a cart, computes the next state and writes it back with a
single ``put``. The whole sequence runs inside the store's per-owner
exclusion scope, and stores reject writes whose revision moved underneath
them, so writes to one owner's cart are linearizable. The engine itself never
retries.

Policies:

* prices and names are snapshotted when an item is first added; adding the
  same product again only bumps the quantity (first price wins);
* quantities must be positive integers on every write path;
* reading a missing cart yields an empty view, while removing, updating or
  deleting on a missing cart fails with ``CartNotFound``.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from cart_service.errors import CartError, CartNotFound, InvalidQuantity, ItemNotFound, ProductNotFound
from cart_service.models import Cart, LineItem, PopulatedCart, PopulatedItem
from cart_service.products import ProductLookup
from cart_service.stores import CartStore

logger = logging.getLogger("cart-service.engine")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def check_quantity(quantity) -> int:
    # bool is an int subclass; True is not a quantity
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidQuantity(quantity)
    return quantity


class CartEngine:
    def __init__(self, store: CartStore, products: ProductLookup, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.products = products
        self.clock = clock or utcnow

    async def add_item(self, owner: str, product_id: str, quantity: int) -> Cart:
        check_quantity(quantity)
        product = await self.products.get(product_id)
        if product is None:
            self._rejected("add_item", owner, ProductNotFound(product_id))

        async with self.store.exclusive(owner):
            cart = await self.store.get(owner)
            now = self.clock()
            if cart is None:
                cart = Cart.create(owner, [LineItem.from_product(product, quantity)], now)
            else:
                items = []
                merged = False
                for item in cart.items:
                    if item.product_id == product_id:
                        item = item.model_copy(update={"quantity": item.quantity + quantity})
                        merged = True
                    items.append(item)
                if not merged:
                    items.append(LineItem.from_product(product, quantity))
                cart = cart.with_items(items, now)
            stored = await self.store.put(cart)

        self._applied("Item added", stored, product_id, quantity)
        return stored

    async def remove_item(self, owner: str, product_id: str) -> Cart:
        async with self.store.exclusive(owner):
            cart = await self._load(owner, "remove_item")
            if cart.find(product_id) is None:
                self._rejected("remove_item", owner, ItemNotFound(product_id))
            items = [item for item in cart.items if item.product_id != product_id]
            stored = await self.store.put(cart.with_items(items, self.clock()))

        self._applied("Item removed", stored, product_id)
        return stored

    async def set_quantity(self, owner: str, product_id: str, quantity: int) -> Cart:
        check_quantity(quantity)
        async with self.store.exclusive(owner):
            cart = await self._load(owner, "set_quantity")
            if cart.find(product_id) is None:
                self._rejected("set_quantity", owner, ItemNotFound(product_id))
            items = [
                item.model_copy(update={"quantity": quantity}) if item.product_id == product_id else item
                for item in cart.items
            ]
            stored = await self.store.put(cart.with_items(items, self.clock()))

        self._applied("Quantity set", stored, product_id, quantity)
        return stored

    async def get_snapshot(self, owner: str) -> Cart:
        return await self._load(owner, "get_snapshot")

    async def list_for_user(self, owner: str) -> PopulatedCart:
        cart = await self.store.get(owner)
        if cart is None:
            return PopulatedCart(owner=owner)
        return await self._populate(cart)

    async def delete_cart(self, owner: str):
        async with self.store.exclusive(owner):
            if not await self.store.delete(owner):
                self._rejected("delete_cart", owner, CartNotFound(owner))
        logger.info("Cart deleted", extra={"owner": owner})

    # --- admin ---

    async def list_all_populated(self) -> List[PopulatedCart]:
        carts = await self.store.list_all()
        return list(await asyncio.gather(*(self._populate(cart) for cart in carts)))

    async def delete_by_owner(self, owner: str):
        await self.delete_cart(owner)

    # --- helpers ---

    async def _load(self, owner: str, operation: str) -> Cart:
        cart = await self.store.get(owner)
        if cart is None:
            self._rejected(operation, owner, CartNotFound(owner))
        return cart

    async def _populate(self, cart: Cart) -> PopulatedCart:
        products = await asyncio.gather(*(self.products.get(item.product_id) for item in cart.items))
        items = [
            PopulatedItem(product=product, quantity=item.quantity)
            for item, product in zip(cart.items, products)
            # dangling references are dropped from the view
            if product is not None
        ]
        return PopulatedCart(owner=cart.owner, items=items, total=cart.total, updated_at=cart.updated_at)

    def _applied(self, message: str, cart: Cart, product_id: str, quantity: Optional[int] = None):
        extra = {"owner": cart.owner, "product_id": product_id, "revision": cart.revision}
        if quantity is not None:
            extra["quantity"] = quantity
        logger.info(message, extra=extra)

    def _rejected(self, operation: str, owner: str, error: CartError):
        logger.warning(f"{operation} rejected: {error.message}", extra={"owner": owner, "kind": error.kind})
        raise error
