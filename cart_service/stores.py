"""Cart persistence.

Every store hands out a per-owner exclusion scope (:meth:`CartStore.exclusive`)
and checks ``revision`` on write, so a load-mutate-persist sequence either
lands on the revision it read or fails with ``CartConflict``.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Dict, List, Optional

from pymongo.errors import DuplicateKeyError, PyMongoError

from cart_service.errors import CartConflict, StoreUnavailable
from cart_service.models import Cart, LineItem

logger = logging.getLogger("cart-service.store")


class KeyedLock:
    """asyncio locks keyed by string, dropped once nobody holds or awaits them."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class CartStore(ABC):
    def __init__(self):
        self._locks = KeyedLock()

    def exclusive(self, owner: str):
        """Serialize load-mutate-persist sequences for one owner in this process."""
        return self._locks.hold(owner)

    @abstractmethod
    async def get(self, owner: str) -> Optional[Cart]:
        ...

    @abstractmethod
    async def put(self, cart: Cart) -> Cart:
        """Insert or replace ``cart``.

        ``cart.revision`` is the revision it was loaded at (0 for a new cart).
        Returns the stored cart with the revision bumped.
        """

    @abstractmethod
    async def delete(self, owner: str) -> bool:
        ...

    @abstractmethod
    async def list_all(self) -> List[Cart]:
        ...

    async def ping(self) -> bool:
        return True


class MemoryCartStore(CartStore):
    def __init__(self):
        super().__init__()
        self._carts: Dict[str, Cart] = {}

    async def get(self, owner: str) -> Optional[Cart]:
        cart = self._carts.get(owner)
        return cart.model_copy(deep=True) if cart else None

    async def put(self, cart: Cart) -> Cart:
        current = self._carts.get(cart.owner)
        current_revision = current.revision if current else 0
        if current_revision != cart.revision:
            raise CartConflict(cart.owner)
        stored = cart.model_copy(update={"revision": cart.revision + 1}, deep=True)
        self._carts[cart.owner] = stored
        return stored.model_copy(deep=True)

    async def delete(self, owner: str) -> bool:
        return self._carts.pop(owner, None) is not None

    async def list_all(self) -> List[Cart]:
        return [cart.model_copy(deep=True) for cart in self._carts.values()]


# --- Mongo ---
# Prices are stored as floats (Decimal128 would need a codec) and restored
# through str() so 10.1 stays Decimal("10.1"). Floats hold 15 significant
# digits; amounts with more than that come back rounded.

def cart_to_document(cart: Cart) -> dict:
    return {
        "user_id": cart.owner,
        "items": [
            {
                "product_id": item.product_id,
                "quantity": item.quantity,
                "price": float(item.unit_price),
                "name": item.name,
            }
            for item in cart.items
        ],
        "total": float(cart.total),
        "updated_at": cart.updated_at,
        "revision": cart.revision,
    }

def cart_from_document(doc: dict) -> Cart:
    items = [
        LineItem(
            product_id=item["product_id"],
            quantity=item["quantity"],
            unit_price=Decimal(str(item["price"])),
            name=item.get("name") or "",
        )
        for item in doc.get("items", [])
    ]
    return Cart(
        owner=doc["user_id"],
        items=items,
        total=Decimal(str(doc.get("total", 0))),
        updated_at=doc["updated_at"],
        revision=doc.get("revision", 0),
    )


class MongoCartStore(CartStore):
    def __init__(self, collection):
        super().__init__()
        self.collection = collection

    async def ensure_indexes(self):
        await self.collection.create_index("user_id", unique=True)

    async def get(self, owner: str) -> Optional[Cart]:
        try:
            doc = await self.collection.find_one({"user_id": owner})
        except PyMongoError as exc:
            logger.error("Cart lookup failed", extra={"owner": owner}, exc_info=True)
            raise StoreUnavailable("Cart store unavailable") from exc
        return cart_from_document(doc) if doc else None

    async def put(self, cart: Cart) -> Cart:
        stored = cart.model_copy(update={"revision": cart.revision + 1})
        doc = cart_to_document(stored)
        try:
            if cart.revision == 0:
                await self._insert_or_adopt(cart.owner, doc)
            else:
                result = await self.collection.replace_one(
                    {"user_id": cart.owner, "revision": cart.revision}, doc
                )
                if result.matched_count == 0:
                    raise CartConflict(cart.owner)
        except PyMongoError as exc:
            logger.error("Cart write failed", extra={"owner": cart.owner}, exc_info=True)
            raise StoreUnavailable("Cart store unavailable") from exc
        return stored

    async def _insert_or_adopt(self, owner: str, doc: dict):
        # Revision 0 is either a new cart or a document written before
        # revisions existed; the latter is replaced only while it still
        # carries no revision.
        try:
            await self.collection.insert_one(doc)
            return
        except DuplicateKeyError:
            pass
        result = await self.collection.replace_one(
            {"user_id": owner, "revision": {"$exists": False}}, doc
        )
        if result.matched_count == 0:
            raise CartConflict(owner)

    async def delete(self, owner: str) -> bool:
        try:
            result = await self.collection.delete_one({"user_id": owner})
        except PyMongoError as exc:
            logger.error("Cart delete failed", extra={"owner": owner}, exc_info=True)
            raise StoreUnavailable("Cart store unavailable") from exc
        return result.deleted_count == 1

    async def list_all(self) -> List[Cart]:
        try:
            return [cart_from_document(doc) async for doc in self.collection.find({})]
        except PyMongoError as exc:
            logger.error("Cart listing failed", exc_info=True)
            raise StoreUnavailable("Cart store unavailable") from exc

    async def ping(self) -> bool:
        try:
            await self.collection.database.command("ping")
        except PyMongoError:
            return False
        return True
